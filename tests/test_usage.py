"""Tests for usage analytics."""

import pytest

from llmtracker.analytics.usage import PlatformUsage, UsageAnalyzer
from llmtracker.utils.time import MS_PER_DAY

NOW = 1_700_000_000_000


@pytest.fixture
def seeded_store(store):
    """Two platforms, three messages over two days."""
    store.upsert_conversation(
        {
            "id": "conv-1",
            "platform": "chatgpt",
            "started_at": NOW - 2 * MS_PER_DAY,
            "last_activity": NOW,
            "model_used": "gpt-4",
        }
    )
    store.upsert_conversation(
        {
            "id": "conv-2",
            "platform": "claude",
            "started_at": NOW - MS_PER_DAY,
            "last_activity": NOW,
            "model_used": "claude-3-opus",
        }
    )
    store.insert_message(
        {
            "id": "msg-1",
            "conversation_id": "conv-1",
            "timestamp": NOW - 2 * MS_PER_DAY,
            "role": "user",
            "tokens_prompt": 50,
            "tokens_total": 50,
        }
    )
    store.insert_message(
        {
            "id": "msg-2",
            "conversation_id": "conv-1",
            "timestamp": NOW - 2 * MS_PER_DAY + 1000,
            "role": "assistant",
            "tokens_completion": 200,
            "tokens_total": 200,
            "total_generation_time_ms": 1500,
        }
    )
    store.insert_message(
        {
            "id": "msg-3",
            "conversation_id": "conv-2",
            "timestamp": NOW - MS_PER_DAY,
            "role": "user",
            "tokens_prompt": 30,
            "tokens_total": 30,
        }
    )
    return store


class TestTokenUsage:
    """Tests for token_usage_by_platform."""

    def test_groups_by_platform(self, seeded_store):
        """Test per-platform sums, largest first."""
        usage = UsageAnalyzer(seeded_store).token_usage_by_platform(0, NOW)

        assert [u.platform for u in usage] == ["chatgpt", "claude"]
        chatgpt = usage[0]
        assert chatgpt.total_tokens == 250
        assert chatgpt.prompt_tokens == 50
        assert chatgpt.completion_tokens == 200
        assert chatgpt.message_count == 2
        assert chatgpt.conversation_count == 1
        assert chatgpt.avg_tokens_per_message == pytest.approx(125.0)

    def test_window_filters_messages(self, seeded_store):
        """Test that only messages in the window are counted."""
        usage = UsageAnalyzer(seeded_store).token_usage_by_platform(
            NOW - MS_PER_DAY - 1, NOW
        )

        assert [u.platform for u in usage] == ["claude"]

    def test_empty_database(self, store):
        """Test that no data yields no rows."""
        assert UsageAnalyzer(store).token_usage_by_platform() == []


class TestCosts:
    """Tests for calculate_costs."""

    def test_default_pricing(self):
        """Test that known platforms get a positive cost."""
        usage = [PlatformUsage("chatgpt", 1, 2, 3000, 1000, 2000, 1500.0)]

        (cost,) = UsageAnalyzer.calculate_costs(usage)

        assert cost.estimated_cost == pytest.approx(0.03 + 0.12)

    def test_custom_pricing(self):
        """Test that supplied rates override the defaults."""
        usage = [PlatformUsage("chatgpt", 1, 2, 2000, 1000, 1000, 1000.0)]
        pricing = {"chatgpt": {"prompt": 0.01 / 1000, "completion": 0.02 / 1000}}

        (cost,) = UsageAnalyzer.calculate_costs(usage, pricing)

        assert cost.estimated_cost == pytest.approx(0.03, abs=1e-4)

    def test_unknown_platform_costs_nothing(self):
        """Test platforms without rates."""
        usage = [PlatformUsage("local-llm", 1, 1, 100, 50, 50, 100.0)]

        (cost,) = UsageAnalyzer.calculate_costs(usage)

        assert cost.estimated_cost == 0.0


class TestTrendsAndModels:
    """Tests for usage_trends, model_usage and usage_report."""

    def test_daily_trends(self, seeded_store):
        """Test one row per active day, oldest first."""
        trends = UsageAnalyzer(seeded_store).usage_trends(days=7, now=NOW)

        assert len(trends) == 2
        assert trends[0].date < trends[1].date
        assert trends[0].message_count == 2
        assert trends[0].total_tokens == 250
        assert trends[1].conversation_count == 1

    def test_model_usage(self, seeded_store):
        """Test per-model statistics."""
        models = {m.model: m for m in UsageAnalyzer(seeded_store).model_usage()}

        assert models["gpt-4"].total_tokens == 250
        assert models["gpt-4"].avg_response_time_ms == pytest.approx(1500.0)
        assert models["claude-3-opus"].avg_response_time_ms is None

    def test_report_summary(self, seeded_store):
        """Test the combined report."""
        report = UsageAnalyzer(seeded_store).usage_report(days=30, now=NOW)

        assert report["summary"]["total_tokens"] == 280
        assert report["summary"]["total_messages"] == 3
        assert report["summary"]["total_cost"] > 0
        assert {row["platform"] for row in report["by_platform"]} == {"chatgpt", "claude"}
        assert len(report["trends"]) == 2
