"""
Token usage and cost analytics.

Read-only aggregations over stored messages: token usage per platform,
estimated costs, daily trends and per-model usage.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Dict, List, Optional

from sqlalchemy import distinct, func
from sqlalchemy.orm import Session

from llmtracker.models.db import Conversation, Message
from llmtracker.utils.time import MS_PER_DAY, now_ms

if TYPE_CHECKING:
    from llmtracker.services.store import CaptureStore

# USD per token
DEFAULT_PRICING: Dict[str, Dict[str, float]] = {
    "chatgpt": {"prompt": 0.03 / 1000, "completion": 0.06 / 1000},
    "claude": {"prompt": 0.015 / 1000, "completion": 0.075 / 1000},
    "gemini": {"prompt": 0.001 / 1000, "completion": 0.002 / 1000},
}


@dataclass
class PlatformUsage:
    """Token usage of one platform over a time window."""

    platform: str
    conversation_count: int
    message_count: int
    total_tokens: int
    prompt_tokens: int
    completion_tokens: int
    avg_tokens_per_message: float


@dataclass
class PlatformCost:
    """Estimated cost for one platform's usage."""

    platform: str
    prompt_tokens: int
    completion_tokens: int
    prompt_cost: float
    completion_cost: float
    estimated_cost: float


@dataclass
class DailyUsage:
    date: str  # YYYY-MM-DD (UTC)
    message_count: int
    total_tokens: int
    conversation_count: int


@dataclass
class ModelUsage:
    model: str
    conversation_count: int
    total_tokens: int
    avg_response_time_ms: Optional[float]


class UsageAnalyzer:
    """
    Computes usage statistics from the capture store.

    Example:
        >>> analyzer = UsageAnalyzer(store)
        >>> usage = analyzer.token_usage_by_platform()
        >>> costs = analyzer.calculate_costs(usage)
    """

    def __init__(self, store: CaptureStore):
        self.store = store

    def token_usage_by_platform(
        self, start: Optional[int] = None, end: Optional[int] = None
    ) -> List[PlatformUsage]:
        """
        Token usage per platform for messages with ``start <= timestamp <= end``.

        Args:
            start: Window start in epoch ms (defaults to the beginning of time)
            end: Window end in epoch ms (defaults to now)

        Returns:
            Usage rows ordered by total tokens descending
        """
        start = start or 0
        end = end if end is not None else now_ms()

        def _op(session: Session) -> List[PlatformUsage]:
            total = func.coalesce(func.sum(Message.tokens_total), 0)
            rows = (
                session.query(
                    Conversation.platform,
                    func.count(distinct(Message.conversation_id)),
                    func.count(Message.seq),
                    total,
                    func.coalesce(func.sum(Message.tokens_prompt), 0),
                    func.coalesce(func.sum(Message.tokens_completion), 0),
                    func.avg(Message.tokens_total),
                )
                .join(Conversation, Conversation.id == Message.conversation_id)
                .filter(Message.timestamp.between(start, end))
                .group_by(Conversation.platform)
                .order_by(total.desc())
                .all()
            )
            return [
                PlatformUsage(
                    platform=platform,
                    conversation_count=conversations,
                    message_count=messages,
                    total_tokens=tokens,
                    prompt_tokens=prompt,
                    completion_tokens=completion,
                    avg_tokens_per_message=float(avg or 0.0),
                )
                for platform, conversations, messages, tokens, prompt, completion, avg in rows
            ]

        return self.store.query("token_usage_by_platform", _op)

    @staticmethod
    def calculate_costs(
        usage: List[PlatformUsage],
        pricing: Optional[Dict[str, Dict[str, float]]] = None,
    ) -> List[PlatformCost]:
        """
        Estimate cost per platform from prompt and completion token counts.

        Args:
            usage: Rows from :meth:`token_usage_by_platform`
            pricing: Per-token rates keyed by platform, merged over the
                defaults. Platforms without rates cost nothing.

        Returns:
            One cost row per usage row
        """
        rates = {**DEFAULT_PRICING, **(pricing or {})}
        costs = []
        for row in usage:
            platform_rates = rates.get(row.platform, {})
            prompt_cost = row.prompt_tokens * platform_rates.get("prompt", 0.0)
            completion_cost = row.completion_tokens * platform_rates.get(
                "completion", 0.0
            )
            costs.append(
                PlatformCost(
                    platform=row.platform,
                    prompt_tokens=row.prompt_tokens,
                    completion_tokens=row.completion_tokens,
                    prompt_cost=prompt_cost,
                    completion_cost=completion_cost,
                    estimated_cost=prompt_cost + completion_cost,
                )
            )
        return costs

    def usage_trends(self, days: int = 30, now: Optional[int] = None) -> List[DailyUsage]:
        """
        Daily message and token totals for the last ``days`` days (UTC dates).

        Returns:
            One row per day with activity, oldest first
        """
        since = (now if now is not None else now_ms()) - days * MS_PER_DAY

        def _op(session: Session) -> List[DailyUsage]:
            day = func.date(Message.timestamp / 1000, "unixepoch")
            rows = (
                session.query(
                    day,
                    func.count(Message.seq),
                    func.coalesce(func.sum(Message.tokens_total), 0),
                    func.count(distinct(Message.conversation_id)),
                )
                .filter(Message.timestamp >= since)
                .group_by(day)
                .order_by(day.asc())
                .all()
            )
            return [
                DailyUsage(
                    date=date,
                    message_count=messages,
                    total_tokens=tokens,
                    conversation_count=conversations,
                )
                for date, messages, tokens, conversations in rows
            ]

        return self.store.query("usage_trends", _op)

    def model_usage(self) -> List[ModelUsage]:
        """Per-model conversation counts, token totals and mean generation time."""

        def _op(session: Session) -> List[ModelUsage]:
            conversations = func.count(distinct(Conversation.id))
            rows = (
                session.query(
                    Conversation.model_used,
                    conversations,
                    func.coalesce(func.sum(Message.tokens_total), 0),
                    func.avg(Message.total_generation_time_ms),
                )
                .join(Message, Message.conversation_id == Conversation.id)
                .filter(Conversation.model_used.is_not(None))
                .group_by(Conversation.model_used)
                .order_by(conversations.desc())
                .all()
            )
            return [
                ModelUsage(
                    model=model,
                    conversation_count=count,
                    total_tokens=tokens,
                    avg_response_time_ms=float(avg) if avg is not None else None,
                )
                for model, count, tokens, avg in rows
            ]

        return self.store.query("model_usage", _op)

    def usage_report(
        self,
        days: int = 30,
        pricing: Optional[Dict[str, Dict[str, float]]] = None,
        now: Optional[int] = None,
    ) -> dict:
        """
        Combined report for the last ``days`` days.

        Returns:
            Dict with period, summary, by_platform, trends and models
        """
        end = now if now is not None else now_ms()
        start = end - days * MS_PER_DAY

        usage = self.token_usage_by_platform(start, end)
        costs = self.calculate_costs(usage, pricing)

        return {
            "period": {"days": days, "start": start, "end": end},
            "summary": {
                "total_tokens": sum(u.total_tokens for u in usage),
                "total_messages": sum(u.message_count for u in usage),
                "total_conversations": sum(u.conversation_count for u in usage),
                "total_cost": sum(c.estimated_cost for c in costs),
            },
            "by_platform": [asdict(c) for c in costs],
            "trends": [asdict(t) for t in self.usage_trends(days, now=end)],
            "models": [asdict(m) for m in self.model_usage()],
        }
