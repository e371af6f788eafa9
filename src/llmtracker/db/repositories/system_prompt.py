"""
SystemPrompt repository.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from llmtracker.db.repositories.base import BaseRepository
from llmtracker.models.db import SystemPrompt
from llmtracker.models.schemas import SystemPromptData
from llmtracker.utils.hashing import calculate_content_hash
from llmtracker.utils.time import now_ms

logger = logging.getLogger(__name__)


class SystemPromptRepository(BaseRepository[SystemPrompt]):
    """Repository for SystemPrompt model."""

    def __init__(self, session: Session):
        super().__init__(SystemPrompt, session)

    def get_by_hash(self, prompt_hash: str) -> Optional[SystemPrompt]:
        """
        Get a system prompt by content hash.

        Args:
            prompt_hash: SHA-256 hex digest of the prompt text

        Returns:
            SystemPrompt or None
        """
        return (
            self.session.query(SystemPrompt)
            .filter(SystemPrompt.prompt_hash == prompt_hash)
            .populate_existing()
            .first()
        )

    def record_occurrence(self, data: SystemPromptData) -> SystemPrompt:
        """
        Record one observation of a system prompt (race-safe).

        Uses INSERT ... ON CONFLICT(prompt_hash) DO UPDATE so a repeated text
        bumps ``occurrence_count`` and ``last_seen`` on the existing row while
        ``prompt_text`` and ``first_seen`` stay as first recorded.

        Args:
            data: Validated system prompt payload

        Returns:
            The stored system prompt row
        """
        prompt_hash = calculate_content_hash(data.prompt_text)
        now = now_ms()

        stmt = sqlite_insert(SystemPrompt).values(
            id=str(uuid.uuid4()),
            platform=data.platform,
            prompt_text=data.prompt_text,
            prompt_hash=prompt_hash,
            first_seen=data.first_seen,
            last_seen=data.last_seen,
            occurrence_count=1,
            conversation_ids=[],
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[SystemPrompt.prompt_hash],
            set_={
                "occurrence_count": SystemPrompt.occurrence_count + 1,
                "last_seen": stmt.excluded.last_seen,
                "updated_at": now,
            },
        )
        self.session.execute(stmt)

        prompt = self.get_by_hash(prompt_hash)
        if prompt is None:  # pragma: no cover - the upsert always leaves a row
            raise RuntimeError(f"System prompt {prompt_hash} missing after upsert")

        if data.conversation_id and data.conversation_id not in prompt.conversation_ids:
            # Reassign so the JSON column is flagged dirty
            prompt.conversation_ids = [*prompt.conversation_ids, data.conversation_id]
            self.session.flush()

        logger.debug(
            f"System prompt {prompt_hash[:12]} seen {prompt.occurrence_count} time(s)"
        )
        return prompt

    def get_by_platform(self, platform: Optional[str] = None) -> List[SystemPrompt]:
        """
        Get system prompts, most frequently observed first.

        Args:
            platform: Optional platform filter

        Returns:
            List of system prompts
        """
        query = self.session.query(SystemPrompt)
        if platform:
            query = query.filter(SystemPrompt.platform == platform)
        return query.order_by(
            SystemPrompt.occurrence_count.desc(), SystemPrompt.last_seen.desc()
        ).all()
