"""
ApiCapture repository.
"""

from typing import List

from sqlalchemy.orm import Session

from llmtracker.db.repositories.base import BaseRepository
from llmtracker.models.db import ApiCapture
from llmtracker.models.schemas import CaptureData


class ApiCaptureRepository(BaseRepository[ApiCapture]):
    """Repository for ApiCapture model."""

    def __init__(self, session: Session):
        super().__init__(ApiCapture, session)

    def create_from_data(self, data: CaptureData) -> ApiCapture:
        """
        Insert a capture row from a validated payload.

        Args:
            data: Validated capture payload

        Returns:
            Created capture
        """
        return self.create(
            id=data.id,
            message_id=data.message_id,
            timestamp=data.timestamp,
            request_url=data.request_url,
            request_method=data.request_method,
            request_headers=dict(data.request_headers),
            request_body=data.request_body,
            response_status=data.response_status,
            response_headers=dict(data.response_headers),
            response_body=data.response_body,
            raw_response=data.raw_response,
            model=data.model,
            temperature=data.temperature,
            max_tokens=data.max_tokens,
            top_p=data.top_p,
            is_streaming=data.is_streaming,
            platform=data.platform,
        )

    def get_by_message(self, message_id: str) -> List[ApiCapture]:
        """
        Get all captures recorded for a message, oldest first.

        A message has more than one capture when the request was retried.

        Args:
            message_id: Message id

        Returns:
            List of captures
        """
        return (
            self.session.query(ApiCapture)
            .filter(ApiCapture.message_id == message_id)
            .order_by(ApiCapture.timestamp.asc(), ApiCapture.created_at.asc())
            .all()
        )
