"""Guestbook write operations."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..data import DataApi, eq
from ..errors import AuthRequiredError
from .validation import validate_message_content

logger = logging.getLogger(__name__)


class GuestbookService:
    """Posts and deletes guestbook messages through the data API.

    Who may delete what is enforced by the data API's row-level policies.
    """

    def __init__(self, data: DataApi, *, table: str = "guestbook") -> None:
        self._data = data
        self.table = table

    def post_message(self, user_id: Optional[str], content: str) -> Dict[str, Any]:
        if not user_id:
            raise AuthRequiredError("You must be signed in to post a message")
        validate_message_content(content)
        result = self._data.insert(self.table, {"user_id": user_id, "content": content})
        row = result.unwrap()
        if isinstance(row, list):
            row = row[0] if row else {}
        logger.info("posted guestbook message for user %s", user_id)
        return dict(row or {})

    def delete_message(self, message_id: str) -> None:
        if not message_id:
            raise ValueError("message_id must be provided")
        result = self._data.delete(self.table, filters={"id": eq(message_id)})
        if result.error is not None:
            logger.error("error deleting message %s: %s", message_id, result.error)
            raise result.error
        logger.info("deleted guestbook message %s", message_id)


__all__ = ["GuestbookService"]
