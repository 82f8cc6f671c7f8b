"""Guestbook message validation."""

from __future__ import annotations

from ..errors import ValidationError

MAX_MESSAGE_LENGTH = 500


def validate_message_content(content: str) -> str:
    """Return ``content`` unchanged if it can be posted, else raise ValidationError."""
    if not content:
        raise ValidationError("Message cannot be empty")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationError(
            f"Message must be {MAX_MESSAGE_LENGTH} characters or less"
        )
    if not content.strip():
        raise ValidationError("Message cannot be only whitespace")
    return content


__all__ = ["MAX_MESSAGE_LENGTH", "validate_message_content"]
