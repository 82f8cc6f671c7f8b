"""Guestbook feature: live message list and write operations."""

from .models import ANONYMOUS_AUTHOR, AuthorProfile, GuestbookMessage
from .reconciler import GuestbookReconciler, message_columns
from .service import GuestbookService
from .validation import MAX_MESSAGE_LENGTH, validate_message_content

__all__ = [
    "ANONYMOUS_AUTHOR",
    "AuthorProfile",
    "GuestbookMessage",
    "GuestbookReconciler",
    "GuestbookService",
    "MAX_MESSAGE_LENGTH",
    "message_columns",
    "validate_message_content",
]
