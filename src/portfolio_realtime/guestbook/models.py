"""Guestbook value objects."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

ANONYMOUS_AUTHOR = "Anonymous"


@dataclass(frozen=True)
class AuthorProfile:
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    display_name: Optional[str] = None
    role: str = "user"

    @classmethod
    def from_row(cls, row: Optional[Mapping[str, Any]]) -> Optional["AuthorProfile"]:
        if not row:
            return None
        return cls(
            email=row.get("email"),
            avatar_url=row.get("avatar_url"),
            display_name=row.get("display_name"),
            role=row.get("role") or "user",
        )


@dataclass(frozen=True)
class GuestbookMessage:
    """A guestbook row joined with its author's profile."""

    id: str
    content: str
    user_id: Optional[str] = None
    created_at: Optional[str] = None
    author: Optional[AuthorProfile] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "GuestbookMessage":
        if row.get("id") is None:
            raise ValueError("guestbook row is missing its id")
        user_id = row.get("user_id")
        return cls(
            id=str(row["id"]),
            content=str(row.get("content") or ""),
            user_id=str(user_id) if user_id is not None else None,
            created_at=row.get("created_at"),
            author=AuthorProfile.from_row(row.get("profiles")),
        )

    @property
    def author_name(self) -> str:
        if self.author is not None:
            return self.author.display_name or self.author.email or ANONYMOUS_AUTHOR
        return ANONYMOUS_AUTHOR


__all__ = ["ANONYMOUS_AUTHOR", "AuthorProfile", "GuestbookMessage"]
