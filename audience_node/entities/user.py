from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class UserProfile:
    id: str
    username: str
    avatar_url: str | None = None
