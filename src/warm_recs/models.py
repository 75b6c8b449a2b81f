"""Core record types and the boundary parser for graph API payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import MalformedPayloadError


class Mode(Enum):
    STANDARD = "standard"
    DEEP = "deep"

    @classmethod
    def from_flag(cls, deep: bool) -> "Mode":
        return cls.DEEP if deep else cls.STANDARD


@dataclass(frozen=True)
class UserRecord:
    id: int
    handle: str
    display_name: str
    follower_count: int
    following_count: int
    avatar_url: str | None = None
    bio: str | None = None


@dataclass
class CandidateRecord:
    """A second-degree account plus how many first-degree accounts lead to it."""

    id: int
    handle: str
    display_name: str
    follower_count: int
    following_count: int
    avatar_url: str | None = None
    bio: str | None = None
    mutual_count: int = 1
    score: float | None = None

    @classmethod
    def from_user(cls, user: UserRecord) -> "CandidateRecord":
        return cls(
            id=user.id,
            handle=user.handle,
            display_name=user.display_name,
            follower_count=user.follower_count,
            following_count=user.following_count,
            avatar_url=user.avatar_url,
            bio=user.bio,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "handle": self.handle,
            "display_name": self.display_name,
            "follower_count": self.follower_count,
            "following_count": self.following_count,
            "avatar_url": self.avatar_url,
            "bio": self.bio,
            "mutual_count": self.mutual_count,
            "score": round(self.score, 2) if self.score is not None else None,
        }


@dataclass
class FollowingPage:
    items: list[UserRecord] = field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False


def _require_int(obj: dict, key: str, min_val: int) -> int:
    value = obj.get(key)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedPayloadError(f"Field '{key}' must be an integer, got {value!r}")
    if value < min_val:
        raise MalformedPayloadError(f"Field '{key}' must be >= {min_val}, got {value}")
    return value


def _optional_str(value: Any, key: str) -> str | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise MalformedPayloadError(f"Field '{key}' must be a string, got {value!r}")
    return value


def parse_user(payload: Any) -> UserRecord:
    """
    Parse a Neynar user object into a UserRecord.

    Follow-list responses wrap the user as {"object": "follow", "user": {...}};
    both shapes are accepted. Required fields that are missing or mistyped
    raise MalformedPayloadError instead of being defaulted.
    """
    if not isinstance(payload, dict):
        raise MalformedPayloadError(f"Expected a user object, got {type(payload).__name__}")

    user = payload.get("user") if isinstance(payload.get("user"), dict) else payload

    user_id = _require_int(user, "fid", min_val=1)

    handle = user.get("username")
    if not isinstance(handle, str) or not handle:
        raise MalformedPayloadError(f"User {user_id} has no username")

    display_name = user.get("display_name")
    if display_name is not None and not isinstance(display_name, str):
        raise MalformedPayloadError(f"User {user_id} has a non-string display_name")

    bio = None
    profile = user.get("profile")
    if isinstance(profile, dict) and isinstance(profile.get("bio"), dict):
        bio = _optional_str(profile["bio"].get("text"), "profile.bio.text")

    return UserRecord(
        id=user_id,
        handle=handle,
        display_name=display_name or "",
        follower_count=_require_int(user, "follower_count", min_val=0),
        following_count=_require_int(user, "following_count", min_val=0),
        avatar_url=_optional_str(user.get("pfp_url"), "pfp_url"),
        bio=bio,
    )
