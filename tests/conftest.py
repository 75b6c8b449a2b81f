import sys
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from warm_recs.errors import GraphAPIError  # noqa: E402
from warm_recs.models import FollowingPage, UserRecord  # noqa: E402


def make_user(user_id: int, followers: int = 2000, handle: str | None = None, following: int = 300, **kwargs) -> UserRecord:
    return UserRecord(
        id=user_id,
        handle=handle or f"user{user_id}",
        display_name=kwargs.pop("display_name", f"User {user_id}"),
        follower_count=followers,
        following_count=following,
        **kwargs,
    )


class FakeGraph:
    """
    In-memory graph binding. ``following`` maps a user id to the list it
    follows; ``errors`` maps a user id to exceptions raised (in order) before
    real data is served.
    """

    def __init__(self, following=None, profiles=None):
        self.following: dict[int, list[UserRecord]] = following or {}
        self.profiles: dict[int, UserRecord] = profiles or {}
        self.errors: dict[int, list[Exception]] = {}
        self.page_errors: dict[tuple[int, str | None], Exception] = {}
        self.profile_errors: dict[int, Exception] = {}
        self.following_calls: list[tuple[int, int, str | None]] = []
        self.profile_calls: list[int] = []

    def fail(self, user_id: int, *excs: Exception) -> None:
        self.errors.setdefault(user_id, []).extend(excs)

    async def fetch_following(self, user_id: int, limit: int, cursor: str | None = None) -> FollowingPage:
        self.following_calls.append((user_id, limit, cursor))
        if (user_id, cursor) in self.page_errors:
            raise self.page_errors[(user_id, cursor)]
        pending = self.errors.get(user_id)
        if pending:
            raise pending.pop(0)

        items = self.following.get(user_id, [])
        start = int(cursor) if cursor else 0
        page = items[start:start + limit]
        end = start + len(page)
        has_more = end < len(items)
        return FollowingPage(items=page, next_cursor=str(end) if has_more else None, has_more=has_more)

    async def fetch_profile(self, user_id: int) -> UserRecord:
        self.profile_calls.append(user_id)
        if user_id in self.profile_errors:
            raise self.profile_errors[user_id]
        if user_id not in self.profiles:
            raise GraphAPIError(f"User with FID {user_id} not found", status_code=404)
        return self.profiles[user_id]


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_graph():
    return FakeGraph()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def no_sleep():
    return SleepRecorder()
