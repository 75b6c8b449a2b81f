"""One-way relationship analysis: who doesn't follow back, and whom you don't."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from .config import (
    RELATIONSHIP_PAGE_SIZE,
    RELATIONSHIP_MAX_PAGES,
    RELATIONSHIP_PAGE_PAUSE_SECONDS,
)
from .errors import GraphAPIError
from .models import FollowingPage, UserRecord

logger = logging.getLogger(__name__)

PageFetcher = Callable[[int, int, str | None], Awaitable[FollowingPage]]


@dataclass
class FullList:
    users: list[UserRecord] = field(default_factory=list)
    pages_fetched: int = 0
    is_complete: bool = True


@dataclass
class OneWayAnalysis:
    one_way_out: list[UserRecord]  # followed, not following back
    one_way_in: list[UserRecord]   # following, not followed back
    mutual_count: int

    def to_dict(self) -> dict:
        def _brief(user: UserRecord) -> dict:
            return {"id": user.id, "handle": user.handle, "display_name": user.display_name,
                    "follower_count": user.follower_count}

        return {
            "one_way_out": [_brief(u) for u in self.one_way_out],
            "one_way_in": [_brief(u) for u in self.one_way_in],
            "mutual_count": self.mutual_count,
        }


async def fetch_all(
    fetch: PageFetcher,
    user_id: int,
    page_size: int = RELATIONSHIP_PAGE_SIZE,
    max_pages: int = RELATIONSHIP_MAX_PAGES,
    pause: float = RELATIONSHIP_PAGE_PAUSE_SECONDS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> FullList:
    """
    Page through a complete follow list.

    A failure on the first page propagates; a failure later stops paging and
    returns what was collected, marked incomplete.
    """
    result = FullList()
    seen: set[int] = set()
    cursor = None

    while result.pages_fetched < max_pages:
        try:
            page = await fetch(user_id, page_size, cursor)
        except GraphAPIError as exc:
            if result.pages_fetched == 0:
                raise
            logger.error(f"Failed to fetch page {result.pages_fetched + 1} for {user_id}: {exc}")
            result.is_complete = False
            break

        result.pages_fetched += 1
        for user in page.items:
            if user.id not in seen:
                seen.add(user.id)
                result.users.append(user)

        cursor = page.next_cursor
        if not page.has_more or not cursor:
            break
        if result.pages_fetched < max_pages:
            await sleep(pause)
    else:
        result.is_complete = False

    logger.info(f"Fetched {len(result.users)} users for {user_id} across {result.pages_fetched} pages")
    return result


def analyze_one_way(following: list[UserRecord], followers: list[UserRecord]) -> OneWayAnalysis:
    follower_ids = {u.id for u in followers}
    following_ids = {u.id for u in following}
    return OneWayAnalysis(
        one_way_out=[u for u in following if u.id not in follower_ids],
        one_way_in=[u for u in followers if u.id not in following_ids],
        mutual_count=sum(1 for u in following if u.id in follower_ids),
    )
