import httpx
import logging
from typing import Protocol

from .config import (
    API_BASE_URL,
    API_MAX_PAGE_SIZE,
    HTTP_TIMEOUT,
    MAX_HTTP_RETRIES,
    NEYNAR_API_KEY,
)
from .errors import GraphAPIError, MalformedPayloadError, RateLimitError
from .models import FollowingPage, UserRecord, parse_user
from .utils import BackoffPolicy, retry_transient

logger = logging.getLogger(__name__)

# Timeouts and dropped connections: 1s, 2s between three attempts
TRANSPORT_RETRY_POLICY = BackoffPolicy(max_attempts=MAX_HTTP_RETRIES, initial_delay=1.0, backoff_factor=2.0, max_delay=10.0)


class GraphBinding(Protocol):
    """The two graph capabilities the engine needs."""

    async def fetch_following(self, user_id: int, limit: int, cursor: str | None = None) -> FollowingPage:
        ...

    async def fetch_profile(self, user_id: int) -> UserRecord:
        ...


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        logger.debug(f"Ignoring non-numeric Retry-After header: {value!r}")
        return None


def _parse_users(items, context: str) -> list[UserRecord]:
    if not isinstance(items, list):
        raise MalformedPayloadError(f"{context}: expected a 'users' list")
    return [parse_user(item) for item in items]


class NeynarClient:
    """
    Async Farcaster graph binding over the Neynar v2 HTTP API.

    Use as an async context manager. Rate limits surface as RateLimitError and
    are never retried here; the engine owns that policy. Timeouts and
    transport errors are retried a few times with exponential backoff.
    """

    def __init__(
        self,
        api_key: str | None = NEYNAR_API_KEY,
        base_url: str = API_BASE_URL,
        timeout: float = HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ValueError("NEYNAR_API_KEY environment variable is required")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.client: httpx.AsyncClient | None = None

    async def __aenter__(self):
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "x-api-key": self.api_key,
                "accept": "application/json",
                "User-Agent": "warm-recs/0.1",
            },
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.client:
            await self.client.aclose()
            self.client = None
        return False

    @retry_transient(TRANSPORT_RETRY_POLICY, (httpx.TimeoutException, httpx.TransportError))
    async def _send(self, path: str, params: dict) -> httpx.Response:
        return await self.client.get(path, params=params)

    async def _get_json(self, path: str, params: dict) -> dict:
        if not self.client:
            raise RuntimeError("NeynarClient must be used as an async context manager")

        # Drop unset params so httpx doesn't send "cursor=" on the first page
        params = {k: v for k, v in params.items() if v is not None}

        try:
            resp = await self._send(path, params)
        except httpx.HTTPError as exc:
            raise GraphAPIError(f"Request error on {path}: {type(exc).__name__}: {exc}") from exc

        if resp.status_code == 429:
            retry_after = _parse_retry_after(resp.headers.get("Retry-After"))
            logger.warning(f"Rate limited (429) on {path} {params}")
            raise RateLimitError(f"Rate limited on {path}", retry_after=retry_after)

        if resp.status_code >= 400:
            raise GraphAPIError(f"HTTP {resp.status_code} on {path}", status_code=resp.status_code)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise MalformedPayloadError(f"Invalid JSON from {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise MalformedPayloadError(f"Unexpected JSON from {path}: {type(payload).__name__}")
        return payload

    async def _fetch_follow_page(self, path: str, user_id: int, limit: int, cursor: str | None) -> FollowingPage:
        limit = max(1, min(limit, API_MAX_PAGE_SIZE))
        payload = await self._get_json(path, {"fid": user_id, "limit": limit, "cursor": cursor})

        users = _parse_users(payload.get("users"), f"{path} for {user_id}")
        next_info = payload.get("next") or {}
        next_cursor = next_info.get("cursor") if isinstance(next_info, dict) else None

        return FollowingPage(items=users, next_cursor=next_cursor or None, has_more=bool(next_cursor))

    async def fetch_following(self, user_id: int, limit: int = 25, cursor: str | None = None) -> FollowingPage:
        """One page of accounts that ``user_id`` follows."""
        return await self._fetch_follow_page("/following", user_id, limit, cursor)

    async def fetch_followers(self, user_id: int, limit: int = 25, cursor: str | None = None) -> FollowingPage:
        """One page of accounts that follow ``user_id``."""
        return await self._fetch_follow_page("/followers", user_id, limit, cursor)

    async def fetch_profile(self, user_id: int) -> UserRecord:
        payload = await self._get_json("/user/bulk", {"fids": str(user_id)})
        users = _parse_users(payload.get("users"), f"profile {user_id}")
        if not users:
            raise GraphAPIError(f"User with FID {user_id} not found", status_code=404)
        return users[0]
