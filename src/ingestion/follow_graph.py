"""
Ingest the follow graph from a paginated, rate-limited provider
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from core.entities import FollowedAccount
from core.errors import ProviderError, ProviderThrottled, ProviderTimeout, ProviderUnavailable
from core.schemas import FollowGraphPage, FollowGraphUser
from ingestion.base import FollowGraphSource, validate_identity_id
from services.config import FollowGraphConfig

logger = logging.getLogger(__name__)


class FollowGraphFetcher(FollowGraphSource):
    """
    Walks every page of an identity's following list.

    Requests are spaced by at least ``min_request_interval`` seconds and a
    courtesy pause is taken every ``courtesy_pause_every`` pages. HTTP 429
    waits until the provider's reset time and retries the same page.
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        page_size: int = 100,
        min_request_interval: float = 0.2,
        courtesy_pause_every: int = 5,
        courtesy_pause_seconds: float = 1.0,
        rate_limit_fallback_seconds: float = 60.0,
        max_throttle_waits: int = 30,
        max_page_attempts: int = 3,
        retry_delay: float = 2.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.url = url
        self.api_key = api_key
        self.page_size = page_size
        self.min_request_interval = min_request_interval
        self.courtesy_pause_every = courtesy_pause_every
        self.courtesy_pause_seconds = courtesy_pause_seconds
        self.rate_limit_fallback_seconds = rate_limit_fallback_seconds
        self.max_throttle_waits = max_throttle_waits
        self.max_page_attempts = max_page_attempts
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.transport = transport

        self._sleep = sleep
        self._clock = clock
        self._wall_clock = wall_clock
        self._last_request_at: Optional[float] = None
        self._pace_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: FollowGraphConfig, timeout: float = 30.0, **kwargs) -> "FollowGraphFetcher":
        return cls(
            url=config.url,
            api_key=config.api_key,
            page_size=config.page_size,
            min_request_interval=config.min_request_interval,
            courtesy_pause_every=config.courtesy_pause_every,
            courtesy_pause_seconds=config.courtesy_pause_seconds,
            rate_limit_fallback_seconds=config.rate_limit_fallback_seconds,
            max_throttle_waits=config.max_throttle_waits,
            max_page_attempts=config.max_page_attempts,
            retry_delay=config.retry_delay,
            timeout=timeout,
            **kwargs,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    async def fetch_all_following(
        self,
        identity_id: int,
        timeout: Optional[float] = None,
    ) -> List[FollowedAccount]:
        fid = validate_identity_id(identity_id)

        try:
            return await asyncio.wait_for(self._fetch_pages(fid), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ProviderTimeout(
                f"Fetching following for FID {fid} did not finish within {timeout}s"
            ) from e

    async def _fetch_pages(self, fid: int) -> List[FollowedAccount]:
        accounts: List[FollowedAccount] = []
        cursor: Optional[str] = None
        page = 0

        logger.info(f"Fetching accounts followed by FID {fid}")

        async with httpx.AsyncClient(
            timeout=self.timeout,
            headers=self._headers(),
            transport=self.transport,
        ) as client:
            while True:
                page += 1
                data = await self._fetch_page(client, fid, cursor, page)
                users = data.result.users

                if not users and page == 1:
                    logger.info(f"FID {fid} follows no accounts")
                    return []

                accounts.extend(self._parse_users(users, fid, page))
                logger.info(f"Retrieved {len(users)} accounts on page {page} for FID {fid}")

                next_cursor = data.cursor
                if not next_cursor:
                    break

                if not users:
                    # Provider occasionally serves empty pages under load
                    logger.warning(f"Empty page {page} for FID {fid} with cursor present, continuing")

                cursor = next_cursor

                if self.courtesy_pause_every and page % self.courtesy_pause_every == 0:
                    await self._sleep(self.courtesy_pause_seconds)

        logger.info(f"Fetched {len(accounts)} followed accounts for FID {fid} in {page} pages")
        return accounts

    async def _fetch_page(
        self,
        client: httpx.AsyncClient,
        fid: int,
        cursor: Optional[str],
        page: int,
    ) -> FollowGraphPage:
        """
        Fetch one page, waiting out throttling and retrying transient failures.
        """
        params: Dict[str, object] = {"fid": fid, "limit": self.page_size}
        if cursor:
            params["cursor"] = cursor

        throttle_waits = 0
        attempts = 0

        while True:
            await self._pace()

            try:
                resp = await client.get(self.url, params=params)
            except httpx.TransportError as e:
                attempts += 1
                if attempts >= self.max_page_attempts:
                    raise ProviderUnavailable(
                        f"Follow-graph request failed for FID {fid} page {page}: {e}"
                    ) from e
                logger.warning(
                    f"Attempt {attempts}/{self.max_page_attempts}: transport error on page {page} "
                    f"for FID {fid} ({e}), retrying..."
                )
                await self._sleep(self.retry_delay)
                continue

            if resp.status_code == 429:
                throttle_waits += 1
                if throttle_waits > self.max_throttle_waits:
                    raise ProviderThrottled(
                        f"Follow-graph still throttled after {self.max_throttle_waits} waits "
                        f"on page {page} for FID {fid}"
                    )
                wait = self._rate_limit_wait(resp)
                logger.warning(f"Rate limited on page {page} for FID {fid}, waiting {wait:.1f}s")
                await self._sleep(wait)
                continue

            if resp.status_code >= 500:
                attempts += 1
                if attempts >= self.max_page_attempts:
                    raise ProviderUnavailable(
                        f"Follow-graph returned {resp.status_code} for FID {fid} page {page}"
                    )
                logger.warning(
                    f"Attempt {attempts}/{self.max_page_attempts}: status {resp.status_code} "
                    f"on page {page} for FID {fid}, retrying..."
                )
                await self._sleep(self.retry_delay)
                continue

            if resp.status_code != 200:
                raise ProviderUnavailable(
                    f"Follow-graph returned {resp.status_code} for FID {fid} page {page}"
                )

            try:
                return FollowGraphPage.model_validate(resp.json())
            except ValueError as e:
                attempts += 1
                logger.debug(f"Unexpected follow-graph response: {resp.text[:200]}")
                if attempts >= self.max_page_attempts:
                    raise ProviderError(
                        f"Unexpected follow-graph response shape for FID {fid} page {page}"
                    ) from e
                logger.warning(
                    f"Attempt {attempts}/{self.max_page_attempts}: malformed page {page} "
                    f"for FID {fid}, retrying..."
                )
                await self._sleep(self.retry_delay)

    async def _pace(self) -> None:
        """
        Enforce the minimum spacing between consecutive requests.
        """
        async with self._pace_lock:
            if self._last_request_at is not None:
                elapsed = self._clock() - self._last_request_at
                if elapsed < self.min_request_interval:
                    await self._sleep(self.min_request_interval - elapsed)
            self._last_request_at = self._clock()

    def _rate_limit_wait(self, resp: httpx.Response) -> float:
        """
        Seconds to wait before retrying a throttled request.
        """
        retry_after = resp.headers.get("retry-after")
        if retry_after:
            try:
                return max(float(retry_after), 0.0)
            except ValueError:
                pass

        reset = resp.headers.get("x-ratelimit-reset")
        if reset:
            try:
                reset_at = float(reset)
            except ValueError:
                return self.rate_limit_fallback_seconds
            if reset_at > 1e12:  # milliseconds
                reset_at /= 1000.0
            return max(reset_at - self._wall_clock(), 0.0)

        return self.rate_limit_fallback_seconds

    def _parse_users(self, users: List[Dict[str, Any]], fid: int, page: int) -> List[FollowedAccount]:
        """
        Map raw page entries to accounts, skipping entries without a usable fid.
        """
        accounts: List[FollowedAccount] = []
        for raw in users:
            try:
                user = FollowGraphUser.model_validate(raw)
            except ValueError as e:
                logger.warning(
                    f"Skipping malformed user on page {page} for FID {fid}: {e.__class__.__name__}"
                )
                continue
            accounts.append(self._to_account(user))
        return accounts

    @staticmethod
    def _to_account(user: FollowGraphUser) -> FollowedAccount:
        avatar_url = user.pfp.url if user.pfp and user.pfp.url else ""
        bio = ""
        if user.profile and user.profile.bio and user.profile.bio.text:
            bio = user.profile.bio.text

        return FollowedAccount(
            id=user.fid,
            handle=user.username or f"fid:{user.fid}",
            display_name=user.displayName or f"User {user.fid}",
            avatar_url=avatar_url,
            bio=bio,
        )
