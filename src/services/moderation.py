import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

import httpx

from core.entities import ModerationScoreSet
from core.errors import ConfigurationError
from core.schemas import ModerationResponse, UserLabels
from services.cache import ModerationCache
from services.config import ModerationConfig

logger = logging.getLogger(__name__)

# Provider label -> score key
LABEL_ALIASES = {
    "spam": "spam_probability",
    "llm_generated": "ai_generated_probability",
}


def parse_moderation_labels(user: UserLabels) -> ModerationScoreSet:
    """
    Flatten a provider label list into a category -> probability mapping.
    """
    scores: ModerationScoreSet = {}
    if user.ai_labels is None or user.ai_labels.moderation is None:
        return scores
    for item in user.ai_labels.moderation:
        scores[LABEL_ALIASES.get(item.label, item.label)] = item.score
    return scores


def normalize_ids(identity_ids: Iterable) -> List[str]:
    """
    String-encode IDs and drop duplicates, keeping submission order.
    """
    return list(dict.fromkeys(str(i).strip() for i in identity_ids if str(i).strip()))


class ModerationClient:
    """
    Batched moderation-scoring client with a read-through cache and
    exponential backoff on throttling.
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str],
        batch_size: int = 100,
        max_attempts: int = 5,
        initial_backoff: float = 60.0,
        batch_pause: float = 0.5,
        timeout: float = 30.0,
        cache: Optional[ModerationCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.url = url
        self.api_key = api_key
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.initial_backoff = initial_backoff
        self.batch_pause = batch_pause
        self.timeout = timeout
        self.cache = cache if cache is not None else ModerationCache()
        self.transport = transport
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: ModerationConfig, timeout: float = 30.0, **kwargs) -> "ModerationClient":
        kwargs.setdefault("cache", ModerationCache(ttl_ms=int(config.cache_ttl_seconds * 1000)))
        return cls(
            url=config.url,
            api_key=config.api_key,
            batch_size=config.batch_size,
            max_attempts=config.max_attempts,
            initial_backoff=config.initial_backoff_seconds,
            batch_pause=config.batch_pause_seconds,
            timeout=timeout,
            **kwargs,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "authorization": f"Bearer {self.api_key}",
        }

    async def score(
        self,
        identity_ids: Iterable,
        skip_cache: bool = False,
    ) -> Dict[str, ModerationScoreSet]:
        """
        Return moderation scores keyed by string identity ID.

        IDs whose batch failed are absent from the result; absence means
        "no data", not zero risk.
        """
        if not self.api_key:
            raise ConfigurationError("No moderation API key provided. Set MBD_API_KEY in .env.")

        ids = normalize_ids(identity_ids)
        results: Dict[str, ModerationScoreSet] = {}
        to_fetch: List[str] = []

        if skip_cache:
            to_fetch = ids
        else:
            now = self.cache.now()
            for identity_id in ids:
                cached = self.cache.get(identity_id, now)
                if cached is not None:
                    results[identity_id] = cached
                else:
                    to_fetch.append(identity_id)

        if not to_fetch:
            logger.info(f"All {len(ids)} moderation results served from cache")
            return results

        batches = [
            to_fetch[i:i + self.batch_size]
            for i in range(0, len(to_fetch), self.batch_size)
        ]
        logger.info(
            f"Scoring {len(to_fetch)} identities in {len(batches)} batches "
            f"({len(results)} cached)"
        )

        abandoned = 0
        async with httpx.AsyncClient(timeout=self.timeout, headers=self._headers(), transport=self.transport) as client:
            for index, batch in enumerate(batches, start=1):
                if index > 1 and self.batch_pause:
                    await self._sleep(self.batch_pause)

                scored = await self._score_batch(client, batch, index, len(batches))
                if scored is None:
                    abandoned += 1
                    continue

                fetched_at = self.cache.now()
                for identity_id, scores in scored.items():
                    results[identity_id] = scores
                    self.cache.put(identity_id, scores, fetched_at)

        logger.info(
            f"Moderation scoring done: {len(results)}/{len(ids)} identities scored, "
            f"{abandoned} batches abandoned, cache {self.cache.stats()}"
        )
        return results

    async def _score_batch(
        self,
        client: httpx.AsyncClient,
        batch: List[str],
        index: int,
        total: int,
    ) -> Optional[Dict[str, ModerationScoreSet]]:
        """
        Score one batch. Returns None when the batch is abandoned.
        """
        delay = self.initial_backoff

        for attempt in range(1, self.max_attempts + 1):
            try:
                resp = await client.post(
                    self.url,
                    json={"users_list": batch, "label_category": "moderation"},
                )
            except httpx.TransportError as e:
                logger.error(f"Batch {index}/{total}: request failed ({e}), abandoning {len(batch)} IDs")
                return None

            if resp.status_code == 429:
                if attempt == self.max_attempts:
                    break
                logger.warning(
                    f"Batch {index}/{total}: rate limited (attempt {attempt}/{self.max_attempts}), "
                    f"backing off {delay:.0f}s"
                )
                await self._sleep(delay)
                delay *= 2
                continue

            if resp.status_code in (401, 403):
                logger.error(f"Batch {index}/{total}: authentication failed ({resp.status_code}), check MBD_API_KEY")
                return None

            if resp.status_code != 200:
                logger.error(f"Batch {index}/{total}: provider returned {resp.status_code}, abandoning {len(batch)} IDs")
                return None

            try:
                payload = ModerationResponse.model_validate(resp.json())
            except ValueError as e:
                logger.error(f"Batch {index}/{total}: unexpected response shape ({e}), abandoning")
                logger.debug(f"Raw response: {resp.text[:200]}...")
                return None

            if payload.status_code != 200 or payload.body is None:
                logger.error(f"Batch {index}/{total}: provider status_code {payload.status_code}, abandoning")
                return None

            return self._parse_body(payload.body, batch, index, total)

        logger.error(
            f"Batch {index}/{total}: still rate limited after {self.max_attempts} attempts, "
            f"abandoning {len(batch)} IDs"
        )
        return None

    @staticmethod
    def _parse_body(
        body: List[Dict],
        batch: List[str],
        index: int,
        total: int,
    ) -> Dict[str, ModerationScoreSet]:
        """
        Parse body entries one by one, keeping only IDs that were requested.
        """
        requested = set(batch)
        scored: Dict[str, ModerationScoreSet] = {}
        for raw in body:
            try:
                user = UserLabels.model_validate(raw)
            except ValueError as e:
                logger.warning(f"Batch {index}/{total}: skipping malformed entry ({e.__class__.__name__})")
                continue
            if user.user_id not in requested:
                logger.warning(f"Batch {index}/{total}: ignoring unrequested user_id {user.user_id}")
                continue
            scored[user.user_id] = parse_moderation_labels(user)
        return scored
