"""
Scan Orchestrator - drives one following-list scan per identity and
publishes its progress to a shared scan state store.
"""
import logging
import time
from typing import Any, Dict, List, Optional

from core.entities import FlaggedAccount, ScanRecord, ScanTiming
from core.scoring import DEFAULT_THRESHOLDS, Thresholds, flag
from ingestion.base import FollowGraphSource, validate_identity_id
from services.moderation import ModerationClient
from services.scan_store import ScanStateStore
from services.tasks import BackgroundTaskRunner
from workflows.base import ScanWorkflow

logger = logging.getLogger(__name__)

SCAN_ERROR_MESSAGE = "Error scanning your following list"


def _elapsed_ms(since: float) -> int:
    return int((time.perf_counter() - since) * 1000)


def summarize(record: ScanRecord) -> Dict[str, Any]:
    """
    Poll response for a finished scan. Never includes provider payloads.
    """
    if record.error is not None:
        return {"ready": True, "error": SCAN_ERROR_MESSAGE, "detail": record.error}

    if record.following_count == 0:
        message = "We couldn't find any accounts you're following"
    elif record.flagged_count > 0:
        plural = "" if record.flagged_count == 1 else "s"
        message = (
            f"We found {record.flagged_count} potentially problematic account{plural} "
            f"in your following list"
        )
    else:
        message = "Good news! We didn't find any potentially problematic accounts in your following list"

    return {
        "ready": True,
        "flaggedCount": record.flagged_count,
        "followingCount": record.following_count,
        "scoredCount": record.scored_count,
        "flaggedAccounts": [account.to_dict() for account in record.flagged_accounts],
        "message": message,
        "timing": record.timing.to_dict() if record.timing else None,
    }


class ScanOrchestrator(ScanWorkflow):
    """
    Runs scans as background tasks and answers stateless polls.

    A trigger for an identity whose scan is still in progress is ignored;
    the poller keeps seeing "not ready" until the first scan finishes.
    """

    def __init__(
        self,
        fetcher: FollowGraphSource,
        moderation: ModerationClient,
        store: ScanStateStore,
        task_runner: Optional[BackgroundTaskRunner] = None,
        thresholds: Thresholds = DEFAULT_THRESHOLDS,
        scan_timeout: Optional[float] = None,
    ):
        self.fetcher = fetcher
        self.moderation = moderation
        self.store = store
        self.task_runner = task_runner or BackgroundTaskRunner()
        self.thresholds = thresholds
        self.scan_timeout = scan_timeout

    @staticmethod
    def task_id(identity_id: int) -> str:
        return f"scan_{identity_id}"

    async def request_scan(
        self,
        identity_id: int,
        thresholds: Optional[Thresholds] = None,
    ) -> Dict[str, Any]:
        """
        Start a scan for an unseen identity, otherwise report its state.
        """
        fid = validate_identity_id(identity_id)
        if self.store.get(fid) is None:
            await self.start_scan(fid, thresholds)
            return {"ready": False}
        return self.poll(fid)

    async def start_scan(
        self,
        identity_id: int,
        thresholds: Optional[Thresholds] = None,
    ) -> bool:
        """
        Launch a background scan, replacing any finished record.
        Returns False when a scan for this identity is already in progress.
        """
        fid = validate_identity_id(identity_id)
        current = self.store.get(fid)
        if current is not None and not current.completed:
            logger.info(f"Scan for FID {fid} already in progress, ignoring trigger")
            return False

        self.task_runner.cleanup_old_results()
        self.store.put(ScanRecord(identity_id=fid))
        await self.task_runner.run_async(
            self.run_scan,
            fid,
            thresholds,
            task_id=self.task_id(fid),
        )
        logger.info(f"Scan for FID {fid} queued")
        return True

    def poll(self, identity_id: int) -> Dict[str, Any]:
        fid = validate_identity_id(identity_id)
        record = self.store.get(fid)
        if record is None or not record.completed:
            return {"ready": False}
        return summarize(record)

    async def run_scan(
        self,
        identity_id: int,
        thresholds: Optional[Thresholds] = None,
    ) -> ScanRecord:
        thresholds = thresholds or self.thresholds
        started = time.perf_counter()
        self.store.put(ScanRecord(identity_id=identity_id, started=True))

        try:
            record = await self._scan(identity_id, thresholds, started)
        except Exception as e:
            logger.exception(f"Scan failed for FID {identity_id}: {e}")
            record = ScanRecord(
                identity_id=identity_id,
                started=True,
                completed=True,
                error=str(e) or e.__class__.__name__,
                timing=ScanTiming(total_ms=_elapsed_ms(started)),
            )

        return self.store.put(record)

    async def _scan(self, fid: int, thresholds: Thresholds, started: float) -> ScanRecord:
        # ----------------------------
        # Fetch the following list
        # ----------------------------
        fetch_start = time.perf_counter()
        following = await self.fetcher.fetch_all_following(fid, timeout=self.scan_timeout)
        fetch_ms = _elapsed_ms(fetch_start)

        if not following:
            logger.info(f"FID {fid} follows nobody, nothing to scan")
            return ScanRecord(
                identity_id=fid,
                started=True,
                completed=True,
                timing=ScanTiming(fetch_ms=fetch_ms, total_ms=_elapsed_ms(started)),
            )

        accounts = {str(account.id): account for account in following}
        identity_ids = list(accounts)

        # ----------------------------
        # Score in batches
        # ----------------------------
        scoring_start = time.perf_counter()
        scores = await self.moderation.score(identity_ids)
        scoring_ms = _elapsed_ms(scoring_start)

        # ----------------------------
        # Apply thresholds
        # ----------------------------
        flagging_start = time.perf_counter()
        flagged: List[FlaggedAccount] = []
        for identity_id in identity_ids:
            score_set = scores.get(identity_id)
            if score_set is None:
                continue
            if flag(score_set, thresholds).is_flagged:
                account = accounts[identity_id]
                flagged.append(
                    FlaggedAccount(
                        id=identity_id,
                        scores=score_set,
                        handle=account.handle,
                        display_name=account.display_name,
                    )
                )
        flagging_ms = _elapsed_ms(flagging_start)

        scored_count = sum(1 for identity_id in identity_ids if identity_id in scores)
        logger.info(
            f"Scan for FID {fid} complete: {len(flagged)} flagged of {scored_count} scored "
            f"({len(identity_ids)} followed)"
        )

        return ScanRecord(
            identity_id=fid,
            started=True,
            completed=True,
            flagged_count=len(flagged),
            following_count=len(identity_ids),
            scored_count=scored_count,
            flagged_accounts=flagged,
            timing=ScanTiming(
                fetch_ms=fetch_ms,
                scoring_ms=scoring_ms,
                flagging_ms=flagging_ms,
                total_ms=_elapsed_ms(started),
            ),
        )

    async def scan(self, identity_id: int, thresholds: Optional[Thresholds] = None) -> Dict[str, Any]:
        """
        Run a scan in the foreground and return the poll-shaped summary.
        """
        fid = validate_identity_id(identity_id)
        record = await self.run_scan(fid, thresholds)
        return summarize(record)
