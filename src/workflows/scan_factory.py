"""
Scan Factory - Wires the scan pipeline from configuration.
"""
import logging

from ingestion.follow_graph import FollowGraphFetcher
from services.config import Config
from services.moderation import ModerationClient
from services.scan_store import ScanStateStore
from services.tasks import BackgroundTaskRunner
from workflows.scan_orchestrator import ScanOrchestrator

logger = logging.getLogger(__name__)


def create_orchestrator(config: Config) -> ScanOrchestrator:
    """
    Build a ScanOrchestrator with its fetcher, moderation client and stores.

    Args:
        config: Loaded application configuration

    Returns:
        Configured ScanOrchestrator instance
    """
    fetcher = FollowGraphFetcher.from_config(config.follow_graph, timeout=config.HTTP_TIMEOUT)
    moderation = ModerationClient.from_config(config.moderation, timeout=config.HTTP_TIMEOUT)
    store = ScanStateStore(
        max_entries=config.scan_store.max_entries,
        max_age_seconds=config.scan_store.max_age_seconds,
    )

    if not config.moderation.api_key:
        logger.warning("MBD_API_KEY is not set; scans will fail until it is configured")

    return ScanOrchestrator(
        fetcher=fetcher,
        moderation=moderation,
        store=store,
        task_runner=BackgroundTaskRunner(),
        thresholds=config.thresholds,
        scan_timeout=config.SCAN_TIMEOUT_SECONDS,
    )
