"""
Loads and handles config from config.yml
Provider credentials (FOLLOW_GRAPH_API_KEY, MBD_API_KEY) are loaded from .env for security
"""
import os
import logging
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel

from core.scoring import DEFAULT_THRESHOLDS, Thresholds

logger = logging.getLogger(__name__)


class FollowGraphConfig(BaseModel):
    """Configuration for the follow-graph provider."""
    url: str = "https://api.warpcast.com/v2/following"
    api_key: Optional[str] = None
    page_size: int = 100
    min_request_interval: float = 0.2  # seconds between requests
    courtesy_pause_every: int = 5  # pages
    courtesy_pause_seconds: float = 1.0
    rate_limit_fallback_seconds: float = 60.0
    max_throttle_waits: int = 30  # per page
    max_page_attempts: int = 3
    retry_delay: float = 2.0


class ModerationConfig(BaseModel):
    """Configuration for the moderation-scoring provider."""
    url: str = "https://api.mbd.xyz/v2/farcaster/users/labels/for-users"
    api_key: Optional[str] = None
    batch_size: int = 100
    max_attempts: int = 5
    initial_backoff_seconds: float = 60.0
    batch_pause_seconds: float = 0.5
    cache_ttl_seconds: float = 3600.0


class ScanStoreConfig(BaseModel):
    """Eviction policy for finished scan records."""
    max_entries: int = 10000
    max_age_seconds: float = 24 * 3600.0


class Config(BaseModel):
    # Core
    LOG_LEVEL: str = "INFO"
    HTTP_TIMEOUT: float = 30.0
    SCAN_TIMEOUT_SECONDS: float = 900.0

    follow_graph: FollowGraphConfig = FollowGraphConfig()
    moderation: ModerationConfig = ModerationConfig()
    scan_store: ScanStoreConfig = ScanStoreConfig()
    thresholds: Thresholds = DEFAULT_THRESHOLDS


def _get_config_path() -> str:
    """Get the path to config.yml, handling different working directories."""
    # Try relative path first
    if os.path.exists('resources/config.yml'):
        return 'resources/config.yml'

    # Try from project root
    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    config_path = os.path.join(project_root, 'resources', 'config.yml')
    if os.path.exists(config_path):
        return config_path

    raise FileNotFoundError("Cannot find resources/config.yml")


def _parse_thresholds(data: Dict[str, Any]) -> Thresholds:
    """Overlay configured cutoffs on the documented defaults."""
    return DEFAULT_THRESHOLDS.override(
        **{name: float(value) for name, value in (data or {}).items()}
    )


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from config.yml and provider credentials from .env."""
    # Load .env for sensitive credentials
    load_dotenv()

    config_path = config_path or _get_config_path()

    with open(config_path, 'r') as file:
        config = yaml.safe_load(file) or {}

    follow_graph = dict(config.get("follow_graph") or {})
    follow_graph["api_key"] = os.getenv("FOLLOW_GRAPH_API_KEY") or follow_graph.get("api_key")

    moderation = dict(config.get("moderation") or {})
    moderation["api_key"] = os.getenv("MBD_API_KEY") or moderation.get("api_key")

    return Config(
        LOG_LEVEL=str(config.get("LOG_LEVEL", "INFO")).upper(),
        HTTP_TIMEOUT=float(config.get("HTTP_TIMEOUT", 30.0)),
        SCAN_TIMEOUT_SECONDS=float(config.get("SCAN_TIMEOUT_SECONDS", 900.0)),

        follow_graph=FollowGraphConfig(**follow_graph),
        moderation=ModerationConfig(**moderation),
        scan_store=ScanStoreConfig(**(config.get("scan_store") or {})),
        thresholds=_parse_thresholds(config.get("thresholds") or {}),
    )
