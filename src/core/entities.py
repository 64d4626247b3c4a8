from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any

# Category name -> probability in [0, 1]
ModerationScoreSet = Dict[str, float]


@dataclass(frozen=True)
class FollowedAccount:
    """
    An account followed by the scanned identity.
    """
    id: int
    handle: str
    display_name: str
    avatar_url: str = ""
    bio: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "handle": self.handle,
            "displayName": self.display_name,
            "avatarUrl": self.avatar_url,
            "bio": self.bio,
        }


@dataclass(frozen=True)
class CacheEntry:
    """
    Cached moderation scores for one identity.
    """
    result: ModerationScoreSet
    fetched_at_ms: int


@dataclass(frozen=True)
class FlagSet:
    """
    Per-category flags derived from a score set and thresholds.
    """
    is_spam: bool = False
    is_ai_generated: bool = False
    has_sexual_content: bool = False
    has_hate_content: bool = False
    has_violent_content: bool = False
    has_harassment_content: bool = False
    has_self_harm_content: bool = False
    has_sexual_minors_content: bool = False
    has_threatening_content: bool = False
    has_graphic_violence_content: bool = False

    @property
    def is_flagged(self) -> bool:
        return any(
            (
                self.is_spam,
                self.is_ai_generated,
                self.has_sexual_content,
                self.has_hate_content,
                self.has_violent_content,
                self.has_harassment_content,
                self.has_self_harm_content,
                self.has_sexual_minors_content,
                self.has_threatening_content,
                self.has_graphic_violence_content,
            )
        )

    def to_dict(self) -> Dict[str, bool]:
        return {
            "isSpam": self.is_spam,
            "isAiGenerated": self.is_ai_generated,
            "hasSexualContent": self.has_sexual_content,
            "hasHateContent": self.has_hate_content,
            "hasViolentContent": self.has_violent_content,
            "hasHarassmentContent": self.has_harassment_content,
            "hasSelfHarmContent": self.has_self_harm_content,
            "hasSexualMinorsContent": self.has_sexual_minors_content,
            "hasThreateningContent": self.has_threatening_content,
            "hasGraphicViolenceContent": self.has_graphic_violence_content,
            "isFlagged": self.is_flagged,
        }


@dataclass(frozen=True)
class FlaggedAccount:
    """
    A followed account whose scores tripped at least one flag.
    """
    id: str
    scores: ModerationScoreSet
    handle: Optional[str] = None
    display_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "scores": dict(self.scores)}
        if self.handle is not None:
            payload["handle"] = self.handle
        if self.display_name is not None:
            payload["displayName"] = self.display_name
        return payload


@dataclass(frozen=True)
class ScanTiming:
    """
    Elapsed-time breakdown of a scan, in milliseconds.
    """
    fetch_ms: int = 0
    scoring_ms: int = 0
    flagging_ms: int = 0
    total_ms: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "fetchMs": self.fetch_ms,
            "scoringMs": self.scoring_ms,
            "flaggingMs": self.flagging_ms,
            "totalMs": self.total_ms,
        }


@dataclass(frozen=True)
class ScanRecord:
    """
    Progress and outcome of the latest scan for one identity.
    Records are replaced wholesale on every transition.
    """
    identity_id: int
    started: bool = False
    completed: bool = False
    updated_at: float = 0.0
    flagged_count: int = 0
    following_count: int = 0
    scored_count: int = 0
    flagged_accounts: List[FlaggedAccount] = field(default_factory=list)
    timing: Optional[ScanTiming] = None
    error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self.started and not self.completed

    @property
    def failed(self) -> bool:
        return self.completed and self.error is not None
