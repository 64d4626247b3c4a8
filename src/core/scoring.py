"""
Module to flag moderation scores against thresholds
"""

from typing import Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from core.entities import FlagSet, ModerationScoreSet


class Thresholds(BaseModel):
    """
    Per-category probability cutoffs. A score equal to its cutoff is flagged.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    spam: float = Field(0.7, ge=0.0, le=1.0)
    ai_generated: float = Field(0.75, ge=0.0, le=1.0)
    sexual: float = Field(0.5, ge=0.0, le=1.0)
    hate: float = Field(0.5, ge=0.0, le=1.0)
    violence: float = Field(0.5, ge=0.0, le=1.0)
    harassment: float = Field(0.5, ge=0.0, le=1.0)
    selfharm: float = Field(0.5, ge=0.0, le=1.0)
    sexual_minors: float = Field(0.25, ge=0.0, le=1.0)
    hate_threatening: float = Field(0.4, ge=0.0, le=1.0)
    violence_graphic: float = Field(0.4, ge=0.0, le=1.0)

    def override(self, **overrides: Optional[float]) -> "Thresholds":
        """Return a copy with the given (non-None) cutoffs replaced."""
        updates = {k: v for k, v in overrides.items() if v is not None}
        if not updates:
            return self
        return Thresholds.model_validate({**self.model_dump(), **updates})


DEFAULT_THRESHOLDS = Thresholds()

# (score key, threshold field, FlagSet field)
CATEGORIES: Tuple[Tuple[str, str, str], ...] = (
    ("spam_probability", "spam", "is_spam"),
    ("ai_generated_probability", "ai_generated", "is_ai_generated"),
    ("sexual", "sexual", "has_sexual_content"),
    ("hate", "hate", "has_hate_content"),
    ("violence", "violence", "has_violent_content"),
    ("harassment", "harassment", "has_harassment_content"),
    ("selfharm", "selfharm", "has_self_harm_content"),
    ("sexual_minors", "sexual_minors", "has_sexual_minors_content"),
    ("hate_threatening", "hate_threatening", "has_threatening_content"),
    ("violence_graphic", "violence_graphic", "has_graphic_violence_content"),
)


def category_score(scores: Mapping[str, float], key: str) -> float:
    """
    Score for a category, 0.0 when the provider did not report it.
    """
    value = scores.get(key)
    if value is None:
        return 0.0
    return float(value)


def flag(
    scores: ModerationScoreSet,
    thresholds: Optional[Thresholds] = None,
) -> FlagSet:
    """
    Map raw category probabilities to boolean flags.
    Pure function; never raises on missing categories.
    """
    thresholds = thresholds or DEFAULT_THRESHOLDS
    flags = {
        flag_field: category_score(scores, score_key) >= getattr(thresholds, threshold_field)
        for score_key, threshold_field, flag_field in CATEGORIES
    }
    return FlagSet(**flags)


def normalize_scores(scores: ModerationScoreSet) -> Dict[str, float]:
    """
    Ten-category view of a score set, keyed by threshold name.
    """
    return {
        threshold_field: category_score(scores, score_key)
        for score_key, threshold_field, _ in CATEGORIES
    }
