import pytest
from pydantic import ValidationError as PydanticValidationError

from core.scoring import CATEGORIES, DEFAULT_THRESHOLDS, Thresholds, flag, normalize_scores


class TestFlag:
    def test_all_zero_scores_are_not_flagged(self) -> None:
        result = flag({})
        assert result.is_flagged is False
        assert not any(v for k, v in result.to_dict().items())

    def test_is_pure(self) -> None:
        scores = {"spam_probability": 0.8, "hate": 0.1}
        assert flag(scores, DEFAULT_THRESHOLDS) == flag(scores, DEFAULT_THRESHOLDS)

    def test_score_equal_to_threshold_is_flagged(self) -> None:
        result = flag({"spam_probability": 0.7})
        assert result.is_spam is True
        assert result.is_flagged is True

    def test_score_just_below_threshold_is_not_flagged(self) -> None:
        result = flag({"spam_probability": 0.6999})
        assert result.is_spam is False
        assert result.is_flagged is False

    @pytest.mark.parametrize("score_key,threshold_field,flag_field", CATEGORIES)
    def test_each_category_alone_sets_is_flagged(self, score_key, threshold_field, flag_field) -> None:
        cutoff = getattr(DEFAULT_THRESHOLDS, threshold_field)
        result = flag({score_key: cutoff})
        assert getattr(result, flag_field) is True
        assert result.is_flagged is True
        assert sum(result.to_dict().values()) == 2  # the category flag plus isFlagged

    def test_default_cutoffs(self) -> None:
        assert DEFAULT_THRESHOLDS.spam == 0.7
        assert DEFAULT_THRESHOLDS.ai_generated == 0.75
        assert DEFAULT_THRESHOLDS.sexual_minors == 0.25
        assert DEFAULT_THRESHOLDS.hate_threatening == 0.4
        assert DEFAULT_THRESHOLDS.violence_graphic == 0.4
        for name in ("sexual", "hate", "violence", "harassment", "selfharm"):
            assert getattr(DEFAULT_THRESHOLDS, name) == 0.5

    def test_custom_thresholds(self) -> None:
        strict = DEFAULT_THRESHOLDS.override(spam=0.2)
        scores = {"spam_probability": 0.3}
        assert flag(scores).is_flagged is False
        assert flag(scores, strict).is_spam is True

    def test_unknown_categories_are_ignored(self) -> None:
        assert flag({"some_new_label": 1.0}).is_flagged is False


class TestThresholds:
    def test_override_ignores_none(self) -> None:
        assert DEFAULT_THRESHOLDS.override(spam=None) is DEFAULT_THRESHOLDS

    def test_override_validates_range(self) -> None:
        with pytest.raises(PydanticValidationError):
            DEFAULT_THRESHOLDS.override(spam=1.5)

    def test_rejects_unknown_category(self) -> None:
        with pytest.raises(PydanticValidationError):
            Thresholds(spamm=0.3)


class TestNormalizeScores:
    def test_fills_missing_categories_with_zero(self) -> None:
        scores = normalize_scores({"spam_probability": 0.9, "llm": 0.4})
        assert scores["spam"] == 0.9
        assert scores["ai_generated"] == 0.0
        assert len(scores) == 10
