"""
Level/mastery mapping between continuous mastery (0..1) and the 5-level rubric.

Each rubric level owns the tags it expects from an evaluation and the range a
mastery delta may take at that level. Model-proposed deltas are validated
against that table before they touch session state.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Mapping, Optional

from lesson_tutor.core.schemas import ResponseTag
from lesson_tutor.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class LevelMapping:
    """Expected evaluation output for one rubric level."""
    level: int
    name: str
    tags: FrozenSet[ResponseTag]
    delta_min: float
    delta_max: float
    description: str

    def accepts_tags(self, tags: Iterable[ResponseTag]) -> bool:
        return any(tag in self.tags for tag in tags)

    def accepts_delta(self, delta: float) -> bool:
        return self.delta_min <= delta <= self.delta_max


LEVEL_MAPPINGS = (
    LevelMapping(
        level=5,
        name="Mastery",
        tags=frozenset({ResponseTag.CORRECT}),
        delta_min=0.25,
        delta_max=0.30,
        description="Complete understanding and advanced application",
    ),
    LevelMapping(
        level=4,
        name="Advanced",
        tags=frozenset({ResponseTag.CORRECT}),
        delta_min=0.15,
        delta_max=0.20,
        description="Solid understanding with correct application",
    ),
    LevelMapping(
        level=3,
        name="Competent",
        tags=frozenset({ResponseTag.PARTIAL, ResponseTag.CORRECT}),
        delta_min=0.05,
        delta_max=0.15,
        description="Adequate understanding with minor gaps",
    ),
    LevelMapping(
        level=2,
        name="Basic",
        tags=frozenset({ResponseTag.PARTIAL}),
        delta_min=-0.05,
        delta_max=0.05,
        description="Limited understanding, needs reinforcement",
    ),
    LevelMapping(
        level=1,
        name="Initial",
        tags=frozenset({ResponseTag.INCORRECT, ResponseTag.NEEDS_HELP, ResponseTag.CONCEPTUAL}),
        delta_min=-0.20,
        delta_max=-0.10,
        description="Insufficient understanding, needs significant support",
    ),
)

_MAPPINGS_BY_LEVEL: Dict[int, LevelMapping] = {m.level: m for m in LEVEL_MAPPINGS}

# Upper bounds (exclusive) of levels 1..4; level 5 is everything above
LEVEL_THRESHOLDS = (0.2, 0.4, 0.65, 0.85)


@dataclass(frozen=True)
class MasteryCorrection:
    """Outcome of checking a proposed delta against a level."""
    is_valid: bool
    corrected_delta: float
    reason: Optional[str] = None


def clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(maximum, value))


def mastery_to_level(mastery: float) -> int:
    """Map mastery (0..1) to rubric level (1..5)."""
    for level, upper in enumerate(LEVEL_THRESHOLDS, start=1):
        if mastery < upper:
            return level
    return 5


def level_to_mastery(level: int) -> float:
    """Representative mastery for a level: the midpoint of its band."""
    if level not in _MAPPINGS_BY_LEVEL:
        raise ValueError(f"Invalid rubric level: {level}")
    bounds = (0.0,) + LEVEL_THRESHOLDS + (1.0,)
    return round((bounds[level - 1] + bounds[level]) / 2, 4)


def get_level_mapping(level: int) -> Optional[LevelMapping]:
    return _MAPPINGS_BY_LEVEL.get(level)


def validate_and_correct_mastery_delta(
    level: int,
    tags: Iterable[ResponseTag],
    mastery_delta: float
) -> MasteryCorrection:
    """
    Check tags and delta against the level's expectations.

    Tags that share nothing with the level's expected set reset the delta to
    the range minimum; a delta outside the range is clamped into it.
    """
    mapping = get_level_mapping(level)
    if mapping is None:
        return MasteryCorrection(False, 0.0, f"Invalid level {level}")

    tags = list(tags)
    if not mapping.accepts_tags(tags):
        return MasteryCorrection(
            False,
            mapping.delta_min,
            f"Tags {','.join(t.value for t in tags)} do not match level {level}",
        )

    if not mapping.accepts_delta(mastery_delta):
        corrected = clamp(mastery_delta, mapping.delta_min, mapping.delta_max)
        return MasteryCorrection(
            False,
            corrected,
            f"Delta {mastery_delta:+.2f} outside [{mapping.delta_min:+.2f}, "
            f"{mapping.delta_max:+.2f}] for level {level}",
        )

    return MasteryCorrection(True, mastery_delta)


def infer_level_from_output(tags: Iterable[ResponseTag], mastery_delta: float) -> int:
    """Level whose tags and delta range both match the output, else by delta alone."""
    tags = list(tags)
    for mapping in LEVEL_MAPPINGS:
        if mapping.accepts_tags(tags) and mapping.accepts_delta(mastery_delta):
            return mapping.level

    if mastery_delta >= 0.25:
        return 5
    if mastery_delta >= 0.15:
        return 4
    if mastery_delta >= 0.05:
        return 3
    if mastery_delta >= -0.05:
        return 2
    return 1


def calculate_global_mastery(
    target_mastery: Mapping[str, float],
    target_weights: Optional[Mapping[str, float]] = None
) -> float:
    """Weighted mean of per-target mastery. Missing weights count as 1."""
    if not target_mastery:
        return 0.0

    target_weights = target_weights or {}
    weighted_sum = 0.0
    total_weight = 0.0

    for target_id, mastery in target_mastery.items():
        weight = target_weights.get(target_id, 1.0)
        weighted_sum += mastery * weight
        total_weight += weight

    return weighted_sum / total_weight if total_weight > 0 else 0.0


def update_target_mastery(current_mastery: float, mastery_delta: float) -> float:
    """Apply a delta and clamp into [0, 1]."""
    if not 0.0 <= current_mastery <= 1.0:
        logger.warning(
            "Mastery out of range before update, clamping",
            extra={"action": "invariant.mastery", "mastery": current_mastery},
        )
        current_mastery = clamp(current_mastery, 0.0, 1.0)
    return clamp(current_mastery + mastery_delta, 0.0, 1.0)


def is_target_complete(mastery: float, min_mastery: float) -> bool:
    return mastery >= min_mastery


def update_consecutive_correct(current: int, tags: Iterable[ResponseTag]) -> int:
    """Streak of CORRECT evaluations; anything else resets it."""
    return current + 1 if ResponseTag.CORRECT in list(tags) else 0
