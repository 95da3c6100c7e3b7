"""Survey answer -> per-slot affinity score.

Each recognized criterion is evaluated independently against a slot and is
worth a fixed number of points when the slot satisfies it. A "flexible"
answer earns a flat partial weight so that answering is rewarded without
biasing any slot. Weights are fixed, not learned.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from datevote.models.events import CriterionMatch, DateOption, PreferenceSubmission

FLEXIBLE_VALUES = {"any", "flexible"}


class Criterion(str, Enum):
    DAY_PREFERENCE = "day_preference"
    TIME_PREFERENCE = "time_preference"
    PERIOD = "period"
    SEASON_PREFERENCE = "season_preference"
    DURATION = "duration"
    TIME_SLOT = "time_slot"
    TIME_OF_DAY = "time_of_day"


# survey question ids that feed an existing criterion
CRITERION_ALIASES: Dict[str, Criterion] = {
    "day_type": Criterion.DAY_PREFERENCE,
    "period_preference": Criterion.SEASON_PREFERENCE,
    "duration_preference": Criterion.DURATION,
}

CRITERION_LABELS: Dict[Criterion, str] = {
    Criterion.DAY_PREFERENCE: "Preferred day",
    Criterion.TIME_PREFERENCE: "Preferred time",
    Criterion.PERIOD: "Period of the month",
    Criterion.SEASON_PREFERENCE: "Preferred season",
    Criterion.DURATION: "Duration",
    Criterion.TIME_SLOT: "Meeting slot",
    Criterion.TIME_OF_DAY: "Time of day",
}

Predicate = Callable[[int], bool]


@dataclass(frozen=True)
class CriterionRule:
    weight: int
    flexible_weight: int
    needs_time: bool
    # value -> predicate over the slot attribute (weekday/hour/day/month)
    values: Dict[str, Predicate] = field(default_factory=dict)
    always: bool = False


def _between(lo: int, hi: int) -> Predicate:
    return lambda x: lo <= x < hi


def _at_least(lo: int) -> Predicate:
    return lambda x: x >= lo


def _in(*vals: int) -> Predicate:
    return lambda x: x in vals


# weekday(): Monday=0 .. Sunday=6
RULES: Dict[Criterion, CriterionRule] = {
    Criterion.DAY_PREFERENCE: CriterionRule(
        weight=10, flexible_weight=5, needs_time=False,
        values={
            "weekday": _between(0, 4),
            "friday": _in(4),
            "weekend": _in(5, 6),
            "monday": _in(0),
            "tuesday_thursday": _between(1, 4),
            "mid_week": _between(1, 4),
            "saturday": _in(5),
            "sunday": _in(6),
            "sunday_lunch": _in(6),
            "weekday_evening": _between(0, 5),
            "saturday_morning": _in(5),
        },
    ),
    Criterion.TIME_PREFERENCE: CriterionRule(
        weight=8, flexible_weight=4, needs_time=True,
        values={
            "early": _between(19, 21),
            "standard": _between(20, 22),
            "late": _at_least(21),
            "lunch": _between(12, 15),
            "afternoon": _between(15, 18),
            "evening": _at_least(19),
            "dinner": _at_least(19),
            "early_morning": _between(7, 9),
            "late_morning": _between(9, 12),
        },
    ),
    Criterion.PERIOD: CriterionRule(
        weight=5, flexible_weight=3, needs_time=False,
        values={
            "early": _between(1, 11),
            "mid": _between(11, 21),
            "late": _at_least(21),
        },
    ),
    Criterion.SEASON_PREFERENCE: CriterionRule(
        weight=6, flexible_weight=3, needs_time=False,
        values={
            "spring": _in(3, 4, 5),
            "summer": _in(6, 7, 8),
            "fall": _in(9, 10, 11),
            "winter": _in(12, 1, 2),
        },
    ),
    Criterion.DURATION: CriterionRule(weight=4, flexible_weight=4, needs_time=False, always=True),
    Criterion.TIME_SLOT: CriterionRule(
        weight=8, flexible_weight=4, needs_time=True,
        values={
            "morning": _between(9, 12),
            "afternoon": _between(14, 17),
            "end_day": _between(17, 19),
        },
    ),
    Criterion.TIME_OF_DAY: CriterionRule(
        weight=6, flexible_weight=3, needs_time=True,
        values={
            "morning": _between(6, 12),
            "afternoon": _between(12, 18),
            "evening": _at_least(18),
            "early_morning": _between(7, 9),
            "late_morning": _between(9, 12),
        },
    ),
}


def resolve_criterion(criterion_id: str) -> Optional[Criterion]:
    """Map a survey question id to a Criterion, or None when unrecognized."""
    key = (criterion_id or "").strip().lower()
    if key in CRITERION_ALIASES:
        return CRITERION_ALIASES[key]
    try:
        return Criterion(key)
    except ValueError:
        return None


def _slot_attribute(criterion: Criterion, slot: DateOption) -> Optional[int]:
    if criterion is Criterion.DAY_PREFERENCE:
        return slot.date.weekday()
    if criterion is Criterion.PERIOD:
        return slot.date.day
    if criterion is Criterion.SEASON_PREFERENCE:
        return slot.date.month
    return slot.hour


def criterion_points(criterion: Criterion, value: str, slot: DateOption) -> int:
    rule = RULES[criterion]
    if rule.always:
        return rule.weight
    if value in FLEXIBLE_VALUES:
        return rule.flexible_weight
    predicate = rule.values.get(value)
    if predicate is None:
        return 0
    attr = _slot_attribute(criterion, slot)
    if attr is None:
        return 0
    return rule.weight if predicate(attr) else 0


@dataclass
class SlotEvaluation:
    score: int = 0
    answered: int = 0
    matches: List[CriterionMatch] = field(default_factory=list)

    @property
    def prefers(self) -> bool:
        """At least half of the answered criteria matched."""
        return self.answered > 0 and len(self.matches) * 2 >= self.answered


def evaluate_slot(slot: DateOption, submission: PreferenceSubmission) -> SlotEvaluation:
    result = SlotEvaluation()
    seen = set()
    for raw_id, raw_value in (submission.preferences or {}).items():
        criterion = resolve_criterion(raw_id)
        if criterion is None or criterion in seen:
            continue
        value = str(raw_value).strip().lower() if raw_value is not None else ""
        if not value:
            continue
        rule = RULES[criterion]
        if rule.needs_time and slot.time is None:
            continue
        seen.add(criterion)
        result.answered += 1
        points = criterion_points(criterion, value, slot)
        if points > 0:
            result.score += points
            result.matches.append(CriterionMatch(criterion=criterion.value, points=points))
    return result


def score_slot(
    slot: DateOption, submission: PreferenceSubmission
) -> Tuple[int, List[CriterionMatch]]:
    """Return ``(score, matched_criteria)`` of one participant for one slot."""
    ev = evaluate_slot(slot, submission)
    return ev.score, ev.matches
