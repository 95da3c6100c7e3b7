"""Aggregate survey scores into a ranked slot recommendation."""

from __future__ import annotations

import math
from typing import List, Optional, Sequence

from datevote.models.events import (
    DateOption,
    ParticipantScore,
    PreferenceSubmission,
    Recommendation,
    SlotScore,
)
from datevote.services.scoring import evaluate_slot

MAX_ALTERNATES = 2


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def percentage(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return round_half_up(part / whole * 100)


def score_slots(
    slots: Sequence[DateOption], submissions: Sequence[PreferenceSubmission]
) -> List[SlotScore]:
    """Score every slot in proposal order (unsorted)."""
    out: List[SlotScore] = []
    for slot in slots:
        agg = SlotScore(option=slot)
        for sub in submissions:
            ev = evaluate_slot(slot, sub)
            agg.score += ev.score
            if ev.prefers:
                agg.preferred_by += 1
            if ev.matches:
                agg.details.append(
                    ParticipantScore(
                        participant_name=sub.participant_name,
                        score=ev.score,
                        matches=ev.matches,
                    )
                )
        out.append(agg)
    return out


def rank_slots(
    slots: Sequence[DateOption], submissions: Sequence[PreferenceSubmission]
) -> List[SlotScore]:
    # sorted() is stable: proposal order survives among equal scores
    return sorted(score_slots(slots, submissions), key=lambda s: -s.score)


def select_best(
    slots: Sequence[DateOption], submissions: Sequence[PreferenceSubmission]
) -> Optional[Recommendation]:
    """Pick the best slot, its confidence and up to two alternates.

    ``preferred_by`` counts participants for whom at least half of the
    criteria they answered matched the slot. It is deliberately coarser than
    the point score, which is not comparable across participants who answered
    a different number of questions.
    """
    if not slots:
        return None
    ranked = rank_slots(slots, submissions)
    best = ranked[0]
    total = len(submissions)
    return Recommendation(
        best=best,
        total_participants=total,
        confidence=min(100, percentage(best.preferred_by, total)),
        alternates=ranked[1 : 1 + MAX_ALTERNATES],
        all_scores=ranked,
    )


def confidence_label(confidence: int) -> str:
    if confidence >= 80:
        return "excellent"
    if confidence >= 60:
        return "good"
    if confidence >= 40:
        return "fair"
    return "weak"


def summarize(recommendation: Optional[Recommendation]) -> str:
    if recommendation is None:
        return "No recommendation available."
    n = recommendation.preferred_by
    total = recommendation.total_participants
    return (
        f"{recommendation.best.option.label} is recommended with "
        f"{recommendation.confidence}% confidence. "
        f"{n} of {total} participant{'s' if total != 1 else ''} "
        f"{'match' if n != 1 else 'matches'} this slot based on their preferences."
    )
