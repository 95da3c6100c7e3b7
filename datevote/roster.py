# datevote/roster.py
"""Roster upserts and tally recomputation.

Tallies are never updated incrementally: every roster change is followed by a
full ``recompute`` so resubmissions and out-of-order updates land on the same
counts.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from datevote.errors import ValidationError
from datevote.models.events import (
    Availability,
    BudgetOption,
    DateOption,
    Event,
    Participant,
    PreferenceSubmission,
)

log = logging.getLogger(__name__)


def normalize_availabilities(
    raw: Optional[Mapping[str, Any]], date_options: Sequence[DateOption]
) -> Dict[str, Availability]:
    """Map slot label -> Availability. Unknown labels are dropped."""
    if raw is None:
        raise ValidationError("availabilities are required")
    if not isinstance(raw, Mapping):
        raise ValidationError(
            "availabilities must be a mapping of slot label to availability",
            [f"got {type(raw).__name__}"],
        )

    known = {o.label for o in date_options}
    out: Dict[str, Availability] = {}
    errors: List[str] = []
    for label, value in raw.items():
        if label not in known:
            log.debug("ignoring unknown slot label %r", label)
            continue
        try:
            out[label] = Availability.parse(value)
        except ValueError:
            errors.append(f"{label}: {value!r} is not available/unavailable/no-answer")
    if errors:
        raise ValidationError("malformed availability map", errors)
    return out


def upsert_participant(
    roster: Sequence[Participant], participant: Participant
) -> List[Participant]:
    """Replace the same-named participant wholesale, or append."""
    out = list(roster)
    for i, p in enumerate(out):
        if p.key == participant.key:
            out[i] = participant
            return out
    out.append(participant)
    return out


def upsert_preference(
    submissions: Sequence[PreferenceSubmission], submission: PreferenceSubmission
) -> List[PreferenceSubmission]:
    out = list(submissions)
    for i, s in enumerate(out):
        if s.key == submission.key:
            out[i] = submission
            return out
    out.append(submission)
    return out


def recompute(
    roster: Sequence[Participant],
    date_options: Sequence[DateOption],
    budget_options: Sequence[BudgetOption],
    budget_enabled: Optional[bool] = None,
) -> Tuple[List[DateOption], List[BudgetOption]]:
    """Rebuild vote counts and voter lists from the full roster.

    Voters are appended in roster order, so ties resolve to the first
    registered participant. Budget tallies are left untouched when budget
    voting is not enabled for the event.
    """
    dates = [replace(o, votes=0, voters=[]) for o in date_options]
    for p in roster:
        for opt in dates:
            if p.is_available(opt.label):
                opt.votes += 1
                opt.voters.append(p.name)

    if budget_enabled is None:
        budget_enabled = bool(budget_options)
    if not budget_enabled:
        return dates, list(budget_options)

    budgets = [replace(b, votes=0, voters=[]) for b in budget_options]
    by_label = {b.label: b for b in budgets}
    for p in roster:
        bracket = by_label.get(p.selected_budget) if p.selected_budget else None
        if bracket is not None:
            bracket.votes += 1
            bracket.voters.append(p.name)
    return dates, budgets


def apply_vote(event: Event, participant: Participant) -> Event:
    """Upsert ``participant`` and return the event with fresh tallies."""
    roster = upsert_participant(event.participants, participant)
    dates, budgets = recompute(
        roster, event.date_options, event.budget_options, event.budget_enabled
    )
    return replace(event, participants=roster, date_options=dates, budget_options=budgets)


def apply_preference(event: Event, submission: PreferenceSubmission) -> Event:
    return replace(event, preferences=upsert_preference(event.preferences, submission))
