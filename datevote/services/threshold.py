"""Edge-triggered "majority reached" detection.

Two states per event: below-threshold and notified. The notified state is
terminal and is persisted together with the tally recompute, so the signal
fires at most once even if participation later drops and rises again.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from datevote.models.events import DateOption, Event, Participant, ThresholdState
from datevote.services.recommend import percentage

DEFAULT_THRESHOLD = 70


def participation_rate(total_responded: int, expected_participants: int) -> int:
    """Rounded percentage of expected participants who answered (0 if none expected)."""
    return percentage(total_responded, expected_participants)


def check_threshold_crossing(
    previous_rate: int, current_rate: int, threshold: int = DEFAULT_THRESHOLD
) -> bool:
    return previous_rate < threshold <= current_rate


def state_from_legacy_rate(
    previous_rate: int, threshold: int = DEFAULT_THRESHOLD
) -> ThresholdState:
    """Records that only kept ``previousParticipationRate`` were notified iff it reached the threshold."""
    return ThresholdState(last_rate=previous_rate, notified=previous_rate >= threshold)


def advance(
    state: ThresholdState, current_rate: int, threshold: int = DEFAULT_THRESHOLD
) -> Tuple[ThresholdState, bool]:
    """Move the state machine with a freshly computed rate.

    Returns the new state and whether the below -> notified transition fired.
    """
    if state.notified:
        return ThresholdState(last_rate=current_rate, notified=True), False
    # not notified yet, so the previous rate counts as below threshold
    fired = check_threshold_crossing(min(state.last_rate, threshold - 1), current_rate, threshold)
    return ThresholdState(last_rate=current_rate, notified=fired), fired


def best_slot_by_votes(options: Sequence[DateOption]) -> Optional[DateOption]:
    """First option holding the maximum vote count (left-to-right reduction)."""
    best: Optional[DateOption] = None
    for opt in options:
        if best is None or opt.votes > best.votes:
            best = opt
    return best


def make_delivery_key(event_id: str, kind: str = "majority") -> str:
    """Stable key so a retried dispatch of the same signal can be recognized."""
    return hashlib.sha256(f"{event_id}||{kind}".encode("utf-8")).hexdigest()


@dataclass
class ThresholdSignal:
    event_id: str
    title: str
    new_rate: int
    best_slot: Optional[DateOption]
    total_responded: int
    expected_participants: int
    channel_id: Optional[str] = None
    organizer: Optional[str] = None
    location: Optional[str] = None
    roster: List[Participant] = field(default_factory=list)

    @property
    def delivery_key(self) -> str:
        return make_delivery_key(self.event_id)

    @classmethod
    def from_event(cls, event: Event) -> "ThresholdSignal":
        return cls(
            event_id=event.event_id,
            title=event.title,
            new_rate=event.threshold.last_rate,
            best_slot=best_slot_by_votes(event.date_options),
            total_responded=event.total_responded,
            expected_participants=event.expected_participants,
            channel_id=event.channel_id,
            organizer=event.organizer,
            location=event.location,
            roster=list(event.participants),
        )
