from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Availability(str, Enum):
    """Tri-state answer for one date option."""

    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    NO_ANSWER = "no-answer"

    @classmethod
    def parse(cls, value: Any) -> "Availability":
        """Accept ``True``/``False``/``None``, an enum member or its string value."""
        if isinstance(value, cls):
            return value
        if value is True:
            return cls.AVAILABLE
        if value is False:
            return cls.UNAVAILABLE
        if value is None:
            return cls.NO_ANSWER
        if isinstance(value, str):
            return cls(value.strip().lower())
        raise ValueError(f"not a tri-state availability: {value!r}")


class EventMode(str, Enum):
    DIRECT_VOTE = "direct"
    PREFERENCE_SURVEY = "survey"


@dataclass
class DateOption:
    """Candidate slot. ``votes``/``voters`` are derived from the roster."""

    option_id: str
    label: str
    date: date
    time: Optional[time] = None
    votes: int = 0
    voters: List[str] = field(default_factory=list)

    @property
    def hour(self) -> Optional[int]:
        return self.time.hour if self.time is not None else None

    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.time or time(0, 0))


@dataclass
class BudgetOption:
    """Budget bracket, tallied the same way as a DateOption."""

    label: str
    votes: int = 0
    voters: List[str] = field(default_factory=list)


@dataclass
class Participant:
    """One live direct-vote submission. Identity is the lowercased name."""

    name: str
    availabilities: Dict[str, Availability] = field(default_factory=dict)
    email: Optional[str] = None
    selected_budget: Optional[str] = None
    voted_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> str:
        return self.name.lower()

    def is_available(self, label: str) -> bool:
        return self.availabilities.get(label) == Availability.AVAILABLE


@dataclass
class PreferenceSubmission:
    """Survey answers of one participant: criterion id -> qualitative value."""

    participant_name: str
    preferences: Dict[str, str] = field(default_factory=dict)
    participant_email: Optional[str] = None
    answered_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> str:
        return self.participant_name.lower()


@dataclass
class ThresholdState:
    """Last known participation rate plus the terminal "notified" latch."""

    last_rate: int = 0
    notified: bool = False


@dataclass
class Event:
    """Context information for a single date poll."""

    event_id: str
    title: str
    date_options: List[DateOption]
    budget_options: List[BudgetOption] = field(default_factory=list)
    expected_participants: int = 0
    participants: List[Participant] = field(default_factory=list)
    preferences: List[PreferenceSubmission] = field(default_factory=list)
    mode: EventMode = EventMode.DIRECT_VOTE
    threshold: ThresholdState = field(default_factory=ThresholdState)
    channel_id: Optional[str] = None
    organizer: Optional[str] = None
    location: Optional[str] = None
    version: int = 0
    created_at: datetime = field(default_factory=utcnow)

    @property
    def budget_enabled(self) -> bool:
        return bool(self.budget_options)

    @property
    def total_responded(self) -> int:
        return len(self.participants)

    def find_option(self, label: str) -> Optional[DateOption]:
        return next((o for o in self.date_options if o.label == label), None)


@dataclass
class CriterionMatch:
    """One criterion that scored > 0 for a slot (for explainability)."""

    criterion: str
    points: int


@dataclass
class ParticipantScore:
    participant_name: str
    score: int
    matches: List[CriterionMatch] = field(default_factory=list)


@dataclass
class SlotScore:
    """Aggregate survey score of one DateOption."""

    option: DateOption
    score: int = 0
    preferred_by: int = 0
    details: List[ParticipantScore] = field(default_factory=list)


@dataclass
class Recommendation:
    best: SlotScore
    total_participants: int
    confidence: int
    alternates: List[SlotScore] = field(default_factory=list)
    all_scores: List[SlotScore] = field(default_factory=list)

    @property
    def score(self) -> int:
        return self.best.score

    @property
    def preferred_by(self) -> int:
        return self.best.preferred_by
