"""Error kinds raised (or returned) by the date-vote engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional


class DateVoteError(Exception):
    """Base class for all engine errors."""


class ValidationError(DateVoteError):
    """Input rejected before any mutation took place."""

    def __init__(self, message: str, details: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class EventNotFound(ValidationError):
    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event not found: {event_id}", [f"event_id={event_id}"])
        self.event_id = event_id


class ConflictError(DateVoteError):
    """Concurrent write detected; the whole read-modify-write must be retried."""

    def __init__(self, event_id: str, expected_version: int) -> None:
        super().__init__(
            f"Event {event_id} changed underneath us (expected version {expected_version})"
        )
        self.event_id = event_id
        self.expected_version = expected_version


class NotificationDeliveryError(DateVoteError):
    """A notification collaborator failed. Never unwinds the recorded vote."""

    def __init__(self, channel: str, reason: str) -> None:
        super().__init__(f"{channel} delivery failed: {reason}")
        self.channel = channel
        self.reason = reason


@dataclass
class InsufficientData:
    """Returned (not raised) when a recommendation is asked for too early."""

    current: int
    required: int

    @property
    def missing(self) -> int:
        return max(0, self.required - self.current)
