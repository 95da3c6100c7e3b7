"""Event <-> JSON-ready dict conversion for the storage layer."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Dict, Optional

from datevote.models.events import (
    Availability,
    BudgetOption,
    DateOption,
    Event,
    EventMode,
    Participant,
    PreferenceSubmission,
    ThresholdState,
    utcnow,
)
from datevote.services.threshold import DEFAULT_THRESHOLD, state_from_legacy_rate


def _time_str(t: Optional[time]) -> Optional[str]:
    return t.strftime("%H:%M") if t is not None else None


def _parse_time(s: Optional[str]) -> Optional[time]:
    return time.fromisoformat(s) if s else None


def _parse_dt(s: Optional[str]) -> datetime:
    return datetime.fromisoformat(s) if s else utcnow()


def event_to_dict(event: Event) -> Dict[str, Any]:
    return {
        "event_id": event.event_id,
        "title": event.title,
        "mode": event.mode.value,
        "expected_participants": event.expected_participants,
        "channel_id": event.channel_id,
        "organizer": event.organizer,
        "location": event.location,
        "created_at": event.created_at.isoformat(),
        "threshold": {
            "last_rate": event.threshold.last_rate,
            "notified": event.threshold.notified,
        },
        "dates": [
            {
                "id": o.option_id,
                "label": o.label,
                "date": o.date.isoformat(),
                "time": _time_str(o.time),
                "votes": o.votes,
                "voters": list(o.voters),
            }
            for o in event.date_options
        ],
        "budgets": [
            {"label": b.label, "votes": b.votes, "voters": list(b.voters)}
            for b in event.budget_options
        ],
        "participants": [
            {
                "name": p.name,
                "email": p.email,
                "availabilities": {k: v.value for k, v in p.availabilities.items()},
                "selected_budget": p.selected_budget,
                "voted_at": p.voted_at.isoformat(),
            }
            for p in event.participants
        ],
        "preferences": [
            {
                "participant_name": s.participant_name,
                "participant_email": s.participant_email,
                "preferences": dict(s.preferences),
                "answered_at": s.answered_at.isoformat(),
            }
            for s in event.preferences
        ],
    }


def _threshold_from(data: Dict[str, Any]) -> ThresholdState:
    raw = data.get("threshold")
    if isinstance(raw, dict):
        return ThresholdState(
            last_rate=int(raw.get("last_rate") or 0), notified=bool(raw.get("notified"))
        )
    # older documents only carried the last persisted rate
    legacy = data.get("previousParticipationRate")
    if legacy is not None:
        return state_from_legacy_rate(int(legacy), DEFAULT_THRESHOLD)
    return ThresholdState()


def event_from_dict(data: Dict[str, Any], version: int = 0) -> Event:
    return Event(
        event_id=data["event_id"],
        title=data.get("title") or "",
        mode=EventMode(data.get("mode") or EventMode.DIRECT_VOTE.value),
        expected_participants=int(data.get("expected_participants") or 0),
        channel_id=data.get("channel_id"),
        organizer=data.get("organizer"),
        location=data.get("location"),
        created_at=_parse_dt(data.get("created_at")),
        threshold=_threshold_from(data),
        date_options=[
            DateOption(
                option_id=d["id"],
                label=d["label"],
                date=date.fromisoformat(d["date"]),
                time=_parse_time(d.get("time")),
                votes=int(d.get("votes") or 0),
                voters=list(d.get("voters") or []),
            )
            for d in data.get("dates") or []
        ],
        budget_options=[
            BudgetOption(
                label=b["label"],
                votes=int(b.get("votes") or 0),
                voters=list(b.get("voters") or []),
            )
            for b in data.get("budgets") or []
        ],
        participants=[
            Participant(
                name=p["name"],
                email=p.get("email"),
                availabilities={
                    k: Availability.parse(v) for k, v in (p.get("availabilities") or {}).items()
                },
                selected_budget=p.get("selected_budget"),
                voted_at=_parse_dt(p.get("voted_at")),
            )
            for p in data.get("participants") or []
        ],
        preferences=[
            PreferenceSubmission(
                participant_name=s["participant_name"],
                participant_email=s.get("participant_email"),
                preferences=dict(s.get("preferences") or {}),
                answered_at=_parse_dt(s.get("answered_at")),
            )
            for s in data.get("preferences") or []
        ],
        version=version,
    )
