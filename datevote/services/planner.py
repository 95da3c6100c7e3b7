"""Submission service: the one place that reads, mutates and writes an event.

"Upsert one submission, recompute tallies, advance the threshold state" runs
as a single unit. Writers for the same event are serialized by a per-event
lock, and the write itself is conditional on the version that was read, so a
writer in another process surfaces as ConflictError and the whole unit is
redone from a fresh read. Notification I/O only happens after the write has
committed.
"""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date, time
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union

from datevote.config import PlannerSettings
from datevote.errors import (
    ConflictError,
    EventNotFound,
    InsufficientData,
    NotificationDeliveryError,
    ValidationError,
)
from datevote.models.events import (
    BudgetOption,
    DateOption,
    Event,
    EventMode,
    Participant,
    PreferenceSubmission,
    Recommendation,
)
from datevote.roster import apply_preference, apply_vote, normalize_availabilities
from datevote.services.notifier import Notifier
from datevote.services.recommend import select_best
from datevote.services.threshold import (
    ThresholdSignal,
    advance,
    make_delivery_key,
    participation_rate,
)
from datevote.state.recommendation_cache import RecommendationCache
from datevote.storage import dao

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class VoteOutcome:
    event: Event
    signal: Optional[ThresholdSignal] = None
    notification_errors: List[NotificationDeliveryError] = field(default_factory=list)

    @property
    def majority_reached(self) -> bool:
        return self.signal is not None


@dataclass
class SurveyOutcome:
    event: Event
    recommendation: Optional[Recommendation] = None
    waiting: Optional[InsufficientData] = None


def slot(d: date, t: Optional[time] = None, label: Optional[str] = None) -> DateOption:
    """Build a candidate slot; ids are assigned by ``create_event``."""
    if label is None:
        label = d.isoformat() if t is None else f"{d.isoformat()} {t.strftime('%H:%M')}"
    return DateOption(option_id="", label=label, date=d, time=t)


def _require_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("participant name is required")
    return cleaned


def _clean_email(email: Optional[str]) -> Optional[str]:
    cleaned = (email or "").strip()
    return cleaned or None


class EventPlanner:
    def __init__(
        self,
        settings: PlannerSettings,
        notifiers: Optional[Sequence[Notifier]] = None,
        cache: Optional[RecommendationCache] = None,
    ) -> None:
        self.settings = settings
        self.notifiers: List[Notifier] = list(notifiers or [])
        self.cache = cache or RecommendationCache(
            maxsize=settings.recommendation_cache_size,
            ttl=settings.recommendation_cache_ttl,
        )
        # event_id -> [lock, writers holding or waiting]; dropped when the count hits 0
        self._locks: Dict[str, List[Any]] = {}
        self._locks_guard = threading.Lock()
        dao.init_db(settings.db_path)

    # ===== 読み取り =====

    def get_event(self, event_id: str) -> Event:
        event = dao.load_event(self.settings.db_path, event_id)
        if event is None:
            raise EventNotFound(event_id)
        return event

    def latest_event(self, channel_id: str) -> Optional[Event]:
        event_id = dao.latest_event_id(self.settings.db_path, channel_id)
        return self.get_event(event_id) if event_id else None

    def participation_rate(self, event: Event) -> int:
        return participation_rate(event.total_responded, event.expected_participants)

    # ===== 作成 =====

    def create_event(
        self,
        title: str,
        date_options: Sequence[DateOption],
        budget_labels: Sequence[str] = (),
        expected_participants: int = 0,
        mode: EventMode = EventMode.DIRECT_VOTE,
        channel_id: Optional[str] = None,
        organizer: Optional[str] = None,
        location: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> Event:
        errors: List[str] = []
        if not (title or "").strip():
            errors.append("title is required")
        if not date_options:
            errors.append("at least one candidate slot is required")
        labels = [o.label for o in date_options]
        if len(set(labels)) != len(labels):
            errors.append("slot labels must be unique")
        if expected_participants < 0:
            errors.append("expected participants cannot be negative")
        budgets = [b.strip() for b in budget_labels if b and b.strip()]
        if len(set(budgets)) != len(budgets):
            errors.append("budget labels must be unique")
        if errors:
            raise ValidationError("invalid event", errors)

        event = Event(
            event_id=event_id or uuid.uuid4().hex[:12],
            title=title.strip(),
            date_options=[
                replace(o, option_id=o.option_id or f"slot-{i}", votes=0, voters=[])
                for i, o in enumerate(date_options, start=1)
            ],
            budget_options=[BudgetOption(label=b) for b in budgets],
            expected_participants=expected_participants,
            mode=mode,
            channel_id=channel_id,
            organizer=organizer,
            location=location,
        )
        version = dao.insert_event(self.settings.db_path, event)
        log.info("created event %s (%d slots, mode=%s)", event.event_id, len(labels), mode.value)
        return replace(event, version=version)

    # ===== 書き込み（1件の投稿 = 1単位） =====

    @contextmanager
    def _event_lock(self, event_id: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.setdefault(event_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[event_id]

    def _mutate(self, event_id: str, change: Callable[[Event], Tuple[Event, T]]) -> Tuple[Event, T]:
        attempts = max(1, self.settings.max_write_retries)
        with self._event_lock(event_id):
            for attempt in range(1, attempts + 1):
                current = self.get_event(event_id)
                updated, extra = change(current)
                try:
                    version = dao.save_event(
                        self.settings.db_path, updated, expected_version=current.version
                    )
                except ConflictError:
                    log.warning("write conflict on %s (attempt %d/%d)", event_id, attempt, attempts)
                    if attempt == attempts:
                        raise
                    continue
                self.cache.evict(event_id)
                return replace(updated, version=version), extra
        raise ConflictError(event_id, -1)  # unreachable

    def _check_budget(self, event: Event, selected: Optional[str]) -> Optional[str]:
        label = (selected or "").strip() or None
        if label is None or not event.budget_enabled:
            return None
        if label not in {b.label for b in event.budget_options}:
            raise ValidationError("unknown budget bracket", [f"budget={label}"])
        return label

    def submit_vote(
        self,
        event_id: str,
        participant_name: str,
        availabilities: Mapping[str, Any],
        participant_email: Optional[str] = None,
        selected_budget: Optional[str] = None,
    ) -> VoteOutcome:
        """Record a direct vote, recompute tallies and maybe fire the majority signal."""
        name = _require_name(participant_name)
        email = _clean_email(participant_email)

        def change(event: Event) -> Tuple[Event, bool]:
            avail = normalize_availabilities(availabilities, event.date_options)
            budget = self._check_budget(event, selected_budget)
            participant = Participant(
                name=name, availabilities=avail, email=email, selected_budget=budget
            )
            return self._advance_threshold(apply_vote(event, participant))

        event, fired = self._mutate(event_id, change)
        log.info(
            "vote from %r on %s: %d/%d responded",
            name, event_id, event.total_responded, event.expected_participants,
        )
        return self._announce(event, fired)

    def update_event(
        self,
        event_id: str,
        expected_participants: Optional[int] = None,
        location: Optional[str] = None,
        title: Optional[str] = None,
    ) -> VoteOutcome:
        """Edit organizer-owned fields.

        Changing the expected head count moves the participation rate, so
        the threshold is advanced in the same unit and a crossing notifies
        exactly like a vote would.
        """
        errors: List[str] = []
        if expected_participants is not None and expected_participants < 0:
            errors.append("expected participants cannot be negative")
        if title is not None and not title.strip():
            errors.append("title cannot be blank")
        if errors:
            raise ValidationError("invalid event update", errors)

        def change(event: Event) -> Tuple[Event, bool]:
            updated = event
            if expected_participants is not None:
                updated = replace(updated, expected_participants=expected_participants)
            if location is not None:
                updated = replace(updated, location=location.strip() or None)
            if title is not None:
                updated = replace(updated, title=title.strip())
            return self._advance_threshold(updated)

        event, fired = self._mutate(event_id, change)
        log.info(
            "updated event %s: %d/%d responded",
            event_id, event.total_responded, event.expected_participants,
        )
        return self._announce(event, fired)

    def _advance_threshold(self, event: Event) -> Tuple[Event, bool]:
        rate = participation_rate(event.total_responded, event.expected_participants)
        state, fired = advance(event.threshold, rate, self.settings.threshold)
        return replace(event, threshold=state), fired

    def _announce(self, event: Event, fired: bool) -> VoteOutcome:
        outcome = VoteOutcome(event=event)
        if fired:
            outcome.signal = ThresholdSignal.from_event(event)
            log.info("event %s reached %d%%", event.event_id, outcome.signal.new_rate)
            outcome.notification_errors = self._dispatch(outcome.signal)
        return outcome

    def confirm_slot(
        self,
        event_id: str,
        participant_name: str,
        slot_label: str,
        participant_email: Optional[str] = None,
    ) -> VoteOutcome:
        """Vote for exactly ``slot_label`` (available) and against every other slot."""
        event = self.get_event(event_id)
        if event.find_option(slot_label) is None:
            raise ValidationError("unknown slot", [f"slot={slot_label}"])
        availabilities = {o.label: o.label == slot_label for o in event.date_options}
        return self.submit_vote(
            event_id, participant_name, availabilities, participant_email=participant_email
        )

    def submit_preferences(
        self,
        event_id: str,
        participant_name: str,
        preferences: Mapping[str, Any],
        participant_email: Optional[str] = None,
    ) -> SurveyOutcome:
        name = _require_name(participant_name)
        if not isinstance(preferences, Mapping):
            raise ValidationError("preferences must be a mapping of criterion id to value")
        answers = {
            str(k): str(v).strip()
            for k, v in preferences.items()
            if v is not None and str(v).strip()
        }
        if not answers:
            raise ValidationError("at least one preference answer is required")
        submission = PreferenceSubmission(
            participant_name=name,
            preferences=answers,
            participant_email=_clean_email(participant_email),
        )

        def change(event: Event) -> Tuple[Event, None]:
            if event.mode is not EventMode.PREFERENCE_SURVEY:
                raise ValidationError("event does not collect survey answers", [f"mode={event.mode.value}"])
            return apply_preference(event, submission), None

        event, _ = self._mutate(event_id, change)
        result = self._recommend_for(event, force=False)
        if isinstance(result, InsufficientData):
            log.info("survey %s waiting: %d/%d", event_id, result.current, result.required)
            return SurveyOutcome(event=event, waiting=result)
        return SurveyOutcome(event=event, recommendation=result)

    # ===== おすすめ =====

    def required_submissions(self, event: Event) -> int:
        if event.expected_participants > 0:
            return event.expected_participants
        return self.settings.min_survey_responses

    def recommend(
        self, event_id: str, force: bool = False
    ) -> Union[Recommendation, InsufficientData, None]:
        """Recommendation for the survey so far.

        ``force`` lets the organizer stop waiting for every expected
        participant once the fallback minimum has answered.
        """
        return self._recommend_for(self.get_event(event_id), force=force)

    def _recommend_for(
        self, event: Event, force: bool
    ) -> Union[Recommendation, InsufficientData, None]:
        count = len(event.preferences)
        required = self.required_submissions(event)
        if force:
            required = min(required, self.settings.min_survey_responses)
        if count < required:
            return InsufficientData(current=count, required=required)
        cached = self.cache.get(event.event_id, event.version)
        if cached is not None:
            return cached
        rec = select_best(event.date_options, event.preferences)
        if rec is not None:
            self.cache.set(event.event_id, event.version, rec)
        return rec

    # ===== 通知 =====

    def _dispatch(self, signal: ThresholdSignal) -> List[NotificationDeliveryError]:
        """Hand the signal to every notifier that has not delivered it yet."""
        errors: List[NotificationDeliveryError] = []
        for notifier in self.notifiers:
            key = make_delivery_key(signal.event_id, f"majority:{notifier.name}")
            if dao.notification_sent(self.settings.db_path, key):
                log.info("%s already notified for %s", notifier.name, signal.event_id)
                continue
            try:
                notifier.send_majority_reached(signal)
            except NotificationDeliveryError as e:
                log.error("majority notice for %s not delivered: %s", signal.event_id, e)
                errors.append(e)
                continue
            except Exception as e:
                log.exception("%s failed on majority notice for %s", notifier.name, signal.event_id)
                errors.append(NotificationDeliveryError(notifier.name, str(e)))
                continue
            dao.record_notification(self.settings.db_path, key, signal.event_id)
        return errors

    def redeliver(self, event_id: str) -> List[NotificationDeliveryError]:
        """Retry channels that failed to deliver an already-fired signal."""
        event = self.get_event(event_id)
        if not event.threshold.notified:
            return []
        return self._dispatch(ThresholdSignal.from_event(event))
