import os, sys, threading
from datetime import date, time
from urllib.error import URLError

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from datevote.config import PlannerSettings
from datevote.errors import ConflictError, EventNotFound, InsufficientData, NotificationDeliveryError, ValidationError
from datevote.models.events import Availability, EventMode, Participant, Recommendation
from datevote.roster import apply_vote
from datevote.services.notifier import Notifier
from datevote.services.planner import EventPlanner, slot
from datevote.storage import dao

FRI = "2026-11-06 19:00"
SAT = "2026-11-07"
SLOTS = [slot(date(2026, 11, 6), time(19, 0)), slot(date(2026, 11, 7))]


class RecordingNotifier(Notifier):
    name = "recording"

    def __init__(self, fail=False):
        self.fail = fail
        self.signals = []

    def send_majority_reached(self, signal):
        if self.fail:
            raise NotificationDeliveryError(self.name, "boom")
        self.signals.append(signal)


class BrokenNotifier(Notifier):
    name = "broken"

    def send_majority_reached(self, signal):
        raise URLError("timed out")


def make_planner(tmp_path, notifiers=(), **kwargs):
    settings = PlannerSettings(db_path=str(tmp_path / "datevote.db"), **kwargs)
    return EventPlanner(settings, notifiers=list(notifiers))


def test_create_event_assigns_ids_and_version(tmp_path):
    planner = make_planner(tmp_path)
    event = planner.create_event("忘年会", SLOTS, budget_labels=["3000-5000"], channel_id="C1")
    assert [o.option_id for o in event.date_options] == ["slot-1", "slot-2"]
    assert [o.label for o in event.date_options] == [FRI, SAT]
    assert event.version == 1
    assert event.budget_enabled
    assert planner.latest_event("C1").event_id == event.event_id
    assert planner.latest_event("C2") is None


def test_create_event_rejects_bad_input(tmp_path):
    planner = make_planner(tmp_path)
    with pytest.raises(ValidationError) as err:
        planner.create_event(" ", SLOTS + SLOTS[:1], expected_participants=-1)
    assert len(err.value.details) == 3
    with pytest.raises(ValidationError):
        planner.create_event("飲み会", [])


def test_unknown_event(tmp_path):
    planner = make_planner(tmp_path)
    with pytest.raises(EventNotFound):
        planner.submit_vote("missing", "Ann", {FRI: True})


def test_vote_is_persisted_and_tallied(tmp_path):
    planner = make_planner(tmp_path)
    event = planner.create_event("忘年会", SLOTS, expected_participants=4)
    planner.submit_vote(event.event_id, "Tom", {FRI: True, SAT: True})
    outcome = planner.submit_vote(event.event_id, "tom", {FRI: "unavailable", SAT: True})
    stored = planner.get_event(event.event_id)
    assert stored.total_responded == 1
    assert [o.votes for o in stored.date_options] == [0, 1]
    assert stored.version == outcome.event.version == 3
    assert planner.participation_rate(stored) == 25


def test_invalid_vote_leaves_event_untouched(tmp_path):
    planner = make_planner(tmp_path)
    event = planner.create_event("忘年会", SLOTS, budget_labels=["3000-5000"])
    with pytest.raises(ValidationError):
        planner.submit_vote(event.event_id, "Ann", {FRI: "maybe"})
    with pytest.raises(ValidationError):
        planner.submit_vote(event.event_id, "Ann", {FRI: True}, selected_budget="free")
    with pytest.raises(ValidationError):
        planner.submit_vote(event.event_id, "  ", {FRI: True})
    assert planner.get_event(event.event_id).version == 1


def test_majority_notifies_exactly_once(tmp_path):
    notifier = RecordingNotifier()
    planner = make_planner(tmp_path, [notifier])
    event = planner.create_event("忘年会", SLOTS, expected_participants=3, channel_id="C1")
    results = [
        planner.submit_vote(event.event_id, name, {FRI: True})
        for name in ("Ann", "Ben", "Cy", "Ben", "Dee")
    ]
    assert [r.majority_reached for r in results] == [False, False, True, False, False]
    assert len(notifier.signals) == 1
    signal = notifier.signals[0]
    assert signal.new_rate == 100
    assert signal.best_slot.label == FRI
    assert signal.channel_id == "C1"
    assert planner.get_event(event.event_id).threshold.notified


def test_failed_notification_keeps_the_vote(tmp_path):
    notifier = RecordingNotifier(fail=True)
    planner = make_planner(tmp_path, [notifier])
    event = planner.create_event("忘年会", SLOTS, expected_participants=1)
    outcome = planner.submit_vote(event.event_id, "Ann", {SAT: True})
    assert outcome.majority_reached
    assert len(outcome.notification_errors) == 1
    assert planner.get_event(event.event_id).total_responded == 1

    # a later vote does not fire again; redelivery is explicit
    assert not planner.submit_vote(event.event_id, "Ben", {SAT: True}).majority_reached
    notifier.fail = False
    assert planner.redeliver(event.event_id) == []
    assert len(notifier.signals) == 1
    planner.redeliver(event.event_id)
    assert len(notifier.signals) == 1


def test_write_conflict_is_retried_without_losing_the_other_vote(tmp_path, monkeypatch):
    planner = make_planner(tmp_path)
    event = planner.create_event("忘年会", SLOTS, expected_participants=10)
    real_save = dao.save_event
    calls = {"n": 0}

    def racing_save(db_path, ev, expected_version):
        calls["n"] += 1
        if calls["n"] == 1:
            # another process writes between our read and our write
            other = dao.load_event(db_path, ev.event_id)
            other = apply_vote(other, Participant("Zoe", {FRI: Availability.AVAILABLE}))
            real_save(db_path, other, other.version)
        return real_save(db_path, ev, expected_version)

    monkeypatch.setattr(dao, "save_event", racing_save)
    outcome = planner.submit_vote(event.event_id, "Ann", {FRI: True})
    assert calls["n"] == 2
    assert [p.name for p in outcome.event.participants] == ["Zoe", "Ann"]
    assert outcome.event.date_options[0].votes == 2


def test_conflict_surfaces_after_retries(tmp_path, monkeypatch):
    planner = make_planner(tmp_path, max_write_retries=2)
    event = planner.create_event("忘年会", SLOTS)

    def always_conflict(db_path, ev, expected_version):
        raise ConflictError(ev.event_id, expected_version)

    monkeypatch.setattr(dao, "save_event", always_conflict)
    with pytest.raises(ConflictError):
        planner.submit_vote(event.event_id, "Ann", {FRI: True})
    monkeypatch.undo()
    assert planner.get_event(event.event_id).total_responded == 0


def test_confirm_slot_votes_for_one_slot(tmp_path):
    planner = make_planner(tmp_path)
    event = planner.create_event("忘年会", SLOTS)
    outcome = planner.confirm_slot(event.event_id, "Ann", SAT, participant_email="ann@example.com")
    ann = outcome.event.participants[0]
    assert ann.availabilities == {FRI: Availability.UNAVAILABLE, SAT: Availability.AVAILABLE}
    assert ann.email == "ann@example.com"
    with pytest.raises(ValidationError):
        planner.confirm_slot(event.event_id, "Ann", "2030-01-01")


def test_survey_waits_for_the_fallback_minimum(tmp_path):
    planner = make_planner(tmp_path)
    event = planner.create_event("飲み会", SLOTS, mode=EventMode.PREFERENCE_SURVEY)
    first = planner.submit_preferences(event.event_id, "Ann", {"day_preference": "weekend"})
    assert first.recommendation is None
    assert first.waiting == InsufficientData(current=1, required=2)
    assert isinstance(planner.recommend(event.event_id, force=True), InsufficientData)

    second = planner.submit_preferences(event.event_id, "Ben", {"day_preference": "friday"})
    assert second.waiting is None
    assert second.recommendation.best.option.label == FRI
    assert second.recommendation.confidence == 50


def test_survey_waits_for_expected_participants_unless_forced(tmp_path):
    planner = make_planner(tmp_path)
    event = planner.create_event(
        "飲み会", SLOTS, expected_participants=3, mode=EventMode.PREFERENCE_SURVEY
    )
    planner.submit_preferences(event.event_id, "Ann", {"day_preference": "weekend"})
    outcome = planner.submit_preferences(event.event_id, "Ben", {"day_preference": "weekend"})
    assert outcome.waiting.missing == 1
    rec = planner.recommend(event.event_id, force=True)
    assert isinstance(rec, Recommendation)
    assert rec.best.option.label == SAT
    assert rec.preferred_by == 2


def test_recommendation_cache_follows_the_version(tmp_path):
    planner = make_planner(tmp_path)
    event = planner.create_event("飲み会", SLOTS, mode=EventMode.PREFERENCE_SURVEY)
    planner.submit_preferences(event.event_id, "Ann", {"day_preference": "weekend"})
    outcome = planner.submit_preferences(event.event_id, "Ben", {"day_preference": "weekend"})
    assert planner.cache.get(event.event_id, outcome.event.version) is outcome.recommendation
    assert planner.recommend(event.event_id) is outcome.recommendation

    changed = planner.submit_preferences(event.event_id, "Ben", {"day_preference": "friday"})
    assert changed.recommendation is not outcome.recommendation
    assert changed.recommendation.preferred_by == 1


def test_survey_answers_are_validated(tmp_path):
    planner = make_planner(tmp_path)
    direct = planner.create_event("忘年会", SLOTS)
    with pytest.raises(ValidationError):
        planner.submit_preferences(direct.event_id, "Ann", {"day_preference": "weekend"})
    survey = planner.create_event("飲み会", SLOTS, mode=EventMode.PREFERENCE_SURVEY)
    with pytest.raises(ValidationError):
        planner.submit_preferences(survey.event_id, "Ann", {"day_preference": "  "})
    with pytest.raises(ValidationError):
        planner.submit_preferences(survey.event_id, "Ann", ["weekend"])


def test_unexpected_notifier_error_does_not_stop_the_others(tmp_path):
    recorder = RecordingNotifier()
    planner = make_planner(tmp_path, [BrokenNotifier(), recorder])
    event = planner.create_event("忘年会", SLOTS, expected_participants=1)
    outcome = planner.submit_vote(event.event_id, "Ann", {SAT: True})
    assert outcome.majority_reached
    assert len(outcome.notification_errors) == 1
    assert outcome.notification_errors[0].channel == "broken"
    assert len(recorder.signals) == 1
    assert planner.get_event(event.event_id).total_responded == 1
    # only the broken channel is left for redelivery
    planner.redeliver(event.event_id)
    assert len(recorder.signals) == 1


def test_lowering_expected_participants_fires_the_signal(tmp_path):
    notifier = RecordingNotifier()
    planner = make_planner(tmp_path, [notifier])
    event = planner.create_event("忘年会", SLOTS, expected_participants=10, channel_id="C1")
    for name in ("Ann", "Ben", "Cy"):
        assert not planner.submit_vote(event.event_id, name, {FRI: True}).majority_reached

    outcome = planner.update_event(event.event_id, expected_participants=4)
    assert outcome.majority_reached
    assert outcome.signal.new_rate == 75
    assert outcome.event.expected_participants == 4
    assert len(notifier.signals) == 1
    assert planner.get_event(event.event_id).threshold.notified


def test_update_on_notified_event_does_not_fire_again(tmp_path):
    notifier = RecordingNotifier()
    planner = make_planner(tmp_path, [notifier])
    event = planner.create_event("忘年会", SLOTS, expected_participants=1)
    assert planner.submit_vote(event.event_id, "Ann", {SAT: True}).majority_reached

    planner.update_event(event.event_id, expected_participants=10)
    outcome = planner.update_event(event.event_id, expected_participants=1)
    assert not outcome.majority_reached
    assert len(notifier.signals) == 1


def test_update_event_edits_location_and_title(tmp_path):
    planner = make_planner(tmp_path)
    event = planner.create_event("忘年会", SLOTS)
    outcome = planner.update_event(event.event_id, location=" 渋谷 ", title="新年会")
    stored = planner.get_event(event.event_id)
    assert (stored.title, stored.location) == ("新年会", "渋谷")
    assert stored.version == outcome.event.version == 2
    assert not outcome.majority_reached


def test_invalid_update_leaves_event_untouched(tmp_path):
    planner = make_planner(tmp_path)
    event = planner.create_event("忘年会", SLOTS, expected_participants=3)
    with pytest.raises(ValidationError):
        planner.update_event(event.event_id, expected_participants=-1)
    with pytest.raises(ValidationError):
        planner.update_event(event.event_id, title="  ")
    with pytest.raises(EventNotFound):
        planner.update_event("missing", expected_participants=2)
    stored = planner.get_event(event.event_id)
    assert stored.version == 1
    assert stored.expected_participants == 3


def test_concurrent_votes_both_land(tmp_path):
    planner = make_planner(tmp_path)
    event = planner.create_event("忘年会", SLOTS, expected_participants=10)
    start = threading.Barrier(2)
    failures = []

    def vote(name):
        start.wait()
        try:
            planner.submit_vote(event.event_id, name, {FRI: True})
        except Exception as e:  # surfaced by the assert below
            failures.append(e)

    threads = [threading.Thread(target=vote, args=(n,)) for n in ("Ann", "Ben")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert failures == []
    stored = planner.get_event(event.event_id)
    assert {p.name for p in stored.participants} == {"Ann", "Ben"}
    assert stored.date_options[0].votes == 2
    assert stored.version == 3


def test_event_locks_are_released_after_writes(tmp_path):
    planner = make_planner(tmp_path)
    event = planner.create_event("忘年会", SLOTS)
    planner.submit_vote(event.event_id, "Ann", {FRI: True})
    planner.update_event(event.event_id, location="渋谷")
    with pytest.raises(ValidationError):
        planner.submit_vote(event.event_id, "Ben", {FRI: "maybe"})
    assert planner._locks == {}
