import os, sys
from datetime import date

sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from datevote.models.events import DateOption, ThresholdState
from datevote.services.threshold import (
    advance,
    best_slot_by_votes,
    check_threshold_crossing,
    make_delivery_key,
    participation_rate,
    state_from_legacy_rate,
)


def run(rates, threshold=70):
    state = ThresholdState()
    fired = []
    for rate in rates:
        state, hit = advance(state, rate, threshold)
        fired.append(hit)
    return state, fired


def test_fires_once_even_after_dip():
    state, fired = run([0, 50, 72, 65, 80])
    assert fired == [False, False, True, False, False]
    assert state.notified
    assert state.last_rate == 80


def test_reaching_exactly_the_threshold_fires():
    rates = [participation_rate(n, 10) for n in (6, 7, 8)]
    assert rates == [60, 70, 80]
    _, fired = run(rates)
    assert fired == [False, True, False]


def test_first_write_above_threshold_fires():
    _, fired = run([100])
    assert fired == [True]


def test_crossing_is_strict_on_the_previous_side():
    assert check_threshold_crossing(69, 70)
    assert not check_threshold_crossing(70, 80)
    assert not check_threshold_crossing(50, 69)


def test_unnotified_state_with_high_rate_still_fires():
    state, hit = advance(ThresholdState(last_rate=80, notified=False), 85, 70)
    assert hit
    assert state.notified


def test_legacy_rate_maps_to_notified():
    assert state_from_legacy_rate(75).notified
    assert state_from_legacy_rate(70).notified
    assert not state_from_legacy_rate(50).notified


def test_no_expected_participants_means_zero_rate():
    assert participation_rate(5, 0) == 0
    _, fired = run([participation_rate(5, 0)])
    assert fired == [False]


def test_best_slot_ties_resolve_to_first():
    a = DateOption("a", "A", date(2026, 11, 6), votes=3)
    b = DateOption("b", "B", date(2026, 11, 7), votes=3)
    c = DateOption("c", "C", date(2026, 11, 8), votes=1)
    assert best_slot_by_votes([c, a, b]) is a
    assert best_slot_by_votes([]) is None


def test_delivery_key_is_stable():
    assert make_delivery_key("e1") == make_delivery_key("e1")
    assert make_delivery_key("e1") != make_delivery_key("e2")
    assert make_delivery_key("e1", "majority:slack") != make_delivery_key("e1", "majority:email")
