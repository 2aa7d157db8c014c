from concurrent.futures import ThreadPoolExecutor
import threading

import pytest

from failwatch.tracker import ThresholdCrossing, WindowTracker

WINDOW = 600.0
T0 = 1_700_000_000.0


def _tracker(**kwargs) -> WindowTracker:
    params = {"max_attempts": 5, "window_seconds": WINDOW}
    params.update(kwargs)
    return WindowTracker(**params)


def test_fewer_failures_than_threshold_never_cross():
    tracker = _tracker()
    results = [tracker.record_and_check("A", T0 + i * 10) for i in range(4)]
    assert results == [None, None, None, None]
    assert tracker.count("A", T0 + 40) == 4


def test_fifth_failure_crosses_and_clears_window():
    tracker = _tracker()
    for i in range(4):
        assert tracker.record_and_check("A", T0 + i * 30) is None

    crossing = tracker.record_and_check("A", T0 + 120)
    assert crossing == ThresholdCrossing(origin="A", count_at_crossing=5, detected_at=T0 + 120)
    assert tracker.count("A", T0 + 120) == 0

    # the next failure inside the original span starts a new burst
    assert tracker.record_and_check("A", T0 + 150) is None
    assert tracker.count("A", T0 + 150) == 1


def test_failures_spread_past_the_window_do_not_cross():
    tracker = _tracker()
    for minute in range(4):
        tracker.record_and_check("B", T0 + minute * 60)

    # idle for seven minutes after the last failure
    assert tracker.record_and_check("B", T0 + 3 * 60 + 7 * 60) is None
    assert tracker.count("B", T0 + 600) < 5


def test_old_burst_fully_ages_out():
    tracker = _tracker()
    for i in range(4):
        tracker.record_and_check("B", T0 + i)

    assert tracker.record_and_check("B", T0 + 3 + WINDOW + 1) is None
    assert tracker.count("B", T0 + 3 + WINDOW + 1) == 1


def test_entry_exactly_window_old_is_expired():
    tracker = _tracker()
    tracker.record_failure("A", T0)
    for i in range(1, 4):
        tracker.record_failure("A", T0 + i)

    assert tracker.record_failure("A", T0 + WINDOW) is False
    assert tracker.prune("A", T0 + WINDOW) == [T0 + 1, T0 + 2, T0 + 3, T0 + WINDOW]


def test_entry_just_inside_window_still_counts():
    tracker = _tracker()
    for i in range(4):
        tracker.record_failure("A", T0 + i)

    assert tracker.record_failure("A", T0 + WINDOW - 0.001) is True


def test_record_failure_does_not_clear_window():
    tracker = _tracker(max_attempts=2)
    assert tracker.record_failure("A", T0) is False
    assert tracker.record_failure("A", T0 + 1) is True
    assert tracker.record_failure("A", T0 + 2) is True
    assert tracker.count("A", T0 + 2) == 3


def test_prune_is_idempotent():
    tracker = _tracker()
    for i in range(3):
        tracker.record_failure("A", T0 + i * 200)

    first = tracker.prune("A", T0 + 700)
    second = tracker.prune("A", T0 + 700)
    assert first == second == [T0 + 200, T0 + 400]


def test_reset_is_idempotent_and_tolerates_unknown_origins():
    tracker = _tracker()
    tracker.record_failure("A", T0)
    tracker.reset("A")
    tracker.reset("A")
    tracker.reset("never-seen")
    assert tracker.count("A", T0) == 0
    assert tracker.prune("never-seen", T0) == []


def test_origins_are_independent():
    tracker = _tracker()
    for i in range(4):
        tracker.record_and_check("10.0.0.1", T0 + i)
        tracker.record_and_check("10.0.0.2", T0 + i)

    crossing = tracker.record_and_check("10.0.0.1", T0 + 5)
    assert crossing is not None
    assert crossing.origin == "10.0.0.1"
    assert tracker.count("10.0.0.2", T0 + 5) == 4


def test_sweep_evicts_only_idle_origins():
    tracker = _tracker(shards=4)
    tracker.record_failure("stale", T0)
    tracker.record_failure("fresh", T0 + 500)
    assert tracker.tracked_origins() == 2

    assert tracker.sweep(T0 + WINDOW + 1) == 1
    assert tracker.tracked_origins() == 1
    assert tracker.count("fresh", T0 + WINDOW + 1) == 1


def test_invalid_parameters_rejected():
    with pytest.raises(ValueError):
        WindowTracker(max_attempts=0)
    with pytest.raises(ValueError):
        WindowTracker(window_seconds=0)


def test_concurrent_threshold_burst_yields_exactly_one_crossing():
    tracker = _tracker()
    barrier = threading.Barrier(5)

    def fail_once(_):
        barrier.wait()
        return tracker.record_and_check("A", T0)

    with ThreadPoolExecutor(max_workers=5) as pool:
        results = list(pool.map(fail_once, range(5)))

    crossings = [result for result in results if result is not None]
    assert len(crossings) == 1
    assert crossings[0].count_at_crossing == 5
    assert tracker.count("A", T0) == 0


def test_concurrent_failures_never_lose_counts():
    tracker = _tracker()
    barrier = threading.Barrier(8)

    def fail_many(_):
        barrier.wait()
        return [tracker.record_and_check("A", T0) for _ in range(25)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        batches = list(pool.map(fail_many, range(8)))

    crossings = [item for batch in batches for item in batch if item is not None]
    # 200 failures at threshold 5, cleared after each crossing
    assert len(crossings) == 40
    assert tracker.count("A", T0) == 0


def test_late_arriving_older_failure_is_kept_in_time_order():
    tracker = _tracker()
    tracker.record_failure("A", T0 + 1)
    tracker.record_failure("A", T0)

    assert tracker.prune("A", T0 + 2) == [T0, T0 + 1]
    assert tracker.prune("A", T0 + WINDOW + 0.5) == [T0 + 1]
