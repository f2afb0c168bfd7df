"""
Tests for the temporal persistence trigger: recurrence counting, history
pruning, cooldown debounce and blocking while verification is pending.
"""

import numpy as np

from line_detector import LineCluster, LineObservation
from persistence_trigger import LineHistoryBuffer, PersistenceTrigger

FRAME_MS = 33


def _cluster(rho, theta):
    cluster = LineCluster()
    cluster.add(LineObservation(rho, theta))
    return cluster


def _feed(trigger, clusters, start_ms, frames, pending=False):
    fired = []
    for i in range(frames):
        now = start_ms + i * FRAME_MS
        result = trigger.evaluate(clusters, now, pending)
        if result is not None:
            fired.append((now, result))
    return fired


def test_fires_once_after_threshold():
    trigger = PersistenceTrigger(recurrence_threshold=30, cooldown_ms=10000)
    fired = _feed(trigger, [_cluster(100, 0.0)], 0, 31)

    assert len(fired) == 1
    # 30 prior entries are needed, so the 31st frame is the first that can fire
    assert fired[0][0] == 30 * FRAME_MS
    assert trigger.last_trigger_ms == 30 * FRAME_MS


def test_cooldown_suppresses_second_burst():
    trigger = PersistenceTrigger(recurrence_threshold=30, cooldown_ms=10000)
    assert len(_feed(trigger, [_cluster(100, 0.0)], 0, 31)) == 1
    assert _feed(trigger, [_cluster(100, 0.0)], 31 * FRAME_MS, 60) == []
    assert trigger.get_stats()['blocked'] > 0

    # After the cooldown the same persistent line can fire again
    assert len(_feed(trigger, [_cluster(100, 0.0)], 11000, 100)) == 1


def test_fast_cooldown():
    trigger = PersistenceTrigger(recurrence_threshold=30, cooldown_ms=3000)
    fired = _feed(trigger, [_cluster(100, 0.0)], 0, 200)
    times = [t for t, _ in fired]
    assert len(times) >= 2
    assert all(b - a >= 3000 for a, b in zip(times, times[1:]))


def test_pending_verification_blocks():
    trigger = PersistenceTrigger(recurrence_threshold=30)
    assert _feed(trigger, [_cluster(100, 0.0)], 0, 60, pending=True) == []
    assert trigger.last_trigger_ms is None

    fired = trigger.evaluate([_cluster(100, 0.0)], 60 * FRAME_MS, verification_pending=False)
    assert fired is not None


def test_all_clusters_are_recorded():
    trigger = PersistenceTrigger(recurrence_threshold=1)
    clusters = [_cluster(100, 0.0), _cluster(200, np.pi / 2), _cluster(300, 0.0)]
    trigger.evaluate(clusters, 0)
    assert len(trigger.history) == 3

    # Fires on the first qualifying cluster but still records every cluster
    fired = trigger.evaluate(clusters, FRAME_MS)
    assert fired is clusters[0]
    assert len(trigger.history) == 6


def test_unrelated_lines_do_not_accumulate():
    trigger = PersistenceTrigger(recurrence_threshold=30)
    fired = []
    for i in range(100):
        # Line sweeps across the frame, never recurring in one place
        result = trigger.evaluate([_cluster(10 + i * 25, 0.0)], i * FRAME_MS)
        if result is not None:
            fired.append(result)
    assert fired == []


def test_history_prunes_old_entries():
    history = LineHistoryBuffer(window_ms=3000)
    for t in range(0, 5000, 500):
        history.append(100, 0.0, t)
    history.prune(5000)
    assert len(history) == 6
    assert all(e.timestamp_ms >= 2000 for e in history)
    assert history.count_near(105, 0.01, 20, np.radians(15)) == 6
    assert history.count_near(125, 0.0, 20, np.radians(15)) == 0


def test_reset_clears_history_and_cooldown():
    trigger = PersistenceTrigger(recurrence_threshold=30)
    _feed(trigger, [_cluster(100, 0.0)], 0, 31)
    trigger.reset()
    assert len(trigger.history) == 0
    assert trigger.last_trigger_ms is None
    assert trigger.cooldown_elapsed(0)


if __name__ == "__main__":
    for name, fn in list(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
            print(f"  ✓ {name}")
    print("All persistence trigger tests passed! ✓")
