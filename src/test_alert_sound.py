"""
Test script for the attention alarm hysteresis.

Runs with audio disabled so no sound device is needed; the window logic is
the same either way.
"""

from alert_sound import AlarmController


def _alarm():
    return AlarmController(enabled=False, window_size=10, trigger_threshold=5,
                           min_duration_frames=3, stop_threshold=2)


def test_single_glances_do_not_trigger():
    alarm = _alarm()
    for i in range(50):
        # One away frame in every three never fills the window
        assert not alarm.update_state(i % 3 == 0)


def test_trigger_and_release():
    alarm = _alarm()
    states = [alarm.update_state(True) for _ in range(5)]
    assert states == [False, False, False, False, True]
    assert alarm.alarm_reason == "NOT LOOKING AT SCREEN"

    # Away frames still fill the window for the next 5 looking frames
    for _ in range(5):
        assert alarm.update_state(False)
    assert alarm.update_state(False)
    assert not alarm.update_state(False)
    assert alarm.alarm_reason == ""


def test_reset_silences():
    alarm = _alarm()
    for _ in range(5):
        alarm.update_state(True)
    assert alarm.alarm_active
    alarm.reset()
    assert not alarm.alarm_active
    assert not alarm.update_state(True)


def test_disabled_audio_has_no_sound():
    alarm = _alarm()
    assert not alarm.audio_enabled
    assert alarm.sound is None
    alarm.cleanup()


if __name__ == "__main__":
    print("Testing attention alarm...")
    for name, fn in list(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
            print(f"  ✓ {name}")
    print("All alarm tests passed! ✓")
