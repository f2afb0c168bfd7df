"""
Attention Alarm

Sounds an audible alert when the user keeps looking away from the screen
while tracking is active. A sliding window of not-looking frames provides
hysteresis so single noisy frames neither start nor stop the alarm.
"""

import os
from collections import deque

os.environ.setdefault('PYGAME_HIDE_SUPPORT_PROMPT', '1')
import pygame

import config


class AlarmController:
    """Manages the audio alert with window-based hysteresis."""

    def __init__(self, sound_path=config.ALERT_SOUND_PATH, volume=config.ALARM_VOLUME,
                 enabled=config.ENABLE_AUDIO, window_size=config.ALARM_WINDOW_SIZE,
                 trigger_threshold=config.ALARM_TRIGGER_THRESHOLD,
                 min_duration_frames=config.ALARM_MIN_DURATION_FRAMES,
                 stop_threshold=config.ALARM_STOP_THRESHOLD):
        """
        Args:
            sound_path: Path to alert WAV file
            volume: Alert volume (0.0 to 1.0)
            enabled: False keeps the state machine running without audio
            window_size: Frames in the not-looking window
            trigger_threshold: Not-looking frames in window that start the alarm
            min_duration_frames: Minimum frames the alarm stays on
            stop_threshold: Consecutive looking frames needed to stop it
        """
        self.audio_enabled = enabled
        self.sound = None
        self.is_playing = False
        self.trigger_threshold = trigger_threshold
        self.min_duration_frames = min_duration_frames
        self.stop_threshold = stop_threshold
        self.window_size = window_size

        self.alarm_active = False
        self.attentive_counter = 0
        self.frames_since_triggered = 0
        self.alarm_reason = ""
        self.away_window = deque(maxlen=window_size)

        if not self.audio_enabled:
            print("[INFO] Audio alarm disabled")
            return

        try:
            pygame.mixer.init(frequency=44100, size=-16, channels=2, buffer=512)
        except pygame.error as e:
            print(f"[WARNING] Could not initialize audio: {e}")
            self.audio_enabled = False
            return

        try:
            self.sound = pygame.mixer.Sound(sound_path)
            self.sound.set_volume(volume)
            print(f"[OK] Alert sound loaded: {os.path.basename(sound_path)}")
        except (FileNotFoundError, pygame.error) as e:
            print(f"[WARNING] Alert sound unavailable ({sound_path}): {e}")
            self.audio_enabled = False

    def update_state(self, not_looking, reason="NOT LOOKING AT SCREEN"):
        """
        Feed one frame's attention state.

        Returns:
            True while the alarm is active.
        """
        self.away_window.append(1 if not_looking else 0)
        away_count = sum(self.away_window)

        if away_count >= self.trigger_threshold:
            if not self.alarm_active:
                self.alarm_active = True
                self.frames_since_triggered = 0
                self.alarm_reason = reason
                print(f"[ALARM] {reason}")
            self.attentive_counter = 0
            self.frames_since_triggered += 1
        elif self.alarm_active:
            self.attentive_counter = self.attentive_counter + 1 if not not_looking else 0
            self.frames_since_triggered += 1
            if (self.frames_since_triggered >= self.min_duration_frames and
                    self.attentive_counter >= self.stop_threshold):
                self.alarm_active = False
                self.alarm_reason = ""
                print("[INFO] Alarm stopped")

        if self.alarm_active:
            self._play()
        else:
            self._stop()
        return self.alarm_active

    def reset(self):
        """Silence and clear the window (tracking stopped or mode switched)."""
        self.away_window.clear()
        self.alarm_active = False
        self.attentive_counter = 0
        self.frames_since_triggered = 0
        self.alarm_reason = ""
        self._stop()

    def _play(self):
        if self.sound and not self.is_playing:
            self.sound.play(loops=-1)
            self.is_playing = True

    def _stop(self):
        if self.sound and self.is_playing:
            self.sound.stop()
            self.is_playing = False

    def cleanup(self):
        if self.audio_enabled:
            if self.sound:
                self.sound.stop()
            pygame.mixer.stop()
            pygame.mixer.quit()
            print("[INFO] Audio cleaned up")
