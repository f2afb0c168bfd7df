"""
Gaze & Work-Check Monitoring System
Main Application

Modes (switch with keys):
    d - default view (mirrored camera only)
    g - gaze tracking: head pose + gaze vectors + attention votes
    c - check work: background-subtraction lines -> persistence trigger
        -> document verification oracle

Other keys:
    t - start/stop attention tracking (gaze mode)
    e - toggle edge view (check mode)
    l - toggle console logging
    q - quit
"""

import argparse
import time
import cv2

import config
from alert_sound import AlarmController
from attention_classifier import AttentionClassifier
from gaze_estimator import GazeEstimator, draw_eye_landmarks, draw_gaze_lines
from line_detector import BackgroundLineDetector, draw_line_clusters, edge_view
from persistence_trigger import PersistenceTrigger
from sessions import CheckSession, FrameOutcome, GazeSession, Mode, ModeController
from verification import EventLog, HttpDocumentOracle, Validity, VerificationCoordinator

WINDOW_NAME = 'Gaze & Work-Check Monitor'
ENABLE_CONSOLE_LOGGING = config.ENABLE_CONSOLE_LOGGING

VALIDITY_COLORS = {
    Validity.PENDING: (0, 255, 255),
    Validity.VALID: (0, 255, 0),
    Validity.INVALID: (0, 0, 255),
}


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Real-time gaze tracking and work-check monitor")
    parser.add_argument('--camera', type=int, default=config.CAMERA_INDEX, help='Camera index')
    parser.add_argument('--width', type=int, default=config.FRAME_WIDTH)
    parser.add_argument('--height', type=int, default=config.FRAME_HEIGHT)
    parser.add_argument('--model', default=config.FACE_MODEL_PATH, help='face_landmarker.task path')
    parser.add_argument('--oracle-url', default=config.ORACLE_URL, help='Verification service base URL')
    parser.add_argument('--cooldown-ms', type=float, default=config.TRIGGER_COOLDOWN_MS,
                        help='Minimum time between detection events')
    parser.add_argument('--fast', action='store_true',
                        help=f'Use the short {config.FAST_TRIGGER_COOLDOWN_MS:.0f}ms cooldown')
    parser.add_argument('--mode', choices=[m.value for m in Mode], default=Mode.DEFAULT.value)
    parser.add_argument('--no-audio', action='store_true', help='Disable the attention alarm sound')
    return parser.parse_args(argv)


def _no_landmarks(frame, timestamp_ms):
    return []


def load_landmark_source(model_path):
    """Returns (detector, closer). Falls back to a no-face detector if unavailable."""
    try:
        from landmark_source import FaceLandmarkSource
        source = FaceLandmarkSource(model_path)
        print("[OK] MediaPipe FaceLandmarker initialized")
        return source, source.close
    except (FileNotFoundError, RuntimeError, ValueError) as e:
        print(f"[WARNING] Landmark detector unavailable: {e}")
        print("          Gaze mode will report no face.")
        return _no_landmarks, lambda: None


# ============================================
# DISPLAY
# ============================================

def add_text_bg(frame, text, pos, scale=0.5, color=(255, 255, 255), thickness=1,
                bg_color=(0, 0, 0), alpha=0.6):
    font = cv2.FONT_HERSHEY_SIMPLEX
    (text_w, text_h), _ = cv2.getTextSize(text, font, scale, thickness)
    x, y = pos
    overlay = frame.copy()
    cv2.rectangle(overlay, (x - 5, y - text_h - 5), (x + text_w + 5, y + 5), bg_color, -1)
    cv2.addWeighted(overlay, alpha, frame, 1 - alpha, 0, frame)
    cv2.putText(frame, text, pos, font, scale, color, thickness)


def draw_gaze_view(frame, gaze, session, now_ms):
    h, w = frame.shape[:2]

    if gaze is not None and gaze.face_found:
        draw_eye_landmarks(frame, gaze.landmarks, config.LEFT_EYE_CONTOUR, config.LEFT_PUPIL_INDEX, (48, 255, 48))
        draw_eye_landmarks(frame, gaze.landmarks, config.RIGHT_EYE_CONTOUR, config.RIGHT_PUPIL_INDEX, (48, 48, 255))
        draw_gaze_lines(frame, gaze.result)

    if gaze is None or not gaze.face_found:
        add_text_bg(frame, "No face", (w - 200, 30), 0.6, (0, 165, 255), 2)
    elif gaze.vote is None:
        add_text_bg(frame, "Gaze unavailable", (w - 200, 30), 0.6, (0, 165, 255), 2)
    else:
        looking = gaze.vote.looking
        add_text_bg(frame, f"Looking: {looking}", (w - 200, 30), 0.6, (255, 0, 0), 2)
        add_text_bg(frame, f"Dev: {gaze.vote.magnitude:.0f}px", (w - 200, 55), 0.4, (200, 200, 200), 1)
        if not looking:
            cv2.rectangle(frame, (0, 0), (w - 1, h - 1), (0, 0, 255), 12)

    classifier = session.classifier
    if classifier.is_tracking:
        secs = int(classifier.elapsed_ms(now_ms) // 1000)
        add_text_bg(frame, f"Tracking ({secs}s) - t to stop", (10, h - 20), 0.5, (0, 255, 0), 1)
        if gaze is not None and gaze.alarm_active:
            add_text_bg(frame, "LOOK AT THE SCREEN", (w // 2 - 120, h // 2), 0.8, (0, 0, 255), 2)
    else:
        add_text_bg(frame, "t to start tracking", (10, h - 20), 0.5, (200, 200, 200), 1)
        log = classifier.tracking_log
        if log:
            add_text_bg(frame, "Tracking Data", (10, 60), 0.5, (255, 255, 0), 1)
            for i, record in enumerate(log[-10:]):
                color = (0, 255, 0) if record.looking else (0, 0, 255)
                add_text_bg(frame, record.describe(), (10, 82 + i * 20), 0.4, color, 1)


def draw_check_view(frame, check, coordinator, show_edges):
    """Returns the image to display (edge view replaces the camera image)."""
    display = frame
    if check is not None:
        if show_edges and check.detection.mask is not None:
            display = edge_view(check.detection.mask)
        draw_line_clusters(display, check.detection.clusters)
        if check.detection.discarded:
            add_text_bg(display, f"Noisy frame ({check.detection.raw_count} lines)", (10, 60), 0.4, (0, 165, 255), 1)

    h, w = display.shape[:2]
    for i, event in enumerate(reversed(coordinator.event_log.recent())):
        stamp = time.strftime("%H:%M:%S", time.localtime(event.timestamp_ms / 1000.0))
        text = f"{stamp} {event.message} [{event.validity.value}] {event.result_text}"[:70]
        add_text_bg(display, text, (10, h - 20 - i * 22), 0.4, VALIDITY_COLORS[event.validity], 1)

    events = coordinator.event_log.recent(1)
    if events and events[0].captured_frame is not None:
        still = events[0].captured_frame
        thumb_w = w // 4
        thumb_h = int(still.shape[0] * thumb_w / still.shape[1])
        thumb = cv2.resize(still, (thumb_w, thumb_h))
        display[10:10 + thumb_h, w - thumb_w - 10:w - 10] = thumb
        cv2.rectangle(display, (w - thumb_w - 11, 9), (w - 9, 10 + thumb_h), (255, 255, 255), 1)
    return display


def draw_mode_banner(frame, mode, fps):
    add_text_bg(frame, f"{mode.value.upper()}  FPS: {fps:.1f}", (10, 25), 0.6, (255, 255, 255), 2)


# ============================================
# CONSOLE LOGGER
# ============================================

class ConsoleLogger:
    """Console logging for demo monitoring."""

    def __init__(self):
        self.frame_count = 0
        self.last_looking = None

    def log(self, fps, outcome: FrameOutcome, modes: ModeController):
        self.frame_count += 1

        looking = None
        if outcome.gaze is not None and outcome.gaze.vote is not None:
            looking = outcome.gaze.vote.looking
        state_changed = (config.CONSOLE_LOG_STATE_CHANGES and looking is not None
                         and looking != self.last_looking)
        if looking is not None:
            self.last_looking = looking

        new_event = outcome.check is not None and outcome.check.event is not None
        periodic = ENABLE_CONSOLE_LOGGING and self.frame_count % config.CONSOLE_LOG_EVERY_N_FRAMES == 0

        if new_event:
            print(f"[EVENT] {outcome.check.event.message} - verifying...")
        for event in outcome.resolved:
            print(f"[EVENT] {event.message}: {event.validity.value} - {event.result_text}")
        if ENABLE_CONSOLE_LOGGING and (periodic or state_changed):
            self._print(fps, outcome, modes, state_changed)

    def _print(self, fps, outcome, modes, state_changed):
        print(f"\n=== FRAME {self.frame_count} @ {fps:.1f} FPS [{outcome.mode.value}] ===")
        gaze = outcome.gaze
        if gaze is not None:
            if gaze.vote is not None:
                mark = "*" if state_changed else ""
                print(f"Gaze: looking={gaze.vote.looking}{mark} dev={gaze.vote.magnitude:.1f}px")
            elif gaze.result is not None:
                print(f"Gaze: unavailable ({gaze.result.reason})")
            else:
                print("Gaze: no face")
            print(f"Tracking: {modes.gaze_session.classifier.get_stats()}")
        check = outcome.check
        if check is not None:
            print(f"Lines: raw={check.detection.raw_count} clusters={len(check.detection.clusters)}"
                  f"{' (discarded)' if check.detection.discarded else ''}")
            print(f"Trigger: {modes.check_session.trigger.get_stats()}")


# ============================================
# MAIN
# ============================================

def main(argv=None):
    global ENABLE_CONSOLE_LOGGING
    args = parse_args(argv)

    print("=" * 70)
    print("GAZE & WORK-CHECK MONITORING SYSTEM")
    print("=" * 70)

    print("\n[INIT] Starting camera...")
    cap = cv2.VideoCapture(args.camera)
    cap.set(cv2.CAP_PROP_FRAME_WIDTH, args.width)
    cap.set(cv2.CAP_PROP_FRAME_HEIGHT, args.height)
    cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

    if not cap.isOpened():
        print("[ERROR] Cannot open camera")
        return 1
    print("[OK] Camera initialized")

    detect, close_detector = load_landmark_source(args.model)

    alarm = AlarmController(enabled=config.ENABLE_AUDIO and not args.no_audio)
    cooldown = config.FAST_TRIGGER_COOLDOWN_MS if args.fast else args.cooldown_ms

    coordinator = VerificationCoordinator(HttpDocumentOracle(args.oracle_url), EventLog(), verbose=False)
    coordinator.start()
    print(f"[OK] Verification oracle: {args.oracle_url}")

    gaze_session = GazeSession(detect, GazeEstimator(), AttentionClassifier(), alarm)
    check_session = CheckSession(
        coordinator,
        BackgroundLineDetector(),
        PersistenceTrigger(cooldown_ms=cooldown),
    )
    print(f"[OK] Pipelines initialized (trigger cooldown {cooldown / 1000:.0f}s)")
    print("\nKeys: d/g/c modes, t tracking, e edges, l logging, q quit\n")

    console = ConsoleLogger()
    show_edges = False
    prev_time = time.time()
    fps = 0.0

    with ModeController(gaze_session, check_session, coordinator) as modes:
        modes.switch(Mode(args.mode))

        while True:
            ret, frame = cap.read()
            if not ret:
                # Camera not ready: skip this cycle
                if cv2.waitKey(10) & 0xFF == ord('q'):
                    break
                continue

            if config.MIRROR_FRAME:
                frame = cv2.flip(frame, 1)
            now_ms = int(time.time() * 1000)

            outcome = modes.process_frame(frame, now_ms)
            if outcome is None:
                continue

            curr_time = time.time()
            fps = 1 / (curr_time - prev_time) if (curr_time - prev_time) > 0 else fps
            prev_time = curr_time

            display = frame
            if modes.mode is Mode.GAZE:
                draw_gaze_view(display, outcome.gaze, gaze_session, now_ms)
            elif modes.mode is Mode.CHECK:
                display = draw_check_view(frame, outcome.check, coordinator, show_edges)
            draw_mode_banner(display, modes.mode, fps)

            console.log(fps, outcome, modes)
            cv2.imshow(WINDOW_NAME, display)

            key = cv2.waitKey(1) & 0xFF
            if key == ord('q'):
                print("\n[STOPPING] Terminated by user")
                break
            elif key == ord('d'):
                modes.switch(Mode.DEFAULT)
            elif key == ord('g'):
                modes.switch(Mode.GAZE)
            elif key == ord('c'):
                modes.switch(Mode.CHECK)
            elif key == ord('t') and modes.mode is Mode.GAZE:
                tracking = gaze_session.toggle_tracking(now_ms)
                print(f"[INFO] Tracking: {'ON' if tracking else 'OFF'}")
            elif key == ord('e'):
                show_edges = not show_edges
                print(f"[INFO] View: {'edges' if show_edges else 'color'}")
            elif key == ord('l'):
                ENABLE_CONSOLE_LOGGING = not ENABLE_CONSOLE_LOGGING
                print(f"[INFO] Console log: {'ON' if ENABLE_CONSOLE_LOGGING else 'OFF'}")

    # Cleanup
    cap.release()
    cv2.destroyAllWindows()
    coordinator.stop()
    close_detector()
    alarm.cleanup()

    # Summary
    print("\n" + "=" * 70)
    print("SESSION SUMMARY")
    print("=" * 70)
    print(f"Frames: processed={modes.processed_frames} dropped={modes.dropped_frames}")
    print(f"Gaze: {gaze_session.estimator.get_stats()}")
    log = gaze_session.classifier.tracking_log
    if log:
        looking = sum(1 for r in log if r.looking)
        print(f"Tracking: {len(log)}s recorded, looking {looking}/{len(log)}")
    print(f"Verification: {coordinator.get_stats()}")
    print("=" * 70)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
