"""
Configuration for the Gaze & Work-Check Monitoring System

All tunables live here as module-level constants. Classes take the same values
as keyword arguments (defaults point back to this module), so tests and the
demo app can override any of them without touching this file.
"""

import os

# ============================================
# PATHS
# ============================================
SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(SCRIPT_DIR)
FACE_MODEL_PATH = os.path.join(PROJECT_ROOT, "models", "face_landmarker.task")
ALERT_SOUND_PATH = os.path.join(PROJECT_ROOT, "data", "sounds", "alert.wav")

# ============================================
# CAMERA
# ============================================
CAMERA_INDEX = 0
FRAME_WIDTH = 640
FRAME_HEIGHT = 480
MIRROR_FRAME = True

# ============================================
# HEAD POSE & GAZE
# ============================================
# MediaPipe FaceLandmarker indices: nose tip, chin, eye outer corners
# (263, 33), mouth corners (287, 57)
POSE_LANDMARK_INDICES = [4, 152, 263, 33, 287, 57]
LEFT_PUPIL_INDEX = 468
RIGHT_PUPIL_INDEX = 473

# Eye contours for the overlay, in drawing order
LEFT_EYE_CONTOUR = [33, 160, 158, 133, 153, 144]
RIGHT_EYE_CONTOUR = [362, 385, 387, 263, 373, 380]

# Canonical face model (mm), same order as POSE_LANDMARK_INDICES
CANONICAL_FACE_MODEL = [
    [0.0, 0.0, 0.0],
    [0.0, -63.6, -12.5],
    [-43.3, 32.7, -26.0],
    [43.3, 32.7, -26.0],
    [-28.9, -28.9, -24.1],
    [28.9, -28.9, -24.1],
]
LEFT_EYEBALL_CENTER = [29.05, 32.7, -39.5]
RIGHT_EYEBALL_CENTER = [-29.05, 32.7, -39.5]

GAZE_GAIN = 10.0               # Exaggerates eyeball rotation
HEAD_POSE_OFFSET_MM = 40.0     # "Straight ahead" point raised toward the viewer
MIN_AFFINE_POINTS = 4
MIN_POSE_POINTS = 6

# ============================================
# ATTENTION
# ============================================
LOOKING_THRESHOLD_PX = 60.0
VOTE_WINDOW_MS = 1000.0

# ============================================
# CHECK MODE (background subtraction + lines)
# ============================================
BG_HISTORY = 50
BG_VAR_THRESHOLD = 16.0
BG_DETECT_SHADOWS = False
HOUGH_RHO_RES = 1.0
HOUGH_THETA_RES_DEG = 1.0
HOUGH_VOTE_THRESHOLD = 150
MAX_RAW_LINES = 100
AXIS_TOLERANCE_DEG = 15.0
CLUSTER_RHO_TOLERANCE = 20.0
CLUSTER_THETA_TOLERANCE_DEG = 15.0
CANNY_LOW = 100
CANNY_HIGH = 200

# ============================================
# PERSISTENCE TRIGGER
# ============================================
HISTORY_WINDOW_MS = 3000.0
RECURRENCE_THRESHOLD = 30
TRIGGER_COOLDOWN_MS = 10000.0
FAST_TRIGGER_COOLDOWN_MS = 3000.0
DETECTION_MESSAGE = "Line pattern detected"

# ============================================
# VERIFICATION ORACLE
# ============================================
ORACLE_URL = os.environ.get("WORKCHECK_ORACLE_URL", "http://127.0.0.1:8000")
ORACLE_TIMEOUT_S = 15.0
JPEG_QUALITY = 90
EVENTS_SHOWN = 3

# ============================================
# ATTENTION ALARM
# ============================================
ENABLE_AUDIO = True
ALARM_VOLUME = 0.7
ALARM_WINDOW_SIZE = 30          # frames
ALARM_TRIGGER_THRESHOLD = 20    # not-looking frames in window
ALARM_MIN_DURATION_FRAMES = 30
ALARM_STOP_THRESHOLD = 10

# ============================================
# CONSOLE LOGGING
# ============================================
ENABLE_CONSOLE_LOGGING = True
CONSOLE_LOG_EVERY_N_FRAMES = 30
CONSOLE_LOG_STATE_CHANGES = True
