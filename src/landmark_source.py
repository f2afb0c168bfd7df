"""
MediaPipe FaceLandmarker adapter.

Wraps the Tasks API face landmarker (VIDEO running mode, one face, iris
landmarks included) behind the detect(frame, timestamp_ms) call the gaze
session expects. Frames are BGR as delivered by OpenCV.
"""

import os
from typing import List, Sequence

import cv2
import mediapipe as mp
from mediapipe.tasks import python as mp_tasks
from mediapipe.tasks.python import vision

import config


class FaceLandmarkSource:
    """Callable landmark detector returning 0 or 1 landmark sets per frame."""

    def __init__(self, model_path: str = config.FACE_MODEL_PATH, num_faces: int = 1,
                 min_detection_confidence: float = 0.5, min_tracking_confidence: float = 0.5):
        if not os.path.exists(model_path):
            raise FileNotFoundError(f"Face landmarker model not found: {model_path}")

        options = vision.FaceLandmarkerOptions(
            base_options=mp_tasks.BaseOptions(model_asset_path=model_path),
            running_mode=vision.RunningMode.VIDEO,
            num_faces=num_faces,
            min_face_detection_confidence=min_detection_confidence,
            min_tracking_confidence=min_tracking_confidence,
            output_face_blendshapes=False,
        )
        self._landmarker = vision.FaceLandmarker.create_from_options(options)

    def __call__(self, frame, timestamp_ms: int) -> List[Sequence]:
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
        result = self._landmarker.detect_for_video(image, int(timestamp_ms))
        return list(result.face_landmarks or [])

    def close(self):
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None

    def __enter__(self) -> "FaceLandmarkSource":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
