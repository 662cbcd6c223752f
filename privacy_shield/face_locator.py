from __future__ import annotations

from typing import List

import cv2
import numpy as np

from .exceptions import FaceEngineError
from .types import FaceBox

try:
    import mediapipe as mp
except Exception:  # pragma: no cover - runtime dependency guard
    mp = None


def largest_first(boxes: List[FaceBox]) -> List[FaceBox]:
    return sorted(boxes, key=lambda box: box.area, reverse=True)


class MediaPipeFaceLocator:
    """Finds face rectangles with the mediapipe short-range detector."""

    def __init__(self, detection_threshold: float = 0.5, model_selection: int = 0):
        if mp is None:
            raise FaceEngineError("mediapipe is required. Install the package dependencies first.")

        self.detection_threshold = detection_threshold
        try:
            self.detector = mp.solutions.face_detection.FaceDetection(
                model_selection=model_selection,
                min_detection_confidence=detection_threshold,
            )
        except Exception as exc:
            raise FaceEngineError(f"Failed to initialize face detector: {exc}") from exc

    def locate(self, frame_bgr: np.ndarray) -> List[FaceBox]:
        try:
            rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
            result = self.detector.process(rgb)
        except Exception as exc:
            raise FaceEngineError(f"Face detection failed: {exc}") from exc

        if not result.detections:
            return []

        boxes: List[FaceBox] = []
        for det in result.detections:
            score = float(det.score[0]) if det.score else 0.0
            if score < self.detection_threshold:
                continue

            rel = det.location_data.relative_bounding_box
            x = min(max(float(rel.xmin), 0.0), 1.0)
            y = min(max(float(rel.ymin), 0.0), 1.0)
            width = min(float(rel.width), 1.0 - x)
            height = min(float(rel.height), 1.0 - y)
            if width <= 0.0 or height <= 0.0:
                continue
            boxes.append(FaceBox(x=x, y=y, width=width, height=height, score=score))

        return largest_first(boxes)

    def close(self) -> None:
        self.detector.close()
