from __future__ import annotations

import os
import sys
import threading
import time
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np

from .exceptions import CameraError
from .logger import setup_logger

FrameCallback = Callable[[np.ndarray, int, int], None]

_BACKEND_ALIASES = {
    "auto": "Auto",
    "any": "Auto",
    "v4l2": "V4L2",
    "avfoundation": "AVFoundation",
    "dshow": "DirectShow",
    "directshow": "DirectShow",
    "msmf": "Media Foundation",
}


def _default_backend_order() -> List[str]:
    if os.name == "nt":
        return ["DirectShow", "Media Foundation", "Auto"]
    if sys.platform == "darwin":
        return ["AVFoundation", "Auto"]
    return ["V4L2", "Auto"]


def capture_backends() -> List[Tuple[str, Optional[int]]]:
    """Backends to try, in order. ``PRIVACY_SHIELD_CAMERA_BACKENDS`` overrides the platform default."""
    raw = os.getenv("PRIVACY_SHIELD_CAMERA_BACKENDS", "").strip()
    names = [_BACKEND_ALIASES.get(item.strip().lower()) for item in raw.split(",") if item.strip()]
    order = [name for name in names if name] or _default_backend_order()
    if "Auto" not in order:
        order.append("Auto")

    backend_ids = {
        "Auto": getattr(cv2, "CAP_ANY", None),
        "V4L2": getattr(cv2, "CAP_V4L2", None),
        "AVFoundation": getattr(cv2, "CAP_AVFOUNDATION", None),
        "DirectShow": getattr(cv2, "CAP_DSHOW", None),
        "Media Foundation": getattr(cv2, "CAP_MSMF", None),
    }
    candidates: List[Tuple[str, Optional[int]]] = []
    seen: set[Optional[int]] = set()
    for name in order:
        backend = backend_ids.get(name)
        if backend in seen:
            continue
        seen.add(backend)
        candidates.append((name, backend))
    return candidates


def open_camera_capture(camera_index: int) -> tuple[cv2.VideoCapture, str]:
    attempted: List[str] = []
    for backend_name, backend in capture_backends():
        attempted.append(backend_name)
        cap = cv2.VideoCapture(camera_index) if backend is None else cv2.VideoCapture(camera_index, backend)
        if cap.isOpened():
            # Some drivers open fine but never deliver; probe before accepting.
            for _ in range(6):
                ok, frame = cap.read()
                if ok and frame is not None:
                    return cap, backend_name
                time.sleep(0.03)
        cap.release()

    raise CameraError(
        f"Unable to open webcam index {camera_index}. Tried backends: {', '.join(attempted)}."
    )


class CameraSource:
    """Reads the webcam on a dedicated thread and hands every frame to ``on_frame``.

    The callback receives ``(buffer, width, height)`` and is expected to return
    quickly or drop the frame; this thread never buffers frames itself.
    """

    def __init__(
        self,
        on_frame: FrameCallback,
        camera_index: int = 0,
        frame_width: int = 640,
        frame_height: int = 480,
        frame_fps: int = 30,
    ):
        self.on_frame = on_frame
        self.camera_index = camera_index
        self.frame_width = frame_width
        self.frame_height = frame_height
        self.frame_fps = frame_fps
        self.backend_name: str | None = None
        self.delivered_frames = 0
        self.logger = setup_logger(self.__class__.__name__)
        self._cap: cv2.VideoCapture | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.error: CameraError | None = None

    def __enter__(self) -> "CameraSource":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def open(self) -> None:
        self._cap, self.backend_name = open_camera_capture(self.camera_index)
        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.frame_width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.frame_height)
        self._cap.set(cv2.CAP_PROP_FPS, self.frame_fps)
        cv2.setUseOptimized(True)
        self.logger.info("Camera %d opened with %s backend", self.camera_index, self.backend_name)

    def start(self) -> None:
        if self.running:
            return
        if self._cap is None:
            self.open()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._capture_loop, name="camera-thread", daemon=True)
        self._thread.start()

    def _capture_loop(self) -> None:
        misses = 0
        while not self._stop_event.is_set():
            ok, frame = self._cap.read()
            if not ok or frame is None:
                misses += 1
                if misses >= 30:
                    self.error = CameraError("Webcam stopped delivering frames.")
                    self.logger.error("%s", self.error)
                    self._stop_event.set()
                    break
                time.sleep(0.01)
                continue

            misses = 0
            self.delivered_frames += 1
            height, width = frame.shape[:2]
            try:
                self.on_frame(frame, width, height)
            except Exception:
                self.logger.exception("Frame consumer raised")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=1.5)
            self._thread = None
        if self._cap is not None:
            self._cap.release()
            self._cap = None
