from __future__ import annotations

import time
from threading import Lock
from typing import Callable, List, Optional, Tuple

import numpy as np

from .config import ShieldSettings
from .exceptions import FaceEngineError, NoFaceFound
from .hysteresis import ShieldStateMachine
from .interfaces import FaceLocator, NullEventListener, ShieldEventListener, ShieldPresenter
from .logger import setup_logger
from .metrics import PerformanceTracker
from .recognizer import Recognizer
from .types import (
    CalibrationCallback,
    CalibrationSession,
    DecisionState,
    EnrollmentCallback,
    EnrollmentSession,
    FaceBox,
    Frame,
)

Dispatch = Callable[[Callable[[], None]], None]


def _call_now(action: Callable[[], None]) -> None:
    action()


def as_image(buffer, width: int, height: int) -> np.ndarray:
    if isinstance(buffer, np.ndarray):
        image = buffer
    else:
        image = np.frombuffer(buffer, dtype=np.uint8)
    if image.ndim == 3 and image.shape[0] == height and image.shape[1] == width:
        return image
    return image.reshape(height, width, -1)


class DecisionEngine:
    """Turns camera frames into shield show/hide decisions.

    ``on_frame`` runs on the capture thread. Counter updates and every
    collaborator call go through ``dispatch`` so they happen on one serialized
    sequence; pass ``EventQueue.submit`` to move them onto the UI thread.
    """

    def __init__(
        self,
        settings: ShieldSettings,
        locator: FaceLocator,
        recognizer: Recognizer,
        shield: ShieldPresenter,
        listener: Optional[ShieldEventListener] = None,
        dispatch: Optional[Dispatch] = None,
        metrics: Optional[PerformanceTracker] = None,
    ):
        self.settings = settings
        self.locator = locator
        self.recognizer = recognizer
        self.shield = shield
        self.listener = listener or NullEventListener()
        self.dispatch = dispatch or _call_now
        self.metrics = metrics or PerformanceTracker()
        self.logger = setup_logger(self.__class__.__name__)

        self.machine = ShieldStateMachine()
        self.analyzed_frames = 0
        self.dropped_frames = 0
        self.failed_frames = 0

        self._admission_lock = Lock()
        self._in_flight = Lock()
        self._session_lock = Lock()
        self._enrollment: Optional[EnrollmentSession] = None
        self._calibration: Optional[CalibrationSession] = None

    @property
    def state(self) -> DecisionState:
        return self.machine.state

    @property
    def is_processing(self) -> bool:
        return self._in_flight.locked()

    @property
    def is_enrolling(self) -> bool:
        with self._session_lock:
            return self._enrollment is not None

    @property
    def is_calibrating(self) -> bool:
        with self._session_lock:
            return self._calibration is not None

    def session_progress(self) -> Optional[Tuple[int, int]]:
        with self._session_lock:
            if self._enrollment is not None:
                return len(self._enrollment.captured_embeddings), self._enrollment.target_count
            if self._calibration is not None:
                return len(self._calibration.samples), self._calibration.target_count
        return None

    # Frame intake

    def on_frame(self, buffer, width: int, height: int) -> bool:
        """Consume one delivered frame. Returns True if it was analysed."""
        with self._admission_lock:
            self.state.frame_counter += 1
            frame_id = self.state.frame_counter
        if frame_id % max(1, int(self.settings.frame_skip)) != 0:
            return False

        if not self._in_flight.acquire(blocking=False):
            self.dropped_frames += 1
            return False

        started = time.perf_counter()
        try:
            frame = Frame(frame_id=frame_id, image=as_image(buffer, width, height))
            self._analyze(frame)
            self.analyzed_frames += 1
        except FaceEngineError as exc:
            self.failed_frames += 1
            self.logger.warning("Frame %d skipped: %s", frame_id, exc)
        except Exception:
            self.failed_frames += 1
            self.logger.exception("Frame %d analysis failed", frame_id)
        finally:
            self._in_flight.release()
            self.metrics.update("analysis", (time.perf_counter() - started) * 1000.0)
        return True

    def _analyze(self, frame: Frame) -> None:
        with self._session_lock:
            enrollment = self._enrollment
            calibration = self._calibration

        if enrollment is not None:
            self._capture_enrollment(enrollment, frame)
            return
        if calibration is not None:
            self._capture_calibration(calibration, frame)
            return

        is_stranger = self.classify(frame)
        self.dispatch(lambda: self._apply_signal(is_stranger))

    # Recognition

    def nearby_faces(self, boxes: List[FaceBox]) -> List[FaceBox]:
        min_width = self.settings.soft_min_face_size
        return [box for box in boxes if box.width >= min_width]

    def classify(self, frame: Frame) -> bool:
        """Return True when the frame should count as a stranger frame."""
        boxes = self.locator.locate(frame.image)
        if not boxes:
            # Nobody visible: keep the screen covered until the owner is back.
            return True

        nearby = self.nearby_faces(boxes)
        if not nearby:
            return False

        if not self.recognizer.is_enrolled():
            return len(nearby) > 1

        threshold = self.settings.match_threshold
        return any(not self.recognizer.is_owner(frame.image, box, threshold) for box in nearby)

    def _apply_signal(self, is_stranger: bool) -> None:
        transition = self.machine.update(
            is_stranger,
            stranger_threshold=self.settings.stranger_threshold,
            safe_threshold=self.settings.safe_threshold,
        )
        if transition.show_shield:
            self.logger.warning(
                "Stranger present for %d frames, shield on",
                self.state.consecutive_stranger_frames,
            )
            self.shield.show()
        if transition.hide_shield:
            self.logger.info("Viewer safe again, shield off")
            self.shield.hide()
        if transition.icon_safe is not None:
            self.listener.on_icon_state_changed(transition.icon_safe)
        if transition.notify_stranger:
            self.listener.on_stranger_detected()

    # Enrollment

    def start_enrollment(self, label: str, on_complete: Optional[EnrollmentCallback] = None) -> bool:
        label = label.strip()
        if not label:
            self.logger.warning("Enrollment label cannot be empty.")
            if on_complete is not None:
                self.dispatch(lambda: on_complete(False))
            return False

        with self._session_lock:
            if self._enrollment is not None or self._calibration is not None:
                self.logger.info("A capture session is already running; ignoring enrollment for '%s'", label)
                return False
            self._enrollment = EnrollmentSession(
                label=label,
                target_count=self.settings.max_enrollment_samples,
                on_complete=on_complete,
            )
        self.dispatch(self._restart_debounce)
        self.logger.info(
            "Starting enrollment for '%s' (%d samples)", label, self.settings.max_enrollment_samples
        )
        return True

    def _capture_enrollment(self, session: EnrollmentSession, frame: Frame) -> None:
        try:
            embedding = self.recognizer.enroll_sample(frame.image, self.locator)
        except NoFaceFound:
            return

        with self._session_lock:
            if self._enrollment is not session:
                return
            session.captured_embeddings.append(embedding)
            captured = len(session.captured_embeddings)
            if session.completed:
                self._enrollment = None

        self.logger.info(
            "Enrollment [%s]: captured sample %d/%d", session.label, captured, session.target_count
        )
        if captured < session.target_count:
            return

        self.recognizer.commit_identity(session.label, session.captured_embeddings)
        callback = session.on_complete
        if callback is not None:
            self.dispatch(lambda: callback(True))

    # Calibration

    def start_calibration(self, on_complete: Optional[CalibrationCallback] = None) -> bool:
        with self._session_lock:
            if self._enrollment is not None or self._calibration is not None:
                self.logger.info("A capture session is already running; ignoring calibration request")
                return False
            self._calibration = CalibrationSession(
                target_count=self.settings.calibration_sample_count,
                on_complete=on_complete,
            )
        self.dispatch(self._restart_debounce)
        self.logger.info("Starting calibration (%d samples)", self.settings.calibration_sample_count)
        return True

    def _capture_calibration(self, session: CalibrationSession, frame: Frame) -> None:
        boxes = self.locator.locate(frame.image)
        if not boxes:
            return

        with self._session_lock:
            if self._calibration is not session:
                return
            session.samples.append(float(boxes[0].width))
            if session.completed:
                self._calibration = None
            else:
                return

        measured = session.mean()
        self.settings.min_face_size = measured
        self.logger.info(
            "Calibration complete: min_face_size=%.3f from %d samples", measured, len(session.samples)
        )
        callback = session.on_complete
        if callback is not None:
            self.dispatch(lambda: callback(True, measured))

    def cancel_session(self) -> bool:
        with self._session_lock:
            enrollment, self._enrollment = self._enrollment, None
            calibration, self._calibration = self._calibration, None

        if enrollment is not None:
            self.logger.info("Enrollment for '%s' cancelled", enrollment.label)
            enrollment_callback = enrollment.on_complete
            if enrollment_callback is not None:
                self.dispatch(lambda: enrollment_callback(False))
        if calibration is not None:
            self.logger.info("Calibration cancelled")
            calibration_callback = calibration.on_complete
            if calibration_callback is not None:
                self.dispatch(lambda: calibration_callback(False, 0.0))
        return enrollment is not None or calibration is not None

    # Control surface

    def reset_enrollment(self, label: Optional[str] = None) -> bool:
        if label is None:
            return self.recognizer.reset_all()
        return self.recognizer.reset_one(label)

    def toggle_shield(self) -> None:
        self.dispatch(self._toggle)

    def _toggle(self) -> None:
        self.shield.toggle()
        visible = self.shield.is_visible
        self.machine.force(visible)
        self.logger.info("Shield toggled %s manually", "on" if visible else "off")
        self.listener.on_icon_state_changed(not visible)

    def _restart_debounce(self) -> None:
        self.machine.force(self.state.is_shield_active)
