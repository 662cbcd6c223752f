from __future__ import annotations

import shlex
import threading
import time
from queue import Empty, Queue
from typing import Optional

from .camera import CameraSource
from .config import ShieldSettings
from .decision_engine import DecisionEngine
from .events import EventQueue, put_latest
from .exceptions import ConfigError, PersistenceError
from .interfaces import FaceLocator, FeatureExtractor, ShieldPresenter
from .logger import setup_logger
from .metrics import PerformanceTracker
from .recognizer import Recognizer
from .shield_window import OpenCVShieldWindow
from .template_store import TemplateStore

COMMAND_HELP = "enroll <label>, calibrate, cancel, reset [label], toggle, status, quit"


class StatusNotifier:
    """Listener that keeps the latest safety state and a short status line."""

    def __init__(self) -> None:
        self.logger = setup_logger(self.__class__.__name__)
        self.safe = True
        self.stranger_alerts = 0
        self.status_message = ""
        self.status_expiry = 0.0

    def on_icon_state_changed(self, safe: bool) -> None:
        if safe != self.safe:
            self.logger.info("Status: %s", "safe" if safe else "unsafe")
        self.safe = safe

    def on_stranger_detected(self) -> None:
        self.stranger_alerts += 1
        self.logger.warning("Stranger detected - screen shielded")
        self.set_status("Stranger detected - screen shielded")

    def set_status(self, message: str, seconds: float = 3.0) -> None:
        self.status_message = message
        self.status_expiry = time.perf_counter() + seconds

    def current_status(self) -> str:
        if self.status_message and time.perf_counter() < self.status_expiry:
            return self.status_message
        return ""


class ShieldRuntime:
    def __init__(
        self,
        settings: ShieldSettings,
        locator: FaceLocator,
        extractor: FeatureExtractor,
        shield: Optional[ShieldPresenter] = None,
        store: Optional[TemplateStore] = None,
        enable_console: bool = True,
    ):
        self.settings = settings
        self.enable_console = enable_console
        self.logger = setup_logger(self.__class__.__name__)
        self.stop_event = threading.Event()
        self.command_queue: Queue[str] = Queue(maxsize=16)
        self.events = EventQueue(self.logger)
        self.metrics = PerformanceTracker()
        self.notifier = StatusNotifier()

        self.store = store if store is not None else self._open_store()
        self.recognizer = Recognizer(
            extractor=extractor,
            store=self.store,
            match_threshold=settings.match_threshold,
        )
        self.shield = shield or OpenCVShieldWindow()
        self.engine = DecisionEngine(
            settings=settings,
            locator=locator,
            recognizer=self.recognizer,
            shield=self.shield,
            listener=self.notifier,
            dispatch=self.events.submit,
            metrics=self.metrics,
        )

    def _open_store(self) -> Optional[TemplateStore]:
        try:
            return TemplateStore(self.settings.db_path, self.settings.embedding_key_path)
        except PersistenceError as exc:
            self.logger.error("Template store unavailable, enrollments will not be saved: %s", exc)
            return None

    def _on_camera_frame(self, buffer, width: int, height: int) -> None:
        self.metrics.update("capture")
        self.engine.on_frame(buffer, width, height)

    def run(self) -> dict[str, float]:
        self.logger.info(
            "Runtime starting: camera=%d frame_skip=%d enrolled=%d",
            self.settings.camera_index,
            self.settings.frame_skip,
            self.recognizer.enrolled_count,
        )
        if not self.recognizer.is_enrolled():
            self.notifier.set_status("No face enrolled: only multiple viewers trigger the shield", 6.0)

        source = CameraSource(
            on_frame=self._on_camera_frame,
            camera_index=self.settings.camera_index,
            frame_width=self.settings.frame_width,
            frame_height=self.settings.frame_height,
            frame_fps=self.settings.frame_fps,
        )
        workers = []
        if self.enable_console:
            workers.append(threading.Thread(target=self._command_listener, name="command-thread", daemon=True))

        started = time.perf_counter()
        try:
            with source:
                for worker in workers:
                    worker.start()
                try:
                    self._main_loop(source)
                finally:
                    self.stop_event.set()
                    if isinstance(self.shield, OpenCVShieldWindow):
                        self.shield.close()
        finally:
            # Camera thread has stopped, so the detector is no longer in use.
            close = getattr(self.engine.locator, "close", None)
            if close is not None:
                close()

        duration = max(1e-6, time.perf_counter() - started)
        snapshot = self.metrics.snapshot()
        return {
            "duration_seconds": duration,
            "camera_fps": snapshot.get("capture", {}).get("fps", 0.0),
            "analysis_fps": snapshot.get("analysis", {}).get("fps", 0.0),
            "analysis_latency_ms": snapshot.get("analysis", {}).get("latency_ms", 0.0),
            "dropped_frames": float(self.engine.dropped_frames),
            "stranger_alerts": float(self.notifier.stranger_alerts),
        }

    def _main_loop(self, source: CameraSource) -> None:
        last_metrics_log = time.perf_counter()
        while not self.stop_event.is_set():
            self.events.drain(timeout=0.05)
            self._drain_commands()

            if isinstance(self.shield, OpenCVShieldWindow):
                key = self.shield.render(self.notifier.current_status())
                self._handle_key(key)

            if source.error is not None:
                self.logger.error("Stopping: %s", source.error)
                self.stop_event.set()

            now = time.perf_counter()
            if now - last_metrics_log >= 5.0:
                self.logger.info(
                    "Performance snapshot: %s dropped=%d failed=%d",
                    self.metrics.snapshot(),
                    self.engine.dropped_frames,
                    self.engine.failed_frames,
                )
                last_metrics_log = now

    def _handle_key(self, key: int) -> None:
        if key in (ord("q"), 27):
            self.stop_event.set()
        elif key == ord("t"):
            self.handle_command("toggle")
        elif key == ord("c"):
            self.handle_command("calibrate")

    def _command_listener(self) -> None:
        self.logger.info("Console commands ready: %s", COMMAND_HELP)
        while not self.stop_event.is_set():
            try:
                command = input().strip()
            except EOFError:
                break
            if command:
                put_latest(self.command_queue, command)

    def _drain_commands(self) -> None:
        while True:
            try:
                command = self.command_queue.get_nowait()
            except Empty:
                return
            message = self.handle_command(command)
            if message:
                self.notifier.set_status(message)
                print(message)

    def handle_command(self, command: str) -> str:
        try:
            parts = shlex.split(command)
        except ValueError as exc:
            return f"Cannot parse command: {exc}"
        if not parts:
            return ""
        action = parts[0].lower()

        if action == "enroll" and len(parts) >= 2:
            label = " ".join(parts[1:])
            if self.engine.start_enrollment(label, on_complete=self._enrollment_finished(label)):
                return f"Enrolling '{label}': look at the camera"
            return "Enrollment not started: another capture is running or the label is empty"

        if action == "calibrate":
            if self.engine.start_calibration(on_complete=self.calibration_finished):
                return "Calibrating: sit at your normal distance from the screen"
            return "Calibration not started: another capture is running"

        if action == "cancel":
            return "Capture cancelled" if self.engine.cancel_session() else "Nothing to cancel"

        if action == "reset":
            label = " ".join(parts[1:]) or None
            if self.engine.reset_enrollment(label):
                return f"Enrollment reset for '{label}'" if label else "All enrollments reset"
            if label:
                return f"No enrolled face named '{label}'"
            return "Enrollments cleared in memory but could not be removed from disk"

        if action == "toggle":
            self.engine.toggle_shield()
            return "Shield toggled"

        if action == "status":
            return self.describe()

        if action in {"quit", "exit"}:
            self.stop_event.set()
            return "Stopping Privacy Shield."

        return f"Unknown command. Use: {COMMAND_HELP}"

    def describe(self) -> str:
        state = self.engine.state
        progress = self.engine.session_progress()
        parts = [
            "shielded" if state.is_shield_active else "safe",
            f"enrolled={','.join(self.recognizer.enrolled_labels()) or '-'}",
            f"min_face_size={self.settings.min_face_size:.3f}",
            f"frames={state.frame_counter}",
        ]
        if progress is not None:
            parts.append(f"capture={progress[0]}/{progress[1]}")
        return " | ".join(parts)

    def _enrollment_finished(self, label: str):
        def callback(success: bool) -> None:
            if success:
                self.notifier.set_status(f"Enrolled '{label}'")
            else:
                self.notifier.set_status("Enrollment failed")
        return callback

    def calibration_finished(self, success: bool, measured: float) -> None:
        if not success:
            self.notifier.set_status("Calibration cancelled")
            return
        try:
            self.settings.validate()
            path = self.settings.save_preferences()
        except (ConfigError, OSError) as exc:
            self.logger.error("Calibrated value not saved: %s", exc)
            self.notifier.set_status(f"Calibrated to {measured:.3f} (not saved)")
            return
        self.logger.info("Saved calibrated min_face_size=%.3f to %s", measured, path)
        self.notifier.set_status(f"Calibrated distance threshold: {measured:.3f}")


def build_runtime(settings: ShieldSettings, headless: bool = False, enable_console: bool = True) -> ShieldRuntime:
    # Model-backed collaborators pull in torch and mediapipe, so load them only here.
    from .face_locator import MediaPipeFaceLocator
    from .feature_extractor import ResNetFeatureExtractor

    locator = MediaPipeFaceLocator(detection_threshold=settings.detection_confidence)
    extractor = ResNetFeatureExtractor(crop_padding=settings.crop_padding)
    return ShieldRuntime(
        settings=settings,
        locator=locator,
        extractor=extractor,
        shield=OpenCVShieldWindow(headless=headless),
        enable_console=enable_console,
    )
