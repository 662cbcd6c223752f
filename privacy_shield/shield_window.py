from __future__ import annotations

import time

import cv2
import numpy as np

from .logger import setup_logger

WINDOW_NAME = "Privacy Shield"


class OpenCVShieldWindow:
    """Full-screen dark overlay drawn with OpenCV HighGUI.

    ``show``/``hide``/``toggle`` only flip state; ``render`` must be called from
    the thread that owns the GUI (the runtime's main loop) to apply it.
    Covers the display the full-screen window opens on; HighGUI cannot
    enumerate monitors.
    """

    def __init__(self, headless: bool = False, window_name: str = WINDOW_NAME):
        self.window_name = window_name
        self.headless = headless
        self.logger = setup_logger(self.__class__.__name__)
        self._visible = False
        self._window_open = False
        self._message = "Screen hidden - stranger detected"

    @property
    def is_visible(self) -> bool:
        return self._visible

    def show(self) -> None:
        if self._visible:
            return
        self._visible = True
        self.logger.info("Shield shown")

    def hide(self) -> None:
        if not self._visible:
            return
        self._visible = False
        self.logger.info("Shield hidden")

    def toggle(self) -> None:
        if self._visible:
            self.hide()
        else:
            self.show()

    def render(self, status: str = "") -> int:
        """Apply the current visibility and pump GUI events. Returns the pressed key or -1."""
        if self.headless:
            return -1

        if not self._visible:
            if self._window_open:
                self._close()
            return -1

        if self._window_open and self._window_was_closed():
            # Closing the overlay by hand must not leave the screen exposed.
            self._window_open = False
        if not self._window_open:
            self._open()

        cv2.imshow(self.window_name, self._compose(status))
        return cv2.waitKey(1) & 0xFF

    def _open(self) -> None:
        try:
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
            cv2.setWindowProperty(self.window_name, cv2.WND_PROP_FULLSCREEN, cv2.WINDOW_FULLSCREEN)
            cv2.setWindowProperty(self.window_name, cv2.WND_PROP_TOPMOST, 1)
        except cv2.error as exc:
            self.logger.warning("Shield window unavailable, running headless: %s", exc)
            self.headless = True
            return
        self._window_open = True

    def _close(self) -> None:
        try:
            cv2.destroyWindow(self.window_name)
            cv2.waitKey(1)
        except cv2.error:
            # Headless OpenCV builds have no HighGUI to tear down.
            pass
        self._window_open = False

    def _window_was_closed(self) -> bool:
        try:
            return cv2.getWindowProperty(self.window_name, cv2.WND_PROP_VISIBLE) < 1
        except cv2.error:
            return True

    def _compose(self, status: str) -> np.ndarray:
        canvas = np.full((720, 1280, 3), 18, dtype=np.uint8)
        cv2.putText(
            canvas,
            self._message,
            (60, 340),
            cv2.FONT_HERSHEY_SIMPLEX,
            1.3,
            (235, 235, 235),
            2,
            cv2.LINE_AA,
        )
        footer = status or time.strftime("%H:%M:%S")
        cv2.putText(
            canvas,
            footer,
            (60, 400),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.75,
            (150, 150, 150),
            1,
            cv2.LINE_AA,
        )
        return canvas

    def close(self) -> None:
        self._visible = False
        if self._window_open:
            self._close()
