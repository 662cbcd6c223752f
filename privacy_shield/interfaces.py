"""Seams between the decision pipeline and its collaborators."""

from __future__ import annotations

from typing import List, Protocol

import numpy as np

from .types import Embedding, FaceBox


class FaceLocator(Protocol):
    def locate(self, frame_bgr: np.ndarray) -> List[FaceBox]:
        """Return detected faces, largest first."""
        ...


class FeatureExtractor(Protocol):
    def extract(self, frame_bgr: np.ndarray, box: FaceBox) -> Embedding:
        ...


class ShieldPresenter(Protocol):
    """Overlay that hides the screen. All three calls must be idempotent."""

    @property
    def is_visible(self) -> bool:
        ...

    def show(self) -> None:
        ...

    def hide(self) -> None:
        ...

    def toggle(self) -> None:
        ...


class ShieldEventListener(Protocol):
    def on_icon_state_changed(self, safe: bool) -> None:
        ...

    def on_stranger_detected(self) -> None:
        ...


class NullEventListener:
    def on_icon_state_changed(self, safe: bool) -> None:
        return None

    def on_stranger_detected(self) -> None:
        return None
