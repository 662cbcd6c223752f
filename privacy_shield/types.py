from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

import numpy as np

Embedding = np.ndarray

EnrollmentCallback = Callable[[bool], None]
CalibrationCallback = Callable[[bool, float], None]


@dataclass(frozen=True)
class Frame:
    frame_id: int
    image: np.ndarray

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def width(self) -> int:
        return int(self.image.shape[1])


@dataclass(frozen=True)
class FaceBox:
    """Face rectangle normalised to the frame, origin at the top-left corner."""

    x: float
    y: float
    width: float
    height: float
    score: float = 1.0

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    def to_pixels(self, frame_width: int, frame_height: int, padding: float = 0.0) -> tuple[int, int, int, int]:
        """Return ``(x1, y1, x2, y2)`` in pixels, grown by ``padding`` of the box
        on each side and clamped to the frame."""
        pad_x = self.width * padding
        pad_y = self.height * padding
        x1 = max(0, int((self.x - pad_x) * frame_width))
        y1 = max(0, int((self.y - pad_y) * frame_height))
        x2 = min(frame_width, int(round((self.x + self.width + pad_x) * frame_width)))
        y2 = min(frame_height, int(round((self.y + self.height + pad_y) * frame_height)))
        return x1, y1, x2, y2


@dataclass(frozen=True)
class EnrolledIdentity:
    label: str
    embeddings: tuple[Embedding, ...]
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if not self.embeddings:
            raise ValueError(f"Identity '{self.label}' needs at least one embedding.")


@dataclass
class EnrollmentSession:
    label: str
    target_count: int
    on_complete: Optional[EnrollmentCallback] = None
    captured_embeddings: list[Embedding] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return len(self.captured_embeddings) >= self.target_count


@dataclass
class CalibrationSession:
    target_count: int
    on_complete: Optional[CalibrationCallback] = None
    samples: list[float] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return len(self.samples) >= self.target_count

    def mean(self) -> float:
        if not self.samples:
            return 0.0
        return float(sum(self.samples) / len(self.samples))


@dataclass
class DecisionState:
    consecutive_stranger_frames: int = 0
    consecutive_safe_frames: int = 0
    is_shield_active: bool = False
    has_notified_stranger: bool = False
    frame_counter: int = 0
