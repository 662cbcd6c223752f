import os
import tempfile

import numpy as np
import pytest

# Loggers pick their file location on first use; keep test runs out of the real profile.
os.environ.setdefault("PRIVACY_SHIELD_DATA_DIR", tempfile.mkdtemp(prefix="privacy-shield-tests-"))
os.environ.setdefault("PRIVACY_SHIELD_QUIET", "1")

from privacy_shield.config import ShieldSettings  # noqa: E402
from privacy_shield.decision_engine import DecisionEngine  # noqa: E402
from privacy_shield.recognizer import Recognizer  # noqa: E402
from privacy_shield.types import FaceBox  # noqa: E402

FRAME_WIDTH = 64
FRAME_HEIGHT = 48


def blank_frame() -> np.ndarray:
    return np.zeros((FRAME_HEIGHT, FRAME_WIDTH, 3), dtype=np.uint8)


def unit(index: int, dim: int = 8) -> np.ndarray:
    vector = np.zeros(dim, dtype=np.float32)
    vector[index] = 1.0
    return vector


OWNER = unit(0)
STRANGER = unit(1)


class FakeLocator:
    """Returns ``boxes`` for every frame, or pops from ``script`` while it lasts."""

    def __init__(self, boxes=None, script=None):
        self.boxes = list(boxes or [])
        self.script = list(script or [])
        self.calls = 0

    def locate(self, frame_bgr):
        self.calls += 1
        if self.script:
            return list(self.script.pop(0))
        return list(self.boxes)


class FakeExtractor:
    """Maps each face box to a fixed embedding."""

    def __init__(self, embeddings=None, default=None):
        self.embeddings = dict(embeddings or {})
        self.default = STRANGER if default is None else default
        self.calls = 0

    def extract(self, frame_bgr, box):
        self.calls += 1
        return self.embeddings.get(box, self.default)


class FakeShield:
    def __init__(self):
        self.visible = False
        self.shown = 0
        self.hidden = 0

    @property
    def is_visible(self):
        return self.visible

    def show(self):
        if not self.visible:
            self.shown += 1
        self.visible = True

    def hide(self):
        if self.visible:
            self.hidden += 1
        self.visible = False

    def toggle(self):
        if self.visible:
            self.hide()
        else:
            self.show()


class RecordingListener:
    def __init__(self):
        self.icon_states = []
        self.stranger_alerts = 0

    def on_icon_state_changed(self, safe):
        self.icon_states.append(safe)

    def on_stranger_detected(self):
        self.stranger_alerts += 1


def face(width: float, x: float = 0.1) -> FaceBox:
    return FaceBox(x=x, y=0.1, width=width, height=width)


@pytest.fixture
def settings(tmp_path):
    return ShieldSettings(data_dir=tmp_path, frame_skip=1)


@pytest.fixture
def locator():
    return FakeLocator()


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def shield():
    return FakeShield()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def recognizer(extractor):
    return Recognizer(extractor=extractor, store=None)


@pytest.fixture
def engine(settings, locator, recognizer, shield, listener):
    return DecisionEngine(
        settings=settings,
        locator=locator,
        recognizer=recognizer,
        shield=shield,
        listener=listener,
    )


def feed(engine: DecisionEngine, count: int) -> int:
    """Deliver ``count`` blank frames; returns how many were analysed."""
    analysed = 0
    for _ in range(count):
        if engine.on_frame(blank_frame(), FRAME_WIDTH, FRAME_HEIGHT):
            analysed += 1
    return analysed
