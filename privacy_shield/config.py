from __future__ import annotations

import json
import os
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path

from .exceptions import ConfigError


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def default_data_dir() -> Path:
    override = os.getenv("PRIVACY_SHIELD_DATA_DIR")
    if override:
        return Path(override).expanduser()
    if os.name == "nt":
        base = os.getenv("APPDATA") or str(Path.home() / "AppData" / "Roaming")
        return Path(base) / "PrivacyShield"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "PrivacyShield"
    base = os.getenv("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / "privacy-shield"


# Keys a user may tune from the control surface; persisted between runs.
PREFERENCE_KEYS = (
    "min_face_size",
    "match_threshold",
    "stranger_threshold",
    "safe_threshold",
    "frame_skip",
)


@dataclass
class ShieldSettings:
    data_dir: Path = field(default_factory=default_data_dir)

    # Decision settings
    min_face_size: float = 0.15
    match_threshold: float = 0.6
    stranger_threshold: int = 3
    safe_threshold: int = 8
    frame_skip: int = 3
    max_enrollment_samples: int = 5
    face_buffer_ratio: float = 0.8
    calibration_sample_count: int = 10

    # Face engine settings
    detection_confidence: float = 0.5
    crop_padding: float = 0.15

    # Webcam settings
    camera_index: int = 0
    frame_width: int = 640
    frame_height: int = 480
    frame_fps: int = 30

    @property
    def db_path(self) -> Path:
        return self.data_dir / "enrolled_faces.db"

    @property
    def embedding_key_path(self) -> Path:
        return self.data_dir / ".embedding.key"

    @property
    def preferences_path(self) -> Path:
        return self.data_dir / "preferences.json"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def soft_min_face_size(self) -> float:
        return self.min_face_size * self.face_buffer_ratio

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        if os.name != "nt":
            os.chmod(self.data_dir, 0o700)
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def validate(self) -> None:
        if not 0.0 < self.min_face_size < 1.0:
            raise ConfigError(f"min_face_size must be in (0, 1), got {self.min_face_size}")
        if not 0.0 < self.face_buffer_ratio <= 1.0:
            raise ConfigError(f"face_buffer_ratio must be in (0, 1], got {self.face_buffer_ratio}")
        if self.match_threshold <= 0.0:
            raise ConfigError("match_threshold must be positive.")
        if self.frame_skip < 1:
            raise ConfigError("frame_skip must be at least 1.")
        for name in (
            "stranger_threshold",
            "safe_threshold",
            "max_enrollment_samples",
            "calibration_sample_count",
        ):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be at least 1.")
        if not 0.0 <= self.crop_padding < 1.0:
            raise ConfigError("crop_padding must be in [0, 1).")

    def preferences(self) -> dict[str, float | int]:
        values = asdict(self)
        return {key: values[key] for key in PREFERENCE_KEYS}

    def save_preferences(self) -> Path:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.preferences_path.with_suffix(".json.tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(self.preferences(), handle, indent=2)
        os.replace(tmp_path, self.preferences_path)
        return self.preferences_path

    def load_preferences(self) -> bool:
        if not self.preferences_path.exists():
            return False
        try:
            with self.preferences_path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, ValueError) as exc:
            raise ConfigError(f"Unreadable preferences file {self.preferences_path}: {exc}") from exc

        if not isinstance(payload, dict):
            raise ConfigError(f"Preferences file {self.preferences_path} is not a JSON object.")
        for key in PREFERENCE_KEYS:
            if key not in payload:
                continue
            current = getattr(self, key)
            try:
                setattr(self, key, type(current)(payload[key]))
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"Invalid preference {key}={payload[key]!r}") from exc
        return True

    @classmethod
    def from_env(cls) -> "ShieldSettings":
        return cls(
            data_dir=default_data_dir(),
            min_face_size=_float_env("PRIVACY_SHIELD_MIN_FACE_SIZE", 0.15),
            match_threshold=_float_env("PRIVACY_SHIELD_MATCH_THRESHOLD", 0.6),
            stranger_threshold=max(1, _int_env("PRIVACY_SHIELD_STRANGER_THRESHOLD", 3)),
            safe_threshold=max(1, _int_env("PRIVACY_SHIELD_SAFE_THRESHOLD", 8)),
            frame_skip=max(1, _int_env("PRIVACY_SHIELD_FRAME_SKIP", 3)),
            max_enrollment_samples=max(1, _int_env("PRIVACY_SHIELD_ENROLLMENT_SAMPLES", 5)),
            face_buffer_ratio=_float_env("PRIVACY_SHIELD_FACE_BUFFER_RATIO", 0.8),
            calibration_sample_count=max(1, _int_env("PRIVACY_SHIELD_CALIBRATION_SAMPLES", 10)),
            detection_confidence=_float_env("PRIVACY_SHIELD_DETECTION_CONFIDENCE", 0.5),
            crop_padding=_float_env("PRIVACY_SHIELD_CROP_PADDING", 0.15),
            camera_index=_int_env("PRIVACY_SHIELD_CAMERA_INDEX", 0),
            frame_width=_int_env("PRIVACY_SHIELD_FRAME_WIDTH", 640),
            frame_height=_int_env("PRIVACY_SHIELD_FRAME_HEIGHT", 480),
            frame_fps=_int_env("PRIVACY_SHIELD_FRAME_FPS", 30),
        )


def headless_requested() -> bool:
    return _bool_env("PRIVACY_SHIELD_HEADLESS", False)
