import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import default_data_dir

_log_dir: Path | None = None


def configure_log_dir(log_dir: Path) -> None:
    global _log_dir
    _log_dir = Path(log_dir)


def _resolve_log_dir() -> Path:
    if _log_dir is not None:
        return _log_dir
    return default_data_dir() / "logs"


def setup_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(f"privacy_shield.{name}")
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    logger.propagate = False
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    log_dir = _resolve_log_dir()
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / "privacy_shield.log",
            maxBytes=2_000_000,
            backupCount=5,
        )
    except OSError:
        # Read-only home or sandboxed runs still get console logs.
        file_handler = None
    if file_handler is not None:
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if os.getenv("PRIVACY_SHIELD_QUIET", "").strip().lower() not in {"1", "true", "yes", "on"}:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    return logger
