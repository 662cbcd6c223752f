from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock


@dataclass
class StageStats:
    calls: int = 0
    latency_ema_ms: float = 0.0
    timestamps: deque[float] = field(default_factory=lambda: deque(maxlen=120))


class PerformanceTracker:
    """Rolling rate and smoothed latency per pipeline stage (capture, analysis)."""

    def __init__(self, smoothing: float = 0.2) -> None:
        self.smoothing = smoothing
        self._lock = Lock()
        self._stages: dict[str, StageStats] = {}

    def update(self, stage: str, latency_ms: float = 0.0) -> None:
        now = time.perf_counter()
        with self._lock:
            stats = self._stages.setdefault(stage, StageStats())
            stats.calls += 1
            stats.timestamps.append(now)
            if stats.calls == 1:
                stats.latency_ema_ms = latency_ms
            else:
                stats.latency_ema_ms += self.smoothing * (latency_ms - stats.latency_ema_ms)

    def snapshot(self) -> dict[str, dict[str, float]]:
        now = time.perf_counter()
        with self._lock:
            return {
                stage: {
                    "fps": self._rate(stats.timestamps, now),
                    "latency_ms": stats.latency_ema_ms,
                    "calls": float(stats.calls),
                }
                for stage, stats in self._stages.items()
            }

    @staticmethod
    def _rate(timestamps: deque[float], now: float) -> float:
        if len(timestamps) < 2:
            return 0.0
        return len(timestamps) / max(1e-6, now - timestamps[0])
