"""Debounces per-frame stranger/safe signals into a stable shield decision."""

from __future__ import annotations

from dataclasses import dataclass

from .types import DecisionState


@dataclass(frozen=True)
class Transition:
    """Side effects requested by one signal.

    ``show_shield`` / ``hide_shield`` are set only on the frame that crosses a
    threshold. ``icon_safe`` is ``None`` when the icon should be left alone.
    """

    show_shield: bool = False
    hide_shield: bool = False
    icon_safe: bool | None = None
    notify_stranger: bool = False


class ShieldStateMachine:
    def __init__(self, state: DecisionState | None = None) -> None:
        self.state = state or DecisionState()

    def update(self, is_stranger: bool, stranger_threshold: int, safe_threshold: int) -> Transition:
        state = self.state
        if not state.is_shield_active:
            if not is_stranger:
                state.consecutive_stranger_frames = 0
                return Transition(icon_safe=True)

            state.consecutive_stranger_frames += 1
            state.consecutive_safe_frames = 0
            if state.consecutive_stranger_frames < stranger_threshold:
                return Transition()

            state.is_shield_active = True
            notify = not state.has_notified_stranger
            state.has_notified_stranger = True
            return Transition(show_shield=True, icon_safe=False, notify_stranger=notify)

        if is_stranger:
            state.consecutive_safe_frames = 0
            return Transition()

        state.consecutive_safe_frames += 1
        state.consecutive_stranger_frames = 0
        if state.consecutive_safe_frames < safe_threshold:
            return Transition()

        state.is_shield_active = False
        state.has_notified_stranger = False
        state.consecutive_safe_frames = 0
        return Transition(hide_shield=True, icon_safe=True)

    def force(self, shielded: bool) -> None:
        """Align with a manual toggle and restart both debounce counters."""
        self.state.is_shield_active = shielded
        self.state.consecutive_stranger_frames = 0
        self.state.consecutive_safe_frames = 0
        if not shielded:
            self.state.has_notified_stranger = False
