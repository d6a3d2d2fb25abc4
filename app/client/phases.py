"""
Progress Phase Machine
Client-side progress sequence for a pending generation:
warmup -> cruise -> deceleration -> revealed.

Driven by two inputs only: elapsed time and the latest polled job status.
The model gives no real progress fraction, so cruise progress is synthetic.
"""

import time
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional


class ProgressPhase(str, Enum):
    WARMUP = "warmup"
    CRUISE = "cruise"
    DECELERATION = "deceleration"
    REVEALED = "revealed"


_TRANSITIONS: Dict[ProgressPhase, FrozenSet[ProgressPhase]] = {
    ProgressPhase.WARMUP: frozenset({ProgressPhase.CRUISE, ProgressPhase.DECELERATION}),
    ProgressPhase.CRUISE: frozenset({ProgressPhase.DECELERATION}),
    ProgressPhase.DECELERATION: frozenset({ProgressPhase.REVEALED}),
    ProgressPhase.REVEALED: frozenset(),
}

STAGE_TEXT = {
    ProgressPhase.WARMUP: "Warming up the studio...",
    ProgressPhase.CRUISE: "Generating your image...",
    ProgressPhase.DECELERATION: "Adding finishing touches...",
    ProgressPhase.REVEALED: "Done",
}


class InvalidPhaseTransition(Exception):
    """A transition that is not in the table (e.g. deceleration -> cruise)."""


class PhaseMachine:
    """
    Progress phase state machine.

    `resume_phase` is required: a fresh submit starts in warmup, a job
    resumed after a reload starts in cruise.
    """

    WARMUP_SECONDS = 1.5
    DECELERATION_SECONDS = 2.0
    WARMUP_CEILING = 10.0
    CRUISE_CEILING = 90.0
    CRUISE_RATE = 10.0  # percent per second

    def __init__(
        self,
        resume_phase: ProgressPhase,
        clock: Callable[[], float] = time.monotonic,
        warmup_seconds: Optional[float] = None,
        deceleration_seconds: Optional[float] = None,
        on_transition: Optional[Callable[[ProgressPhase, ProgressPhase], None]] = None,
    ):
        resume_phase = ProgressPhase(resume_phase)
        if resume_phase not in (ProgressPhase.WARMUP, ProgressPhase.CRUISE):
            raise ValueError(f"Cannot start in {resume_phase.value}; use warmup or cruise")

        self.clock = clock
        self.warmup_seconds = self.WARMUP_SECONDS if warmup_seconds is None else warmup_seconds
        self.deceleration_seconds = (
            self.DECELERATION_SECONDS if deceleration_seconds is None else deceleration_seconds
        )
        self.on_transition = on_transition

        self.phase = resume_phase
        self.completed = False
        self._entered_at = clock()
        self._deceleration_from = self.WARMUP_CEILING

    @classmethod
    def resume(cls, hint: Optional[str], **kwargs) -> "PhaseMachine":
        """
        Rebuild a machine from a persisted phase hint.

        Anything past warmup comes back as cruise: completion has to be
        observed again by polling before deceleration can play.
        """
        phase = ProgressPhase(hint) if hint else ProgressPhase.WARMUP
        if phase != ProgressPhase.WARMUP:
            phase = ProgressPhase.CRUISE
        return cls(phase, **kwargs)

    @property
    def is_revealed(self) -> bool:
        return self.phase == ProgressPhase.REVEALED

    def can_transition(self, target: ProgressPhase) -> bool:
        return target in _TRANSITIONS[self.phase]

    def transition(self, target: ProgressPhase, at: Optional[float] = None):
        """Move to `target`. Re-entering the current phase is a no-op."""
        target = ProgressPhase(target)
        if target == self.phase:
            return
        if not self.can_transition(target):
            raise InvalidPhaseTransition(f"{self.phase.value} -> {target.value}")

        at = self.clock() if at is None else at
        if target == ProgressPhase.DECELERATION:
            self._deceleration_from = self.progress(at)

        previous = self.phase
        self.phase = target
        self._entered_at = at
        if self.on_transition:
            self.on_transition(previous, target)

    def update(self, status: Optional[str] = None, now: Optional[float] = None) -> ProgressPhase:
        """
        Advance with the latest polled status (or None for a time-only tick).

        Only `completed` moves the machine past cruise; a failed job is
        removed by its owner rather than animated.
        """
        now = self.clock() if now is None else now
        if status == "completed":
            self.completed = True

        while True:
            before = self.phase
            elapsed = now - self._entered_at

            if self.phase == ProgressPhase.WARMUP:
                if self.completed:
                    self.transition(ProgressPhase.DECELERATION, at=now)
                elif elapsed >= self.warmup_seconds:
                    self.transition(ProgressPhase.CRUISE, at=self._entered_at + self.warmup_seconds)
            elif self.phase == ProgressPhase.CRUISE:
                if self.completed:
                    self.transition(ProgressPhase.DECELERATION, at=now)
            elif self.phase == ProgressPhase.DECELERATION:
                if elapsed >= self.deceleration_seconds:
                    self.transition(ProgressPhase.REVEALED, at=now)

            if self.phase == before:
                return self.phase

    def progress(self, now: Optional[float] = None) -> float:
        """Displayed progress in percent."""
        now = self.clock() if now is None else now
        elapsed = max(0.0, now - self._entered_at)

        if self.phase == ProgressPhase.WARMUP:
            if self.warmup_seconds <= 0:
                return self.WARMUP_CEILING
            return self.WARMUP_CEILING * min(1.0, elapsed / self.warmup_seconds)
        if self.phase == ProgressPhase.CRUISE:
            return min(self.CRUISE_CEILING, self.WARMUP_CEILING + self.CRUISE_RATE * elapsed)
        if self.phase == ProgressPhase.DECELERATION:
            if self.deceleration_seconds <= 0:
                return 100.0
            t = min(1.0, elapsed / self.deceleration_seconds)
            eased = 1 - (1 - t) ** 3
            return self._deceleration_from + (100.0 - self._deceleration_from) * eased
        return 100.0

    @property
    def stage_text(self) -> str:
        return STAGE_TEXT[self.phase]


__all__ = ["ProgressPhase", "PhaseMachine", "InvalidPhaseTransition", "STAGE_TEXT"]
