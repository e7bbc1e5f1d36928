import enum
import logging
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)


class CountdownPhase(str, enum.Enum):
    IDLE = "idle"
    COUNTING = "counting"
    FIRED = "fired"


@dataclass(frozen=True)
class CountdownEvent:
    kind: str  # "tick" | "complete" | "cancelled"
    remaining: Optional[int] = None


class CountdownController:
    """Turns sustained stability into a timed, cancellable capture trigger.

    Driven by the caller's clock: every update() checks how many whole
    seconds have passed since counting began and emits the ticks that are
    due. A single update never emits more than one tick, so a late update
    reports the current second rather than replaying skipped ones.
    """

    def __init__(self, stability_time_ms: float, countdown_seconds: int):
        self.stability_time_ms = stability_time_ms
        self.countdown_seconds = int(countdown_seconds)
        self.phase = CountdownPhase.IDLE
        self.started_at: Optional[float] = None
        self.remaining: Optional[int] = None

    @property
    def is_counting(self) -> bool:
        return self.phase is CountdownPhase.COUNTING

    def update(self, now: float, is_acceptable: bool, stable_ms: float) -> List[CountdownEvent]:
        if self.phase is CountdownPhase.FIRED:
            return []
        if self.phase is CountdownPhase.COUNTING:
            if not is_acceptable:
                return self._cancel("subject lost")
            elapsed_s = int((now - self.started_at) // 1000)
            if elapsed_s >= self.countdown_seconds:
                self.phase = CountdownPhase.FIRED
                self.remaining = None
                logger.debug("Countdown complete")
                return [CountdownEvent("complete")]
            remaining = self.countdown_seconds - elapsed_s
            if remaining != self.remaining:
                self.remaining = remaining
                return [CountdownEvent("tick", remaining)]
            return []
        if is_acceptable and stable_ms >= self.stability_time_ms:
            self.phase = CountdownPhase.COUNTING
            self.started_at = now
            self.remaining = self.countdown_seconds
            logger.debug("Countdown started after %.0f ms of stability", stable_ms)
            return [CountdownEvent("tick", self.remaining)]
        return []

    def _cancel(self, reason: str) -> List[CountdownEvent]:
        self.phase = CountdownPhase.IDLE
        self.started_at = None
        self.remaining = None
        logger.debug("Countdown cancelled: %s", reason)
        return [CountdownEvent("cancelled")]

    def cancel(self) -> List[CountdownEvent]:
        if self.phase is not CountdownPhase.COUNTING:
            return []
        return self._cancel("caller abort")

    def rearm(self) -> None:
        if self.phase is CountdownPhase.FIRED:
            self.phase = CountdownPhase.IDLE

    def reset(self) -> None:
        self.phase = CountdownPhase.IDLE
        self.started_at = None
        self.remaining = None
