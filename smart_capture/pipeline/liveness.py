"""Active liveness: an ordered run of pose/action challenges.

Every challenge after the first waits for the subject to come back to a
neutral pose before its baseline is taken. Without that wait the baseline
would be frozen while the head is still turned from the previous challenge,
and a turn toward the opposite side could never reach its threshold.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from smart_capture.app.config import CHALLENGE_KINDS, LivenessConfig
from smart_capture.app.errors import ChallengeTimeout, ConfigInvalid
from smart_capture.app.utils import clamp
from smart_capture.models.base import PoseEstimate

logger = logging.getLogger(__name__)


class ChallengeKind(str, enum.Enum):
    TURN_LEFT = "turn_left"
    TURN_RIGHT = "turn_right"
    BLINK = "blink"


class ChallengeState(str, enum.Enum):
    AWAITING_NEUTRAL = "awaiting_neutral"
    ARMED = "armed"
    SUCCEEDED = "succeeded"
    FAILED_TIMEOUT = "failed_timeout"


@dataclass(frozen=True)
class ChallengeSpec:
    kind: ChallengeKind
    axis_threshold_degrees: float = 15.0
    timeout_ms: float = 15000.0


@dataclass
class ChallengeRun:
    spec: ChallengeSpec
    state: ChallengeState
    started_at: float
    baseline_pose: Optional[PoseEstimate] = None
    confidence: float = 0.0
    finished_at: Optional[float] = None
    error: Optional[ChallengeTimeout] = None
    # blink: 0 waiting for open eyes, 1 open seen, 2 closure seen
    blink_phase: int = 0

    @property
    def kind(self) -> ChallengeKind:
        return self.spec.kind

    @property
    def done(self) -> bool:
        return self.state in (ChallengeState.SUCCEEDED, ChallengeState.FAILED_TIMEOUT)


@dataclass(frozen=True)
class ChallengeEvent:
    kind: ChallengeKind
    outcome: str  # "armed" | "succeeded" | "failed_timeout"
    confidence: float = 0.0


@dataclass(frozen=True)
class SequenceResult:
    passed: bool
    failed_kinds: Tuple[ChallengeKind, ...] = ()
    challenges: Tuple[ChallengeRun, ...] = field(default_factory=tuple)
    attempt: int = 1

    @property
    def confidence(self) -> float:
        if not self.challenges:
            return 0.0
        return sum(r.confidence for r in self.challenges) / len(self.challenges)


class LivenessSequencer:
    def __init__(
        self,
        specs: Sequence[ChallengeSpec],
        neutral_yaw_threshold: float = 10.0,
        blink_ear_threshold: float = 0.2,
        max_attempts: int = 3,
    ):
        if not specs:
            raise ValueError("at least one challenge is required")
        self.specs = list(specs)
        self.neutral_yaw_threshold = float(neutral_yaw_threshold)
        self.blink_ear_threshold = float(blink_ear_threshold)
        self.max_attempts = int(max_attempts)
        self.attempt = 0
        self.active: Optional[ChallengeRun] = None
        self.completed_challenges: List[ChallengeRun] = []
        self.result: Optional[SequenceResult] = None

    @classmethod
    def from_config(cls, cfg: LivenessConfig, kinds: Optional[Sequence[str]] = None) -> "LivenessSequencer":
        requested = list(kinds or cfg.challenges)
        unknown = [k for k in requested if k not in CHALLENGE_KINDS]
        if unknown:
            raise ConfigInvalid([f"unknown challenge kind {k!r}" for k in unknown])
        specs = []
        for k in requested:
            kind = ChallengeKind(k)
            specs.append(ChallengeSpec(kind, float(cfg.axis_threshold_degrees.get(kind.value, 0.0)), float(cfg.timeout_ms)))
        return cls(specs, cfg.neutral_yaw_threshold, cfg.blink_ear_threshold, cfg.max_attempts)

    @property
    def running(self) -> bool:
        return self.active is not None

    @property
    def finished(self) -> bool:
        return self.result is not None

    @property
    def passed(self) -> bool:
        return self.result is not None and self.result.passed

    @property
    def can_retry(self) -> bool:
        return self.attempt < self.max_attempts

    @property
    def progress(self) -> float:
        return 100.0 * len(self.completed_challenges) / len(self.specs)

    def time_remaining(self, now: float) -> Optional[float]:
        if self.active is None:
            return None
        return max(0.0, self.active.spec.timeout_ms - (now - self.active.started_at))

    def start(self, now: float) -> None:
        self.attempt += 1
        self.completed_challenges = []
        self.result = None
        # First challenge has nothing to recover from: armed, baseline from the next pose seen
        self.active = ChallengeRun(self.specs[0], ChallengeState.ARMED, now)
        logger.info(
            "Liveness attempt %d/%d: %s",
            self.attempt, self.max_attempts, [s.kind.value for s in self.specs],
        )

    def retry(self, now: float) -> bool:
        if not self.can_retry:
            return False
        self.start(now)
        return True

    def reset(self) -> None:
        self.attempt = 0
        self.active = None
        self.completed_challenges = []
        self.result = None

    def update(self, now: float, pose: Optional[PoseEstimate]) -> List[ChallengeEvent]:
        run = self.active
        if run is None:
            return []
        if now - run.started_at >= run.spec.timeout_ms:
            return self._finish(run, ChallengeState.FAILED_TIMEOUT, now)
        if pose is None:
            return []

        if run.state is ChallengeState.AWAITING_NEUTRAL:
            if abs(pose.yaw) >= self.neutral_yaw_threshold:
                return []
            return [self._arm(run, pose)]
        if run.baseline_pose is None:
            return [self._arm(run, pose)]

        if self._satisfied(run, pose):
            return self._finish(run, ChallengeState.SUCCEEDED, now)
        return []

    def _arm(self, run: ChallengeRun, pose: PoseEstimate) -> ChallengeEvent:
        run.baseline_pose = pose
        run.state = ChallengeState.ARMED
        if run.kind is ChallengeKind.BLINK and pose.eye_openness >= self.blink_ear_threshold:
            run.blink_phase = 1
        logger.debug("Challenge %s armed, baseline yaw %.1f", run.kind.value, pose.yaw)
        return ChallengeEvent(run.kind, "armed", 0.0)

    def _satisfied(self, run: ChallengeRun, pose: PoseEstimate) -> bool:
        if run.kind is ChallengeKind.BLINK:
            closed = pose.eye_openness < self.blink_ear_threshold
            if run.blink_phase == 0 and not closed:
                run.blink_phase = 1
            elif run.blink_phase == 1 and closed:
                run.blink_phase = 2
                run.confidence = max(run.confidence, 0.5)
            elif run.blink_phase == 2 and not closed:
                run.confidence = 1.0
                return True
            return False

        diff = pose.yaw - run.baseline_pose.yaw
        delta = diff if run.kind is ChallengeKind.TURN_LEFT else -diff
        threshold = run.spec.axis_threshold_degrees
        run.confidence = max(run.confidence, clamp(delta / threshold))
        return delta >= threshold

    def _finish(self, run: ChallengeRun, state: ChallengeState, now: float) -> List[ChallengeEvent]:
        run.state = state
        run.finished_at = now
        if state is ChallengeState.FAILED_TIMEOUT:
            run.error = ChallengeTimeout(run.kind.value, int(run.spec.timeout_ms))
            logger.info("Challenge %s timed out", run.kind.value)
        else:
            logger.info("Challenge %s succeeded in %.0f ms", run.kind.value, now - run.started_at)
        self.completed_challenges.append(run)
        events = [ChallengeEvent(run.kind, state.value, run.confidence)]

        idx = len(self.completed_challenges)
        if idx < len(self.specs):
            self.active = ChallengeRun(self.specs[idx], ChallengeState.AWAITING_NEUTRAL, now)
        else:
            self.active = None
            failed = tuple(r.kind for r in self.completed_challenges if r.state is not ChallengeState.SUCCEEDED)
            self.result = SequenceResult(
                passed=not failed,
                failed_kinds=failed,
                challenges=tuple(self.completed_challenges),
                attempt=self.attempt,
            )
            logger.info(
                "Liveness sequence %s (attempt %d)%s",
                "passed" if self.result.passed else "failed",
                self.attempt,
                "" if self.result.passed else f", failed: {[k.value for k in failed]}",
            )
        return events
