from .countdown import CountdownController, CountdownEvent, CountdownPhase
from .detection_loop import (
    DetectionLoop,
    DetectionObserver,
    LoopSnapshot,
    detection_interval_ms,
    optimal_fps,
)
from .liveness import (
    ChallengeEvent,
    ChallengeKind,
    ChallengeRun,
    ChallengeSpec,
    ChallengeState,
    LivenessSequencer,
    SequenceResult,
)
from .quality import classify, detect, evaluate
from .stability import StabilityTracker

__all__ = [
    "CountdownController",
    "CountdownEvent",
    "CountdownPhase",
    "DetectionLoop",
    "DetectionObserver",
    "LoopSnapshot",
    "detection_interval_ms",
    "optimal_fps",
    "ChallengeEvent",
    "ChallengeKind",
    "ChallengeRun",
    "ChallengeSpec",
    "ChallengeState",
    "LivenessSequencer",
    "SequenceResult",
    "classify",
    "detect",
    "evaluate",
    "StabilityTracker",
]
