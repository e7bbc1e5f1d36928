from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from smart_capture.app.config import AppConfig
from smart_capture.models.base import DetectionState
from smart_capture.models.source import ListSource, Recording
from .detection_loop import DetectionLoop, DetectionObserver, LoopSnapshot
from .liveness import ChallengeEvent, SequenceResult


@dataclass
class ReplayReport:
    states: List[Tuple[float, DetectionState]] = field(default_factory=list)
    countdown_ticks: List[Tuple[float, int]] = field(default_factory=list)
    challenge_events: List[ChallengeEvent] = field(default_factory=list)
    sequence: Optional[SequenceResult] = None
    capture_ready_at: List[float] = field(default_factory=list)
    last: Optional[LoopSnapshot] = None


class RecordingObserver(DetectionObserver):
    def __init__(self):
        self.report = ReplayReport()
        self._now = 0.0

    def on_state_change(self, state, snapshot):
        self._now = snapshot.timestamp
        self.report.states.append((snapshot.timestamp, state))
        self.report.last = snapshot

    def on_countdown_tick(self, remaining):
        self.report.countdown_ticks.append((self._now, remaining))

    def on_capture_ready(self, snapshot):
        self.report.capture_ready_at.append(snapshot.timestamp)

    def on_challenge_event(self, event):
        self.report.challenge_events.append(event)

    def on_sequence_complete(self, result):
        self.report.sequence = result


def replay_recording(
    recording: Recording,
    cfg: Optional[AppConfig] = None,
    challenges: Optional[Sequence[str]] = None,
    image_size: Tuple[float, float] = (1.0, 1.0),
) -> ReplayReport:
    """Feed recorded samples through a loop at their recorded timestamps."""
    observer = RecordingObserver()
    loop = DetectionLoop(ListSource([]), cfg, observer, challenges=challenges, image_size=image_size)
    for t, sample in recording:
        loop.process(sample, now=t)
    return observer.report
