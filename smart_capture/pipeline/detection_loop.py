import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from smart_capture.app.config import AppConfig, SamplingConfig, validate_config
from smart_capture.app.errors import CaptureError, ModelUnavailable, SampleTimeout, SourceExhausted
from smart_capture.app.messages import state_message
from smart_capture.app.utils import now_ms
from smart_capture.models.base import (
    NO_FACE,
    Detected,
    DetectionResult,
    DetectionState,
    PoseEstimate,
    RawSample,
    SampleSource,
)
from smart_capture.models.landmarks import estimate_pose
from smart_capture.models.source import SourceHandle, open_source
from .countdown import CountdownController, CountdownEvent
from .liveness import ChallengeEvent, ChallengeKind, LivenessSequencer, SequenceResult
from .quality import classify, detect
from .stability import StabilityTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoopSnapshot:
    state: DetectionState
    detection: DetectionResult
    timestamp: float = 0.0
    pose: Optional[PoseEstimate] = None
    stable_ms: float = 0.0
    countdown_remaining: Optional[int] = None
    capture_in_flight: bool = False
    challenge: Optional[ChallengeKind] = None
    liveness_progress: Optional[float] = None
    liveness_time_remaining: Optional[float] = None
    sequence: Optional[SequenceResult] = None
    error: Optional[str] = None
    message: str = ""


class DetectionObserver:
    """Receives loop output. Every method runs inside the tick that caused it."""

    def on_state_change(self, state: DetectionState, snapshot: LoopSnapshot) -> None:
        pass

    def on_countdown_tick(self, remaining: int) -> None:
        pass

    def on_capture_ready(self, snapshot: LoopSnapshot) -> None:
        pass

    def on_challenge_event(self, event: ChallengeEvent) -> None:
        pass

    def on_sequence_complete(self, result: SequenceResult) -> None:
        pass

    def on_error(self, error: CaptureError) -> None:
        pass


def device_memory_gb() -> Optional[float]:
    if not hasattr(os, "sysconf"):
        return None
    try:
        return os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES") / float(1 << 30)
    except (ValueError, OSError):
        return None


def optimal_fps(sampling: SamplingConfig, memory_gb: Optional[float] = None) -> int:
    if sampling.target_fps:
        return int(sampling.target_fps)
    if memory_gb is not None and memory_gb < sampling.device_memory_threshold_gb:
        return int(sampling.low_end_fps)
    return int(sampling.high_end_fps)


def detection_interval_ms(fps: float) -> int:
    return int(round(1000.0 / fps))


class DetectionLoop:
    def __init__(
        self,
        source: SampleSource,
        cfg: Optional[AppConfig] = None,
        observer: Optional[DetectionObserver] = None,
        challenges: Optional[Sequence[str]] = None,
        clock: Optional[Callable[[], float]] = None,
        image_size: Tuple[float, float] = (1.0, 1.0),
        memory_gb: Optional[float] = None,
    ):
        self.cfg = validate_config(cfg or AppConfig())
        self.source = source
        self.observer = observer or DetectionObserver()
        self.image_size = image_size
        self._clock = clock or now_ms

        self.tracker = StabilityTracker()
        self.countdown = CountdownController(self.cfg.capture.stability_time_ms, self.cfg.capture.countdown_seconds)
        self.sequencer: Optional[LivenessSequencer] = None
        if challenges:
            self.sequencer = LivenessSequencer.from_config(self.cfg.liveness, challenges)

        if memory_gb is None and not self.cfg.sampling.target_fps:
            memory_gb = device_memory_gb()
        self.fps = optimal_fps(self.cfg.sampling, memory_gb)
        self.interval_ms = detection_interval_ms(self.fps)

        self._running = False
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._handle: Optional[SourceHandle] = None
        self._capture_in_flight = False
        self._capture_retries = 0
        self._snapshot = self._initial_snapshot()

    # -- lifecycle --

    @property
    def running(self) -> bool:
        return self._running

    @property
    def state(self) -> DetectionState:
        return self._snapshot.state

    def current_detection(self) -> LoopSnapshot:
        return self._snapshot

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        gen = self._generation
        self._clear_run_state()
        self._publish(self._initial_snapshot(), gen)
        try:
            handle = await open_source(self.source, self.cfg.sampling.model_load_timeout_ms)
        except ModelUnavailable as e:
            if gen == self._generation:
                self._fail(e)
            return
        if not self._running or gen != self._generation:
            await handle.close()
            return
        self._handle = handle
        if self.sequencer is not None:
            self.sequencer.start(self._clock())
        logger.info("Detection loop started at %d fps (%d ms interval)", self.fps, self.interval_ms)
        self._task = asyncio.get_running_loop().create_task(self._run(handle))

    def stop(self) -> None:
        self._generation += 1
        self.countdown.cancel()
        if not self._running:
            return
        self._running = False
        task = self._task
        if task is not None and not task.done():
            task.cancel()
        logger.info("Detection loop stopped")

    def reset(self) -> None:
        self.stop()
        self._clear_run_state()
        self._snapshot = self._initial_snapshot()

    def _clear_run_state(self) -> None:
        # nothing from a previous run may count toward the next one
        self.tracker.reset()
        self.countdown.reset()
        if self.sequencer is not None:
            self.sequencer.reset()
        self._capture_in_flight = False
        self._capture_retries = 0

    async def wait(self) -> None:
        if self._task is not None:
            await asyncio.wait([self._task])

    def cancel_countdown(self) -> None:
        if self.countdown.cancel():
            # the subject has to hold still for a fresh streak
            self.tracker.reset()

    def retry_capture(self) -> bool:
        if not self._capture_in_flight or self._capture_retries >= self.cfg.capture.max_capture_retries:
            return False
        self._capture_retries += 1
        self._capture_in_flight = False
        self.countdown.rearm()
        self.tracker.reset()
        logger.info("Capture retry %d/%d", self._capture_retries, self.cfg.capture.max_capture_retries)
        return True

    def retry_liveness(self) -> bool:
        if self.sequencer is None or not self.sequencer.finished:
            return False
        if not self.sequencer.retry(self._clock()):
            return False
        self.countdown.reset()
        self._capture_in_flight = False
        return True

    async def _run(self, handle: SourceHandle) -> None:
        timeout_ms = self.cfg.sampling.sample_timeout_ms
        try:
            while self._running:
                started = self._clock()
                miss: Optional[Exception] = None
                try:
                    sample = await handle.next_sample(timeout_ms)
                except SampleTimeout as e:
                    logger.debug("Treating frame as empty: %s", e)
                    sample, miss = None, e
                except SourceExhausted as e:
                    logger.info("Sample source finished: %s", e)
                    self._running = False
                    self.countdown.cancel()
                    break
                except ModelUnavailable as e:
                    if self._running:
                        self._fail(e)
                    break
                except Exception as e:
                    logger.warning("Detection failed, treating frame as empty: %s", e)
                    sample, miss = None, e
                if not self._running:
                    break
                self.process(sample, error=miss)
                delay = max(0.0, self.interval_ms - (self._clock() - started))
                await asyncio.sleep(delay / 1000.0)
        finally:
            self._handle = None
            await handle.close()

    def _fail(self, error: CaptureError) -> None:
        logger.error("Detection stopped: %s", error)
        gen = self._generation
        snap = LoopSnapshot(
            state=DetectionState.ERROR,
            detection=NO_FACE,
            timestamp=self._clock(),
            error=str(error),
            message=state_message(DetectionState.ERROR, self.cfg.locale),
        )
        self._running = False
        self.countdown.cancel()
        self._publish(snap, gen)
        if gen == self._generation:
            self.observer.on_error(error)

    # -- per-tick pipeline --

    def process(
        self, sample: Optional[RawSample], now: Optional[float] = None, error: Optional[Exception] = None
    ) -> LoopSnapshot:
        """Run one sample through the whole pipeline and notify once.

        `error` is the transient failure that left this tick without a sample;
        it is carried on the snapshot and does not change the state.
        """
        now = self._clock() if now is None else now
        gen = self._generation
        thresholds = self.cfg.thresholds

        detection = detect(sample, thresholds, *self.image_size)
        base_state = classify(detection, thresholds)
        acceptable = base_state is DetectionState.READY
        stable_ms = self.tracker.update(now, acceptable)
        pose = estimate_pose(detection.landmarks) if isinstance(detection, Detected) else None

        challenge_events: List[ChallengeEvent] = []
        finished: Optional[SequenceResult] = None
        seq = self.sequencer
        if seq is not None:
            if seq.attempt == 0:
                seq.start(now)
            was_finished = seq.finished
            challenge_events = seq.update(now, pose)
            if seq.finished and not was_finished:
                finished = seq.result

        countdown_events: List[CountdownEvent] = []
        if seq is None or seq.passed:
            countdown_events = self.countdown.update(now, acceptable, stable_ms)
        capture_ready = any(e.kind == "complete" for e in countdown_events)
        if capture_ready:
            self._capture_in_flight = True

        state = base_state
        if acceptable:
            if self.countdown.is_counting:
                state = DetectionState.COUNTDOWN
            elif self._capture_in_flight:
                state = DetectionState.CAPTURING

        snap = LoopSnapshot(
            state=state,
            detection=detection,
            timestamp=now,
            pose=pose,
            stable_ms=stable_ms,
            countdown_remaining=self.countdown.remaining,
            capture_in_flight=self._capture_in_flight,
            challenge=seq.active.kind if seq is not None and seq.active is not None else None,
            liveness_progress=seq.progress if seq is not None else None,
            liveness_time_remaining=seq.time_remaining(now) if seq is not None else None,
            sequence=seq.result if seq is not None else None,
            error=str(error) if error is not None else None,
            message=state_message(state, self.cfg.locale, self.countdown.remaining),
        )
        if snap.state is not self._snapshot.state:
            logger.debug("State %s -> %s", self._snapshot.state.value, snap.state.value)

        self._publish(snap, gen)
        obs = self.observer
        for ev in countdown_events:
            if gen != self._generation:
                break
            if ev.kind == "tick":
                obs.on_countdown_tick(ev.remaining)
        for cev in challenge_events:
            if gen != self._generation:
                break
            obs.on_challenge_event(cev)
        if finished is not None and gen == self._generation:
            obs.on_sequence_complete(finished)
        if capture_ready and gen == self._generation:
            logger.info("Capture ready")
            obs.on_capture_ready(snap)
        return snap

    def _publish(self, snap: LoopSnapshot, gen: int) -> None:
        if gen != self._generation:
            return
        self._snapshot = snap
        self.observer.on_state_change(snap.state, snap)

    def _initial_snapshot(self) -> LoopSnapshot:
        return LoopSnapshot(
            state=DetectionState.INITIALIZING,
            detection=NO_FACE,
            message=state_message(DetectionState.INITIALIZING, self.cfg.locale),
        )
