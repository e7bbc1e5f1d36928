import asyncio

from smart_capture.app.config import AppConfig, SamplingConfig
from smart_capture.app.errors import ModelUnavailable, SourceExhausted
from smart_capture.models.base import DetectionState, SampleSource
from smart_capture.pipeline.detection_loop import DetectionLoop, detection_interval_ms, optimal_fps

from helpers import Recorder, make_sample


SLOW = object()


class Clock:
    def __init__(self, t=0.0):
        self.t = t

    def __call__(self):
        return self.t


class ScriptedSource(SampleSource):
    """Hands out `items` in order. With a clock, each sample advances it by `step` ms."""

    def __init__(self, items, open_error=None, open_delay=0.0, clock=None, step=100):
        self.items = list(items)
        self.clock = clock
        self.step = step
        self.open_error = open_error
        self.open_delay = open_delay
        self.closed = 0

    async def open(self):
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.open_error is not None:
            raise self.open_error

    async def next_sample(self):
        if not self.items:
            raise SourceExhausted("done")
        item = self.items.pop(0)
        if self.clock is not None:
            self.clock.t += self.step
        if item is SLOW:
            await asyncio.sleep(5)
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        self.closed += 1


def fast_config():
    cfg = AppConfig()
    cfg.sampling.target_fps = 1000
    cfg.sampling.sample_timeout_ms = 50
    cfg.sampling.model_load_timeout_ms = 50
    return cfg


def run(loop):
    async def main():
        await loop.start()
        await loop.wait()

    asyncio.run(main())


def states(rec):
    return [s for _, s in rec.states]


def test_fps_selection():
    assert optimal_fps(SamplingConfig(), memory_gb=2.0) == 15
    assert optimal_fps(SamplingConfig(), memory_gb=16.0) == 30
    assert optimal_fps(SamplingConfig(), memory_gb=None) == 30
    assert optimal_fps(SamplingConfig(target_fps=10), memory_gb=2.0) == 10
    assert detection_interval_ms(30) == 33
    assert detection_interval_ms(15) == 67


def test_runs_until_source_is_exhausted():
    src = ScriptedSource([make_sample()] * 3)
    rec = Recorder()
    loop = DetectionLoop(src, fast_config(), rec)
    run(loop)
    assert states(rec) == [DetectionState.INITIALIZING] + [DetectionState.READY] * 3
    assert not loop.running
    assert src.closed == 1
    assert rec.errors == []


def test_open_failure_reports_one_error():
    src = ScriptedSource([make_sample()], open_error=RuntimeError("weights missing"))
    rec = Recorder()
    loop = DetectionLoop(src, fast_config(), rec)
    run(loop)
    assert states(rec) == [DetectionState.INITIALIZING, DetectionState.ERROR]
    assert len(rec.errors) == 1 and isinstance(rec.errors[0], ModelUnavailable)
    assert "weights missing" in loop.current_detection().error
    assert not loop.running


def test_open_timeout_is_model_unavailable():
    src = ScriptedSource([], open_delay=1.0)
    rec = Recorder()
    loop = DetectionLoop(src, fast_config(), rec)
    run(loop)
    assert loop.state is DetectionState.ERROR
    assert len(rec.errors) == 1 and isinstance(rec.errors[0], ModelUnavailable)


def test_transient_errors_read_as_no_face():
    src = ScriptedSource([make_sample(), RuntimeError("glitch"), SLOW, make_sample()])
    rec = Recorder()
    loop = DetectionLoop(src, fast_config(), rec)
    run(loop)
    assert states(rec) == [
        DetectionState.INITIALIZING,
        DetectionState.READY,
        DetectionState.NO_FACE,
        DetectionState.NO_FACE,
        DetectionState.READY,
    ]
    assert rec.errors == []


def test_model_loss_mid_run_stops_with_error():
    src = ScriptedSource([make_sample(), ModelUnavailable("gpu lost"), make_sample()])
    rec = Recorder()
    loop = DetectionLoop(src, fast_config(), rec)
    run(loop)
    assert states(rec) == [DetectionState.INITIALIZING, DetectionState.READY, DetectionState.ERROR]
    assert len(rec.errors) == 1
    assert src.closed == 1
    assert len(src.items) == 1


def test_no_notifications_after_stop():
    src = ScriptedSource([make_sample()] * 20)
    loop = None

    class Stopper(Recorder):
        def on_state_change(self, state, snapshot):
            super().on_state_change(state, snapshot)
            if state is DetectionState.READY:
                loop.stop()

    rec = Stopper()
    loop = DetectionLoop(src, fast_config(), rec)
    run(loop)
    assert states(rec) == [DetectionState.INITIALIZING, DetectionState.READY]
    assert not loop.running
    assert src.closed == 1
    loop.stop()
    loop.reset()
    assert states(rec) == [DetectionState.INITIALIZING, DetectionState.READY]


def test_start_is_noop_while_running():
    src = ScriptedSource([make_sample()] * 5)
    rec = Recorder()
    loop = DetectionLoop(src, fast_config(), rec)

    async def main():
        await loop.start()
        await loop.start()
        await loop.wait()

    asyncio.run(main())
    assert states(rec).count(DetectionState.INITIALIZING) == 1


def test_sample_timeout_is_reported_on_the_snapshot():
    src = ScriptedSource([make_sample(), SLOW])
    loop = DetectionLoop(src, fast_config(), Recorder())
    run(loop)
    snap = loop.current_detection()
    assert snap.state is DetectionState.NO_FACE
    assert "50 ms" in snap.error


def test_transient_error_is_reported_on_the_snapshot():
    src = ScriptedSource([RuntimeError("glitch")])
    loop = DetectionLoop(src, fast_config(), Recorder())
    run(loop)
    assert loop.current_detection().error == "glitch"


def test_restart_after_exhaustion_starts_a_fresh_streak():
    clock = Clock()
    rec = Recorder()
    loop = DetectionLoop(ScriptedSource([make_sample()] * 40, clock=clock), fast_config(), rec, clock=clock)
    run(loop)
    assert rec.captures == [3600]

    clock.t = 600000
    loop.source = ScriptedSource([make_sample()], clock=clock)
    run(loop)
    assert rec.states[-2:] == [(0.0, DetectionState.INITIALIZING), (600100, DetectionState.READY)]
    assert loop.current_detection().stable_ms == 0
    assert not loop.current_detection().capture_in_flight
    assert rec.captures == [3600]


def test_restart_after_stop_starts_a_fresh_streak():
    clock = Clock()
    loop = None

    class StopOnCountdown(Recorder):
        def on_state_change(self, state, snapshot):
            super().on_state_change(state, snapshot)
            if state is DetectionState.COUNTDOWN:
                loop.stop()

    rec = StopOnCountdown()
    loop = DetectionLoop(ScriptedSource([make_sample()] * 20, clock=clock), fast_config(), rec, clock=clock)
    run(loop)
    assert rec.states[-1] == (600, DetectionState.COUNTDOWN)

    clock.t = 600000
    loop.source = ScriptedSource([make_sample()], clock=clock)
    run(loop)
    assert rec.states[-1] == (600100, DetectionState.READY)
    assert rec.ticks == []


def test_liveness_runs_through_the_live_loop():
    clock = Clock()
    rec = Recorder()
    yaws = [0, -25, 0, 20] + [0] * 40
    src = ScriptedSource([make_sample(yaw=y) for y in yaws], clock=clock)
    loop = DetectionLoop(src, fast_config(), rec, challenges=["turn_right", "turn_left"], clock=clock)
    run(loop)
    assert [e.outcome for e in rec.challenge_events] == ["armed", "succeeded", "armed", "succeeded"]
    assert len(rec.sequences) == 1 and rec.sequences[0].passed
    assert rec.captures == [3600]


def test_restart_gives_liveness_a_fresh_attempt():
    clock = Clock()
    rec = Recorder()
    src = ScriptedSource([make_sample()] * 3, clock=clock)
    loop = DetectionLoop(src, fast_config(), rec, challenges=["turn_left"], clock=clock)
    run(loop)

    clock.t = 600000
    loop.source = ScriptedSource([make_sample(yaw=0), make_sample(yaw=20)], clock=clock)
    run(loop)
    assert [e.outcome for e in rec.challenge_events] == ["armed", "armed", "succeeded"]
    assert len(rec.sequences) == 1 and rec.sequences[0].passed
    assert loop.sequencer.attempt == 1
