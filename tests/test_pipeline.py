from smart_capture.app.config import AppConfig
from smart_capture.models.base import NO_FACE, DetectionState
from smart_capture.models.source import ListSource
from smart_capture.pipeline.detection_loop import DetectionLoop
from smart_capture.pipeline.liveness import ChallengeKind

from helpers import Recorder, make_sample


def make_loop(cfg=None, challenges=None):
    rec = Recorder()
    loop = DetectionLoop(ListSource([]), cfg or AppConfig(), rec, challenges=challenges, memory_gb=8.0)
    return loop, rec


def feed(loop, samples, t0=0, step=100):
    for i, s in enumerate(samples):
        loop.process(s, now=t0 + i * step)


def test_steady_face_counts_down_and_captures_once():
    loop, rec = make_loop()
    feed(loop, [make_sample()] * 50)
    states = [s for _, s in rec.states]
    assert len(states) == 50
    assert states[:5] == [DetectionState.READY] * 5
    assert states[5] is DetectionState.COUNTDOWN
    assert rec.ticks == [3, 2, 1]
    assert rec.captures == [3500]
    assert states[35:] == [DetectionState.CAPTURING] * 15
    assert loop.current_detection().capture_in_flight


def test_losing_the_face_cancels_countdown():
    loop, rec = make_loop()
    samples = [make_sample()] * 10 + [None] + [make_sample()] * 10
    feed(loop, samples)
    states = [s for _, s in rec.states]
    assert states[10] is DetectionState.NO_FACE
    assert rec.captures == []
    # a fresh streak starts at sample 11, countdown again at 16
    assert states[15] is DetectionState.READY
    assert states[16] is DetectionState.COUNTDOWN


def test_quality_state_overrides_countdown():
    loop, rec = make_loop()
    feed(loop, [make_sample()] * 7 + [make_sample(size=0.05)])
    assert rec.states[-1][1] is DetectionState.FACE_TOO_SMALL
    assert not loop.countdown.is_counting


def test_countdown_message_carries_seconds_left():
    loop, _ = make_loop()
    feed(loop, [make_sample()] * 6)
    snap = loop.current_detection()
    assert snap.countdown_remaining == 3
    assert "3" in snap.message


def test_cancel_countdown_requires_new_streak():
    loop, rec = make_loop()
    feed(loop, [make_sample()] * 7)
    assert loop.state is DetectionState.COUNTDOWN
    loop.cancel_countdown()
    loop.cancel_countdown()
    feed(loop, [make_sample()] * 10, t0=700)
    states = [s for t, s in rec.states if t >= 700]
    assert states[:5] == [DetectionState.READY] * 5
    assert states[5] is DetectionState.COUNTDOWN
    assert rec.ticks == [3, 3]


def test_retry_capture_is_bounded():
    cfg = AppConfig()
    cfg.capture.max_capture_retries = 1
    loop, rec = make_loop(cfg)
    feed(loop, [make_sample()] * 37)
    assert rec.captures == [3500]
    assert loop.retry_capture()
    assert not loop.retry_capture()
    feed(loop, [make_sample()] * 40, t0=3700)
    assert rec.captures == [3500, 7200]
    assert not loop.retry_capture()


def test_liveness_gates_the_countdown():
    loop, rec = make_loop(challenges=["turn_right", "turn_left"])
    yaws = [0, -25, -25, -25, -25, -25, -25, 0, 20] + [0] * 40
    feed(loop, [make_sample(yaw=y) for y in yaws])
    assert len(rec.sequences) == 1 and rec.sequences[0].passed
    first_countdown = next(t for t, s in rec.states if s is DetectionState.COUNTDOWN)
    assert first_countdown == 800
    assert all(s is DetectionState.READY for t, s in rec.states if t < 800)
    assert [e.outcome for e in rec.challenge_events] == ["armed", "succeeded", "armed", "succeeded"]
    assert rec.captures == [3800]


def test_failed_liveness_blocks_capture_until_retry():
    cfg = AppConfig()
    cfg.liveness.timeout_ms = 1000
    loop, rec = make_loop(cfg, challenges=["turn_right", "turn_left"])
    feed(loop, [make_sample()] * 30)
    assert len(rec.sequences) == 1
    result = rec.sequences[0]
    assert not result.passed
    assert result.failed_kinds == (ChallengeKind.TURN_RIGHT, ChallengeKind.TURN_LEFT)
    assert rec.ticks == [] and rec.captures == []
    assert loop.current_detection().sequence is result
    assert loop.retry_liveness()
    assert loop.sequencer.attempt == 2


def test_reset_is_idempotent_and_silent():
    loop, rec = make_loop()
    feed(loop, [make_sample()] * 8)
    n = len(rec.states)
    loop.reset()
    loop.reset()
    loop.stop()
    assert len(rec.states) == n
    assert loop.state is DetectionState.INITIALIZING
    assert loop.current_detection().detection is NO_FACE
    assert not loop.countdown.is_counting
    feed(loop, [make_sample()] * 6, t0=10000)
    assert rec.states[-1][1] is DetectionState.COUNTDOWN
