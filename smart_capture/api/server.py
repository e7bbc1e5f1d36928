from typing import Dict, List, Optional
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from smart_capture.app.config import CHALLENGE_KINDS, load_config
from smart_capture.app.messages import CHALLENGE_MESSAGES, STATE_MESSAGES, state_message
from smart_capture.models.base import LANDMARK_COUNT, Detected, RawSample
from smart_capture.models.landmarks import estimate_pose
from smart_capture.pipeline.quality import classify, detect
from smart_capture.pipeline.replay import replay_recording


app = FastAPI(title="Smart Capture API", version="0.1.0")
cfg = load_config()


class BoxModel(BaseModel):
    x: float
    y: float
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class SampleModel(BaseModel):
    box: BoxModel
    landmarks: List[List[float]] = Field(min_length=LANDMARK_COUNT, max_length=LANDMARK_COUNT)
    score: float = Field(ge=0.0, le=1.0)
    face_count: int = Field(default=1, ge=1)

    def to_sample(self, t: Optional[float] = None) -> RawSample:
        try:
            return RawSample.from_dict({**self.model_dump(), "timestamp_ms": t})
        except (ValueError, IndexError) as e:
            raise HTTPException(status_code=422, detail=str(e))


class EvaluateRequest(BaseModel):
    sample: Optional[SampleModel] = None
    image_width: float = Field(default=1.0, gt=0)
    image_height: float = Field(default=1.0, gt=0)


class EvaluateResponse(BaseModel):
    state: str
    message: str
    position: Optional[Dict[str, float | bool]] = None
    quality: Optional[Dict[str, float | bool]] = None
    yaw: Optional[float] = None
    eye_openness: Optional[float] = None


@app.post("/evaluate", response_model=EvaluateResponse)
def evaluate(req: EvaluateRequest):
    sample = req.sample.to_sample() if req.sample else None
    det = detect(sample, cfg.thresholds, req.image_width, req.image_height)
    state = classify(det, cfg.thresholds)
    resp = EvaluateResponse(state=state.value, message=state_message(state, cfg.locale))
    if isinstance(det, Detected):
        p, q = det.position, det.quality
        resp.position = dict(
            size_ratio=p.size_ratio, center_offset=p.center_offset,
            is_size_valid=p.is_size_valid, is_centered=p.is_centered,
        )
        resp.quality = dict(
            score=q.score, lighting_score=q.lighting_score, sharpness_score=q.sharpness_score,
            eyes_visible=q.eyes_visible, mouth_visible=q.mouth_visible, is_acceptable=q.is_acceptable,
        )
        pose = estimate_pose(det.landmarks)
        resp.yaw = pose.yaw
        resp.eye_openness = pose.eye_openness
    return resp


class TimedSample(BaseModel):
    t: float
    sample: Optional[SampleModel] = None


class ReplayRequest(BaseModel):
    samples: List[TimedSample]
    challenges: Optional[List[str]] = None
    image_width: float = Field(default=1.0, gt=0)
    image_height: float = Field(default=1.0, gt=0)


class ChallengeOutcome(BaseModel):
    kind: str
    outcome: str
    confidence: float


class ReplayResponse(BaseModel):
    states: List[str]
    final_state: Optional[str]
    countdown_ticks: List[int]
    capture_ready_at: List[float]
    challenge_events: List[ChallengeOutcome]
    passed: Optional[bool] = None
    failed_kinds: List[str] = []


@app.post("/replay", response_model=ReplayResponse)
def replay(req: ReplayRequest):
    for kind in req.challenges or []:
        if kind not in CHALLENGE_KINDS:
            raise HTTPException(status_code=422, detail=f"unknown challenge {kind!r}")
    recording = [(ts.t, ts.sample.to_sample(ts.t) if ts.sample else None) for ts in req.samples]
    recording.sort(key=lambda r: r[0])
    report = replay_recording(recording, cfg, req.challenges, (req.image_width, req.image_height))
    seq = report.sequence
    return ReplayResponse(
        states=[s.value for _, s in report.states],
        final_state=report.last.state.value if report.last else None,
        countdown_ticks=[n for _, n in report.countdown_ticks],
        capture_ready_at=report.capture_ready_at,
        challenge_events=[
            ChallengeOutcome(kind=e.kind.value, outcome=e.outcome, confidence=e.confidence)
            for e in report.challenge_events
        ],
        passed=seq.passed if seq else None,
        failed_kinds=[k.value for k in seq.failed_kinds] if seq else [],
    )


@app.get("/config")
def config():
    return cfg.to_dict()


@app.get("/messages")
def messages(locale: str = "en"):
    if locale not in STATE_MESSAGES:
        raise HTTPException(status_code=404, detail=f"unknown locale {locale!r}")
    return {"states": STATE_MESSAGES[locale], "challenges": CHALLENGE_MESSAGES[locale]}
