import enum
from dataclasses import dataclass, field
from typing import Any, Dict, NamedTuple, Optional, Tuple, Union


LANDMARK_COUNT = 68


class Point(NamedTuple):
    x: float
    y: float


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> Point:
        return Point(self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass(frozen=True)
class RawSample:
    box: BoundingBox
    landmarks: Tuple[Point, ...]
    score: float
    face_count: int = 1  # candidates the detector saw; box/landmarks belong to the best one
    timestamp_ms: Optional[float] = None

    def __post_init__(self):
        if len(self.landmarks) != LANDMARK_COUNT:
            raise ValueError(f"expected {LANDMARK_COUNT} landmarks, got {len(self.landmarks)}")

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RawSample":
        box = d["box"]
        if isinstance(box, dict):
            bb = BoundingBox(float(box["x"]), float(box["y"]), float(box["width"]), float(box["height"]))
        else:
            bb = BoundingBox(*[float(v) for v in box])
        pts = tuple(Point(float(p[0]), float(p[1])) for p in d["landmarks"])
        ts = d.get("timestamp_ms")
        return cls(
            box=bb,
            landmarks=pts,
            score=float(d["score"]),
            face_count=int(d.get("face_count", 1)),
            timestamp_ms=float(ts) if ts is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "box": {"x": self.box.x, "y": self.box.y, "width": self.box.width, "height": self.box.height},
            "landmarks": [[p.x, p.y] for p in self.landmarks],
            "score": self.score,
            "face_count": self.face_count,
            "timestamp_ms": self.timestamp_ms,
        }


@dataclass(frozen=True)
class PositionVerdict:
    size_ratio: float
    center_offset: float
    center: Point
    is_size_valid: bool
    is_centered: bool


@dataclass(frozen=True)
class QualityVerdict:
    score: float
    lighting_score: float
    sharpness_score: float
    eyes_visible: bool
    mouth_visible: bool
    is_acceptable: bool


@dataclass(frozen=True)
class PoseEstimate:
    yaw: float  # degrees, negative when the subject turns to their right
    eye_openness: float  # eye aspect ratio, both eyes averaged


@dataclass(frozen=True)
class NoFace:
    detected: bool = field(default=False, init=False)
    face_count: int = field(default=0, init=False)


@dataclass(frozen=True)
class Detected:
    sample: RawSample
    position: PositionVerdict
    quality: QualityVerdict
    detected: bool = field(default=True, init=False)

    @property
    def face_count(self) -> int:
        return self.sample.face_count

    @property
    def landmarks(self) -> Tuple[Point, ...]:
        return self.sample.landmarks


DetectionResult = Union[NoFace, Detected]
NO_FACE = NoFace()


class DetectionState(str, enum.Enum):
    INITIALIZING = "initializing"
    NO_FACE = "no_face"
    FACE_TOO_SMALL = "face_too_small"
    FACE_TOO_LARGE = "face_too_large"
    FACE_NOT_CENTERED = "face_not_centered"
    POOR_LIGHTING = "poor_lighting"
    MULTIPLE_FACES = "multiple_faces"
    READY = "ready"
    COUNTDOWN = "countdown"
    CAPTURING = "capturing"
    ERROR = "error"


class SampleSource:
    """Asynchronous per-frame detector output.

    `next_sample` returns None when the frame holds no face. Raising
    ModelUnavailable stops the detection loop; anything else is treated as a
    transient miss.
    """

    async def open(self) -> None:
        return None

    async def next_sample(self) -> Optional[RawSample]:
        raise NotImplementedError

    async def close(self) -> None:
        return None
