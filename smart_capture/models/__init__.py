from .base import (
    LANDMARK_COUNT,
    NO_FACE,
    BoundingBox,
    Detected,
    DetectionResult,
    DetectionState,
    NoFace,
    Point,
    PoseEstimate,
    PositionVerdict,
    QualityVerdict,
    RawSample,
    SampleSource,
)
from .landmarks import estimate_pose, estimate_yaw, eye_aspect_ratio
from .source import ListSource, ReplaySource, SourceHandle, load_recording, open_source

__all__ = [
    "LANDMARK_COUNT",
    "NO_FACE",
    "BoundingBox",
    "Detected",
    "DetectionResult",
    "DetectionState",
    "NoFace",
    "Point",
    "PoseEstimate",
    "PositionVerdict",
    "QualityVerdict",
    "RawSample",
    "SampleSource",
    "estimate_pose",
    "estimate_yaw",
    "eye_aspect_ratio",
    "ListSource",
    "ReplaySource",
    "SourceHandle",
    "load_recording",
    "open_source",
]
