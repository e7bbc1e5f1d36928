import math
from typing import Optional, Tuple

from smart_capture.app.config import Thresholds
from smart_capture.app.utils import clamp
from smart_capture.models.base import (
    NO_FACE,
    Detected,
    DetectionResult,
    DetectionState,
    PositionVerdict,
    QualityVerdict,
    RawSample,
)
from smart_capture.models.landmarks import eye_distance, mouth_width


def evaluate_position(
    sample: RawSample, image_width: float, image_height: float, thresholds: Thresholds
) -> PositionVerdict:
    box = sample.box
    size_ratio = box.area / (image_width * image_height)
    center = box.center
    off_x = abs(center.x - image_width / 2.0) / image_width
    off_y = abs(center.y - image_height / 2.0) / image_height
    center_offset = math.sqrt(off_x * off_x + off_y * off_y)
    return PositionVerdict(
        size_ratio=size_ratio,
        center_offset=center_offset,
        center=center,
        is_size_valid=thresholds.min_face_size <= size_ratio <= thresholds.max_face_size,
        is_centered=center_offset <= thresholds.max_center_offset,
    )


def evaluate_quality(sample: RawSample, position: PositionVerdict, thresholds: Thresholds) -> QualityVerdict:
    box_w = sample.box.width
    # Lighting and sharpness are proxies derived from the detector confidence
    # and landmark spread, not from pixel statistics.
    lighting = min(1.0, sample.score * thresholds.lighting_gain)
    eyes = eye_distance(sample.landmarks)
    expected = box_w * thresholds.expected_eye_ratio
    eye_ratio = eyes / expected if expected > 0 else 0.0
    sharpness = clamp(1.0 - abs(1.0 - eye_ratio))
    eyes_visible = eyes > box_w * thresholds.eye_visible_ratio
    mouth_visible = mouth_width(sample.landmarks) > box_w * thresholds.mouth_visible_ratio

    score = (sample.score + lighting + sharpness) / 3.0
    return QualityVerdict(
        score=score,
        lighting_score=lighting,
        sharpness_score=sharpness,
        eyes_visible=eyes_visible,
        mouth_visible=mouth_visible,
        is_acceptable=(
            score >= thresholds.min_detection_score
            and position.is_size_valid
            and position.is_centered
            and eyes_visible
        ),
    )


def evaluate(
    sample: RawSample, image_width: float, image_height: float, thresholds: Thresholds
) -> Tuple[PositionVerdict, QualityVerdict]:
    position = evaluate_position(sample, image_width, image_height, thresholds)
    return position, evaluate_quality(sample, position, thresholds)


def detect(
    sample: Optional[RawSample], thresholds: Thresholds, image_width: float = 1.0, image_height: float = 1.0
) -> DetectionResult:
    if sample is None:
        return NO_FACE
    position, quality = evaluate(sample, image_width, image_height, thresholds)
    return Detected(sample=sample, position=position, quality=quality)


def classify(detection: DetectionResult, thresholds: Thresholds) -> DetectionState:
    """Quality-derived state for one detection, first match wins."""
    if not isinstance(detection, Detected):
        return DetectionState.NO_FACE
    if detection.face_count > 1:
        return DetectionState.MULTIPLE_FACES
    position = detection.position
    if position.size_ratio < thresholds.min_face_size:
        return DetectionState.FACE_TOO_SMALL
    if position.size_ratio > thresholds.max_face_size:
        return DetectionState.FACE_TOO_LARGE
    if not position.is_centered:
        return DetectionState.FACE_NOT_CENTERED
    if not detection.quality.is_acceptable:
        return DetectionState.POOR_LIGHTING
    return DetectionState.READY
