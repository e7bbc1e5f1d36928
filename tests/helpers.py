import math
from typing import List, Tuple

from smart_capture.models.base import BoundingBox, Point, RawSample
from smart_capture.pipeline.detection_loop import DetectionObserver


def make_landmarks(box: BoundingBox, yaw: float = 0.0, ear: float = 0.3, eye_spacing: float = 0.4) -> Tuple[Point, ...]:
    """68 points with the given yaw (degrees), eye aspect ratio and eye spacing (fraction of box width)."""
    cx, cy = box.center
    w, h = box.width, box.height
    pts: List[Point] = [Point(cx, cy)] * 68
    e = eye_spacing * w
    ey = cy - 0.15 * h
    ew = 0.1 * w
    v = ear * ew / 2.0
    for start, ex in ((36, cx - e / 2.0), (42, cx + e / 2.0)):
        pts[start + 0] = Point(ex - ew / 2.0, ey)
        pts[start + 1] = Point(ex - ew / 6.0, ey - v)
        pts[start + 2] = Point(ex + ew / 6.0, ey - v)
        pts[start + 3] = Point(ex + ew / 2.0, ey)
        pts[start + 4] = Point(ex + ew / 6.0, ey + v)
        pts[start + 5] = Point(ex - ew / 6.0, ey + v)
    pts[30] = Point(cx + math.tan(math.radians(yaw)) * e / 2.0, cy + 0.05 * h)
    pts[48] = Point(cx - 0.2 * w, cy + 0.25 * h)
    pts[54] = Point(cx + 0.2 * w, cy + 0.25 * h)
    return tuple(pts)


def make_sample(
    size: float = 0.3,
    center: Tuple[float, float] = (0.5, 0.5),
    score: float = 0.95,
    yaw: float = 0.0,
    ear: float = 0.3,
    eye_spacing: float = 0.4,
    face_count: int = 1,
) -> RawSample:
    side = math.sqrt(size)
    box = BoundingBox(center[0] - side / 2.0, center[1] - side / 2.0, side, side)
    return RawSample(
        box=box,
        landmarks=make_landmarks(box, yaw=yaw, ear=ear, eye_spacing=eye_spacing),
        score=score,
        face_count=face_count,
    )


class Recorder(DetectionObserver):
    def __init__(self):
        self.states = []
        self.ticks = []
        self.captures = []
        self.challenge_events = []
        self.sequences = []
        self.errors = []

    def on_state_change(self, state, snapshot):
        self.states.append((snapshot.timestamp, state))

    def on_countdown_tick(self, remaining):
        self.ticks.append(remaining)

    def on_capture_ready(self, snapshot):
        self.captures.append(snapshot.timestamp)

    def on_challenge_event(self, event):
        self.challenge_events.append(event)

    def on_sequence_complete(self, result):
        self.sequences.append(result)

    def on_error(self, error):
        self.errors.append(error)
