"""Geometry over the 68-point facial landmark layout.

    0-16 jaw, 17-21 / 22-26 brows, 27-35 nose (30 is the tip),
    36-41 left eye, 42-47 right eye, 48-67 mouth (48 and 54 are the corners).
"""

import math
from typing import Sequence, Tuple
import numpy as np

from smart_capture.app.utils import distance, mean_point
from .base import Point, PoseEstimate

LEFT_EYE = slice(36, 42)
RIGHT_EYE = slice(42, 48)
NOSE_TIP = 30
MOUTH_LEFT = 48
MOUTH_RIGHT = 54


def _points(landmarks: Sequence[Point]) -> np.ndarray:
    return np.asarray(landmarks, dtype=np.float64)


def eye_centers(landmarks: Sequence[Point]) -> Tuple[np.ndarray, np.ndarray]:
    pts = _points(landmarks)
    return mean_point(pts[LEFT_EYE]), mean_point(pts[RIGHT_EYE])


def eye_distance(landmarks: Sequence[Point]) -> float:
    left, right = eye_centers(landmarks)
    return distance(left, right)


def mouth_width(landmarks: Sequence[Point]) -> float:
    return abs(landmarks[MOUTH_RIGHT].x - landmarks[MOUTH_LEFT].x)


def _eye_aspect_ratio(eye: np.ndarray) -> float:
    horizontal = distance(eye[0], eye[3])
    if horizontal < 1e-9:
        return 0.0
    vertical = distance(eye[1], eye[5]) + distance(eye[2], eye[4])
    return vertical / (2.0 * horizontal)


def eye_aspect_ratio(landmarks: Sequence[Point]) -> float:
    pts = _points(landmarks)
    return 0.5 * (_eye_aspect_ratio(pts[LEFT_EYE]) + _eye_aspect_ratio(pts[RIGHT_EYE]))


def estimate_yaw(landmarks: Sequence[Point]) -> float:
    # Horizontal nose offset from the eye midpoint, in half eye-distances,
    # mapped to an angle. Camera view, not mirrored.
    left, right = eye_centers(landmarks)
    half = distance(left, right) / 2.0
    if half < 1e-9:
        return 0.0
    mid_x = (left[0] + right[0]) / 2.0
    dx = landmarks[NOSE_TIP].x - mid_x
    return math.degrees(math.atan2(dx, half))


def estimate_pose(landmarks: Sequence[Point]) -> PoseEstimate:
    return PoseEstimate(yaw=estimate_yaw(landmarks), eye_openness=eye_aspect_ratio(landmarks))
