import time
from typing import Sequence, Tuple
import numpy as np


def now_ms() -> float:
    return time.monotonic() * 1000.0


def clamp(v: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, v))


def mean_point(points: Sequence[Tuple[float, float]]) -> np.ndarray:
    arr = np.asarray(points, dtype=np.float64)
    return arr.mean(axis=0)


def distance(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)))
