import logging
import os
import yaml
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from smart_capture.app.errors import ConfigInvalid

logger = logging.getLogger(__name__)


CONFIG_ENV = "SMART_CAPTURE_CONFIG"
DEFAULT_CONFIG_PATHS = [
    ".smart-capture.yaml",
    "./config.yaml",
    "/etc/smart-capture/config.yaml",
]

CHALLENGE_KINDS = ("turn_left", "turn_right", "blink")
LOCALES = ("en", "pt-BR")


@dataclass
class Thresholds:
    # Face area as a fraction of the image area
    min_face_size: float = 0.15
    max_face_size: float = 0.65
    max_center_offset: float = 0.15
    min_detection_score: float = 0.9
    # Landmark heuristics, fractions of box width
    eye_visible_ratio: float = 0.2
    expected_eye_ratio: float = 0.4
    mouth_visible_ratio: float = 0.15
    lighting_gain: float = 1.2


@dataclass
class CaptureConfig:
    stability_time_ms: int = 500
    countdown_seconds: int = 3
    max_capture_retries: int = 5


@dataclass
class SamplingConfig:
    target_fps: Optional[int] = None  # overrides the device-based choice
    high_end_fps: int = 30
    low_end_fps: int = 15
    device_memory_threshold_gb: float = 4.0
    sample_timeout_ms: int = 1000
    model_load_timeout_ms: int = 10000


@dataclass
class LivenessConfig:
    challenges: List[str] = field(default_factory=lambda: ["turn_left", "turn_right"])
    timeout_ms: int = 15000
    neutral_yaw_threshold: float = 10.0
    axis_threshold_degrees: Dict[str, float] = field(
        default_factory=lambda: {"turn_left": 15.0, "turn_right": 15.0, "blink": 0.0}
    )
    # Eye aspect ratio below which the eyes count as closed
    blink_ear_threshold: float = 0.2
    max_attempts: int = 3


@dataclass
class AppConfig:
    thresholds: Thresholds = field(default_factory=Thresholds)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    liveness: LivenessConfig = field(default_factory=LivenessConfig)
    locale: str = "en"
    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _merge_dict(d: dict, u: dict) -> dict:
    for k, v in u.items():
        if isinstance(v, dict) and isinstance(d.get(k), dict):
            d[k] = _merge_dict(d[k], v)
        else:
            d[k] = v
    return d


def validate_config(cfg: AppConfig, source: Optional[str] = None) -> AppConfig:
    problems: List[str] = []
    t = cfg.thresholds
    if not (0.0 < t.min_face_size <= t.max_face_size <= 1.0):
        problems.append("thresholds: need 0 < min_face_size <= max_face_size <= 1")
    if not (0.0 <= t.max_center_offset <= 1.0):
        problems.append("thresholds.max_center_offset must be within [0, 1]")
    if not (0.0 <= t.min_detection_score <= 1.0):
        problems.append("thresholds.min_detection_score must be within [0, 1]")
    for name in ("eye_visible_ratio", "expected_eye_ratio", "mouth_visible_ratio", "lighting_gain"):
        if getattr(t, name) <= 0:
            problems.append(f"thresholds.{name} must be positive")

    c = cfg.capture
    if c.stability_time_ms < 0:
        problems.append("capture.stability_time_ms must not be negative")
    if c.countdown_seconds < 1:
        problems.append("capture.countdown_seconds must be at least 1")
    if c.max_capture_retries < 0:
        problems.append("capture.max_capture_retries must not be negative")

    s = cfg.sampling
    if s.target_fps is not None and s.target_fps <= 0:
        problems.append("sampling.target_fps must be positive")
    if s.high_end_fps <= 0 or s.low_end_fps <= 0:
        problems.append("sampling fps values must be positive")
    if s.sample_timeout_ms <= 0 or s.model_load_timeout_ms <= 0:
        problems.append("sampling timeouts must be positive")

    lv = cfg.liveness
    for kind in lv.challenges:
        if kind not in CHALLENGE_KINDS:
            problems.append(f"liveness.challenges: unknown kind {kind!r}")
    if lv.timeout_ms <= 0:
        problems.append("liveness.timeout_ms must be positive")
    if lv.neutral_yaw_threshold <= 0:
        problems.append("liveness.neutral_yaw_threshold must be positive")
    for kind in ("turn_left", "turn_right"):
        thr = lv.axis_threshold_degrees.get(kind)
        if thr is None or thr <= 0:
            problems.append(f"liveness.axis_threshold_degrees.{kind} must be positive")
        elif thr < lv.neutral_yaw_threshold:
            # a turn that still counts as neutral can never be told apart from it
            problems.append(f"liveness.axis_threshold_degrees.{kind} is below neutral_yaw_threshold")
    if not (0.0 < lv.blink_ear_threshold < 1.0):
        problems.append("liveness.blink_ear_threshold must be within (0, 1)")
    if lv.max_attempts < 1:
        problems.append("liveness.max_attempts must be at least 1")

    if cfg.locale not in LOCALES:
        problems.append(f"locale must be one of {', '.join(LOCALES)}")

    if problems:
        raise ConfigInvalid(problems, source)
    return cfg


def build_config(data: Optional[dict] = None, source: Optional[str] = None) -> AppConfig:
    cfg = AppConfig()
    merged = _merge_dict(cfg.to_dict(), data or {})
    try:
        # Manual map to dataclasses
        cfg.thresholds = Thresholds(**merged.get("thresholds", {}))
        cfg.capture = CaptureConfig(**merged.get("capture", {}))
        cfg.sampling = SamplingConfig(**merged.get("sampling", {}))
        cfg.liveness = LivenessConfig(**merged.get("liveness", {}))
    except TypeError as e:
        raise ConfigInvalid([str(e)], source) from e
    cfg.locale = str(merged.get("locale", cfg.locale))
    cfg.log_level = str(merged.get("log_level", cfg.log_level)).upper()
    return validate_config(cfg, source)


def load_config(path: Optional[str] = None) -> AppConfig:
    data: dict = {}
    loaded_from = []
    paths = [path] if path else [p for p in [os.environ.get(CONFIG_ENV, "")] + DEFAULT_CONFIG_PATHS if p]
    if path and not os.path.exists(path):
        raise FileNotFoundError(path)
    for p in paths:
        if not os.path.exists(p):
            continue
        try:
            with open(p, "r", encoding="utf-8") as f:
                doc = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.warning("Skipping unreadable config %s: %s", p, e)
            continue
        if not isinstance(doc, dict):
            logger.warning("Skipping config %s: top level is not a mapping", p)
            continue
        data = _merge_dict(data, doc)
        loaded_from.append(p)
    if loaded_from:
        logger.debug("Loaded config from %s", ", ".join(loaded_from))
    return build_config(data, ", ".join(loaded_from) or None)
