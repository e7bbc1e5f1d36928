from typing import List, Optional


class CaptureError(Exception):
    pass


class ModelUnavailable(CaptureError):
    """The detection model behind the sample source cannot be queried."""


class SampleTimeout(CaptureError):
    def __init__(self, timeout_ms: int):
        super().__init__(f"no sample within {timeout_ms} ms")
        self.timeout_ms = timeout_ms


class ChallengeTimeout(CaptureError):
    def __init__(self, kind: str, timeout_ms: int):
        super().__init__(f"challenge {kind} not completed within {timeout_ms} ms")
        self.kind = kind
        self.timeout_ms = timeout_ms


class ConfigInvalid(CaptureError):
    def __init__(self, problems: List[str], source: Optional[str] = None):
        where = f" ({source})" if source else ""
        super().__init__(f"invalid configuration{where}: " + "; ".join(problems))
        self.problems = list(problems)
        self.source = source


class SourceExhausted(CaptureError):
    """A finite sample source (e.g. a recording) has no more samples."""
