from typing import Optional


class StabilityTracker:
    """How long the subject has been continuously acceptable."""

    def __init__(self):
        self.ready_since: Optional[float] = None

    def update(self, now: float, is_acceptable: bool) -> float:
        if not is_acceptable:
            self.ready_since = None
            return 0.0
        if self.ready_since is None:
            self.ready_since = now
        return now - self.ready_since

    def reset(self) -> None:
        self.ready_since = None
