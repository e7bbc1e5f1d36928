"""Face quality gating, auto-capture countdown and active liveness challenges."""

__version__ = "0.1.0"
