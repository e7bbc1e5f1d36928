import asyncio
import json
import logging
from typing import Iterable, List, Optional, Tuple

from smart_capture.app.errors import ModelUnavailable, SampleTimeout, SourceExhausted
from .base import RawSample, SampleSource

logger = logging.getLogger(__name__)

Recording = List[Tuple[float, Optional[RawSample]]]


class SourceHandle:
    """An opened sample source. Owned by whoever called open_source()."""

    def __init__(self, source: SampleSource):
        self.source = source
        self.closed = False

    async def next_sample(self, timeout_ms: Optional[int] = None) -> Optional[RawSample]:
        if self.closed:
            raise ModelUnavailable("sample source is closed")
        if timeout_ms is None:
            return await self.source.next_sample()
        try:
            return await asyncio.wait_for(self.source.next_sample(), timeout=timeout_ms / 1000.0)
        except asyncio.TimeoutError as e:
            raise SampleTimeout(timeout_ms) from e

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self.source.close()

    async def __aenter__(self) -> "SourceHandle":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


async def open_source(source: SampleSource, timeout_ms: int = 10000) -> SourceHandle:
    try:
        await asyncio.wait_for(source.open(), timeout=timeout_ms / 1000.0)
    except asyncio.TimeoutError as e:
        raise ModelUnavailable(f"model did not load within {timeout_ms} ms") from e
    except ModelUnavailable:
        raise
    except Exception as e:
        raise ModelUnavailable(f"model failed to load: {e}") from e
    logger.debug("Opened sample source %s", type(source).__name__)
    return SourceHandle(source)


class ListSource(SampleSource):
    """Plays back samples from memory, one per call."""

    def __init__(self, samples: Iterable[Optional[RawSample]]):
        self._samples = list(samples)
        self._pos = 0

    async def next_sample(self) -> Optional[RawSample]:
        if self._pos >= len(self._samples):
            raise SourceExhausted(f"all {len(self._samples)} samples consumed")
        s = self._samples[self._pos]
        self._pos += 1
        return s


def load_recording(path: str) -> Recording:
    """Read a JSON-lines recording: one {"t": ms, "sample": {...} | null} per line."""
    records: Recording = []
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                row = json.loads(line)
                raw = row.get("sample")
                sample = RawSample.from_dict(raw) if raw else None
                t = float(row["t"]) if "t" in row else (sample.timestamp_ms if sample else None)
            except (ValueError, KeyError, TypeError) as e:
                raise ValueError(f"{path}:{lineno}: bad record: {e}") from e
            if t is None:
                raise ValueError(f"{path}:{lineno}: record has no timestamp")
            records.append((t, sample))
    return records


class ReplaySource(ListSource):
    def __init__(self, recording: Recording):
        super().__init__(s for _, s in recording)
        self.recording = recording

    @classmethod
    def from_file(cls, path: str) -> "ReplaySource":
        return cls(load_recording(path))
