"""
Stage timeline.

Records how long each named pipeline stage took. Recording wraps the stage
call and never alters its result; an entry is appended even when the stage
raises.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Tuple, TypeVar

from .logging import setup_logger

logger = setup_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class TimelineEntry:
    stage: str
    duration: float


class Timeline:
    """
    Append-only list of (stage, duration) entries.

    Example:
        timeline = Timeline()
        cloud = timeline.record("load", loader.load, path)
        with timeline.stage("align"):
            result = engine.align(src, tgt)
        print(timeline.emit())
    """

    def __init__(self):
        self._entries: List[TimelineEntry] = []

    @property
    def entries(self) -> Tuple[TimelineEntry, ...]:
        return tuple(self._entries)

    @property
    def total(self) -> float:
        return sum(e.duration for e in self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        start = time.time()
        try:
            yield
        finally:
            duration = time.time() - start
            self._entries.append(TimelineEntry(name, duration))
            logger.debug(f"Stage '{name}' took {duration:.4f} s")

    def record(self, name: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run fn(*args, **kwargs) as stage `name` and return its result."""
        with self.stage(name):
            return fn(*args, **kwargs)

    def emit(self, log: bool = True) -> str:
        """
        Build the ordered timeline report.

        Args:
            log: Also write the report to the logger

        Returns:
            Multi-line report with one line per stage and the total
        """
        width = max([len(e.stage) for e in self._entries] + [len("total")])
        lines = ["Timeline:"]
        for entry in self._entries:
            lines.append(f"  {entry.stage:<{width}}  {_format_duration(entry.duration)}")
        lines.append(f"  {'total':<{width}}  {_format_duration(self.total)}")
        report = "\n".join(lines)
        if log:
            logger.info(report)
        return report


def _format_duration(seconds: float) -> str:
    if seconds < 1.0:
        return f"{seconds * 1000.0:.1f} ms"
    minutes, secs = divmod(seconds, 60.0)
    if minutes < 1:
        return f"{secs:.2f} s"
    return f"{int(minutes)} min {secs:05.2f} s"
