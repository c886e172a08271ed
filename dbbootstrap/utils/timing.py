"""
Stage timing for the bootstrap path.

Usage:
    from dbbootstrap.utils.timing import time_stage

    with time_stage("establish") as timing:
        handle = await establish(config)

    log.info("took %.1f ms", timing.duration_ms)
"""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass, field
from typing import Generator


@dataclass
class StageTiming:
    """
    Wall-clock measurement of one stage. Filled in when the block exits,
    whether it raised or not.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)

    @property
    def duration_ms(self) -> float:
        return self.duration_seconds * 1000.0


@contextlib.contextmanager
def time_stage(label: str) -> Generator[StageTiming, None, None]:
    timing = StageTiming(label=label)
    timing.start_ts = time.perf_counter()
    try:
        yield timing
    finally:
        timing.end_ts = time.perf_counter()
        timing.duration_seconds = timing.end_ts - timing.start_ts


__all__ = ["StageTiming", "time_stage"]
