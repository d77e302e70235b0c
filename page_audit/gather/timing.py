"""Run-scoped timing entries (exposed as the `Timing` base artifact)."""

from __future__ import annotations

import logging
import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger("page_audit.gather.timing")


class TimingLog:
    def __init__(self) -> None:
        self._origin = time.time()
        self._entries: list[dict[str, Any]] = []

    @contextmanager
    def measure(self, name: str, *, level: int = logging.DEBUG) -> Generator[None, None, None]:
        start = time.perf_counter()
        start_wall = time.time()
        logger.log(level, "start %s", name)
        try:
            yield
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            self._entries.append(
                {
                    "name": name,
                    "startTime": round((start_wall - self._origin) * 1000.0, 3),
                    "duration": round(duration_ms, 3),
                }
            )
            logger.log(level, "end %s (%.1fms)", name, duration_ms)

    def entries(self) -> list[dict[str, Any]]:
        return list(self._entries)


__all__ = ["TimingLog"]
