from __future__ import annotations

import asyncio
import inspect
import time
from typing import Awaitable, Callable, List, Optional, Union

from common.errors import LocationUnavailable
from common.logging_setup import get_logger
from common.types import GeoFix
from common.utils import iso_now_ms
from location.sources import LocationSource


log = get_logger("location.sampler")

ReadingCallback = Callable[[GeoFix], Union[None, Awaitable[None]]]


def best_fix(samples: List[GeoFix]) -> GeoFix:
    """
    Pick the most accurate sample. Real readings always beat placeholders
    for failed reads; ties keep the earliest sample.
    """
    if not samples:
        raise ValueError("no samples")
    return min(samples, key=lambda s: (not s.available, s.accuracy_m))


class GpsSampler:
    """
    Stabilize a noisy location source: poll it for a fixed window and keep
    the best reading.

    `clock` returns monotonic seconds and `sleep` is awaited between polls;
    both are injectable so tests can run on virtual time.
    """

    def __init__(
        self,
        source: LocationSource,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.source = source
        self._clock = clock
        self._sleep = sleep

    async def _read(self) -> GeoFix:
        try:
            return await self.source.read()
        except LocationUnavailable as e:
            log.warning("Location read failed", extra={"extra": {"error": str(e)}})
            return GeoFix.unavailable(ts=iso_now_ms())
        except Exception as e:
            # A broken source costs one sample, not the window. CancelledError is not an Exception.
            log.warning(
                "Location source error",
                extra={"extra": {"error": str(e), "type": type(e).__name__}},
            )
            return GeoFix.unavailable(ts=iso_now_ms())

    async def stabilize(
        self,
        duration_ms: float = 5000,
        poll_interval_ms: float = 300,
        on_reading: Optional[ReadingCallback] = None,
    ) -> GeoFix:
        """
        Poll until `duration_ms` has elapsed since this call started, waiting
        `poll_interval_ms` between reads, and return the best reading.

        The window is checked only after a full read-and-wait cycle, so at
        least one reading is always taken. Source failures never abort the
        loop; they are recorded as `GeoFix.unavailable()`.
        """
        if duration_ms < 0 or poll_interval_ms < 0:
            raise ValueError("duration_ms and poll_interval_ms must be >= 0")

        samples: List[GeoFix] = []
        start = self._clock()
        window_s = duration_ms / 1000.0

        while True:
            fix = await self._read()
            samples.append(fix)
            log.debug(
                "GPS sample",
                extra={"extra": {"n": len(samples), "accuracy_m": fix.accuracy_m, "available": fix.available}},
            )
            if on_reading is not None:
                res = on_reading(fix)
                if inspect.isawaitable(res):
                    await res

            await self._sleep(poll_interval_ms / 1000.0)
            if self._clock() - start >= window_s:
                break

        best = best_fix(samples)
        log.info(
            "GPS stabilized",
            extra={
                "extra": {
                    "samples": len(samples),
                    "failed": sum(1 for s in samples if not s.available),
                    "accuracy_m": best.accuracy_m,
                    "available": best.available,
                }
            },
        )
        return best
