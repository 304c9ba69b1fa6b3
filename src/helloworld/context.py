"""
Per-process server context.

Everything a handler needs to know about the process rather than the
request: when the server started, what build it is, what it greets with.
Captured once when the server is built and passed to the handlers that
need it, never stored in a module global.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from .buildinfo import BuildInfo
from .runtime import GCMonitor


@dataclass(frozen=True)
class ServerContext:
    """
    Immutable startup state.

    Attributes:
        build: Build identity for the diagnostics report.
        greeting: Body of the catch-all response.
        started_at: time.monotonic() at startup, used for uptime.
        gc_monitor: Collector pause tracker, None when not installed.
        clock: Monotonic clock, replaceable in tests.
    """

    build: BuildInfo
    greeting: str
    started_at: float = field(default_factory=time.monotonic)
    gc_monitor: Optional[GCMonitor] = None
    clock: Callable[[], float] = field(default=time.monotonic, repr=False, compare=False)

    @property
    def uptime(self) -> float:
        """Seconds since startup. Never decreases."""
        return max(0.0, self.clock() - self.started_at)
