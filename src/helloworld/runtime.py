"""
=============================================================================
RUNTIME STATISTICS
=============================================================================

Collects the concurrency, memory and garbage-collector figures shown by
the diagnostics endpoint.

=============================================================================
SOURCES
=============================================================================

    ┌────────────────────────┬──────────────────────────────────────────┐
    │ Section                │ Source                                   │
    ├────────────────────────┼──────────────────────────────────────────┤
    │ Concurrency            │ os.cpu_count, sys.modules,               │
    │                        │ threading.active_count                   │
    │ General                │ psutil memory_info, sys, gc              │
    │ Object allocator       │ tracemalloc, gc                          │
    │ Low-level allocator    │ threading.stack_size, psutil extended    │
    │                        │ memory fields (platform specific)        │
    │ Garbage collector      │ gc thresholds/counts/stats, GCMonitor    │
    └────────────────────────┴──────────────────────────────────────────┘

CPython does not time its collections, so GCMonitor hooks gc.callbacks to
record pause durations and end times. It is installed once at server
start and only ever appended to by the interpreter's collector.

=============================================================================
"""

import gc
import os
import sys
import threading
import time
import tracemalloc
from dataclasses import dataclass, field
from importlib.machinery import EXTENSION_SUFFIXES
from typing import Any, Callable, Optional

import psutil

try:
    import resource
except ImportError:  # Windows has no resource module; peak_wset is used there
    resource = None


# psutil memory fields that count events rather than bytes.
_COUNTER_FIELDS = frozenset({"pfaults", "pageins", "num_page_faults"})

# Fields already reported in the general section.
_GENERAL_FIELDS = frozenset({"rss", "vms", "peak_wset"})


@dataclass(frozen=True)
class GCPauseStats:
    """Snapshot of GCMonitor counters."""

    collections: int = 0
    pause_total: float = 0.0
    last_pause: float = 0.0
    last_pause_end: Optional[float] = None


class GCMonitor:
    """
    Times garbage collections through gc.callbacks.

        monitor = GCMonitor()
        monitor.install()
        ...
        stats = monitor.stats()   # GCPauseStats

    The callback runs inside the collector, on whichever thread triggered
    it, so it only does arithmetic and attribute stores. No lock is taken:
    a lock held by the reading thread while it allocates would deadlock
    against a collection triggered by that allocation.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.perf_counter,
        wall_clock: Callable[[], float] = time.time,
    ):
        self._clock = clock
        self._wall_clock = wall_clock
        self._started: Optional[float] = None
        self._installed = False

        self.collections = 0
        self.pause_total = 0.0
        self.last_pause = 0.0
        self.last_pause_end: Optional[float] = None

    @property
    def installed(self) -> bool:
        return self._installed

    def install(self) -> "GCMonitor":
        if not self._installed:
            gc.callbacks.append(self._on_gc)
            self._installed = True
        return self

    def uninstall(self) -> None:
        if self._installed:
            gc.callbacks.remove(self._on_gc)
            self._installed = False

    def _on_gc(self, phase: str, info: dict) -> None:
        if phase == "start":
            self._started = self._clock()
        elif phase == "stop" and self._started is not None:
            pause = self._clock() - self._started
            self._started = None
            self.collections += 1
            self.pause_total += pause
            self.last_pause = pause
            self.last_pause_end = self._wall_clock()

    def stats(self) -> GCPauseStats:
        return GCPauseStats(
            collections=self.collections,
            pause_total=self.pause_total,
            last_pause=self.last_pause,
            last_pause_end=self.last_pause_end,
        )


@dataclass(frozen=True)
class MemoryField:
    """A platform memory figure. is_bytes=False for event counters."""

    name: str
    value: int
    is_bytes: bool = True


@dataclass(frozen=True)
class RuntimeSnapshot:
    """
    One capture of process statistics.

    Grouped the way the report prints them. Byte-valued fields are ints
    in bytes; durations are float seconds; timestamps are Unix seconds or
    None when the event never happened.
    """

    # Concurrency
    cpu_count: int
    native_extensions: int
    threads: int

    # General
    resident: int
    peak_resident: int
    virtual: int
    objects: int
    blocks: int
    collected: int

    # Object allocator
    traced: int
    traced_peak: int
    trace_overhead: int
    tracing: bool
    uncollectable: int
    garbage: int

    # Low-level allocator
    thread_stack: int
    platform_memory: tuple[MemoryField, ...] = field(default_factory=tuple)

    # Garbage collector
    threshold: tuple[int, ...] = ()
    counts: tuple[int, ...] = ()
    last_gc: Optional[float] = None
    pause_total: float = 0.0
    last_pause: float = 0.0
    last_pause_end: Optional[float] = None
    num_gc: int = 0
    gc_cpu_fraction: float = 0.0
    gc_enabled: bool = True
    gc_debug: bool = False


def count_native_extensions() -> int:
    """
    Number of loaded modules backed by a compiled extension file.

    This is the closest CPython gets to a count of calls across the
    foreign-function boundary.
    """
    count = 0
    for module in list(sys.modules.values()):
        filename = getattr(module, "__file__", None) or ""
        if filename.endswith(tuple(EXTENSION_SUFFIXES)):
            count += 1
    return count


def _field_label(name: str) -> str:
    """"peak_paged_pool" → "PeakPagedPool"."""
    return "".join(part.capitalize() for part in name.split("_"))


def _peak_resident(memory: Any) -> int:
    peak = getattr(memory, "peak_wset", None)
    if peak is not None:
        return int(peak)
    if resource is None:
        return int(memory.rss)
    maxrss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is kilobytes on Linux and bytes on macOS.
    return int(maxrss) if sys.platform == "darwin" else int(maxrss) * 1024


def _platform_memory(memory: Any) -> tuple[MemoryField, ...]:
    fields = []
    for name, value in memory._asdict().items():
        if name in _GENERAL_FIELDS:
            continue
        fields.append(MemoryField(
            name=_field_label(name),
            value=int(value),
            is_bytes=name not in _COUNTER_FIELDS,
        ))
    return tuple(fields)


def collect_snapshot(
    monitor: Optional[GCMonitor] = None,
    process: Optional[psutil.Process] = None,
) -> RuntimeSnapshot:
    """
    Capture current process statistics.

    Args:
        monitor: Installed GCMonitor; without one the pause figures are 0
                 and the last-collection timestamps are None.
        process: psutil handle for the current process.

    Returns:
        RuntimeSnapshot
    """
    process = process or psutil.Process(os.getpid())

    memory = process.memory_info()
    cpu_times = process.cpu_times()
    cpu_seconds = cpu_times.user + cpu_times.system

    gc_stats = gc.get_stats()
    traced, traced_peak = tracemalloc.get_traced_memory()
    pauses = monitor.stats() if monitor is not None else GCPauseStats()

    fraction = pauses.pause_total / cpu_seconds if cpu_seconds > 0 else 0.0

    return RuntimeSnapshot(
        cpu_count=os.cpu_count() or 0,
        native_extensions=count_native_extensions(),
        threads=threading.active_count(),

        resident=int(memory.rss),
        peak_resident=_peak_resident(memory),
        virtual=int(memory.vms),
        objects=len(gc.get_objects()),
        blocks=sys.getallocatedblocks(),
        collected=sum(stat["collected"] for stat in gc_stats),

        traced=traced,
        traced_peak=traced_peak,
        trace_overhead=tracemalloc.get_tracemalloc_memory(),
        tracing=tracemalloc.is_tracing(),
        uncollectable=sum(stat["uncollectable"] for stat in gc_stats),
        garbage=len(gc.garbage),

        thread_stack=threading.stack_size(),
        platform_memory=_platform_memory(memory),

        threshold=tuple(gc.get_threshold()),
        counts=tuple(gc.get_count()),
        last_gc=pauses.last_pause_end,
        pause_total=pauses.pause_total,
        last_pause=pauses.last_pause,
        last_pause_end=pauses.last_pause_end,
        num_gc=sum(stat["collections"] for stat in gc_stats),
        gc_cpu_fraction=fraction,
        gc_enabled=gc.isenabled(),
        gc_debug=gc.get_debug() != 0,
    )
