"""
=============================================================================
DIAGNOSTICS REPORT (/_info)
=============================================================================

A plain-text dump of who is running, for how long, for whom, and what
the process looks like from the inside:

    Informations on helloworld:

    Running version:  1.0.0 (build unknown DEV)
    Python version:   CPython 3.12.4
    Uptime:           1h2m3.5s
    Connected client: 203.0.113.7:51234
    SSL protocol:     http/1.1                  ← TLS requests only
    SSL Cipher Suite: 0x1302                    ← TLS requests only

    os.cpu_count()           = 8
    native extensions        = 27
    threading.active_count() = 3

    Memory statistics:

    General statistics:
    Resident     = 24.12 MB
    ...

Each statistics section is a block of "Name = value" lines with the
names padded to the longest one, followed by a blank line.

=============================================================================
"""

import platform
from typing import Callable, Optional, Sequence

from ..context import ServerContext
from ..formatting import format_bool, format_duration, format_size, format_timestamp
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder
from ..runtime import GCMonitor, RuntimeSnapshot, collect_snapshot


SnapshotCollector = Callable[[Optional[GCMonitor]], RuntimeSnapshot]

Row = tuple[str, str]


def python_version() -> str:
    """"CPython 3.12.4", "PyPy 3.10.14"."""
    return f"{platform.python_implementation()} {platform.python_version()}"


def format_section(title: str, rows: Sequence[Row]) -> list[str]:
    """
    Render one "Title:" block.

        format_section("General statistics", [("Resident", "1 B"), ("Objects", "5")])
        → ["General statistics:", "Resident = 1 B", "Objects  = 5", ""]
    """
    width = max((len(name) for name, _ in rows), default=0)
    lines = [f"{title}:"]
    lines.extend(f"{name.ljust(width)} = {value}" for name, value in rows)
    lines.append("")
    return lines


def _tuple(values: Sequence[int]) -> str:
    return ", ".join(str(v) for v in values)


def _general_rows(snap: RuntimeSnapshot) -> list[Row]:
    return [
        ("Resident", format_size(snap.resident)),
        ("PeakResident", format_size(snap.peak_resident)),
        ("Virtual", format_size(snap.virtual)),
        ("Objects", str(snap.objects)),
        ("Blocks", str(snap.blocks)),
        ("Collected", str(snap.collected)),
    ]


def _heap_rows(snap: RuntimeSnapshot) -> list[Row]:
    return [
        ("Traced", format_size(snap.traced)),
        ("TracedPeak", format_size(snap.traced_peak)),
        ("TraceOverhead", format_size(snap.trace_overhead)),
        ("Tracing", format_bool(snap.tracing)),
        ("Uncollectable", str(snap.uncollectable)),
        ("Garbage", str(snap.garbage)),
    ]


def _lowlevel_rows(snap: RuntimeSnapshot) -> list[Row]:
    stack = format_size(snap.thread_stack) if snap.thread_stack else "default"
    rows = [("ThreadStack", stack)]
    for mem in snap.platform_memory:
        value = format_size(mem.value) if mem.is_bytes else str(mem.value)
        rows.append((mem.name, value))
    return rows


def _gc_rows(snap: RuntimeSnapshot) -> list[Row]:
    return [
        ("Threshold", _tuple(snap.threshold)),
        ("Counts", _tuple(snap.counts)),
        ("LastGC", format_timestamp(snap.last_gc)),
        ("PauseTotal", format_duration(snap.pause_total)),
        ("LastPause", format_duration(snap.last_pause)),
        ("LastPauseEnd", format_timestamp(snap.last_pause_end)),
        ("NumGC", str(snap.num_gc)),
        ("GCCPUFraction", f"{snap.gc_cpu_fraction:f}"),
        ("EnableGC", format_bool(snap.gc_enabled)),
        ("DebugGC", format_bool(snap.gc_debug)),
    ]


def build_report(request: HTTPRequest, context: ServerContext, snapshot: RuntimeSnapshot) -> str:
    """
    Render the full diagnostics report.

    Args:
        request: The request being answered (client address, TLS state).
        context: Startup state (build identity, start time).
        snapshot: Process statistics captured for this request.

    Returns:
        The report text, newline terminated.
    """
    lines = [
        "Informations on helloworld:",
        "",
        f"Running version:  {context.build.describe()}",
        f"Python version:   {python_version()}",
        f"Uptime:           {format_duration(context.uptime)}",
        f"Connected client: {request.remote_addr}",
    ]

    if request.tls is not None:
        lines.append(f"SSL protocol:     {request.tls.protocol}")
        lines.append(f"SSL Cipher Suite: 0x{request.tls.cipher_id:04x}")

    lines.extend([
        "",
        f"os.cpu_count()           = {snapshot.cpu_count}",
        f"native extensions        = {snapshot.native_extensions}",
        f"threading.active_count() = {snapshot.threads}",
        "",
        "Memory statistics:",
        "",
    ])

    lines += format_section("General statistics", _general_rows(snapshot))
    lines += format_section("Object allocator statistics", _heap_rows(snapshot))
    lines += format_section("Low-level allocator statistics", _lowlevel_rows(snapshot))
    lines += format_section("Garbage collector statistics", _gc_rows(snapshot))

    # format_section leaves a trailing blank line; the report ends on the last field.
    return "\n".join(lines[:-1]) + "\n"


class InfoHandler:
    """
    Serves the diagnostics report.

    Statistics are collected fresh on every request; nothing is cached
    between requests.

        info = InfoHandler(context)
        router.add(exact("/_info"), info.handle, name="info")
    """

    def __init__(
        self,
        context: ServerContext,
        collector: SnapshotCollector = collect_snapshot,
    ):
        self.context = context
        self._collect = collector

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        snapshot = self._collect(self.context.gc_monitor)
        report = build_report(request, self.context, snapshot)
        return (ResponseBuilder()
            .text(report)
            .no_cache()
            .build())
