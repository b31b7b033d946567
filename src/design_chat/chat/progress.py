"""
Tool progress estimation.

Every open tool call shows an estimated progress bar. The estimate comes from a
static name -> duration table and only drives that indicator: it never times
out or cancels a call.
"""

import asyncio
import time
from typing import Callable, Iterable

import structlog

from .entries import ToolMeta

logger = structlog.get_logger()

DEFAULT_DURATION_SEC = 90.0
DEFAULT_PROGRESS_CAP_PCT = 95.0

# Typical wall-clock durations (seconds) for the agent's known tools
DEFAULT_DURATION_MAP: dict[str, float] = {
    # Quick filesystem reads
    "Read": 5.0,
    "LS": 3.0,
    "Glob": 5.0,
    "TodoRead": 2.0,
    "TodoWrite": 3.0,

    # Searches
    "Grep": 10.0,
    "WebSearch": 30.0,

    # Edits
    "Write": 15.0,
    "Edit": 10.0,
    "MultiEdit": 15.0,
    "NotebookEdit": 10.0,

    # Long running
    "Bash": 30.0,
    "WebFetch": 30.0,
    "Task": 120.0,
    "generateTheme": 45.0,
}

# Fallback categories, checked in order against the lowercased tool name
CATEGORY_DURATIONS: list[tuple[tuple[str, ...], float]] = [
    (("task",), 120.0),
    (("search", "grep"), 30.0),
    (("file", "read", "write"), 25.0),
]


def estimate_duration(
    tool_name: str,
    durations: dict[str, float] | None = None,
    default: float = DEFAULT_DURATION_SEC,
) -> float:
    """Estimate how long a tool call usually takes.

    Lookup order: exact name, known key of three or more characters contained
    in the name (longest key first, case-insensitive), category keywords, then
    the default.
    """
    table = dict(DEFAULT_DURATION_MAP)
    if durations:
        table.update(durations)

    if tool_name in table:
        return table[tool_name]

    name = tool_name.lower()
    # Two-letter keys like "LS" would match almost anything
    for key in sorted(table, key=len, reverse=True):
        if len(key) >= 3 and key.lower() in name:
            return table[key]

    for keywords, duration in CATEGORY_DURATIONS:
        if any(keyword in name for keyword in keywords):
            return duration

    return default


def refresh_progress(
    tool: ToolMeta,
    now: float,
    cap_pct: float = DEFAULT_PROGRESS_CAP_PCT,
) -> bool:
    """Recompute elapsed time and progress of an open tool.

    Progress is capped below 100 so an open tool never looks finished.
    Returns True when the tool was open and got updated.
    """
    if not tool.is_loading:
        return False

    tool.elapsed_sec = max(0.0, now - tool.started_at)
    if tool.estimated_duration_sec > 0:
        pct = 100.0 * tool.elapsed_sec / tool.estimated_duration_sec
    else:
        pct = cap_pct
    tool.progress_pct = min(pct, cap_pct)
    return True


class ProgressTicker:
    """Fixed-interval task refreshing progress of open tool calls.

    Runs on the caller's event loop, so each tick is serialized with event
    application.
    """

    def __init__(
        self,
        open_tools: Callable[[], Iterable[ToolMeta]],
        interval_sec: float = 1.0,
        cap_pct: float = DEFAULT_PROGRESS_CAP_PCT,
        clock: Callable[[], float] = time.time,
        on_tick: Callable[[int], None] | None = None,
    ):
        self.open_tools = open_tools
        self.interval_sec = interval_sec
        self.cap_pct = cap_pct
        self.clock = clock
        self.on_tick = on_tick
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    def tick(self, now: float | None = None) -> int:
        """Refresh every open tool once; returns how many were updated."""
        now = self.clock() if now is None else now
        updated = 0
        for tool in list(self.open_tools()):
            if refresh_progress(tool, now, self.cap_pct):
                updated += 1

        if updated and self.on_tick:
            self.on_tick(updated)
        return updated

    async def _run_loop(self):
        """Main ticker loop."""
        while self._running:
            try:
                await asyncio.sleep(self.interval_sec)
                self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Progress tick failed", error=str(e))

    def start(self):
        """Start the ticker."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.debug("Progress ticker started", interval=self.interval_sec)

    async def stop(self):
        """Stop the ticker and wait for its task to finish."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.debug("Progress ticker stopped")
