"""Async scheduler for recurring cron-style prompts."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable

from clawbridge.db import Database
from clawbridge.models import SCHEDULED_TASK_MARKER, ScheduledTask

LOGGER = logging.getLogger(__name__)

# (min, max) per field: minute hour day-of-month month day-of-week
_FIELD_RANGES = ((0, 59), (0, 23), (1, 31), (1, 12), (0, 7))


def _parse_field(expr: str, low: int, high: int) -> frozenset[int]:
    values: set[int] = set()
    for part in expr.split(","):
        step = 1
        stepped = "/" in part
        if stepped:
            part, step_text = part.split("/", 1)
            step = int(step_text)
            if step <= 0:
                raise ValueError(f"Invalid step in cron field: {expr}")
        if part == "*":
            start, end = low, high
        elif "-" in part:
            start_text, end_text = part.split("-", 1)
            start, end = int(start_text), int(end_text)
        else:
            start = end = int(part)
            # "5/10" runs from 5 to the top of the range.
            if stepped:
                end = high
        if start < low or end > high or start > end:
            raise ValueError(f"Cron field out of range: {expr}")
        values.update(range(start, end + 1, step))
    return frozenset(values)


def parse_cron(expression: str) -> tuple[frozenset[int], ...]:
    """Parse a five-field cron expression; raises ValueError when malformed."""

    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"Cron expression must have 5 fields: {expression!r}")
    try:
        parsed = [_parse_field(field, low, high) for field, (low, high) in zip(fields, _FIELD_RANGES)]
    except ValueError as exc:
        raise ValueError(f"Invalid cron expression {expression!r}: {exc}") from exc
    # Day-of-week 7 is an alias for Sunday.
    weekday = parsed[4]
    if 7 in weekday:
        parsed[4] = frozenset((weekday - {7}) | {0})
    return tuple(parsed)


def cron_matches(expression: str, moment: datetime) -> bool:
    """Match a cron expression against a local time.

    As in standard cron, when both day-of-month and day-of-week are restricted
    a moment matching either one is due.
    """
    minute, hour, day, month, weekday = parse_cron(expression)
    _, _, day_field, _, weekday_field = expression.split()
    day_ok = moment.day in day
    weekday_ok = (moment.weekday() + 1) % 7 in weekday
    if day_field.startswith("*") or weekday_field.startswith("*"):
        day_due = day_ok and weekday_ok
    else:
        day_due = day_ok or weekday_ok
    return moment.minute in minute and moment.hour in hour and moment.month in month and day_due


def _same_minute(a: float, b: float) -> bool:
    return int(a // 60) == int(b // 60)


class TaskScheduler:
    """Polls enabled tasks and dispatches the ones due this minute via callback."""

    def __init__(
        self,
        db: Database,
        handler: Callable[[str, str], Awaitable[None]],
        poll_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db
        self._handler = handler
        self._poll_interval_seconds = poll_interval_seconds
        self._clock = clock
        self._stop_event = asyncio.Event()

    async def check(self) -> list[ScheduledTask]:
        """Run every task due now and return the ones dispatched."""

        now = self._clock()
        moment = datetime.fromtimestamp(now)
        dispatched: list[ScheduledTask] = []
        for task in self._db.list_tasks(enabled_only=True):
            if task.last_run is not None and _same_minute(task.last_run, now):
                continue
            try:
                due = cron_matches(task.schedule, moment)
            except ValueError:
                LOGGER.warning("Skipping task %s with invalid schedule %r", task.id, task.schedule)
                continue
            if not due:
                continue
            self._db.mark_task_run(task.id, now)
            LOGGER.info("Running scheduled task %s for %s", task.id, task.group_id)
            await self._handler(task.group_id, f"{SCHEDULED_TASK_MARKER} {task.prompt}")
            dispatched.append(task)
        return dispatched

    async def run_forever(self) -> None:
        """Run scheduler loop until stop() is called."""

        while not self._stop_event.is_set():
            try:
                await self.check()
            except Exception:  # noqa: BLE001
                LOGGER.exception("Scheduler check failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        """Signal the loop to stop."""

        self._stop_event.set()
