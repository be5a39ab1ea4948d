"""Scheduled task creation tool."""

from __future__ import annotations

from typing import Any, Callable

from clawbridge.models import ScheduledTask, new_id
from clawbridge.scheduler import parse_cron
from clawbridge.tools.base import Tool


class CreateTaskTool(Tool):
    """Create a recurring task; persistence is left to the publisher."""

    name = "create_task"
    description = (
        "Create a scheduled recurring task. The task runs automatically on the "
        "given cron schedule (minute hour day-of-month month day-of-week) and "
        "sends its result back to this group."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "schedule": {"type": "string", "description": 'Cron expression, e.g. "0 9 * * 1-5" for 9am weekdays'},
            "prompt": {"type": "string", "description": "The instruction to execute on each run"},
        },
        "required": ["schedule", "prompt"],
    }

    def __init__(self, publish: Callable[[ScheduledTask], None]) -> None:
        self._publish = publish

    async def run(self, group_id: str, **kwargs: Any) -> str:
        schedule = kwargs["schedule"].strip()
        parse_cron(schedule)
        task = ScheduledTask(id=new_id(), group_id=group_id, schedule=schedule, prompt=kwargs["prompt"])
        self._publish(task)
        return f"Task created successfully.\nSchedule: {task.schedule}\nPrompt: {task.prompt}"
