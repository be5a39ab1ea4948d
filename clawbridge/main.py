"""Application entrypoint."""

from __future__ import annotations

import asyncio
import logging

from clawbridge.agent.loop import ToolUseLoop
from clawbridge.agent.worker import AgentWorker
from clawbridge.channels.base import Channel, Router
from clawbridge.channels.console import ConsoleChannel
from clawbridge.channels.signal import SignalChannel
from clawbridge.commands import CommandDispatcher
from clawbridge.config import Settings, load_settings
from clawbridge.db import Database
from clawbridge.llm.base import LLMProvider
from clawbridge.llm.gemini import GeminiProvider
from clawbridge.llm.messages_api import MessagesApiProvider
from clawbridge.orchestrator import Orchestrator
from clawbridge.scheduler import TaskScheduler
from clawbridge.tools.fetch_url_tool import FetchUrlTool
from clawbridge.tools.files_tool import (
    GroupFileStore,
    ListFilesTool,
    ReadFileTool,
    UpdateMemoryTool,
    WriteFileTool,
)
from clawbridge.tools.registry import ToolRegistry
from clawbridge.tools.task_tool import CreateTaskTool

LOGGER = logging.getLogger(__name__)


def build_provider(settings: Settings) -> LLMProvider:
    """Pick the completion backend named by ``PROVIDER``."""

    if settings.provider == "gateway":
        return MessagesApiProvider(settings.gateway_url, timeout_seconds=settings.backend_timeout_seconds)
    if settings.provider == "anthropic":
        return MessagesApiProvider(
            settings.anthropic_base_url,
            api_key=settings.anthropic_api_key,
            timeout_seconds=settings.backend_timeout_seconds,
        )
    if settings.provider == "gemini":
        return GeminiProvider(
            settings.gemini_api_key,
            base_url=settings.gemini_base_url,
            timeout_seconds=settings.backend_timeout_seconds,
        )
    raise ValueError(f"Unknown provider: {settings.provider}")


def build_registry(db: Database, files: GroupFileStore, worker: AgentWorker, settings: Settings) -> ToolRegistry:
    tools = ToolRegistry(db, timeout_seconds=settings.tool_timeout_seconds)
    tools.register(ReadFileTool(files))
    tools.register(WriteFileTool(files))
    tools.register(ListFilesTool(files))
    tools.register(UpdateMemoryTool(files))
    tools.register(FetchUrlTool())
    tools.register(CreateTaskTool(publish=worker.publish_task_created))
    return tools


async def run() -> None:
    """Initialize app layers and run until cancelled."""

    settings = load_settings()

    db = Database(settings.database_path)
    db.initialize()
    files = GroupFileStore(settings.workspace_root)

    worker = AgentWorker()
    tools = build_registry(db, files, worker, settings)
    worker.bind(
        ToolUseLoop(
            provider=build_provider(settings),
            executor=tools,
            tools=tools.definitions(),
            emit=worker.emit,
        )
    )

    channels: list[Channel] = [ConsoleChannel(group_id=settings.primary_group_id)]
    if settings.signal_account:
        channels.append(
            SignalChannel(
                signal_cli_path=settings.signal_cli_path,
                account=settings.signal_account,
                poll_interval_seconds=settings.signal_poll_interval_seconds,
            )
        )
    router = Router(*channels)

    orchestrator = Orchestrator(
        settings=settings,
        db=db,
        files=files,
        worker=worker,
        router=router,
        tool_catalog=tools.describe(),
    )
    scheduler = TaskScheduler(
        db=db,
        handler=orchestrator.invoke_scheduled,
        poll_interval_seconds=settings.scheduler_interval_seconds,
    )

    commands = CommandDispatcher(orchestrator, worker, router)

    worker.start()
    orchestrator.start(commands.handle)
    for channel in channels:
        await channel.start()
    scheduler_task = asyncio.create_task(scheduler.run_forever(), name="task-scheduler")
    LOGGER.info(
        "%s is ready (provider=%s, model=%s, channels=%s)",
        orchestrator.assistant_name,
        settings.provider,
        settings.model,
        ", ".join(channel.name for channel in channels),
    )

    try:
        await asyncio.Event().wait()
    finally:
        scheduler.stop()
        scheduler_task.cancel()
        for channel in channels:
            await channel.stop()
        await orchestrator.shutdown()
        await worker.stop()
        LOGGER.info("Assistant shutdown complete")


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    logging.basicConfig(level=logging.INFO)
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
