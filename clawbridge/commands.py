"""Command dispatcher for /-prefixed messages.

Commands bypass the model and act on the orchestrator directly. Anything that
is not a recognised /command falls through to the orchestrator queue.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from clawbridge.agent.events import CancelCommand
from clawbridge.models import InboundMessage

if TYPE_CHECKING:
    from clawbridge.agent.worker import AgentWorker
    from clawbridge.channels.base import Router
    from clawbridge.orchestrator import Orchestrator

LOGGER = logging.getLogger(__name__)

HELP_TEXT = "\n".join(
    [
        "Commands:",
        "/new - start a new session (clears this conversation)",
        "/compact - summarize the conversation to save context",
        "/name <name> - change the assistant name used for @mentions",
        "/cancel - stop the response in progress",
        "/help - show this message",
    ]
)


def parse_command(text: str) -> tuple[str, list[str]] | None:
    """Split a /-prefixed message into (command, args).

    Returns:
        A (command, args) tuple where command is lowercased, or None if text
        is not a /command.
    """
    text = text.strip()
    if not text.startswith("/"):
        return None
    parts = text[1:].split()
    if not parts:
        return None
    return parts[0].lower(), parts[1:]


class CommandDispatcher:
    """Front door for channel messages: handles /commands, queues the rest."""

    def __init__(self, orchestrator: Orchestrator, worker: AgentWorker, router: Router) -> None:
        self._orchestrator = orchestrator
        self._worker = worker
        self._router = router

    async def handle(self, message: InboundMessage) -> None:
        reply = await self.dispatch(message)
        if reply is None:
            await self._orchestrator.enqueue(message)
            return
        await self._router.send(message.group_id, reply)

    async def dispatch(self, message: InboundMessage) -> str | None:
        """Run a command and return its reply, or None for ordinary messages."""

        parsed = parse_command(message.content)
        if parsed is None:
            return None
        command, args = parsed
        LOGGER.info("Command dispatch: command=%r args=%r group=%s", command, args, message.group_id)
        if command == "new":
            await self._orchestrator.new_session(message.group_id)
            return "New session started."
        if command == "compact":
            if await self._orchestrator.compact_context(message.group_id):
                return "Context compacted."
            return "Context was not compacted."
        if command == "name":
            return self._handle_name(args)
        if command == "cancel":
            self._worker.post(CancelCommand(group_id=message.group_id))
            return "Cancelling the current response."
        if command == "help":
            return HELP_TEXT
        return None

    def _handle_name(self, args: list[str]) -> str:
        if len(args) != 1:
            return "Usage: /name <name>"
        self._orchestrator.set_assistant_name(args[0])
        return f"Assistant name set to {args[0]}. Mention it with @{args[0]}."
