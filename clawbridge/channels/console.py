"""Interactive terminal channel; owns the primary group."""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from typing import TextIO

from clawbridge.channels.base import Channel
from clawbridge.models import InboundMessage, new_id

LOGGER = logging.getLogger(__name__)


class ConsoleChannel(Channel):
    """Reads user lines from stdin and prints replies to stdout."""

    name = "console"
    prefix = "cli:"

    def __init__(
        self,
        group_id: str = "cli:main",
        sender: str = "You",
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        super().__init__()
        self._group_id = group_id
        self._sender = sender
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._task: asyncio.Task[None] | None = None

    async def send(self, group_id: str, text: str) -> None:
        self._stdout.write(f"\n{text}\n\n")
        self._stdout.flush()

    async def set_typing(self, group_id: str, typing: bool) -> None:
        if typing:
            self._stdout.write("…\n")
            self._stdout.flush()

    async def submit(self, text: str) -> None:
        await self._dispatch(
            InboundMessage(
                id=new_id(),
                group_id=self._group_id,
                sender=self._sender,
                content=text,
                timestamp=time.time(),
                channel=self.name,
            )
        )

    async def _read_loop(self) -> None:
        while True:
            line = await asyncio.to_thread(self._stdin.readline)
            if not line:
                LOGGER.info("Console input closed")
                return
            text = line.strip()
            if text:
                await self.submit(text)

    async def start(self) -> None:
        self._task = asyncio.create_task(self._read_loop(), name="console-channel")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
