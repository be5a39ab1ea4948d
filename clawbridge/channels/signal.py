"""Signal CLI channel."""

from __future__ import annotations

import asyncio
import json
import logging

from clawbridge.channels.base import Channel
from clawbridge.models import InboundMessage

LOGGER = logging.getLogger(__name__)

PREFIX = "sig:"


class SignalChannel(Channel):
    """Channel around signal-cli JSON commands.

    Group ids are ``sig:<signal group id>`` for groups and ``sig:<number>`` for
    direct chats.
    """

    name = "signal"
    prefix = PREFIX

    def __init__(self, signal_cli_path: str, account: str, poll_interval_seconds: float) -> None:
        super().__init__()
        self._signal_cli_path = signal_cli_path
        self._account = account
        self._poll_interval_seconds = poll_interval_seconds
        self._task: asyncio.Task[None] | None = None

    async def _poll_loop(self) -> None:
        """Poll the receive command and dispatch normalized messages."""

        while True:
            process = await asyncio.create_subprocess_exec(
                self._signal_cli_path,
                "-o",
                "json",
                "-a",
                self._account,
                "receive",
                "-t",
                str(int(self._poll_interval_seconds)),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await process.communicate()
            if process.returncode != 0:
                LOGGER.warning("signal-cli receive failed: %s", stderr.decode().strip())
                await asyncio.sleep(self._poll_interval_seconds)
                continue

            for line in stdout.decode().splitlines():
                line = line.strip()
                if not line:
                    continue
                try:
                    message = to_message(json.loads(line))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                    continue
                if message is not None:
                    await self._dispatch(message)

    async def send(self, group_id: str, text: str) -> None:
        recipient = group_id.removeprefix(PREFIX)
        args = [self._signal_cli_path, "-a", self._account, "send", "-m", text]
        if recipient.startswith("+"):
            args.append(recipient)
        else:
            args.extend(["-g", recipient])

        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()
        if process.returncode != 0:
            raise RuntimeError(f"signal-cli send failed: {stderr.decode().strip()}")

    async def start(self) -> None:
        self._task = asyncio.create_task(self._poll_loop(), name="signal-channel")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None


def to_message(payload: dict[str, object]) -> InboundMessage | None:
    envelope = payload.get("envelope")
    if not isinstance(envelope, dict):
        return None
    data_message = envelope.get("dataMessage")
    if not isinstance(data_message, dict):
        return None

    text = data_message.get("message")
    text = text.strip() if isinstance(text, str) else ""
    if not text:
        return None

    source = str(envelope.get("sourceNumber") or envelope.get("source") or "unknown")
    timestamp_ms = int(envelope.get("timestamp") or 0)

    group_info = data_message.get("groupInfo")
    if isinstance(group_info, dict) and isinstance(group_info.get("groupId"), str):
        group_id = PREFIX + group_info["groupId"]
    else:
        group_id = PREFIX + source

    return InboundMessage(
        id=f"sig-{timestamp_ms}-{source}",
        group_id=group_id,
        sender=str(envelope.get("sourceName") or source),
        content=text,
        timestamp=timestamp_ms / 1000,
        channel=SignalChannel.name,
    )
