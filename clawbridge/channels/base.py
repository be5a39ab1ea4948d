"""Channel contracts and routing."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from clawbridge.models import InboundMessage

MessageCallback = Callable[[InboundMessage], Awaitable[None]]


class Channel(ABC):
    """A messaging surface the assistant can receive from and reply to."""

    name: str
    prefix: str

    def __init__(self) -> None:
        self._callback: MessageCallback | None = None

    def on_message(self, callback: MessageCallback) -> None:
        self._callback = callback

    async def _dispatch(self, message: InboundMessage) -> None:
        if self._callback is not None:
            await self._callback(message)

    def owns(self, group_id: str) -> bool:
        return group_id.startswith(self.prefix)

    @abstractmethod
    async def send(self, group_id: str, text: str) -> None:
        """Deliver text to a group."""

    async def set_typing(self, group_id: str, typing: bool) -> None:
        return None

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None


class Router:
    """Picks the channel that owns a group id by its prefix."""

    def __init__(self, *channels: Channel) -> None:
        if not channels:
            raise ValueError("Router needs at least one channel")
        self._channels = channels

    @property
    def channels(self) -> tuple[Channel, ...]:
        return self._channels

    def find(self, group_id: str) -> Channel:
        for channel in self._channels:
            if channel.owns(group_id):
                return channel
        return self._channels[0]

    def channel_name(self, group_id: str) -> str:
        return self.find(group_id).name

    async def send(self, group_id: str, text: str) -> None:
        await self.find(group_id).send(group_id, text)

    async def set_typing(self, group_id: str, typing: bool) -> None:
        await self.find(group_id).set_typing(group_id, typing)
