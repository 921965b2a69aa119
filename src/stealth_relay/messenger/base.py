"""Abstract chat session interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Mapping

from stealth_relay.messenger.models import (
    DeleteNotice,
    GroupInfo,
    InboundMessage,
    MessageKey,
    OutgoingPayload,
)

MessageCallback = Callable[[InboundMessage], Awaitable[None]]
DeleteCallback = Callable[[DeleteNotice], Awaitable[None]]


class ChatSession(ABC):
    """Base class for chat-protocol sessions, one per account.

    To plug in a transport, subclass this and implement all abstract methods.
    Implementations deliver events one at a time through the registered
    callbacks and raise on any transport failure; the capture core turns those
    exceptions into failed results.
    """

    def __init__(self, account_id: str, options: Mapping[str, Any] | None = None):
        self.account_id = account_id
        self.options = dict(options or {})
        self._message_callback: MessageCallback | None = None
        self._delete_callback: DeleteCallback | None = None

    @abstractmethod
    async def start(self) -> None:
        """Connect, authenticate and begin emitting events."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Gracefully disconnect."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    async def download_media(self, key: MessageKey, media: Mapping[str, Any]) -> bytes:
        """Download and decrypt the media object referenced by a message."""
        ...

    @abstractmethod
    async def send(self, destination: str, payload: OutgoingPayload) -> None:
        ...

    @abstractmethod
    async def get_group_info(self, jid: str) -> GroupInfo:
        ...

    def on_message(self, callback: MessageCallback) -> None:
        """Register the callback invoked for every incoming message."""
        self._message_callback = callback

    def on_delete(self, callback: DeleteCallback) -> None:
        """Register the callback invoked when a sender revokes a message."""
        self._delete_callback = callback
