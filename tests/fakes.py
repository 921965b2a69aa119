"""Hand-written fakes for the chat session and clock."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional

from stealth_relay.messenger.base import ChatSession
from stealth_relay.messenger.models import (
    GroupInfo,
    InboundMessage,
    MessageKey,
    OutgoingPayload,
)

HOUR_MS = 3_600_000
SENDER_JID = "919812345678@s.whatsapp.net"
GROUP_JID = "120363000000000000@g.us"


class FakeClock:
    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeSession(ChatSession):
    def __init__(self, account_id: str = "acct", options: Mapping[str, Any] | None = None):
        super().__init__(account_id, options)
        self.connected = True
        self.started = False
        self.media: dict[str, bytes] = {}
        self.groups: dict[str, str] = {}
        self.sent: list[tuple[str, OutgoingPayload]] = []
        self.download_calls: list[str] = []
        self.fail_sends = False
        self.fail_downloads = False
        self.send_delay: float = 0.0
        self.download_gate: Optional[asyncio.Event] = None

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False
        self.connected = False

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def download_media(self, key: MessageKey, media: Mapping[str, Any]) -> bytes:
        self.download_calls.append(key.id)
        if self.download_gate is not None:
            await self.download_gate.wait()
        if self.fail_downloads:
            raise ConnectionError("download failed")
        return self.media.get(key.id, b"\x00\x01\x02")

    async def send(self, destination: str, payload: OutgoingPayload) -> None:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.fail_sends:
            raise ConnectionError("socket closed")
        self.sent.append((destination, payload))

    async def get_group_info(self, jid: str) -> GroupInfo:
        if jid not in self.groups:
            raise LookupError(f"unknown group {jid}")
        return GroupInfo(jid=jid, display_name=self.groups[jid])

    async def emit(self, message: InboundMessage) -> None:
        assert self._message_callback is not None
        await self._message_callback(message)


def media_object(caption: str = "", **overrides: Any) -> dict[str, Any]:
    media: dict[str, Any] = {
        "url": "https://mmg.whatsapp.net/d/f/abc.enc",
        "directPath": "/v/t62.7118-24/abc.enc",
        "mediaKey": b"\x10\x20\x30\x40",
        "mimetype": "image/jpeg",
    }
    if caption:
        media["caption"] = caption
    media.update(overrides)
    return media


def inbound(
    message_id: str,
    payload: Mapping[str, Any],
    remote_jid: str = SENDER_JID,
    participant: Optional[str] = None,
    from_me: bool = False,
    push_name: str = "Alice",
    timestamp: int = 1_700_000_000,
) -> InboundMessage:
    return InboundMessage(
        key=MessageKey(id=message_id, remote_jid=remote_jid, from_me=from_me, participant=participant),
        message=payload,
        timestamp=timestamp,
        push_name=push_name,
    )
