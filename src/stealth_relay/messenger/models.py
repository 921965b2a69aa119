"""Transport-neutral event and payload models exchanged with chat sessions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from stealth_relay.core.types import STATUS_BROADCAST_JID


@dataclass(frozen=True, slots=True)
class MessageKey:
    id: str
    remote_jid: str
    from_me: bool = False
    participant: Optional[str] = None

    @property
    def is_group(self) -> bool:
        return self.remote_jid.endswith("@g.us")

    @property
    def is_status(self) -> bool:
        return self.remote_jid == STATUS_BROADCAST_JID


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """A decrypted message as delivered by the session.

    ``message`` is the raw protocol payload (the ``message`` field of a
    multi-device WhatsApp event), left untouched for the extractor.
    """

    key: MessageKey
    message: Mapping[str, Any]
    timestamp: int  # seconds since epoch
    push_name: str = ""


@dataclass(frozen=True, slots=True)
class DeleteNotice:
    """The sender revoked a message; only its key is known."""

    key: MessageKey


@dataclass(frozen=True, slots=True)
class GroupInfo:
    jid: str
    display_name: str


@dataclass(frozen=True, slots=True)
class OutgoingPayload:
    kind: str  # "text" | "image" | "video" | "audio" | "document" | "sticker"
    text: str = ""
    data: bytes = b""
    caption: Optional[str] = None
    mime_type: Optional[str] = None
    file_name: Optional[str] = None
    voice_note: bool = False
