"""Records held by the per-account capture caches."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from stealth_relay.core.types import CaptureClass, MediaKind


@dataclass(frozen=True, slots=True)
class CachedTextRecord:
    message_id: str
    text: str
    sender_name: str
    sender_id: str
    timestamp: int  # seconds, as sent by the protocol
    group_context: Optional[str]
    is_status: bool
    cached_at_ms: int

    @property
    def recorded_at_ms(self) -> int:
        return self.cached_at_ms


@dataclass(frozen=True, slots=True)
class CachedMediaRecord:
    """Cached media metadata; the record exclusively owns ``file_path``."""

    message_id: str
    file_path: str
    media_kind: MediaKind
    capture_class: CaptureClass
    sender_name: str
    sender_id: str
    timestamp: int
    group_context: Optional[str]
    caption: str
    is_status: bool
    saved_at_ms: int

    @property
    def recorded_at_ms(self) -> int:
        return self.saved_at_ms

    @property
    def is_view_once(self) -> bool:
        return self.capture_class is CaptureClass.VIEW_ONCE


@dataclass(frozen=True, slots=True)
class ArchivedViewOnce:
    message_id: str
    archived_at_ms: int

    @property
    def recorded_at_ms(self) -> int:
        return self.archived_at_ms


CachedRecord = Union[CachedTextRecord, CachedMediaRecord]


@dataclass(frozen=True, slots=True)
class ForwardAttempt:
    record: CachedRecord
    is_recovered: bool


@dataclass(frozen=True, slots=True)
class MessageContext:
    """Who sent a message and where, as resolved by the account router."""

    sender_name: str
    sender_id: str
    group_context: Optional[str] = None
    is_status: bool = False
