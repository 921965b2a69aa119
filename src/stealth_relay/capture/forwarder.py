"""Vault forwarder: formats captured content and sends it to the archive account."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from stealth_relay.capture.files import mime_type_for
from stealth_relay.capture.models import CachedMediaRecord, CachedTextRecord, ForwardAttempt
from stealth_relay.core.identity import mask_identifier, phone_from_jid, vault_jid
from stealth_relay.core.types import MediaKind
from stealth_relay.log import get_logger
from stealth_relay.messenger.base import ChatSession
from stealth_relay.messenger.models import OutgoingPayload

DIVIDER = "━━━━━━━━━━━━━━━━"
TIME_FORMAT = "%d/%m/%Y, %I:%M:%S %p"


@dataclass
class ForwarderStats:
    sent: int = 0
    failed: int = 0
    not_configured: int = 0


def _resolve_zone(name: str) -> timezone | ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        get_logger(__name__).warning("unknown_timezone_using_utc", timezone=name)
        return timezone.utc


def media_label(record: CachedMediaRecord, is_recovered: bool) -> str:
    kind = record.media_kind.upper()
    if is_recovered:
        return f"Deleted {kind}"
    if record.is_view_once:
        return f"View-Once {kind}"
    if record.is_status:
        return f"Status {kind}"
    return kind


class VaultForwarder:
    """Sends text and media records to one account's vault destination.

    Every failure (no destination, session offline, transport error, timeout)
    is reported as ``False``; nothing is raised to the caller.
    """

    def __init__(
        self,
        session: ChatSession,
        destination: Optional[str],
        mask_identifiers: bool = True,
        timezone_name: str = "Asia/Kolkata",
        send_timeout_seconds: float = 60.0,
        logger=None,
    ):
        self._session = session
        self._destination = vault_jid(destination) if destination else None
        self._mask = mask_identifiers
        self._zone = _resolve_zone(timezone_name)
        self._timeout = send_timeout_seconds
        self._log = logger or get_logger(__name__)
        self.stats = ForwarderStats()

    @property
    def destination(self) -> Optional[str]:
        return self._destination

    def format_time(self, timestamp: int) -> str:
        return datetime.fromtimestamp(timestamp, tz=self._zone).strftime(TIME_FORMAT)

    def _header(
        self,
        label: str,
        sender_name: str,
        sender_id: str,
        timestamp: int,
        group_context: Optional[str],
    ) -> list[str]:
        lines = [
            f"*{label}*",
            DIVIDER,
            f"Sender: {sender_name}",
            f"ID: {mask_identifier(phone_from_jid(sender_id), self._mask)}",
            f"Time: {self.format_time(timestamp)}",
        ]
        if group_context:
            lines.append(f"Group: {group_context}")
        return lines

    def format_text(self, record: CachedTextRecord) -> str:
        lines = self._header(
            "Deleted Text",
            record.sender_name,
            record.sender_id,
            record.timestamp,
            record.group_context,
        )
        lines.append("")
        lines.append("Content:")
        lines.append(record.text)
        return "\n".join(lines)

    def format_media_caption(self, record: CachedMediaRecord, is_recovered: bool) -> str:
        lines = self._header(
            media_label(record, is_recovered),
            record.sender_name,
            record.sender_id,
            record.timestamp,
            record.group_context,
        )
        if record.caption:
            lines.append("")
            lines.append(f"Caption: {record.caption}")
        return "\n".join(lines)

    def _ready(self, attempt: ForwardAttempt) -> bool:
        if not self._destination:
            self.stats.not_configured += 1
            self._log.warning(
                "vault_not_configured",
                message_id=attempt.record.message_id,
            )
            return False
        if not self._session.is_connected:
            self.stats.failed += 1
            self._log.warning(
                "vault_send_skipped_disconnected",
                message_id=attempt.record.message_id,
            )
            return False
        return True

    async def _send(self, payload: OutgoingPayload) -> None:
        await asyncio.wait_for(
            self._session.send(self._destination, payload),
            timeout=self._timeout,
        )

    async def forward_text(self, record: CachedTextRecord) -> bool:
        attempt = ForwardAttempt(record=record, is_recovered=True)
        if not self._ready(attempt):
            return False
        try:
            await self._send(OutgoingPayload(kind="text", text=self.format_text(record)))
        except Exception as e:
            self.stats.failed += 1
            self._log.warning(
                "vault_text_send_failed",
                message_id=record.message_id,
                error=str(e) or type(e).__name__,
            )
            return False

        self.stats.sent += 1
        self._log.info("vault_text_sent", message_id=record.message_id)
        return True

    async def forward_media(self, record: CachedMediaRecord, is_recovered: bool) -> bool:
        attempt = ForwardAttempt(record=record, is_recovered=is_recovered)
        if not self._ready(attempt):
            return False
        try:
            payloads = await self._media_payloads(attempt)
        except FileNotFoundError:
            # The record owns its file; a missing file is a broken invariant.
            self.stats.failed += 1
            self._log.error(
                "vault_media_file_missing",
                message_id=record.message_id,
                path=record.file_path,
                exc_info=True,
            )
            return False
        except (OSError, ValueError, OverflowError) as e:
            self.stats.failed += 1
            self._log.warning(
                "vault_media_prepare_failed",
                message_id=record.message_id,
                path=record.file_path,
                error=str(e) or type(e).__name__,
            )
            return False

        try:
            for payload in payloads:
                await self._send(payload)
        except Exception as e:
            self.stats.failed += 1
            self._log.warning(
                "vault_media_send_failed",
                message_id=record.message_id,
                media_kind=str(record.media_kind),
                error=str(e) or type(e).__name__,
            )
            return False

        self.stats.sent += 1
        self._log.info(
            "vault_media_sent",
            message_id=record.message_id,
            media_kind=str(record.media_kind),
            recovered=is_recovered,
        )
        return True

    async def _media_payloads(self, attempt: ForwardAttempt) -> list[OutgoingPayload]:
        record = attempt.record
        if not record.file_path:
            raise FileNotFoundError(f"record {record.message_id} has no file path")

        data = await asyncio.to_thread(Path(record.file_path).read_bytes)
        caption = self.format_media_caption(record, attempt.is_recovered)
        mime_type = mime_type_for(record.file_path)

        match record.media_kind:
            case MediaKind.IMAGE | MediaKind.VIDEO:
                return [
                    OutgoingPayload(
                        kind=str(record.media_kind),
                        data=data,
                        caption=caption,
                        mime_type=mime_type,
                    )
                ]
            case MediaKind.STICKER:
                # Stickers cannot carry a caption
                return [
                    OutgoingPayload(kind="image", data=data, caption=caption, mime_type=mime_type)
                ]
            case MediaKind.DOCUMENT:
                return [
                    OutgoingPayload(
                        kind="document",
                        data=data,
                        caption=caption,
                        mime_type=mime_type,
                        file_name=Path(record.file_path).name,
                    )
                ]
            case MediaKind.AUDIO:
                return [
                    OutgoingPayload(kind="text", text=caption),
                    OutgoingPayload(kind="audio", data=data, mime_type=mime_type, voice_note=True),
                ]
        raise ValueError(f"Unknown media kind: {record.media_kind}")
