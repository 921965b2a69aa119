"""Capture pipeline: cache what arrives, archive what disappears.

Per message the states are ``unseen -> cached -> {forwarded | evicted | recovered}``.
Handlers run on the account's event loop and may suspend on downloads, file
writes and sends; the in-flight set keeps a second delivery (or a delete
notice) for the same message id from acting while the first is suspended.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Callable, Mapping, Optional

from stealth_relay.capture.cache import TemporalCache
from stealth_relay.capture.extractor import Classification, classify, download_gate
from stealth_relay.capture.files import TempFileStore, extension_for
from stealth_relay.capture.forwarder import VaultForwarder
from stealth_relay.capture.models import (
    ArchivedViewOnce,
    CachedMediaRecord,
    CachedTextRecord,
    MessageContext,
)
from stealth_relay.capture.retention import max_age_for_media, max_age_for_text, now_ms
from stealth_relay.config import RetentionConfig, StealthConfig
from stealth_relay.core.identity import matches_group_name
from stealth_relay.core.types import CaptureClass, ContentKind
from stealth_relay.log import bind_account, get_logger
from stealth_relay.messenger.base import ChatSession
from stealth_relay.messenger.models import DeleteNotice, InboundMessage
from stealth_relay.storage.ledger import ForwardLedger
from stealth_relay.storage.models import ForwardedItem

MAX_ARCHIVED_IDS = 10_000


@dataclass
class PipelineStats:
    text_cached: int = 0
    media_cached: int = 0
    view_once_captured: int = 0
    view_once_forwarded: int = 0
    deleted_recovered: int = 0
    forward_failures: int = 0
    download_failures: int = 0
    excluded: int = 0
    errors: int = 0


class CapturePipeline:
    """Stealth capture for a single account."""

    def __init__(
        self,
        account_id: str,
        config: StealthConfig,
        session: ChatSession,
        files: TempFileStore,
        forwarder: VaultForwarder,
        ledger: Optional[ForwardLedger] = None,
        download_timeout_seconds: float = 120.0,
        clock: Callable[[], int] = now_ms,
        logger=None,
    ):
        self.account_id = account_id
        self._config = config
        self._session = session
        self._files = files
        self._forwarder = forwarder
        self._ledger = ledger
        self._download_timeout = download_timeout_seconds
        self._clock = clock
        self._log = logger or bind_account(get_logger(__name__), account_id)

        self.text_cache: TemporalCache[CachedTextRecord] = TemporalCache(
            "text", max_entries=config.max_text_cache
        )
        self.media_cache: TemporalCache[CachedMediaRecord] = TemporalCache(
            "media", max_entries=None, on_discard=self._discard_media
        )
        self._in_flight: set[str] = set()
        self._pending_deletes: set[str] = set()
        # View-once ids already delivered to the vault at capture time. Outlives
        # the media record; expires on the media window.
        self._archived: TemporalCache[ArchivedViewOnce] = TemporalCache(
            "archived", max_entries=MAX_ARCHIVED_IDS
        )
        self.stats = PipelineStats()

    @property
    def files(self) -> TempFileStore:
        return self._files

    @property
    def retention(self) -> RetentionConfig:
        return self._config.retention

    # -- exclusion ---------------------------------------------------------

    def is_excluded(self, group_context: Optional[str]) -> bool:
        return matches_group_name(group_context, self._config.excluded_groups)

    def _skip_excluded(self, message_id: str, context: MessageContext) -> bool:
        if not self.is_excluded(context.group_context):
            return False
        self.stats.excluded += 1
        self._log.debug("group_excluded", message_id=message_id, group=context.group_context)
        return True

    # -- inbound messages ----------------------------------------------------

    async def handle_message(self, message: InboundMessage, context: MessageContext) -> None:
        """Classify and capture one message. Never raises."""
        try:
            await self._handle_message(message, context)
        except Exception:
            self.stats.errors += 1
            self._log.error("capture_failed", message_id=message.key.id, exc_info=True)

    async def _handle_message(self, message: InboundMessage, context: MessageContext) -> None:
        if message.key.from_me:
            return
        if self._skip_excluded(message.key.id, context):
            return

        classification = classify(message.message)
        if classification.kind is ContentKind.NONE:
            return

        if classification.ephemeral:
            self._log.debug(
                "ephemeral_message",
                message_id=message.key.id,
                kind=str(classification.kind),
            )

        if classification.kind.is_view_once:
            await self.capture_view_once(message, context, classification)
        elif classification.kind.is_media:
            await self.capture_media(message, context, classification)
        else:
            self.cache_text(message.key.id, classification.text, context, message.timestamp)

    def cache_text(
        self,
        message_id: str,
        text: str,
        context: MessageContext,
        timestamp: int,
    ) -> Optional[CachedTextRecord]:
        if not text or self._skip_excluded(message_id, context):
            return None
        if message_id in self.media_cache:
            return None

        record = CachedTextRecord(
            message_id=message_id,
            text=text,
            sender_name=context.sender_name,
            sender_id=context.sender_id,
            timestamp=timestamp,
            group_context=context.group_context,
            is_status=context.is_status,
            cached_at_ms=self._clock(),
        )
        evicted = self.text_cache.put(message_id, record)
        if evicted is not None:
            self._log.debug("text_cache_evicted", message_id=evicted.message_id)
        self.stats.text_cached += 1
        self._log.debug("text_cached", message_id=message_id, size=len(self.text_cache))
        return record

    async def capture_media(
        self,
        message: InboundMessage,
        context: MessageContext,
        classification: Classification,
    ) -> Optional[CachedMediaRecord]:
        """Download and cache a regular (or status) media message."""
        message_id = message.key.id
        if self._skip_excluded(message_id, context):
            return None
        if self._is_duplicate(message_id):
            return None

        media = download_gate(classification)
        if media is None:
            self._fallback_to_caption(message, context, classification)
            return None

        capture_class = CaptureClass.STATUS if context.is_status else CaptureClass.MEDIA
        record: Optional[CachedMediaRecord] = None
        self._in_flight.add(message_id)
        try:
            record = await self._store_media(message, context, classification, media, capture_class)
        finally:
            self._end_capture(message_id, captured=record is not None)

        await self._resolve_pending_delete(message_id)
        return record

    async def capture_view_once(
        self,
        message: InboundMessage,
        context: MessageContext,
        classification: Classification,
    ) -> Optional[CachedMediaRecord]:
        """Download, cache and immediately archive a view-once message."""
        message_id = message.key.id
        if self._skip_excluded(message_id, context):
            return None
        if self._is_duplicate(message_id) or await self._already_archived(message_id):
            return None

        media = download_gate(classification)
        if media is None:
            self._fallback_to_caption(message, context, classification)
            return None

        self._log.info(
            "view_once_detected",
            message_id=message_id,
            sender=context.sender_name,
            ephemeral=classification.ephemeral,
        )
        record: Optional[CachedMediaRecord] = None
        self._in_flight.add(message_id)
        try:
            record = await self._store_media(
                message, context, classification, media, CaptureClass.VIEW_ONCE
            )
            if record is None:
                return None
            self.stats.view_once_captured += 1

            if await self._forwarder.forward_media(record, is_recovered=False):
                self._archived.put(
                    message_id, ArchivedViewOnce(message_id=message_id, archived_at_ms=self._clock())
                )
                self.stats.view_once_forwarded += 1
                await self._record_forward(record, recovered=False)
            else:
                self.stats.forward_failures += 1
                self._log.warning("view_once_forward_failed_retained", message_id=message_id)
        finally:
            self._end_capture(message_id, captured=record is not None)

        await self._resolve_pending_delete(message_id)
        return record

    def _end_capture(self, message_id: str, captured: bool) -> None:
        self._in_flight.discard(message_id)
        if not captured and message_id in self._pending_deletes:
            # Nothing was cached, so there is nothing to recover.
            self._pending_deletes.discard(message_id)
            self._log.info("deferred_delete_dropped_capture_failed", message_id=message_id)

    def _is_duplicate(self, message_id: str) -> bool:
        if message_id in self._in_flight or message_id in self.media_cache:
            self._log.debug("duplicate_delivery_skipped", message_id=message_id)
            return True
        return False

    async def _already_archived(self, message_id: str) -> bool:
        if message_id in self._archived:
            return True
        if self._ledger is not None and await self._ledger.was_forwarded(
            self.account_id, message_id, str(CaptureClass.VIEW_ONCE)
        ):
            self._log.debug("view_once_in_ledger", message_id=message_id)
            return True
        return False

    def _fallback_to_caption(
        self,
        message: InboundMessage,
        context: MessageContext,
        classification: Classification,
    ) -> None:
        # Keys stripped: the bytes are unreachable but the caption can still be recovered.
        if classification.caption:
            self.cache_text(message.key.id, classification.caption, context, message.timestamp)

    async def _store_media(
        self,
        message: InboundMessage,
        context: MessageContext,
        classification: Classification,
        media: Mapping[str, Any],
        capture_class: CaptureClass,
    ) -> Optional[CachedMediaRecord]:
        message_id = message.key.id
        try:
            data = await asyncio.wait_for(
                self._session.download_media(message.key, media),
                timeout=self._download_timeout,
            )
        except Exception as e:
            self.stats.download_failures += 1
            self._log.warning(
                "media_download_failed",
                message_id=message_id,
                kind=str(classification.kind),
                error=str(e) or type(e).__name__,
            )
            return None

        if not data:
            self.stats.download_failures += 1
            self._log.warning("media_download_empty", message_id=message_id)
            return None

        mime_type = media.get("mimetype")
        extension = extension_for(
            classification.media_kind, mime_type if isinstance(mime_type, str) else None
        )
        path = await self._files.write(capture_class, extension, data)

        record = CachedMediaRecord(
            message_id=message_id,
            file_path=str(path),
            media_kind=classification.media_kind,
            capture_class=capture_class,
            sender_name=context.sender_name,
            sender_id=context.sender_id,
            timestamp=message.timestamp,
            group_context=context.group_context,
            caption=classification.caption,
            is_status=context.is_status,
            saved_at_ms=self._clock(),
        )
        # A message id lives in one cache only; media wins.
        self.text_cache.delete(message_id)
        self.media_cache.put(message_id, record)
        self.stats.media_cached += 1
        self._log.info(
            "media_cached",
            message_id=message_id,
            media_kind=str(record.media_kind),
            capture_class=str(capture_class),
            file=path.name,
        )
        return record

    # -- deletes -------------------------------------------------------------

    async def handle_delete(self, notice: DeleteNotice) -> None:
        """Recover a revoked message from the caches. Never raises."""
        try:
            await self._handle_delete(notice.key.id)
        except Exception:
            self.stats.errors += 1
            self._log.error("recovery_failed", message_id=notice.key.id, exc_info=True)

    async def _handle_delete(self, message_id: str) -> None:
        if message_id in self._in_flight:
            # Capture still running; recover once it has cached the record.
            self._pending_deletes.add(message_id)
            self._log.debug("delete_deferred_in_flight", message_id=message_id)
            return

        media = self.media_cache.get(message_id)
        if media is not None:
            await self._recover_media(message_id, media)
            return

        text = self.text_cache.get(message_id)
        if text is not None:
            await self._recover_text(message_id, text)
            return

        self._log.debug("deleted_message_not_cached", message_id=message_id)

    async def _recover_media(self, message_id: str, record: CachedMediaRecord) -> None:
        if record.is_view_once and message_id in self._archived:
            self._drop_media(message_id, record)
            self._log.info("view_once_deleted_already_archived", message_id=message_id)
            return

        self._in_flight.add(message_id)
        try:
            ok = await self._forwarder.forward_media(record, is_recovered=True)
        finally:
            self._in_flight.discard(message_id)
            self._pending_deletes.discard(message_id)

        if not ok:
            self.stats.forward_failures += 1
            self._log.warning("recovery_forward_failed_retained", message_id=message_id)
            return

        self._drop_media(message_id, record)
        self.stats.deleted_recovered += 1
        self._log.info(
            "deleted_media_recovered",
            message_id=message_id,
            media_kind=str(record.media_kind),
        )
        await self._record_forward(record, recovered=True)

    async def _recover_text(self, message_id: str, record: CachedTextRecord) -> None:
        self._in_flight.add(message_id)
        try:
            ok = await self._forwarder.forward_text(record)
        finally:
            self._in_flight.discard(message_id)
            self._pending_deletes.discard(message_id)

        if not ok:
            self.stats.forward_failures += 1
            self._log.warning("recovery_forward_failed_retained", message_id=message_id)
            return

        self.text_cache.delete(message_id)
        self.stats.deleted_recovered += 1
        self._log.info("deleted_text_recovered", message_id=message_id)
        await self._record_forward(record, recovered=True)

    async def _resolve_pending_delete(self, message_id: str) -> None:
        if message_id in self._pending_deletes:
            self._pending_deletes.discard(message_id)
            await self._handle_delete(message_id)

    # -- housekeeping --------------------------------------------------------

    def _drop_media(self, message_id: str, record: CachedMediaRecord) -> None:
        self.media_cache.delete(message_id)
        self.text_cache.delete(message_id)
        self._files.discard(record.file_path)

    def _discard_media(self, record: CachedMediaRecord, reason: str) -> None:
        self._files.discard(record.file_path)
        self._log.debug("media_discarded", message_id=record.message_id, reason=reason)

    def sweep(self, now: Optional[int] = None) -> tuple[int, int]:
        """Expire cached records. Returns (media_removed, text_removed)."""
        now = self._clock() if now is None else now
        retention = self._config.retention
        media_removed = self.media_cache.sweep(now, lambda r: max_age_for_media(r, retention))
        text_removed = self.text_cache.sweep(now, lambda r: max_age_for_text(r, retention))
        self._archived.sweep(now, lambda r: retention.media_cache_duration_ms)
        return media_removed, text_removed

    def referenced_paths(self) -> set[str]:
        return {record.file_path for record in self.media_cache.values()}

    async def _record_forward(self, record, recovered: bool) -> None:
        if self._ledger is None:
            return
        if isinstance(record, CachedMediaRecord):
            kind = str(record.capture_class)
            media_kind: Optional[str] = str(record.media_kind)
        else:
            kind = "text"
            media_kind = None
        await self._ledger.record(
            ForwardedItem(
                account_id=self.account_id,
                message_id=record.message_id,
                kind=kind,
                recovered=recovered,
                media_kind=media_kind,
                sender_id=record.sender_id,
                group_context=record.group_context,
            )
        )

    def snapshot(self) -> dict[str, int]:
        data = asdict(self.stats)
        data["text_cache_size"] = len(self.text_cache)
        data["media_cache_size"] = len(self.media_cache)
        return data
