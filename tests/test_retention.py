from __future__ import annotations

from fakes import HOUR_MS
from stealth_relay.capture.cache import TemporalCache
from stealth_relay.capture.models import CachedMediaRecord, CachedTextRecord
from stealth_relay.capture.retention import (
    is_expired,
    max_age_for_file,
    max_age_for_media,
    max_age_for_text,
)
from stealth_relay.config import RetentionConfig
from stealth_relay.core.types import CaptureClass, MediaKind

NOW = 1_700_000_000_000


def _media(message_id: str, is_status: bool, saved_at_ms: int) -> CachedMediaRecord:
    return CachedMediaRecord(
        message_id=message_id,
        file_path=f"/tmp/{message_id}.jpg",
        media_kind=MediaKind.IMAGE,
        capture_class=CaptureClass.STATUS if is_status else CaptureClass.MEDIA,
        sender_name="Alice",
        sender_id="919812345678@s.whatsapp.net",
        timestamp=1_700_000_000,
        group_context="Status Update" if is_status else None,
        caption="",
        is_status=is_status,
        saved_at_ms=saved_at_ms,
    )


def test_default_windows() -> None:
    retention = RetentionConfig()
    assert retention.status_cache_duration_ms == 24 * HOUR_MS
    assert retention.media_cache_duration_ms == 68 * HOUR_MS
    assert retention.text_cache_duration_ms == 3 * HOUR_MS


def test_media_age_depends_on_status_flag() -> None:
    retention = RetentionConfig()
    assert max_age_for_media(_media("s", True, NOW), retention) == 24 * HOUR_MS
    assert max_age_for_media(_media("m", False, NOW), retention) == 68 * HOUR_MS


def test_text_age_is_single_tier() -> None:
    retention = RetentionConfig()
    for is_status in (True, False):
        record = CachedTextRecord(
            message_id="t",
            text="hi",
            sender_name="Alice",
            sender_id="x",
            timestamp=0,
            group_context=None,
            is_status=is_status,
            cached_at_ms=NOW,
        )
        assert max_age_for_text(record, retention) == 3 * HOUR_MS


def test_file_age_follows_class_prefix() -> None:
    retention = RetentionConfig()
    assert max_age_for_file("status-1700000000000-ab12cd34.jpg", retention) == 24 * HOUR_MS
    assert max_age_for_file("media-1700000000000-ab12cd34.jpg", retention) == 68 * HOUR_MS
    assert max_age_for_file("view-once-1700000000000-ab12cd34.mp4", retention) == 68 * HOUR_MS


def test_is_expired_requires_strictly_older() -> None:
    assert not is_expired(0, 100, 100)
    assert is_expired(0, 100, 101)


def test_two_tier_sweep_drops_status_and_keeps_media() -> None:
    retention = RetentionConfig()
    cache: TemporalCache[CachedMediaRecord] = TemporalCache("media")
    aged = NOW - 25 * HOUR_MS
    cache.put("status-1", _media("status-1", True, aged))
    cache.put("media-1", _media("media-1", False, aged))

    removed = cache.sweep(NOW, lambda r: max_age_for_media(r, retention))

    assert removed == 1
    assert "status-1" not in cache
    assert "media-1" in cache
