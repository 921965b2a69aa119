"""Retention windows for cached records and temp files.

Status media expires on the short window, other media on the long one. Text
uses a single window regardless of where it came from.
"""

from __future__ import annotations

import time

from stealth_relay.capture.models import CachedMediaRecord, CachedTextRecord
from stealth_relay.config import RetentionConfig
from stealth_relay.core.types import CaptureClass


def max_age_for_media(record: CachedMediaRecord, retention: RetentionConfig) -> int:
    if record.is_status:
        return retention.status_cache_duration_ms
    return retention.media_cache_duration_ms


def max_age_for_text(record: CachedTextRecord, retention: RetentionConfig) -> int:
    return retention.text_cache_duration_ms


def max_age_for_file(file_name: str, retention: RetentionConfig) -> int:
    """Policy age for a temp file, derived from its class prefix."""
    if file_name.startswith(f"{CaptureClass.STATUS}-"):
        return retention.status_cache_duration_ms
    return retention.media_cache_duration_ms


def is_expired(recorded_at_ms: int, max_age_ms: int, now_ms: int) -> bool:
    return now_ms - recorded_at_ms > max_age_ms


def now_ms() -> int:
    return int(time.time() * 1000)
