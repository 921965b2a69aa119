"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


@dataclass
class ForwardedItem:
    account_id: str
    message_id: str
    kind: str  # "text" | "media" | "view-once" | "status"
    recovered: bool = False
    media_kind: Optional[str] = None
    sender_id: str = ""
    group_context: Optional[str] = None
    forwarded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[int] = None
