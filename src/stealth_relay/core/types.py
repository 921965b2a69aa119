"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum

STATUS_BROADCAST_JID = "status@broadcast"
STATUS_GROUP_CONTEXT = "Status Update"


class MediaKind(StrEnum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"


class CaptureClass(StrEnum):
    """Temp-file name prefix, one per capture path."""

    MEDIA = "media"
    STATUS = "status"
    VIEW_ONCE = "view-once"


class ContentKind(StrEnum):
    NONE = "none"
    TEXT = "text"
    VIEW_ONCE_IMAGE = "view_once_image"
    VIEW_ONCE_VIDEO = "view_once_video"
    VIEW_ONCE_AUDIO = "view_once_audio"
    MEDIA_IMAGE = "media_image"
    MEDIA_VIDEO = "media_video"
    MEDIA_AUDIO = "media_audio"
    MEDIA_DOCUMENT = "media_document"
    MEDIA_STICKER = "media_sticker"

    @property
    def is_view_once(self) -> bool:
        return self.value.startswith("view_once_")

    @property
    def is_media(self) -> bool:
        return self.value.startswith("media_")


VIEW_ONCE_KINDS: dict[MediaKind, ContentKind] = {
    MediaKind.IMAGE: ContentKind.VIEW_ONCE_IMAGE,
    MediaKind.VIDEO: ContentKind.VIEW_ONCE_VIDEO,
    MediaKind.AUDIO: ContentKind.VIEW_ONCE_AUDIO,
}

MEDIA_KINDS: dict[MediaKind, ContentKind] = {
    MediaKind.IMAGE: ContentKind.MEDIA_IMAGE,
    MediaKind.VIDEO: ContentKind.MEDIA_VIDEO,
    MediaKind.AUDIO: ContentKind.MEDIA_AUDIO,
    MediaKind.DOCUMENT: ContentKind.MEDIA_DOCUMENT,
    MediaKind.STICKER: ContentKind.MEDIA_STICKER,
}
