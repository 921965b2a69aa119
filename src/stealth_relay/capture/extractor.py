"""Classification of raw protocol payloads into capturable content kinds.

This is the single decoding boundary for message payloads. Every envelope the
protocol has used for disappearing content is one row in ``_VIEW_ONCE_UNWRAPPERS``;
adding a newly observed variant means adding a row there.

Priority (first match wins):
1. ephemeral envelope -> unwrap once, classify the inner payload, tag ephemeral
2. view-once wrappers or a ``viewOnce`` flag on the media object -> view_once_*
3. a known media object -> media_* (its caption recorded)
4. conversation / extended text -> text
5. anything else -> none
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Mapping, Optional

from stealth_relay.core.types import MEDIA_KINDS, VIEW_ONCE_KINDS, ContentKind, MediaKind
from stealth_relay.log import get_logger

logger = get_logger(__name__)

MEDIA_FIELDS: dict[str, MediaKind] = {
    "imageMessage": MediaKind.IMAGE,
    "videoMessage": MediaKind.VIDEO,
    "audioMessage": MediaKind.AUDIO,
    "documentMessage": MediaKind.DOCUMENT,
    "stickerMessage": MediaKind.STICKER,
}

KEY_FIELDS = ("mediaKey", "media_key")
LOCATOR_FIELDS = ("url", "directPath")

# protocolMessage.type value for a sender-side delete
REVOKE_TYPES = (0, "REVOKE")

MAX_WRAPPER_DEPTH = 4


@dataclass(frozen=True, slots=True)
class Classification:
    kind: ContentKind
    inner: Optional[Mapping[str, Any]] = None
    media: Optional[Mapping[str, Any]] = None
    media_kind: Optional[MediaKind] = None
    text: str = ""
    caption: str = ""
    ephemeral: bool = False

    @property
    def is_capturable(self) -> bool:
        return self.kind is not ContentKind.NONE


NONE = Classification(kind=ContentKind.NONE)


def _mapping(value: Any) -> Optional[Mapping[str, Any]]:
    return value if isinstance(value, Mapping) else None


def _nested_message(payload: Mapping[str, Any], field: str) -> Optional[Mapping[str, Any]]:
    wrapper = _mapping(payload.get(field))
    if wrapper is None:
        return None
    return _mapping(wrapper.get("message"))


def _wrapped(field: str) -> Callable[[Mapping[str, Any]], Optional[Mapping[str, Any]]]:
    def unwrap(payload: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        return _nested_message(payload, field)

    unwrap.__name__ = f"unwrap_{field}"
    return unwrap


def _flagged_media(payload: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    """Media objects that carry ``viewOnce: true`` directly."""
    for field, media_kind in MEDIA_FIELDS.items():
        if media_kind not in VIEW_ONCE_KINDS:
            continue
        media = _mapping(payload.get(field))
        if media is not None and media.get("viewOnce") is True:
            return payload
    return None


_VIEW_ONCE_UNWRAPPERS: tuple[Callable[[Mapping[str, Any]], Optional[Mapping[str, Any]]], ...] = (
    _wrapped("viewOnceMessage"),
    _wrapped("viewOnceMessageV2"),
    _wrapped("viewOnceMessageV2Extension"),
    _flagged_media,
)


def _find_media(payload: Mapping[str, Any]) -> tuple[Optional[MediaKind], Optional[Mapping[str, Any]]]:
    for field, media_kind in MEDIA_FIELDS.items():
        media = _mapping(payload.get(field))
        if media is not None:
            return media_kind, media
    return None, None


def _caption(media: Mapping[str, Any]) -> str:
    caption = media.get("caption")
    return caption if isinstance(caption, str) else ""


def extract_text(payload: Mapping[str, Any]) -> str:
    """Plain text body of a payload, if any."""
    conversation = payload.get("conversation")
    if isinstance(conversation, str) and conversation:
        return conversation
    extended = _mapping(payload.get("extendedTextMessage"))
    if extended is not None:
        text = extended.get("text")
        if isinstance(text, str):
            return text
    return ""


def _classify_view_once(payload: Mapping[str, Any]) -> Optional[Classification]:
    for unwrap in _VIEW_ONCE_UNWRAPPERS:
        inner = unwrap(payload)
        if inner is None:
            continue
        media_kind, media = _find_media(inner)
        if media_kind is None or media_kind not in VIEW_ONCE_KINDS:
            logger.debug("view_once_without_media", variant=unwrap.__name__)
            return NONE
        return Classification(
            kind=VIEW_ONCE_KINDS[media_kind],
            inner=inner,
            media=media,
            media_kind=media_kind,
            caption=_caption(media),
        )
    return None


def _classify(payload: Any, depth: int) -> Classification:
    payload = _mapping(payload)
    if payload is None:
        return NONE
    if depth > MAX_WRAPPER_DEPTH:
        logger.debug("wrapper_nesting_too_deep", depth=depth)
        return NONE

    if "ephemeralMessage" in payload:
        inner = _nested_message(payload, "ephemeralMessage")
        if inner is None:
            return NONE
        result = _classify(inner, depth + 1)
        if not result.is_capturable:
            return result
        return replace(result, ephemeral=True)

    view_once = _classify_view_once(payload)
    if view_once is not None:
        return view_once

    media_kind, media = _find_media(payload)
    if media_kind is not None and media is not None:
        caption = _caption(media)
        return Classification(
            kind=MEDIA_KINDS[media_kind],
            inner=payload,
            media=media,
            media_kind=media_kind,
            text=caption,
            caption=caption,
        )

    text = extract_text(payload)
    if text:
        return Classification(kind=ContentKind.TEXT, inner=payload, text=text)

    return NONE


def classify(payload: Any) -> Classification:
    """Classify a raw protocol message payload."""
    return _classify(payload, 0)


def _non_empty_bytes(value: Any) -> bool:
    return isinstance(value, (bytes, bytearray, memoryview)) and len(value) > 0


def _non_blank_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def is_downloadable(media: Optional[Mapping[str, Any]]) -> bool:
    """True when the media object carries a key and a resource locator.

    Sessions routinely deliver media objects with keys stripped (retries,
    history sync, companion devices); those must never reach a download.
    """
    if media is None:
        return False
    has_key = any(_non_empty_bytes(media.get(field)) for field in KEY_FIELDS)
    has_locator = any(_non_blank_str(media.get(field)) for field in LOCATOR_FIELDS)
    return has_key and has_locator


def download_gate(classification: Classification) -> Optional[Mapping[str, Any]]:
    """The media object to download, or None when it must not be downloaded."""
    if not (classification.kind.is_media or classification.kind.is_view_once):
        return None
    if not is_downloadable(classification.media):
        logger.debug("media_not_downloadable", kind=str(classification.kind))
        return None
    return classification.media


def revoked_message_id(payload: Any) -> Optional[str]:
    """Message id revoked by a ``protocolMessage`` payload, if this is one."""
    payload = _mapping(payload)
    if payload is None:
        return None
    inner = _nested_message(payload, "ephemeralMessage")
    if inner is not None:
        payload = inner
    protocol = _mapping(payload.get("protocolMessage"))
    if protocol is None or protocol.get("type") not in REVOKE_TYPES:
        return None
    key = _mapping(protocol.get("key"))
    if key is None:
        return None
    message_id = key.get("id")
    return message_id if isinstance(message_id, str) and message_id else None
