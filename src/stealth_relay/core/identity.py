"""Contact identifier and group-name helpers."""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable

_QUOTES_AT_EDGES = re.compile(r"^[\"'`]+|[\"'`]+$")
_APOSTROPHES = re.compile(r"[’‘`´]")
_WHITESPACE = re.compile(r"\s+")


def phone_from_jid(jid: str) -> str:
    """``'919812345678:12@s.whatsapp.net'`` -> ``'919812345678'``."""
    if not jid:
        return ""
    return jid.split("@")[0].split(":")[0]


def mask_identifier(identifier: str, enabled: bool = True) -> str:
    """Show only the last 4 characters of an identifier when masking is on."""
    if not enabled or not identifier or len(identifier) < 4:
        return identifier
    return "XXXXXX" + identifier[-4:]


def normalize_group_name(name: str) -> str:
    if not name:
        return ""
    name = unicodedata.normalize("NFKD", name)
    name = _QUOTES_AT_EDGES.sub("", name)
    name = _APOSTROPHES.sub("'", name)
    name = _WHITESPACE.sub(" ", name)
    return name.strip().lower()


def matches_group_name(group_name: str | None, patterns: Iterable[str]) -> bool:
    """Case-insensitive substring match in either direction."""
    if not group_name:
        return False
    normalized = normalize_group_name(group_name)
    if not normalized:
        return False
    for pattern in patterns:
        candidate = normalize_group_name(pattern)
        if not candidate:
            continue
        if candidate in normalized or normalized in candidate:
            return True
    return False


def vault_jid(destination: str) -> str:
    """Turn a configured vault number into a chat id; full ids pass through."""
    destination = destination.strip()
    if "@" in destination:
        return destination
    return re.sub(r"[^0-9]", "", destination) + "@s.whatsapp.net"
