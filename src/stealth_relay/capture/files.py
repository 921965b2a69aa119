"""Per-account temp-file store for captured media bytes."""

from __future__ import annotations

import asyncio
import mimetypes
import secrets
import time
from dataclasses import dataclass
from pathlib import Path

from stealth_relay.core.types import CaptureClass, MediaKind
from stealth_relay.log import get_logger

logger = get_logger(__name__)

EXTENSIONS: dict[MediaKind, str] = {
    MediaKind.IMAGE: "jpg",
    MediaKind.VIDEO: "mp4",
    MediaKind.AUDIO: "ogg",
    MediaKind.DOCUMENT: "bin",
    MediaKind.STICKER: "webp",
}


def generate_id() -> str:
    """Time plus random component; collisions between writers are effectively impossible."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def extension_for(media_kind: MediaKind, mime_type: str | None = None) -> str:
    if media_kind is MediaKind.DOCUMENT and mime_type:
        guessed = mimetypes.guess_extension(mime_type.split(";")[0].strip())
        if guessed:
            return guessed.lstrip(".")
    return EXTENSIONS[media_kind]


def mime_type_for(path: str | Path) -> str:
    mime_type, _ = mimetypes.guess_type(str(path))
    return mime_type or "application/octet-stream"


@dataclass(frozen=True, slots=True)
class StoredFile:
    path: Path
    mtime_ms: int


class TempFileStore:
    """Owns ``<temp_root>/<account_id>/``.

    The capture pipeline writes here and the cleanup service deletes orphans
    from here; file names are ``<class>-<millis>-<random>.<ext>``.
    """

    def __init__(self, temp_root: str | Path, account_id: str):
        self._dir = Path(temp_root) / account_id

    @property
    def directory(self) -> Path:
        return self._dir

    def ensure(self) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)

    def new_path(self, capture_class: CaptureClass, extension: str) -> Path:
        return self._dir / f"{capture_class}-{generate_id()}.{extension}"

    async def write(self, capture_class: CaptureClass, extension: str, data: bytes) -> Path:
        path = self.new_path(capture_class, extension)
        await asyncio.to_thread(self._write_sync, path, data)
        return path

    def _write_sync(self, path: Path, data: bytes) -> None:
        self.ensure()
        path.write_bytes(data)

    def discard(self, path: str | Path) -> bool:
        """Delete a file; a missing file is logged, not raised."""
        try:
            Path(path).unlink()
            return True
        except FileNotFoundError:
            logger.debug("temp_file_already_gone", path=str(path))
            return False
        except OSError as e:
            logger.warning("temp_file_delete_failed", path=str(path), error=str(e))
            return False

    def list_files(self) -> list[StoredFile]:
        if not self._dir.is_dir():
            return []
        files: list[StoredFile] = []
        for entry in self._dir.iterdir():
            try:
                if not entry.is_file():
                    continue
                files.append(StoredFile(path=entry, mtime_ms=int(entry.stat().st_mtime * 1000)))
            except FileNotFoundError:
                continue
        return files
