from __future__ import annotations

import os
import re
import secrets
import tempfile
from pathlib import Path
from zoneinfo import ZoneInfo

from clockapp.errors import PhotoStagingError
from clockapp.timeutils import local_month_bucket

PHOTO_KEY_PREFIX = "logs"
DEFAULT_PHOTO_SUFFIX = ".jpg"
_IMAGE_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\xff\xd8\xff", ".jpg"),
    (b"\x89PNG\r\n\x1a\n", ".png"),
)
_CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
}
_UNSAFE_SEGMENT_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def safe_segment(value: str) -> str:
    cleaned = _UNSAFE_SEGMENT_CHARS.sub("_", value.strip())
    return cleaned or "_"


def detect_image_suffix(data: bytes) -> str | None:
    for signature, suffix in _IMAGE_SIGNATURES:
        if data.startswith(signature):
            return suffix
    return None


def content_type_for(path: str | Path) -> str:
    return _CONTENT_TYPES.get(Path(path).suffix.lower(), "application/octet-stream")


def build_photo_key(
    *,
    employee_id: str,
    captured_at_ms: int,
    tz: ZoneInfo,
    local_photo_path: str | None = None,
) -> str:
    """Blob key for an event photo; identical inputs always yield the same key."""
    suffix = Path(local_photo_path).suffix.lower() if local_photo_path else ""
    month = local_month_bucket(captured_at_ms, tz)
    return f"{PHOTO_KEY_PREFIX}/{safe_segment(employee_id)}/{month}/{captured_at_ms}{suffix or DEFAULT_PHOTO_SUFFIX}"


class MediaStager:
    """Writes captured photos under ``media_root`` before a pending event points at them."""

    def __init__(self, media_root: Path | str) -> None:
        self._media_root = Path(media_root)

    @property
    def media_root(self) -> Path:
        return self._media_root

    def stage(self, *, employee_id: str, captured_at_ms: int, image_bytes: bytes) -> Path:
        if not image_bytes:
            raise PhotoStagingError("Photo is empty.")
        suffix = detect_image_suffix(image_bytes)
        if suffix is None:
            raise PhotoStagingError("Photo is not a JPEG or PNG image.")

        file_name = f"{safe_segment(employee_id)}_{captured_at_ms}_{secrets.token_hex(4)}{suffix}"
        target = self._media_root / file_name
        try:
            self._media_root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._media_root, prefix=".stage-")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(image_bytes)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PhotoStagingError(f"Photo could not be written: {exc}") from exc
        return target

    @staticmethod
    def discard(path: Path | str | None) -> bool:
        if not path:
            return False
        try:
            Path(path).unlink()
        except FileNotFoundError:
            return False
        return True
