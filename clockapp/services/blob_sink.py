from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote, urljoin

import requests

from clockapp.errors import BlobSinkError


class BlobSink(Protocol):
    def upload(self, key: str, source_path: Path, *, content_type: str) -> str:
        """Store ``source_path`` under ``key``, replacing any previous object, and return its URL."""
        ...


def _validate_key(key: str) -> str:
    normalized = key.strip().lstrip("/")
    parts = normalized.split("/")
    if not normalized or any(part in {"", ".", ".."} for part in parts):
        raise BlobSinkError(f"Invalid blob key: {key!r}")
    return normalized


class FileSystemBlobSink:
    def __init__(self, root: Path | str, *, public_base_url: str | None = None) -> None:
        self._root = Path(root).resolve()
        self._public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def path_for(self, key: str) -> Path:
        target = (self._root / _validate_key(key)).resolve()
        if not target.is_relative_to(self._root):
            raise BlobSinkError(f"Blob key escapes sink root: {key!r}")
        return target

    def upload(self, key: str, source_path: Path, *, content_type: str) -> str:
        target = self.path_for(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".upload-")
            try:
                with os.fdopen(fd, "wb") as out_fh, open(source_path, "rb") as in_fh:
                    shutil.copyfileobj(in_fh, out_fh)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise BlobSinkError(f"filesystem upload failed for {key}: {exc}") from exc

        if self._public_base_url:
            return f"{self._public_base_url}/{quote(_validate_key(key))}"
        return target.as_uri()


class HttpBlobSink:
    def __init__(self, base_url: str, *, token: str | None = None, timeout: int = 30):
        self.base_url = base_url.rstrip("/") + "/"
        self.token = token
        self.timeout = timeout

    def _headers(self, content_type: str) -> dict[str, str]:
        headers = {"Content-Type": content_type}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def upload(self, key: str, source_path: Path, *, content_type: str) -> str:
        url = urljoin(self.base_url, quote(_validate_key(key)))
        try:
            with open(source_path, "rb") as fh:
                response = requests.put(
                    url,
                    data=fh,
                    headers=self._headers(content_type),
                    timeout=self.timeout,
                )
            response.raise_for_status()
        except (requests.RequestException, OSError) as exc:
            raise BlobSinkError(f"http upload failed for {key}: {exc}") from exc

        payload: dict[str, Any] = {}
        if response.content:
            try:
                decoded = response.json()
            except ValueError:
                decoded = None
            if isinstance(decoded, dict):
                payload = decoded
        reference = payload.get("url")
        if isinstance(reference, str) and reference.strip():
            return reference.strip()
        return url
