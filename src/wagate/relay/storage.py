"""Upload of media files to the external file-storage endpoint."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

import requests

from wagate.errors import UploadError


@dataclass(frozen=True)
class MediaAsset:
    """A temporary local media file plus metadata."""

    path: Path
    mimetype: str
    kind: str
    filename: str


class HttpUploader:
    """Multipart POST of file bytes plus the upload credential.

    The endpoint answers with JSON holding the public URL in `url_field`.
    """

    def __init__(self, *, url: str, token: str, url_field: str = "url", timeout: float = 60) -> None:
        self._url = url
        self._token = token
        self._url_field = url_field
        self._timeout = timeout

    async def upload(self, asset: MediaAsset) -> str:
        """Upload asset and return its public URL.

        Raises:
            UploadError: If not configured, the request fails, or the
                response carries no URL.
        """
        if not self._url:
            raise UploadError("UPLOAD_URL not configured")
        return await asyncio.to_thread(self._upload_sync, asset)

    def _upload_sync(self, asset: MediaAsset) -> str:
        try:
            with asset.path.open("rb") as fh:
                resp = requests.post(
                    self._url,
                    files={"file": (asset.filename, fh, asset.mimetype)},
                    data={"token": self._token},
                    timeout=self._timeout,
                )
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError, OSError) as exc:
            raise UploadError(f"upload failed: {type(exc).__name__}") from exc

        url = body.get(self._url_field) if isinstance(body, dict) else None
        if not url or not isinstance(url, str):
            raise UploadError(f"upload response has no '{self._url_field}' field")
        return url
