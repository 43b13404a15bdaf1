"""Fetch of remote media for outbound sends."""

from __future__ import annotations

import asyncio
import mimetypes
from pathlib import Path

import requests

from wagate.errors import MediaDownloadError
from wagate.media_types import filename_from_url, sanitize_filename, synthesize_filename
from wagate.relay.storage import MediaAsset

_CHUNK_SIZE = 64 * 1024


async def fetch_remote_media(url: str, dest_dir: Path, *, kind: str, timeout: float) -> MediaAsset:
    """Download url into dest_dir.

    Raises:
        MediaDownloadError: On network/HTTP errors or an empty body.
    """
    return await asyncio.to_thread(_fetch_sync, url, dest_dir, kind, timeout)


def _fetch_sync(url: str, dest_dir: Path, kind: str, timeout: float) -> MediaAsset:
    url_name = filename_from_url(url)
    try:
        with requests.get(url, stream=True, timeout=timeout) as resp:
            resp.raise_for_status()
            mimetype = resp.headers.get("Content-Type", "").split(";", 1)[0].strip()
            if not mimetype or mimetype == "application/octet-stream":
                mimetype = mimetypes.guess_type(url_name)[0] or "application/octet-stream"

            filename = sanitize_filename(url_name) or synthesize_filename(mimetype)
            path = dest_dir / filename
            written = 0
            with path.open("wb") as fh:
                for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                    if chunk:
                        fh.write(chunk)
                        written += len(chunk)
    except (requests.RequestException, OSError) as exc:
        raise MediaDownloadError(f"media fetch failed: {type(exc).__name__}") from exc

    if written == 0:
        raise MediaDownloadError("media fetch returned an empty body")
    return MediaAsset(path=path, mimetype=mimetype, kind=kind, filename=filename)
