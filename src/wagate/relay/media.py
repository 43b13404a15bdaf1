"""Inbound media pipeline: download, classify, transcode, upload, clean up.

Each message gets its own scoped temporary directory, removed when the
pipeline returns or raises.
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from wagate.errors import MediaDownloadError, MediaError
from wagate.media_types import AUDIO, classify_kind, sanitize_filename, synthesize_filename
from wagate.observability.logging import get_logger
from wagate.observability.redaction import uid_context
from wagate.sessions.client import InboundMessage, MessagingClient

from .storage import MediaAsset
from .transcode import TRANSCODED_MIMETYPE

logger = get_logger(__name__)


class Uploader(Protocol):
    async def upload(self, asset: MediaAsset) -> str: ...


class AudioTranscoder(Protocol):
    async def to_mp3(self, src: Path) -> Path: ...


@dataclass(frozen=True)
class UploadedMedia:
    kind: str
    url: str
    mimetype: str
    size: int
    filename: str


class MediaPipeline:
    def __init__(
        self,
        *,
        uploader: Uploader,
        transcoder: AudioTranscoder,
        tmp_root: Path | None = None,
    ) -> None:
        self._uploader = uploader
        self._transcoder = transcoder
        self._tmp_root = tmp_root

    async def process(
        self, uid: str, client: MessagingClient, message: InboundMessage
    ) -> UploadedMedia:
        """Turn the attachment of message into a public URL.

        Raises:
            MediaDownloadError: If the attachment cannot be fetched.
            TranscodeError: If audio conversion fails.
            UploadError: If the upload fails.
            MediaError: If the attachment cannot be written to disk.
        """
        try:
            download = await client.download_media(message)
        except Exception as exc:
            raise MediaDownloadError(f"download failed: {type(exc).__name__}") from exc
        if download is None or not download.data:
            raise MediaDownloadError("attachment has no data")

        kind = classify_kind(download.mimetype)
        filename = sanitize_filename(download.filename or message.filename) or synthesize_filename(
            download.mimetype
        )

        if self._tmp_root is not None:
            self._tmp_root.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix="wagate-media-", dir=self._tmp_root))
        try:
            asset = MediaAsset(
                path=workdir / filename, mimetype=download.mimetype, kind=kind, filename=filename
            )
            try:
                await asyncio.to_thread(asset.path.write_bytes, download.data)
            except OSError as exc:
                raise MediaError(f"could not store attachment: {type(exc).__name__}") from exc

            if kind == AUDIO:
                asset = await self._transcode(asset)

            url = await self._uploader.upload(asset)
            size = asset.path.stat().st_size
            logger.info(
                "media uploaded",
                extra={"extra_fields": uid_context(uid, kind=kind, size=size)},
            )
            return UploadedMedia(
                kind=kind, url=url, mimetype=asset.mimetype, size=size, filename=asset.filename
            )
        finally:
            _remove_workdir(workdir)

    async def _transcode(self, asset: MediaAsset) -> MediaAsset:
        transcoded = await self._transcoder.to_mp3(asset.path)
        asset.path.unlink(missing_ok=True)
        return MediaAsset(
            path=transcoded,
            mimetype=TRANSCODED_MIMETYPE,
            kind=asset.kind,
            filename=transcoded.name,
        )


def _remove_workdir(workdir: Path) -> None:
    # Synchronous so it still runs when the surrounding task is being cancelled.
    try:
        shutil.rmtree(workdir)
    except FileNotFoundError:
        pass
    except OSError:
        logger.exception("media workdir cleanup failed", extra={"extra_fields": {"workdir": workdir.name}})
