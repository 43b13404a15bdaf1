"""Tests for the inbound media pipeline (download, transcode, upload, cleanup)."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from wagate.errors import MediaDownloadError, MediaError, TranscodeError, UploadError
from wagate.media_types import MAX_FILENAME_LENGTH
from wagate.relay.media import MediaPipeline
from wagate.relay.storage import MediaAsset
from wagate.sessions.client import ClientOptions, MediaDownload

from helpers import FakeClient, make_message

UID = "15551234567"
PUBLIC_URL = "https://files.example.com/f/abc123"


class RecordingUploader:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.uploads: list[tuple[MediaAsset, bytes]] = []

    async def upload(self, asset: MediaAsset) -> str:
        self.uploads.append((asset, asset.path.read_bytes()))
        if self.error is not None:
            raise self.error
        return PUBLIC_URL


class FakeTranscoder:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error

    async def to_mp3(self, src: Path) -> Path:
        if self.error is not None:
            raise self.error
        dst = src.with_suffix(".mp3")
        dst.write_bytes(b"ID3-mp3-bytes")
        return dst


def _client(tmp_path, media: MediaDownload | None) -> FakeClient:
    return FakeClient(ClientOptions(uid=UID, data_dir=tmp_path / "s" / UID), media=media)


def _pipeline(tmp_path, uploader=None, transcoder=None) -> MediaPipeline:
    return MediaPipeline(
        uploader=uploader or RecordingUploader(),
        transcoder=transcoder or FakeTranscoder(),
        tmp_root=tmp_path / "tmp",
    )


class TestMediaPipeline:
    @pytest.mark.asyncio
    async def test_image_without_filename_gets_jpeg_name(self, tmp_path):
        uploader = RecordingUploader()
        client = _client(tmp_path, MediaDownload(data=b"\xff\xd8jpeg", mimetype="image/jpeg"))
        message = make_message(type="image", has_media=True)

        with patch("wagate.media_types.epoch_millis", return_value=1718000000123):
            result = await _pipeline(tmp_path, uploader).process(UID, client, message)

        assert result.kind == "image"
        assert result.url == PUBLIC_URL
        assert result.filename == "1718000000123.jpeg"
        assert result.size == len(b"\xff\xd8jpeg")
        asset, data = uploader.uploads[0]
        assert asset.filename.endswith(".jpeg")
        assert data == b"\xff\xd8jpeg"

    @pytest.mark.asyncio
    async def test_provided_filename_is_sanitized(self, tmp_path):
        uploader = RecordingUploader()
        client = _client(
            tmp_path,
            MediaDownload(data=b"%PDF", mimetype="application/pdf", filename="Q3 report (v2).pdf"),
        )

        result = await _pipeline(tmp_path, uploader).process(
            UID, client, make_message(type="document", has_media=True)
        )

        assert result.kind == "document"
        assert result.filename == "Q3reportv2.pdf"

    @pytest.mark.asyncio
    async def test_audio_is_transcoded_before_upload(self, tmp_path):
        uploader = RecordingUploader()
        client = _client(tmp_path, MediaDownload(data=b"OggS", mimetype="audio/ogg; codecs=opus"))

        result = await _pipeline(tmp_path, uploader).process(
            UID, client, make_message(type="ptt", has_media=True)
        )

        asset, data = uploader.uploads[0]
        assert asset.mimetype == "audio/mpeg"
        assert asset.filename.endswith(".mp3")
        assert data == b"ID3-mp3-bytes"
        assert result.kind == "audio"
        assert result.mimetype == "audio/mpeg"

    @pytest.mark.asyncio
    async def test_temp_files_removed_after_success(self, tmp_path):
        client = _client(tmp_path, MediaDownload(data=b"img", mimetype="image/png"))

        await _pipeline(tmp_path).process(UID, client, make_message(has_media=True))

        assert list((tmp_path / "tmp").iterdir()) == []

    @pytest.mark.asyncio
    async def test_temp_files_removed_when_upload_fails(self, tmp_path):
        uploader = RecordingUploader(error=UploadError("upload failed: ConnectionError"))
        client = _client(tmp_path, MediaDownload(data=b"img", mimetype="image/png"))

        with pytest.raises(UploadError):
            await _pipeline(tmp_path, uploader).process(UID, client, make_message(has_media=True))

        assert list((tmp_path / "tmp").iterdir()) == []

    @pytest.mark.asyncio
    async def test_temp_files_removed_when_transcode_fails(self, tmp_path):
        uploader = RecordingUploader()
        transcoder = FakeTranscoder(error=TranscodeError("ffmpeg failed (rc=1): "))
        client = _client(tmp_path, MediaDownload(data=b"OggS", mimetype="audio/ogg"))

        with pytest.raises(TranscodeError):
            await _pipeline(tmp_path, uploader, transcoder).process(
                UID, client, make_message(has_media=True)
            )

        assert uploader.uploads == []
        assert list((tmp_path / "tmp").iterdir()) == []

    @pytest.mark.asyncio
    async def test_missing_attachment_raises_download_error(self, tmp_path):
        client = _client(tmp_path, None)

        with pytest.raises(MediaDownloadError):
            await _pipeline(tmp_path).process(UID, client, make_message(has_media=True))

    @pytest.mark.asyncio
    async def test_client_download_exception_wrapped(self, tmp_path):
        client = _client(tmp_path, None)
        client.download_media = AsyncMock(side_effect=TimeoutError("media expired"))

        with pytest.raises(MediaDownloadError):
            await _pipeline(tmp_path).process(UID, client, make_message(has_media=True))

    @pytest.mark.asyncio
    async def test_overlong_filename_is_shortened(self, tmp_path):
        uploader = RecordingUploader()
        name = "r" * 400 + ".pdf"
        client = _client(
            tmp_path, MediaDownload(data=b"%PDF", mimetype="application/pdf", filename=name)
        )

        result = await _pipeline(tmp_path, uploader).process(
            UID, client, make_message(type="document", has_media=True)
        )

        assert len(result.filename) == MAX_FILENAME_LENGTH
        assert result.filename.endswith(".pdf")
        assert len(uploader.uploads) == 1

    @pytest.mark.asyncio
    async def test_write_failure_raises_media_error(self, tmp_path):
        uploader = RecordingUploader()
        client = _client(tmp_path, MediaDownload(data=b"img", mimetype="image/png"))

        with patch.object(Path, "write_bytes", side_effect=OSError(36, "File name too long")):
            with pytest.raises(MediaError):
                await _pipeline(tmp_path, uploader).process(
                    UID, client, make_message(has_media=True)
                )

        assert uploader.uploads == []
        assert list((tmp_path / "tmp").iterdir()) == []
