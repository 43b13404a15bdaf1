"""Audio transcoding through an ffmpeg subprocess."""

from __future__ import annotations

import asyncio
from pathlib import Path

from wagate.errors import TranscodeError

TRANSCODED_MIMETYPE = "audio/mpeg"
TRANSCODED_EXTENSION = ".mp3"

# Seconds before a stuck ffmpeg is killed
DEFAULT_TIMEOUT_S = 120


class FfmpegTranscoder:
    """Converts audio attachments to MP3 (libmp3lame, 128 kbit/s)."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", timeout_s: float = DEFAULT_TIMEOUT_S) -> None:
        self._ffmpeg = ffmpeg_path
        self._timeout_s = timeout_s

    @staticmethod
    def output_path(src: Path) -> Path:
        dst = src.with_suffix(TRANSCODED_EXTENSION)
        if dst == src:
            dst = src.with_name(f"{src.stem}.audio{TRANSCODED_EXTENSION}")
        return dst

    async def to_mp3(self, src: Path) -> Path:
        """Transcode src next to itself and return the new file.

        Raises:
            TranscodeError: If ffmpeg is missing, fails, or times out.
        """
        dst = self.output_path(src)
        try:
            proc = await asyncio.create_subprocess_exec(
                self._ffmpeg,
                "-y",
                "-loglevel", "error",
                "-i", str(src),
                "-vn",
                "-acodec", "libmp3lame",
                "-b:a", "128k",
                str(dst),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise TranscodeError(f"ffmpeg not found at {self._ffmpeg!r}") from exc

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout_s)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise TranscodeError("ffmpeg timed out") from exc

        if proc.returncode != 0:
            err = stderr.decode("utf-8", errors="replace") if stderr else ""
            raise TranscodeError(f"ffmpeg failed (rc={proc.returncode}): {err[:200]}")
        return dst
