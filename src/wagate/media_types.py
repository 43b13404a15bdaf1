"""Media kind classification and filename helpers.

Inbound attachments are classified by mimetype; outbound media URLs by file
extension. Both are pure functions.
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Final
from urllib.parse import unquote, urlparse

from wagate.infra.time import epoch_millis

IMAGE: Final = "image"
VIDEO: Final = "video"
GIF: Final = "gif"
DOCUMENT: Final = "document"
AUDIO: Final = "audio"
STICKER: Final = "sticker"

OUTBOUND_KINDS: Final = frozenset({IMAGE, VIDEO, GIF, DOCUMENT, AUDIO})
# Kinds that need the full rendering backend when sent via a disposable client.
HEAVY_KINDS: Final = frozenset({VIDEO, GIF})

_EXTENSION_KINDS: Final[dict[str, str]] = {
    "jpg": IMAGE,
    "jpeg": IMAGE,
    "png": IMAGE,
    "webp": IMAGE,
    "mp4": VIDEO,
    "mov": VIDEO,
    "avi": VIDEO,
    "pdf": DOCUMENT,
    "doc": DOCUMENT,
    "docx": DOCUMENT,
    "xls": DOCUMENT,
    "xlsx": DOCUMENT,
    "mp3": AUDIO,
    "ogg": AUDIO,
    "aac": AUDIO,
}

_MIME_PREFIX_KINDS: Final = (
    ("image/", IMAGE),
    ("video/", VIDEO),
    ("application/", DOCUMENT),
    ("audio/", AUDIO),
)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")

# Well below the usual 255-byte filesystem limit.
MAX_FILENAME_LENGTH = 200
_MAX_KEPT_EXTENSION = 16


def classify_kind(mimetype: str) -> str:
    """Kind of an inbound attachment from its mimetype prefix."""
    mimetype = (mimetype or "").strip().lower()
    for prefix, kind in _MIME_PREFIX_KINDS:
        if mimetype.startswith(prefix):
            return kind
    return STICKER


def _extension_of(name: str) -> str:
    suffix = PurePosixPath(name).suffix
    return suffix[1:].lower() if suffix else ""


def infer_media_type(url: str) -> str:
    """Kind of an outbound media URL from its file extension (default document)."""
    path = urlparse(url).path or url
    return _EXTENSION_KINDS.get(_extension_of(unquote(path)), DOCUMENT)


def filename_from_url(url: str) -> str:
    """Last path segment of a URL, percent-decoded."""
    path = unquote(urlparse(url).path)
    return PurePosixPath(path).name


def sanitize_filename(name: str | None) -> str:
    """Strip characters outside [A-Za-z0-9._-]. Returns "" if nothing usable remains.

    Names longer than MAX_FILENAME_LENGTH are shortened, keeping a short
    extension.
    """
    if not name:
        return ""
    cleaned = _truncate_filename(_UNSAFE_FILENAME_CHARS.sub("", name))
    if not cleaned.strip("."):
        return ""
    return cleaned


def _truncate_filename(name: str) -> str:
    if len(name) <= MAX_FILENAME_LENGTH:
        return name
    stem, dot, ext = name.rpartition(".")
    if dot and stem and len(ext) <= _MAX_KEPT_EXTENSION:
        return stem[: MAX_FILENAME_LENGTH - len(ext) - 1] + "." + ext
    return name[:MAX_FILENAME_LENGTH]


def mimetype_extension(mimetype: str) -> str:
    """Extension taken from the mimetype subtype (image/jpeg -> jpeg)."""
    subtype = (mimetype or "").split("/", 1)[-1].split(";", 1)[0].strip().lower()
    subtype = sanitize_filename(subtype.split("+", 1)[0])
    return subtype or "bin"


def synthesize_filename(mimetype: str) -> str:
    """Filename for an attachment that came without one."""
    return f"{epoch_millis()}.{mimetype_extension(mimetype)}"
