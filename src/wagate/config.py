"""Gateway settings loaded from the environment.

Values are read when `get_settings()` is called, never at import time, so
tests can override them with `monkeypatch.setenv`.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Gateway configuration.

    Attributes:
        host / port: Listen address of the HTTP control plane.
        webhook_url: Endpoint receiving inbound envelopes. Empty disables relay.
        upload_url / upload_token: File-storage endpoint and its credential.
        upload_url_field: JSON field of the upload response with the public URL.
        sessions_dir: One sub-directory of credential material per uid.
        media_tmp_dir: Parent directory of scoped temporary media directories.
        client_factory: `module:attribute` path of the automation client factory.
    """

    host: str = "0.0.0.0"
    port: int = 3000
    webhook_url: str = ""
    webhook_timeout: int = 10
    upload_url: str = ""
    upload_token: str = ""
    upload_url_field: str = "url"
    upload_timeout: int = 60
    sessions_dir: Path = Path(".wagate_auth")
    media_tmp_dir: Path = Path(tempfile.gettempdir())
    ffmpeg_path: str = "ffmpeg"
    qr_timeout_seconds: int = 60
    init_retries: int = 3
    client_factory: str = ""
    jwt_secret: str = ""
    jwt_ttl_seconds: int = 0
    token_store_backend: str = "file"
    quota_backend: str = "allow_all"
    restore_sessions: bool = True


def get_settings() -> Settings:
    """Build Settings from environment variables."""
    return Settings(
        host=os.environ.get("HOST", "0.0.0.0"),
        port=_env_int("PORT", 3000),
        webhook_url=os.environ.get("WEBHOOK_URL", ""),
        webhook_timeout=_env_int("WEBHOOK_TIMEOUT", 10),
        upload_url=os.environ.get("UPLOAD_URL", ""),
        upload_token=os.environ.get("UPLOAD_TOKEN", ""),
        upload_url_field=os.environ.get("UPLOAD_URL_FIELD", "url"),
        upload_timeout=_env_int("UPLOAD_TIMEOUT", 60),
        sessions_dir=Path(os.environ.get("SESSIONS_DIR", ".wagate_auth")),
        media_tmp_dir=Path(os.environ.get("MEDIA_TMP_DIR", tempfile.gettempdir())),
        ffmpeg_path=os.environ.get("FFMPEG_PATH", "ffmpeg"),
        qr_timeout_seconds=_env_int("QR_TIMEOUT_SECONDS", 60),
        init_retries=_env_int("INIT_RETRIES", 3),
        client_factory=os.environ.get("CLIENT_FACTORY", ""),
        jwt_secret=os.environ.get("JWT_SECRET", ""),
        jwt_ttl_seconds=_env_int("JWT_TTL_SECONDS", 0),
        token_store_backend=os.environ.get("TOKEN_STORE_BACKEND", "file"),
        quota_backend=os.environ.get("QUOTA_BACKEND", "allow_all"),
        restore_sessions=_env_bool("RESTORE_SESSIONS", True),
    )
