"""Normalized inbound-message envelope and its webhook encoding."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from wagate.sessions.client import InboundMessage, contact_uid

from .media import UploadedMedia

LOCATION_TYPES = frozenset({"location"})
VCARD_TYPES = frozenset({"vcard", "multi_vcard"})


@dataclass(frozen=True)
class InboundEnvelope:
    timestamp: int
    message_id: str
    contact_id: str
    contact_name: str
    kind: str
    body: str | dict[str, Any]
    ack: str

    def to_payload(self, *, uid: str, token: str) -> dict[str, Any]:
        """Webhook payload (nested; see flatten_form for the wire encoding)."""
        return {
            "event": "message",
            "token": token,
            "uid": uid,
            "contact": {"uid": self.contact_id, "name": self.contact_name, "type": "user"},
            "message": {
                "dtm": self.timestamp,
                "uid": self.message_id,
                "cuid": "",
                "dir": "i",
                "type": self.kind,
                "body": self.body,
                "ack": self.ack,
            },
        }


def skips_media_pipeline(message: InboundMessage) -> bool:
    return message.type in LOCATION_TYPES or message.type in VCARD_TYPES


def build_envelope(message: InboundMessage, media: UploadedMedia | None = None) -> InboundEnvelope:
    """Build the envelope for one inbound message.

    Args:
        message: Event payload from the client.
        media: Result of the media pipeline when the message had an attachment.
    """
    body: str | dict[str, Any]
    if message.type in LOCATION_TYPES:
        kind = "location"
        body = {"lat": message.latitude, "lng": message.longitude}
    elif message.type in VCARD_TYPES:
        kind = "vcard"
        body = message.body
    elif media is not None:
        kind = media.kind
        body = {
            "caption": message.caption or message.body or "",
            "mimetype": media.mimetype,
            "size": media.size,
            "url": media.url,
            "thumbnail": message.thumbnail or "",
        }
    else:
        kind = "chat"
        body = message.body

    return InboundEnvelope(
        timestamp=int(message.timestamp),
        message_id=message.id,
        contact_id=contact_uid(message.from_id),
        contact_name=message.contact_name,
        kind=kind,
        body=body,
        ack=str(message.ack),
    )


def flatten_form(data: dict[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested dicts into bracketed form keys (message[body][url])."""
    items: list[tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(value, dict):
            items.extend(flatten_form(value, name))
        elif value is None:
            items.append((name, ""))
        else:
            items.append((name, str(value)))
    return items
