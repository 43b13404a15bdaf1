"""QR payload to displayable image."""

import base64

import qrcode
from qrcode.image.svg import SvgImage


def encode_qr(payload: str) -> str:
    """Render a QR payload as an SVG data URL."""
    img = qrcode.make(payload, image_factory=SvgImage)
    encoded = base64.b64encode(img.to_string()).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"
