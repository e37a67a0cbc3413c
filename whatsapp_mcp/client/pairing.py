"""QR rendering for WhatsApp pairing codes."""

import base64
import io
import logging
import sys
from typing import TextIO

import qrcode

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = "data:image/png;base64,"


def _build_qr(code: str, border: int = 2) -> qrcode.QRCode:
    qr = qrcode.QRCode(box_size=8, border=border)
    qr.add_data(code)
    qr.make(fit=True)
    return qr


def render_pairing_image(code: str) -> str:
    """Render a pairing code as a PNG data URL.

    Raises whatever the renderer raises; the state machine treats a failure
    here as non-fatal and keeps the raw code.
    """
    image = _build_qr(code).make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    image.save(buffer)
    return DATA_URL_PREFIX + base64.b64encode(buffer.getvalue()).decode("ascii")


def print_pairing_code(code: str, out: TextIO | None = None) -> None:
    """Print the pairing code as ASCII art (stderr by default, stdout may carry stdio MCP)."""
    _build_qr(code, border=1).print_ascii(out=out or sys.stderr, invert=True)


def decode_pairing_image(data_url: str) -> bytes:
    """Return the PNG bytes behind a data URL produced by render_pairing_image."""
    _, _, payload = data_url.partition(",")
    return base64.b64decode(payload)


__all__ = ["DATA_URL_PREFIX", "decode_pairing_image", "print_pairing_code", "render_pairing_image"]
