"""QR code rendering for terminals and image attachments."""

from __future__ import annotations

import io

import qrcode
from qrcode.constants import ERROR_CORRECT_L
from qrcode.image.svg import SvgPathImage

from bullhorn.alerter.models import PaymentCode

DARK_MODULE = "##"
LIGHT_MODULE = "  "


def _build(data: str, border: int) -> qrcode.QRCode:
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_L, border=border)
    qr.add_data(data)
    qr.make(fit=True)
    return qr


def render_text(data: str, *, quiet_zone: bool = False) -> str:
    """Render a QR code as text.

    Each module is two characters wide so the code keeps its aspect ratio
    in a terminal.
    """
    matrix = _build(data, border=4 if quiet_zone else 0).get_matrix()
    return "\n".join(
        "".join(DARK_MODULE if cell else LIGHT_MODULE for cell in row) for row in matrix
    )


def render_svg(data: str) -> bytes:
    """Render a QR code as an SVG document."""
    image = qrcode.make(data, image_factory=SvgPathImage, box_size=10, border=4)
    buffer = io.BytesIO()
    image.save(buffer)
    return buffer.getvalue()


def render_payment_code(data: str) -> PaymentCode:
    """Render a payment request into a sink-agnostic attachment."""
    return PaymentCode(data=data, text=render_text(data), svg=render_svg(data))
