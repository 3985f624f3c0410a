"""
QR rendering for otpauth:// provisioning URIs.

Plugged into TotpEngine as its qr_renderer so enrollment responses can
carry a scannable image.
"""

import io

import qrcode
from qrcode.constants import ERROR_CORRECT_L


QR_BOX_SIZE = 10
QR_BORDER = 4


def _build(uri: str) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        version=1,
        error_correction=ERROR_CORRECT_L,
        box_size=QR_BOX_SIZE,
        border=QR_BORDER,
    )
    qr.add_data(uri)
    qr.make(fit=True)
    return qr


def render_qr_png(uri: str) -> bytes:
    """
    Render a provisioning URI as a PNG image.

    Args:
        uri: otpauth:// URI

    Returns:
        PNG file contents
    """
    img = _build(uri).make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def render_qr_ascii(uri: str) -> str:
    """Render a provisioning URI as terminal-friendly ASCII art."""
    out = io.StringIO()
    _build(uri).print_ascii(out=out)
    return out.getvalue()
