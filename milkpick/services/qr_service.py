# milkpick/services/qr_service.py
import base64

import qrcode
import qrcode.image.svg
from qrcode.constants import ERROR_CORRECT_M


def render_svg(token: str) -> str:
    """Pickup token as an SVG document."""
    qr = qrcode.QRCode(
        error_correction=ERROR_CORRECT_M,
        box_size=10,
        border=1,
        image_factory=qrcode.image.svg.SvgPathImage,
    )
    qr.add_data(token)
    qr.make(fit=True)
    return qr.make_image().to_string(encoding="unicode")


def render_data_url(token: str) -> str:
    svg = render_svg(token).encode("utf-8")
    return "data:image/svg+xml;base64," + base64.b64encode(svg).decode("ascii")
