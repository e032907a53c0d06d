from __future__ import annotations

import base64
import io

import qrcode

DEFAULT_SIZE = 200
DEFAULT_MARGIN = 2
DARK_COLOR = "#000000"
LIGHT_COLOR = "#ffffff"


def build_upload_link(origin: str, token_hash: str) -> str:
    return f"{origin.rstrip('/')}/upload/{token_hash}"


def _make_code(text: str, margin: int) -> qrcode.QRCode:
    code = qrcode.QRCode(border=margin)
    code.add_data(text)
    code.make(fit=True)
    return code


def qr_png_bytes(text: str, size: int = DEFAULT_SIZE, margin: int = DEFAULT_MARGIN) -> bytes:
    code = _make_code(text, margin)
    # Largest whole-pixel module size that fits the requested width.
    code.box_size = max(1, size // (code.modules_count + 2 * margin))
    image = code.make_image(fill_color=DARK_COLOR, back_color=LIGHT_COLOR)
    buffer = io.BytesIO()
    image.save(buffer)
    return buffer.getvalue()


def qr_data_url(text: str, size: int = DEFAULT_SIZE, margin: int = DEFAULT_MARGIN) -> str:
    encoded = base64.b64encode(qr_png_bytes(text, size=size, margin=margin)).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def qr_terminal(text: str, margin: int = DEFAULT_MARGIN) -> str:
    code = _make_code(text, margin)
    out = io.StringIO()
    code.print_ascii(out=out, invert=True)
    return out.getvalue()
