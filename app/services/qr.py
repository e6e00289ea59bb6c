# app/services/qr.py
from io import BytesIO
import base64

import qrcode
from qrcode.constants import ERROR_CORRECT_Q


def render_png(text: str) -> bytes:
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_Q, box_size=10, border=4)
    qr.add_data(text)
    qr.make(fit=True)
    img = qr.make_image()
    buf = BytesIO(); img.save(buf, format="PNG")
    return buf.getvalue()


def render_png_base64(text: str) -> str:
    return base64.b64encode(render_png(text)).decode()
