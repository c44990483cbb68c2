# vitrine/pix/presenter.py
from __future__ import annotations

import base64
import io

import qrcode


def to_image(payload: str, box_size: int = 10, border: int = 1) -> bytes:
    """Renderiza o payload como QR Code PNG (versão ajustada ao tamanho)."""
    qr = qrcode.QRCode(box_size=box_size, border=border)
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffered = io.BytesIO()
    img.save(buffered, "PNG")
    return buffered.getvalue()


def to_data_url(payload: str) -> str:
    png = base64.b64encode(to_image(payload)).decode("ascii")
    return f"data:image/png;base64,{png}"


def to_copyable_text(payload: str) -> str:
    # blocos de 4 separados por espaço; o último pode ser menor
    return " ".join(payload[i:i + 4] for i in range(0, len(payload), 4))
