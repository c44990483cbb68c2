import base64
import re
from decimal import Decimal

from vitrine.pix import brcode, presenter

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def _payload():
    return brcode.encode(brcode.PixPaymentRequest(
        store_name="Loja Exemplo",
        pix_key="store@email.com",
        amount=Decimal("19.90"),
        transaction_id="EP123",
    ))


def test_copyable_text_round_trip():
    payload = _payload()
    text = presenter.to_copyable_text(payload)

    assert re.sub(r"\s", "", text) == payload
    assert all(len(chunk) == 4 for chunk in text.split(" ")[:-1])
    assert 1 <= len(text.split(" ")[-1]) <= 4


def test_copyable_text_short_payload():
    assert presenter.to_copyable_text("abcdef") == "abcd ef"


def test_image_is_png():
    assert presenter.to_image(_payload()).startswith(PNG_SIGNATURE)


def test_data_url():
    url = presenter.to_data_url(_payload())

    assert url.startswith("data:image/png;base64,")
    assert base64.b64decode(url.split(",", 1)[1]).startswith(PNG_SIGNATURE)
