import re
from decimal import Decimal

import pytest

from vitrine.core.errors import InvalidPixKey, ServiceError
from vitrine.pix import brcode
from vitrine.pix.brcode import MalformedBRCode, PixPaymentRequest


def _request(**overrides):
    data = dict(
        store_name="Loja Exemplo",
        pix_key="store@email.com",
        amount=Decimal("19.90"),
        transaction_id="EP123",
    )
    data.update(overrides)
    return PixPaymentRequest(**data)


def test_crc16_known_vector():
    assert brcode.crc16("123456789") == "29B1"


def test_emv_field_pads_length():
    assert brcode.emv_field("59", "LOJA") == "5904LOJA"
    with pytest.raises(ValueError):
        brcode.emv_field("26", "x" * 100)


def test_format_amount():
    assert brcode.format_amount(Decimal("19.9")) == "19.90"
    assert brcode.format_amount(10) == "10.00"
    assert brcode.format_amount("0.005") == "0.01"
    with pytest.raises(ValueError):
        brcode.format_amount(Decimal("-1"))


def test_encode_end_to_end_payload():
    payload = brcode.encode(_request())

    assert payload.startswith("000201010212")
    assert "26370014br.gov.bcb.pix0115store@email.com" in payload
    assert "52040000" in payload
    assert "5303986" in payload
    assert "540519.90" in payload
    assert "5802BR" in payload
    assert "5912LOJA EXEMPLO" in payload
    assert "6013EASY PLATFORM" in payload
    assert "62090505EP123" in payload
    assert payload[-8:-4] == "6304"
    assert re.fullmatch(r"[0-9A-F]{4}", payload[-4:])


def test_crc_round_trip():
    payload = brcode.encode(_request(amount=Decimal("1234.56"), transaction_id=brcode.generate_transaction_id()))
    assert brcode.crc16(payload[:-4]) == payload[-4:].upper()


def test_merchant_name_truncated_to_25_uppercase():
    name = "Empório Central de Produtos Naturais e Afins"[:40]
    assert len(name) == 40

    fields = brcode.parse(brcode.encode(_request(store_name=name)))

    assert fields["59"] == name[:25].upper()
    assert len(fields["59"]) == 25


def test_city_truncated_to_15():
    fields = brcode.parse(brcode.encode(_request()))
    assert fields["60"] == "EASY PLATFORM"


def test_parse_nested_templates():
    fields = brcode.parse(brcode.encode(_request()))

    assert fields["00"] == "01"
    assert fields["26"] == {"00": "br.gov.bcb.pix", "01": "store@email.com"}
    assert fields["62"] == {"05": "EP123"}
    assert fields["54"] == "19.90"
    assert len(fields["63"]) == 4


def test_blank_key_is_rejected():
    with pytest.raises(InvalidPixKey):
        brcode.encode(_request(pix_key="   "))
    assert issubclass(InvalidPixKey, ServiceError)


def test_negative_amount_is_rejected():
    with pytest.raises(ValueError):
        brcode.encode(_request(amount=Decimal("-0.01")))


def test_tampered_payload_fails_crc():
    payload = brcode.encode(_request())
    tampered = payload.replace("19.90", "99.90")

    assert brcode.is_valid(payload)
    assert not brcode.is_valid(tampered)
    with pytest.raises(MalformedBRCode):
        brcode.parse(tampered)


def test_parse_rejects_missing_crc():
    with pytest.raises(MalformedBRCode):
        brcode.parse("000201")


def test_transaction_id_shape():
    tx = brcode.generate_transaction_id()
    assert re.fullmatch(r"EP\d{13}[0-9A-Z]{9}", tx)
    assert tx != brcode.generate_transaction_id()
