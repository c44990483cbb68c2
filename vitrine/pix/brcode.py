# vitrine/pix/brcode.py
"""
Geração e leitura de payloads PIX no padrão BR Code (EMV) do Banco Central.

O payload é uma sequência de campos ID(2) + TAMANHO(2) + VALOR, terminada
pelo campo 63 (CRC16-CCITT de tudo que vem antes, incluindo "6304").
"""
from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional, Union

from vitrine.core.errors import InvalidPixKey


# =============================================================================
# Constantes do BR Code
# =============================================================================

ID_PAYLOAD_FORMAT = "00"
ID_POINT_OF_INITIATION = "01"
ID_MERCHANT_ACCOUNT = "26"
ID_MERCHANT_CATEGORY = "52"
ID_CURRENCY = "53"
ID_AMOUNT = "54"
ID_COUNTRY = "58"
ID_MERCHANT_NAME = "59"
ID_MERCHANT_CITY = "60"
ID_ADDITIONAL_DATA = "62"
ID_CRC = "63"

# subcampos dos templates 26 e 62
ID_GUI = "00"
ID_PIX_KEY = "01"
ID_REFERENCE = "05"

PIX_GUI = "br.gov.bcb.pix"
MERCHANT_CITY = "Easy Platform"
MERCHANT_NAME_MAX = 25
MERCHANT_CITY_MAX = 15
FIELD_MAX = 99

CRC_HEADER = ID_CRC + "04"
NESTED_TEMPLATES = (ID_MERCHANT_ACCOUNT, ID_ADDITIONAL_DATA)

TRANSACTION_PREFIX = "EP"
_BASE36 = string.digits + string.ascii_uppercase


class MalformedBRCode(ValueError):
    pass


@dataclass(frozen=True)
class PixPaymentRequest:
    store_name: str
    pix_key: str
    amount: Decimal
    transaction_id: str
    description: Optional[str] = None


# =============================================================================
# Codificação
# =============================================================================

def emv_field(field_id: str, value: str) -> str:
    if len(value) > FIELD_MAX:
        raise ValueError(f"Campo {field_id} excede {FIELD_MAX} caracteres")
    return f"{field_id}{len(value):02d}{value}"


def crc16(data: str) -> str:
    """CRC16-CCITT (polinômio 0x1021, inicial 0xFFFF, sem XOR final)."""
    crc = 0xFFFF
    for ch in data:
        crc ^= ord(ch) << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = (crc << 1) ^ 0x1021
            else:
                crc <<= 1
            crc &= 0xFFFF
    return f"{crc:04X}"


def format_amount(amount: Union[Decimal, int, float, str]) -> str:
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    if value < 0:
        raise ValueError("Valor do PIX não pode ser negativo")
    return str(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _truncate(text: str, max_length: int) -> str:
    return text[:max_length].upper()


def encode(request: PixPaymentRequest) -> str:
    pix_key = (request.pix_key or "").strip()
    if not pix_key:
        raise InvalidPixKey("Chave PIX não informada")

    merchant_account = emv_field(ID_GUI, PIX_GUI) + emv_field(ID_PIX_KEY, pix_key)
    additional_data = emv_field(ID_REFERENCE, request.transaction_id)

    payload = "".join([
        emv_field(ID_PAYLOAD_FORMAT, "01"),
        emv_field(ID_POINT_OF_INITIATION, "12"),
        emv_field(ID_MERCHANT_ACCOUNT, merchant_account),
        emv_field(ID_MERCHANT_CATEGORY, "0000"),
        emv_field(ID_CURRENCY, "986"),
        emv_field(ID_AMOUNT, format_amount(request.amount)),
        emv_field(ID_COUNTRY, "BR"),
        emv_field(ID_MERCHANT_NAME, _truncate(request.store_name or "", MERCHANT_NAME_MAX)),
        emv_field(ID_MERCHANT_CITY, _truncate(MERCHANT_CITY, MERCHANT_CITY_MAX)),
        emv_field(ID_ADDITIONAL_DATA, additional_data),
    ])

    payload += CRC_HEADER
    return payload + crc16(payload)


def generate_transaction_id() -> str:
    """
    Prefixo fixo + timestamp em milissegundos + sufixo aleatório base-36.
    Unicidade é best-effort; colisões viram transações distintas.
    """
    suffix = "".join(random.choice(_BASE36) for _ in range(9))
    return f"{TRANSACTION_PREFIX}{int(time.time() * 1000)}{suffix}"


# =============================================================================
# Decodificação
# =============================================================================

def _split_fields(data: str) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    pos = 0
    while pos < len(data):
        header = data[pos:pos + 4]
        if len(header) < 4 or not header.isdigit():
            raise MalformedBRCode(f"Cabeçalho inválido na posição {pos}")
        field_id, length = header[:2], int(header[2:])
        value = data[pos + 4:pos + 4 + length]
        if len(value) != length:
            raise MalformedBRCode(f"Campo {field_id} truncado")
        fields[field_id] = value
        pos += 4 + length
    return fields


def parse(payload: str) -> Dict[str, Union[str, Dict[str, str]]]:
    """
    Separa o payload em {id: valor}, com os templates 26 e 62 como dicts
    aninhados. Valida o CRC final.
    """
    if len(payload) < 8 or payload[-8:-4] != CRC_HEADER:
        raise MalformedBRCode("Campo CRC ausente")

    body, checksum = payload[:-4], payload[-4:]
    if crc16(body) != checksum.upper():
        raise MalformedBRCode("CRC não confere")

    fields: Dict[str, Union[str, Dict[str, str]]] = {}
    for field_id, value in _split_fields(body[:-4]).items():
        if field_id in NESTED_TEMPLATES:
            fields[field_id] = _split_fields(value)
        else:
            fields[field_id] = value
    fields[ID_CRC] = checksum
    return fields


def is_valid(payload: str) -> bool:
    try:
        parse(payload)
    except MalformedBRCode:
        return False
    return True
