# vitrine/core/utils.py
from __future__ import annotations

import re
import unicodedata
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def as_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if isinstance(value, Decimal):
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def format_brl(value) -> str:
    return f"R$ {as_money(value)}"


def utcnow() -> datetime:
    # datas são gravadas sem fuso (UTC), como no banco
    return datetime.now(timezone.utc).replace(tzinfo=None)


def slugify(text: str) -> str:
    norm = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", norm.lower()).strip("-")
