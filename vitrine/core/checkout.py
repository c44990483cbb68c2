# vitrine/core/checkout.py
"""
Sequência do checkout: cupom -> frete/totais -> cobrança PIX.

Tudo que o checkout precisa (carrinho, cupom, opção de frete, chave PIX) é
passado explicitamente; nada aqui lê sessão ou banco.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Tuple

from vitrine.core import discounts
from vitrine.core.discounts import CartSnapshot, CouponValidation, DiscountCoupon
from vitrine.core.errors import InvalidPixKey
from vitrine.core.shipping import ShippingOption
from vitrine.core.utils import as_money, utcnow
from vitrine.pix import brcode, presenter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppliedDiscount:
    code: str
    discount_type: str
    amount: Decimal
    description: str

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "discount_type": self.discount_type,
            "amount": str(self.amount),
            "description": self.description,
        }


@dataclass(frozen=True)
class Breakdown:
    subtotal: Decimal
    discount_amount: Decimal
    shipping_cost: Decimal
    shipping_discount: Decimal
    total: Decimal
    discount: Optional[AppliedDiscount] = None
    shipping: Optional[ShippingOption] = None

    def to_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "discount_amount": str(self.discount_amount),
            "shipping_cost": str(self.shipping_cost),
            "shipping_discount": str(self.shipping_discount),
            "total": str(self.total),
            "discount": self.discount.to_dict() if self.discount else None,
            "shipping": self.shipping.to_dict() if self.shipping else None,
        }


@dataclass(frozen=True)
class PixCharge:
    transaction_id: str
    payload: str
    copyable_text: str
    qr_code: str
    amount: Decimal
    expires_at: datetime

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "payload": self.payload,
            "copyable_text": self.copyable_text,
            "qr_code": self.qr_code,
            "amount": str(self.amount),
            "expires_at": self.expires_at.isoformat(),
        }


def apply_coupon(
    coupon: DiscountCoupon,
    cart: CartSnapshot,
    now: Optional[datetime] = None,
) -> Tuple[CouponValidation, Optional[AppliedDiscount]]:
    cart_total = cart.total
    validation = discounts.validate(coupon, cart, cart_total, now=now)
    if not validation.valid:
        return validation, None
    applied = AppliedDiscount(
        code=coupon.code,
        discount_type=coupon.discount_type,
        amount=discounts.calculate_discount(coupon, cart_total),
        description=discounts.describe(coupon),
    )
    return validation, applied


def build_breakdown(
    cart: CartSnapshot,
    shipping: Optional[ShippingOption] = None,
    discount: Optional[AppliedDiscount] = None,
) -> Breakdown:
    subtotal = cart.total
    shipping_cost = as_money(shipping.price if shipping else 0)

    # Cupom de frete zera o frete escolhido; os demais descontam do carrinho
    waives_shipping = discount is not None and discount.discount_type == discounts.SHIPPING
    discount_amount = as_money(0 if discount is None or waives_shipping else discount.amount)
    shipping_discount = shipping_cost if waives_shipping else as_money(0)

    total = as_money(max(Decimal("0"), subtotal - discount_amount + shipping_cost - shipping_discount))
    return Breakdown(
        subtotal=subtotal,
        discount_amount=discount_amount,
        shipping_cost=shipping_cost,
        shipping_discount=shipping_discount,
        total=total,
        discount=discount,
        shipping=shipping,
    )


def create_pix_charge(
    store_name: str,
    pix_key: Optional[str],
    amount: Decimal,
    order_ref: str,
    expiration_minutes: int = 30,
    now: Optional[datetime] = None,
) -> PixCharge:
    if not pix_key:
        raise InvalidPixKey("Loja não possui chave PIX configurada")

    transaction_id = brcode.generate_transaction_id()
    payload = brcode.encode(brcode.PixPaymentRequest(
        store_name=store_name,
        pix_key=pix_key,
        amount=as_money(amount),
        transaction_id=transaction_id,
        description=f"Pedido {order_ref}",
    ))
    expires_at = (now or utcnow()) + timedelta(minutes=expiration_minutes)
    logger.info("PIX gerado para pedido %s (transação %s)", order_ref, transaction_id)

    return PixCharge(
        transaction_id=transaction_id,
        payload=payload,
        copyable_text=presenter.to_copyable_text(payload),
        qr_code=presenter.to_data_url(payload),
        amount=as_money(amount),
        expires_at=expires_at,
    )
