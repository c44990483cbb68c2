# vitrine/core/discounts.py
"""
Validação e cálculo de cupons de desconto.

Funções puras sobre um snapshot do cupom e do carrinho: nada aqui consulta o
banco nem incrementa `used_count` (isso é feito em services.registrar_uso_cupom
após o pedido ser gravado).
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import FrozenSet, Optional, Tuple

from vitrine.core.utils import as_money, format_brl, utcnow

PERCENTAGE = "percentage"
FIXED = "fixed"
SHIPPING = "shipping"
DISCOUNT_TYPES = (PERCENTAGE, FIXED, SHIPPING)


# =============================================================================
# Snapshots
# =============================================================================

@dataclass(frozen=True)
class DiscountCoupon:
    id: Optional[int]
    store_id: Optional[int]
    code: str
    discount_type: str
    discount_value: Decimal
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True
    used_count: int = 0
    min_order_value: Optional[Decimal] = None
    max_discount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    applicable_categories: FrozenSet[str] = frozenset()
    excluded_products: FrozenSet[int] = frozenset()
    description: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "code", normalize_code(self.code))
        if self.discount_type not in DISCOUNT_TYPES:
            raise ValueError(f"Tipo de desconto inválido: {self.discount_type}")


@dataclass(frozen=True)
class CartLine:
    product_id: int
    category: Optional[str]
    quantity: int
    unit_price: Decimal
    variant_option_id: Optional[int] = None
    name: str = ""
    weight: Decimal = Decimal("0")

    @property
    def line_total(self) -> Decimal:
        return as_money(self.unit_price * self.quantity)


@dataclass(frozen=True)
class CartSnapshot:
    lines: Tuple[CartLine, ...] = field(default_factory=tuple)

    @property
    def total(self) -> Decimal:
        return as_money(sum((line.line_total for line in self.lines), Decimal("0")))

    @property
    def total_weight(self) -> Decimal:
        return sum((line.weight * line.quantity for line in self.lines), Decimal("0"))

    @property
    def is_empty(self) -> bool:
        return not self.lines


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


# =============================================================================
# Resultado da validação
# =============================================================================

class RejectionKind(str, enum.Enum):
    INACTIVE_COUPON = "inactive_coupon"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    BELOW_MINIMUM_ORDER = "below_minimum_order"
    NOT_APPLICABLE_TO_CART = "not_applicable_to_cart"
    CONTAINS_EXCLUDED_PRODUCT = "contains_excluded_product"


@dataclass(frozen=True)
class CouponRejection:
    kind: RejectionKind
    message: str
    minimum: Optional[Decimal] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "minimum": str(self.minimum) if self.minimum is not None else None,
        }


@dataclass(frozen=True)
class CouponValidation:
    error: Optional[CouponRejection] = None

    @property
    def valid(self) -> bool:
        return self.error is None


VALID = CouponValidation()


def _reject(kind: RejectionKind, message: str, minimum: Optional[Decimal] = None) -> CouponValidation:
    return CouponValidation(CouponRejection(kind, message, minimum))


# =============================================================================
# Operações
# =============================================================================

def validate(
    coupon: DiscountCoupon,
    cart: CartSnapshot,
    cart_total: Decimal,
    now: Optional[datetime] = None,
) -> CouponValidation:
    """Aplica as regras em ordem; a primeira que falhar é retornada."""
    now = now or utcnow()

    if not coupon.is_active:
        return _reject(RejectionKind.INACTIVE_COUPON, "Cupom não está ativo")

    if now < coupon.valid_from:
        return _reject(RejectionKind.NOT_YET_VALID, "Cupom ainda não está válido")

    if now > coupon.valid_until:
        return _reject(RejectionKind.EXPIRED, "Cupom expirado")

    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        return _reject(RejectionKind.USAGE_LIMIT_REACHED, "Cupom já foi utilizado o máximo de vezes")

    if coupon.min_order_value is not None and cart_total < coupon.min_order_value:
        minimum = as_money(coupon.min_order_value)
        return _reject(
            RejectionKind.BELOW_MINIMUM_ORDER,
            f"Valor mínimo do pedido: {format_brl(minimum)}",
            minimum,
        )

    if coupon.applicable_categories:
        if not any(line.category in coupon.applicable_categories for line in cart.lines):
            return _reject(RejectionKind.NOT_APPLICABLE_TO_CART, "Cupom não aplicável aos produtos do carrinho")

    if coupon.excluded_products:
        if any(line.product_id in coupon.excluded_products for line in cart.lines):
            return _reject(
                RejectionKind.CONTAINS_EXCLUDED_PRODUCT,
                "Cupom não aplicável a alguns produtos do carrinho",
            )

    return VALID


def calculate_discount(coupon: DiscountCoupon, cart_total: Decimal) -> Decimal:
    """
    Valor do desconto sobre o carrinho.

    Cupons de frete retornam 0: o frete é zerado pelo checkout
    (Breakdown.shipping_discount), não aqui.
    """
    cart_total = Decimal(str(cart_total))
    value = Decimal(str(coupon.discount_value))

    if coupon.discount_type == PERCENTAGE:
        amount = cart_total * value / Decimal("100")
    elif coupon.discount_type == FIXED:
        amount = value
    else:
        amount = Decimal("0")

    if coupon.max_discount is not None and amount > coupon.max_discount:
        amount = Decimal(str(coupon.max_discount))

    if amount > cart_total:
        amount = cart_total

    return as_money(max(Decimal("0"), amount))


def _plain(value: Decimal) -> str:
    # 10.00 -> "10", 12.50 -> "12.5"
    return format(Decimal(str(value)).normalize(), "f")


def describe(coupon: DiscountCoupon) -> str:
    labels = {
        PERCENTAGE: f"{_plain(coupon.discount_value)}% OFF",
        FIXED: f"{format_brl(coupon.discount_value)} OFF",
        SHIPPING: "FRETE GRÁTIS",
    }
    description = labels[coupon.discount_type]

    if coupon.min_order_value is not None:
        description += f" em pedidos acima de {format_brl(coupon.min_order_value)}"

    if coupon.usage_limit is not None:
        description += f" ({max(0, coupon.usage_limit - coupon.used_count)} usos restantes)"

    return description
