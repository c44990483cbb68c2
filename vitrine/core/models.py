# vitrine/core/models.py
from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    CheckConstraint, Column, Integer, BigInteger, String, Text, DateTime,
    Boolean, ForeignKey, UniqueConstraint, Numeric, Enum, JSON, Index, event,
    func
)
from sqlalchemy.orm import relationship, validates

from vitrine.core import discounts, inventory
from vitrine.core.inventory import ANY_VARIANT, StockMovement
from vitrine.core.utils import as_money, utcnow
from vitrine.extensions import db  # type: ignore


# =============================================================================
# Utilidades e Mixins
# =============================================================================

MONEY = Numeric(12, 2)
WEIGHT = Numeric(10, 3)
# SQLite só autoincrementa INTEGER PRIMARY KEY
BIGID = BigInteger().with_variant(Integer, "sqlite")


class TimestampMixin:
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class StoreScopedMixin:
    store_id = Column(Integer, ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True)


# =============================================================================
# Enums
# =============================================================================

DiscountTypeEnum = Enum(*discounts.DISCOUNT_TYPES, name="discount_type_enum")
MovementTypeEnum = Enum(*inventory.MOVEMENT_TYPES, name="stock_movement_type_enum")
PixKeyTypeEnum = Enum("email", "phone", "cpf", "cnpj", "random", name="pix_key_type_enum")
OrderStatusEnum = Enum("pending", "confirmed", "preparing", "shipped", "delivered", "cancelled", name="order_status_enum")
PaymentStatusEnum = Enum("pending", "confirmed", "failed", "refunded", name="payment_status_enum")
PaymentMethodEnum = Enum("pix", "credit_card", "bank_slip", name="payment_method_enum")


# =============================================================================
# Lojas
# =============================================================================

class Store(db.Model, TimestampMixin):
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(120), nullable=False, index=True)
    slug = Column(String(80), nullable=False, unique=True, index=True)
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=True)
    contact_email = Column(String(180), nullable=False)
    phone = Column(String(40), nullable=True)
    whatsapp = Column(String(40), nullable=True)
    instagram = Column(String(80), nullable=True)
    address = Column(String(255), nullable=True)
    theme = Column(JSON, nullable=False, default=dict)
    shipping_settings = Column(JSON, nullable=True)
    order_confirmation_message = Column(String(500), nullable=True)
    maintenance_mode = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    pix_keys = relationship("PixKey", cascade="all, delete-orphan", back_populates="store", order_by="PixKey.id")

    @validates("slug")
    def _val_slug(self, key, value):
        if not value or not value.strip():
            raise ValueError("Slug obrigatório")
        return value.strip().lower()

    @property
    def active_pix_key(self) -> Optional["PixKey"]:
        return next((k for k in self.pix_keys if k.is_active), None)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "contact": {
                "email": self.contact_email,
                "phone": self.phone,
                "whatsapp": self.whatsapp,
                "instagram": self.instagram,
                "address": self.address,
            },
            "theme": self.theme or {},
            "shipping_settings": self.shipping_settings,
            "pix_keys": [k.to_dict() for k in self.pix_keys],
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Store {self.id} {self.slug}>"


class PixKey(db.Model, TimestampMixin, StoreScopedMixin):
    __tablename__ = "pix_keys"

    id = Column(Integer, primary_key=True)
    key = Column(String(99), nullable=False)
    type = Column(PixKeyTypeEnum, nullable=False)
    description = Column(String(120), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    store = relationship("Store", back_populates="pix_keys")

    __table_args__ = (
        UniqueConstraint("store_id", "key", name="uq_pix_keys_store_key"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "key": self.key,
            "type": self.type,
            "description": self.description,
            "is_active": self.is_active,
        }


# =============================================================================
# Catálogo
# =============================================================================

class Product(db.Model, TimestampMixin, StoreScopedMixin):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, index=True)
    description = Column(Text, nullable=True)
    category = Column(String(80), nullable=True, index=True)
    price = Column(MONEY, default=Decimal("0.00"), nullable=False)
    weight = Column(WEIGHT, default=Decimal("0.000"), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    options = relationship("VariantOption", cascade="all, delete-orphan", back_populates="product", order_by="VariantOption.id")

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_products_price"),
        CheckConstraint("weight >= 0", name="ck_products_weight"),
    )

    @validates("price")
    def _val_money(self, key, value):
        return as_money(value)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price": str(as_money(self.price)),
            "weight": str(self.weight),
            "is_active": self.is_active,
            "options": [o.to_dict() for o in self.options],
        }

    def __repr__(self):
        return f"<Product {self.id} {self.name}>"


class VariantOption(db.Model, TimestampMixin):
    __tablename__ = "variant_options"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    sku = Column(String(60), nullable=False)
    price = Column(MONEY, nullable=False)
    compare_price = Column(MONEY, nullable=True)
    weight = Column(WEIGHT, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    product = relationship("Product", back_populates="options")

    __table_args__ = (
        UniqueConstraint("product_id", "sku", name="uq_variant_options_product_sku"),
        CheckConstraint("price >= 0", name="ck_variant_options_price"),
    )

    @validates("price", "compare_price")
    def _val_money(self, key, value):
        return None if value is None else as_money(value)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
            "price": str(self.price),
            "compare_price": str(self.compare_price) if self.compare_price is not None else None,
            "is_active": self.is_active,
        }


# =============================================================================
# Cupons
# =============================================================================

class Coupon(db.Model, TimestampMixin, StoreScopedMixin):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True)
    code = Column(String(40), nullable=False)
    description = Column(String(255), nullable=True)
    discount_type = Column(DiscountTypeEnum, nullable=False)
    discount_value = Column(MONEY, nullable=False, default=Decimal("0.00"))
    min_order_value = Column(MONEY, nullable=True)
    max_discount = Column(MONEY, nullable=True)
    usage_limit = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    valid_from = Column(DateTime, nullable=False)
    valid_until = Column(DateTime, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    applicable_categories = Column(JSON, nullable=False, default=list)
    excluded_products = Column(JSON, nullable=False, default=list)

    __table_args__ = (
        UniqueConstraint("store_id", "code", name="uq_coupons_store_code"),
        CheckConstraint("used_count >= 0", name="ck_coupons_used_count"),
        CheckConstraint("usage_limit IS NULL OR used_count <= usage_limit", name="ck_coupons_usage_limit"),
        CheckConstraint("valid_from < valid_until", name="ck_coupons_validity"),
        CheckConstraint("discount_value >= 0", name="ck_coupons_value"),
    )

    @validates("code")
    def _val_code(self, key, value):
        code = discounts.normalize_code(value)
        if not code:
            raise ValueError("Código do cupom obrigatório")
        return code

    @validates("discount_value", "min_order_value", "max_discount")
    def _val_money(self, key, value):
        return None if value is None else as_money(value)

    def to_snapshot(self) -> discounts.DiscountCoupon:
        return discounts.DiscountCoupon(
            id=self.id,
            store_id=self.store_id,
            code=self.code,
            description=self.description,
            discount_type=self.discount_type,
            discount_value=as_money(self.discount_value),
            min_order_value=self.min_order_value,
            max_discount=self.max_discount,
            usage_limit=self.usage_limit,
            used_count=self.used_count or 0,
            valid_from=self.valid_from,
            valid_until=self.valid_until,
            is_active=bool(self.is_active),
            applicable_categories=frozenset(self.applicable_categories or []),
            excluded_products=frozenset(int(p) for p in (self.excluded_products or [])),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "summary": discounts.describe(self.to_snapshot()),
            "discount_type": self.discount_type,
            "discount_value": str(self.discount_value),
            "min_order_value": str(self.min_order_value) if self.min_order_value is not None else None,
            "max_discount": str(self.max_discount) if self.max_discount is not None else None,
            "usage_limit": self.usage_limit,
            "used_count": self.used_count,
            "valid_from": self.valid_from.isoformat(),
            "valid_until": self.valid_until.isoformat(),
            "is_active": self.is_active,
            "applicable_categories": list(self.applicable_categories or []),
            "excluded_products": list(self.excluded_products or []),
        }

    def __repr__(self):
        return f"<Coupon {self.id} {self.code}>"


# =============================================================================
# Pedidos
# =============================================================================

class Order(db.Model, TimestampMixin, StoreScopedMixin):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    customer_name = Column(String(180), nullable=False)
    customer_email = Column(String(180), nullable=False, index=True)
    customer_phone = Column(String(40), nullable=False)
    address = Column(String(255), nullable=True)
    city = Column(String(80), nullable=True)
    state = Column(String(2), nullable=True)
    zip_code = Column(String(9), nullable=True)

    status = Column(OrderStatusEnum, default="pending", nullable=False, index=True)
    payment_method = Column(PaymentMethodEnum, default="pix", nullable=False)
    payment_status = Column(PaymentStatusEnum, default="pending", nullable=False, index=True)

    # Totais sempre preenchidos (zeros quando não há frete/desconto)
    subtotal = Column(MONEY, nullable=False)
    discount_amount = Column(MONEY, nullable=False)
    shipping_cost = Column(MONEY, nullable=False)
    shipping_discount = Column(MONEY, nullable=False)
    total = Column(MONEY, nullable=False)

    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True)
    coupon_code = Column(String(40), nullable=True)
    shipping_option_id = Column(String(40), nullable=True)
    shipping_name = Column(String(120), nullable=True)

    pix_transaction_id = Column(String(25), nullable=True, index=True)
    pix_payload = Column(Text, nullable=True)
    pix_expires_at = Column(DateTime, nullable=True)
    stock_reserved = Column(Boolean, default=False, nullable=False)

    items = relationship("OrderItem", cascade="all, delete-orphan", back_populates="order", order_by="OrderItem.id")
    coupon = relationship("Coupon")

    __table_args__ = (
        CheckConstraint("subtotal >= 0", name="ck_orders_subtotal"),
        CheckConstraint("discount_amount >= 0", name="ck_orders_discount"),
        CheckConstraint("shipping_cost >= 0", name="ck_orders_shipping"),
        CheckConstraint("shipping_discount >= 0", name="ck_orders_shipping_discount"),
        CheckConstraint("total >= 0", name="ck_orders_total"),
        Index("ix_orders_store_status_created", "store_id", "status", "created_at"),
    )

    @validates("subtotal", "discount_amount", "shipping_cost", "shipping_discount", "total")
    def _val_money(self, key, value):
        return as_money(value)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "customer": {
                "name": self.customer_name,
                "email": self.customer_email,
                "phone": self.customer_phone,
                "address": self.address,
                "city": self.city,
                "state": self.state,
                "zip_code": self.zip_code,
            },
            "items": [i.to_dict() for i in self.items],
            "breakdown": {
                "subtotal": str(self.subtotal),
                "discount_amount": str(self.discount_amount),
                "shipping_cost": str(self.shipping_cost),
                "shipping_discount": str(self.shipping_discount),
                "total": str(self.total),
            },
            "coupon_code": self.coupon_code,
            "shipping_option_id": self.shipping_option_id,
            "pix_transaction_id": self.pix_transaction_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class OrderItem(db.Model, TimestampMixin):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    variant_option_id = Column(Integer, ForeignKey("variant_options.id", ondelete="RESTRICT"), nullable=True)
    product_name = Column(String(200), nullable=False)
    option_name = Column(String(120), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(MONEY, nullable=False)
    total = Column(MONEY, nullable=False)

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity"),
        CheckConstraint("unit_price >= 0", name="ck_order_items_price"),
    )

    @validates("unit_price", "total")
    def _val_money(self, key, value):
        return as_money(value)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "variant_option_id": self.variant_option_id,
            "product_name": self.product_name,
            "option_name": self.option_name,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "total": str(self.total),
        }


# =============================================================================
# Estoque (somente inserção)
# =============================================================================

class StockMove(db.Model, StoreScopedMixin):
    __tablename__ = "stock_movements"

    id = Column(BIGID, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    variant_option_id = Column(Integer, ForeignKey("variant_options.id", ondelete="RESTRICT"), nullable=True, index=True)
    type = Column(MovementTypeEnum, nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    reason = Column(String(200), nullable=False)
    reference = Column(String(60), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    created_by = Column(String(120), nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_movements_quantity"),
        Index("ix_stock_movements_store_product_created", "store_id", "product_id", "created_at"),
    )

    def to_movement(self) -> StockMovement:
        return StockMovement(
            id=self.id,
            product_id=self.product_id,
            variant_option_id=self.variant_option_id,
            type=self.type,
            quantity=self.quantity,
            reason=self.reason,
            reference=self.reference,
            created_at=self.created_at,
            created_by=self.created_by,
        )


def _forbid_rewrite(mapper, connection, target: StockMove):
    raise ValueError("Movimentações de estoque não podem ser alteradas ou removidas")

event.listen(StockMove, "before_update", _forbid_rewrite)
event.listen(StockMove, "before_delete", _forbid_rewrite)


class SqlMovementStore:
    """Colaborador de persistência do InventoryLedger sobre stock_movements."""

    def __init__(self, session, store_id: int):
        self.session = session
        self.store_id = store_id

    def append(self, movement: StockMovement) -> int:
        row = StockMove(
            store_id=self.store_id,
            product_id=movement.product_id,
            variant_option_id=movement.variant_option_id,
            type=movement.type,
            quantity=movement.quantity,
            reason=movement.reason,
            reference=movement.reference,
            created_at=movement.created_at,
            created_by=movement.created_by,
        )
        self.session.add(row)
        self.session.flush()
        return row.id

    def query(self, product_id=None, variant_option_id=ANY_VARIANT, reference=None, type=None) -> List[StockMovement]:
        q = self.session.query(StockMove).filter(StockMove.store_id == self.store_id)
        if product_id is not None:
            q = q.filter(StockMove.product_id == product_id)
        if variant_option_id is None:
            q = q.filter(StockMove.variant_option_id.is_(None))
        elif variant_option_id is not ANY_VARIANT:
            q = q.filter(StockMove.variant_option_id == variant_option_id)
        if reference is not None:
            q = q.filter(StockMove.reference == reference)
        if type is not None:
            q = q.filter(StockMove.type == type)
        rows = q.order_by(StockMove.created_at.desc(), StockMove.id.desc()).all()
        return [r.to_movement() for r in rows]


# =============================================================================
# Auditoria
# =============================================================================

class AuditLog(db.Model, StoreScopedMixin):
    __tablename__ = "audit_logs"

    id = Column(BIGID, primary_key=True)
    entity = Column(String(60), nullable=False)
    entity_id = Column(Integer, nullable=True)
    action = Column(String(60), nullable=False)  # created, updated, deleted, redeemed, cancelled
    payload_json = Column(JSON, nullable=True)
    user_id = Column(String(120), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


# =============================================================================
# Índices
# =============================================================================

Index("ix_products_name_lower", func.lower(Product.name))
Index("ix_coupons_store_validity", Coupon.store_id, Coupon.is_active, Coupon.valid_until)
