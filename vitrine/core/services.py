# vitrine/core/services.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from flask import current_app
from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from vitrine.extensions import db
from vitrine.core import checkout, discounts, inventory, shipping
from vitrine.core.discounts import CartLine, CartSnapshot
from vitrine.core.errors import (
    CouponLookupFailed, CouponRejected, InvalidPixKey, NotFound, ServiceError
)
from vitrine.core.inventory import ANY_VARIANT, InventoryLedger
from vitrine.core.models import (
    AuditLog, Coupon, Order, OrderItem, PixKey, Product, SqlMovementStore,
    Store, VariantOption
)
from vitrine.core.utils import as_money, slugify, utcnow

logger = logging.getLogger(__name__)

# =============================================================================
# Utilidades
# =============================================================================

def _ensure(cond, msg: str):
    if not cond:
        raise ServiceError(msg)

def _row_to_dict(obj, keys: Iterable[str]) -> Dict[str, Any]:
    out = {}
    for k in keys:
        v = getattr(obj, k, None)
        out[k] = v.isoformat() if isinstance(v, datetime) else (str(v) if isinstance(v, Decimal) else v)
    return out

@contextmanager
def transaction():
    try:
        yield
        db.session.commit()
    except IntegrityError as ie:
        db.session.rollback()
        raise ServiceError(f"Violação de integridade: {ie.orig}") from ie
    except ServiceError:
        db.session.rollback()
        raise
    except Exception as e:
        db.session.rollback()
        raise ServiceError(str(e)) from e

def audit_log(store_id: int, entidade: str, entidade_id: Optional[int], acao: str, payload: dict, user_id: Optional[str]):
    db.session.add(AuditLog(
        store_id=store_id,
        entity=entidade,
        entity_id=entidade_id,
        action=acao,
        payload_json=payload or {},
        user_id=user_id,
    ))

# =============================================================================
# Lojas e chaves PIX
# =============================================================================

def buscar_loja(slug: str) -> Store:
    store = db.session.query(Store).filter_by(slug=(slug or "").strip().lower()).first()
    if not store or not store.is_active:
        raise NotFound("Loja não encontrada")
    return store

def criar_loja(
    owner_id: str,
    name: str,
    contact_email: str,
    slug: Optional[str] = None,
    description: Optional[str] = None,
    phone: Optional[str] = None,
    whatsapp: Optional[str] = None,
    instagram: Optional[str] = None,
    address: Optional[str] = None,
    theme: Optional[dict] = None,
) -> Store:
    _ensure(name and name.strip(), "Nome da loja obrigatório")
    slug = slugify(slug or name)
    _ensure(slug, "Slug inválido")
    _ensure(db.session.query(Store.id).filter_by(slug=slug).first() is None, "Slug já está em uso")

    store = Store(
        owner_id=owner_id,
        slug=slug,
        name=name.strip(),
        description=description,
        contact_email=contact_email.strip(),
        phone=phone,
        whatsapp=whatsapp,
        instagram=instagram,
        address=address,
        theme=theme or {},
        shipping_settings=shipping.default_shipping_settings(),
    )
    db.session.add(store)
    db.session.flush()
    audit_log(store.id, "Store", store.id, "created", _row_to_dict(store, ["slug", "name"]), owner_id)
    return store

def atualizar_frete(store: Store, settings: Dict[str, Any], user_id: Optional[str]) -> Store:
    erros = shipping.validate_shipping_settings(settings)
    _ensure(not erros, "; ".join(erros))
    before = store.shipping_settings
    store.shipping_settings = settings
    audit_log(store.id, "Store", store.id, "shipping_updated", {"before": before, "after": settings}, user_id)
    return store

def _chave_da_loja(store: Store, key_id: int) -> PixKey:
    chave = db.session.get(PixKey, key_id)
    if not chave or chave.store_id != store.id:
        raise NotFound("Chave PIX não encontrada")
    return chave

def adicionar_chave_pix(store: Store, key: str, type: str, description: Optional[str], user_id: Optional[str]) -> PixKey:
    key = (key or "").strip()
    _ensure(key, "Chave PIX obrigatória")
    _ensure(all(k.key != key for k in store.pix_keys), "Chave PIX já cadastrada")
    chave = PixKey(
        store_id=store.id,
        key=key,
        type=type,
        description=description,
        # a primeira chave cadastrada já nasce ativa
        is_active=store.active_pix_key is None,
    )
    store.pix_keys.append(chave)
    db.session.flush()
    audit_log(store.id, "PixKey", chave.id, "created", {"type": type}, user_id)
    return chave

def alternar_chave_pix(store: Store, key_id: int, user_id: Optional[str]) -> PixKey:
    chave = _chave_da_loja(store, key_id)
    ativar = not chave.is_active
    if ativar:
        # apenas uma chave ativa por loja
        for outra in store.pix_keys:
            outra.is_active = False
    chave.is_active = ativar
    audit_log(store.id, "PixKey", chave.id, "toggled", {"is_active": ativar}, user_id)
    return chave

def remover_chave_pix(store: Store, key_id: int, user_id: Optional[str]) -> None:
    chave = _chave_da_loja(store, key_id)
    store.pix_keys.remove(chave)
    audit_log(store.id, "PixKey", key_id, "deleted", {"type": chave.type}, user_id)

def chave_pix_ativa(store: Store) -> Optional[PixKey]:
    return store.active_pix_key

# =============================================================================
# Catálogo
# =============================================================================

def criar_produto(
    store: Store,
    name: str,
    price: Decimal,
    category: Optional[str] = None,
    description: Optional[str] = None,
    weight: Decimal = Decimal("0"),
    options: Optional[List[Dict[str, Any]]] = None,
    estoque_inicial: int = 0,
    user_id: Optional[str] = None,
) -> Product:
    _ensure(name and name.strip(), "Nome do produto obrigatório")
    price = as_money(price)
    _ensure(price >= 0, "Preço inválido")

    p = Product(
        store_id=store.id,
        name=name.strip(),
        description=description,
        category=(category or "").strip() or None,
        price=price,
        weight=Decimal(str(weight or 0)),
    )
    for opt in options or []:
        _ensure(opt.get("name") and opt.get("sku"), "Opção de variante exige nome e SKU")
        p.options.append(VariantOption(
            name=opt["name"].strip(),
            sku=opt["sku"].strip(),
            price=opt["price"] if opt.get("price") is not None else price,
            compare_price=opt.get("compare_price"),
            weight=Decimal(str(opt["weight"])) if opt.get("weight") is not None else None,
        ))
    db.session.add(p)
    db.session.flush()

    ledger = ledger_da_loja(store.id)
    if estoque_inicial:
        ledger.record_manual_adjustment(p.id, None, int(estoque_inicial), "Estoque inicial", user_id or "system")
    for opt, model in zip(options or [], p.options):
        if opt.get("stock"):
            ledger.record_manual_adjustment(p.id, model.id, int(opt["stock"]), "Estoque inicial", user_id or "system")

    audit_log(store.id, "Product", p.id, "created", _row_to_dict(p, ["name", "category", "price"]), user_id)
    return p

def _produto_da_loja(store_id: int, product_id: int) -> Product:
    p = db.session.get(Product, product_id) if product_id is not None else None
    if not p or p.store_id != store_id:
        raise NotFound("Produto não encontrado")
    return p

def _opcao_do_produto(product: Product, variant_option_id: Optional[int]) -> Optional[VariantOption]:
    if variant_option_id is None:
        return None
    opt = next((o for o in product.options if o.id == variant_option_id), None)
    _ensure(opt is not None, "Opção de variante inválida para o produto")
    return opt

# =============================================================================
# Cupons
# =============================================================================

CAMPOS_CUPOM = (
    "code", "description", "discount_type", "discount_value", "min_order_value",
    "max_discount", "usage_limit", "valid_from", "valid_until", "is_active",
    "applicable_categories", "excluded_products",
)

def _checar_cupom(store_id: int, coupon: Coupon):
    _ensure(coupon.discount_type in discounts.DISCOUNT_TYPES, "Tipo de desconto inválido")
    _ensure(coupon.discount_value is not None, "Valor do desconto obrigatório")
    _ensure(coupon.valid_from and coupon.valid_until, "Período de validade obrigatório")
    _ensure(coupon.valid_from < coupon.valid_until, "Data de início deve ser anterior à data de término")
    _ensure(coupon.discount_value > 0 or coupon.discount_type == discounts.SHIPPING, "Valor do desconto deve ser maior que zero")
    if coupon.discount_type == discounts.PERCENTAGE:
        _ensure(coupon.discount_value <= 100, "Desconto percentual não pode ser maior que 100%")
    dup = db.session.query(Coupon.id).filter(
        Coupon.store_id == store_id,
        Coupon.code == coupon.code,
        Coupon.id != (coupon.id or 0),
    ).first()
    _ensure(dup is None, "Código de cupom já existe")

def criar_cupom(store_id: int, dados: Dict[str, Any], user_id: Optional[str]) -> Coupon:
    c = Coupon(store_id=store_id, used_count=0)
    for k in CAMPOS_CUPOM:
        if k in dados:
            setattr(c, k, dados[k])
    if c.is_active is None:
        c.is_active = True
    _checar_cupom(store_id, c)
    db.session.add(c)
    db.session.flush()
    audit_log(store_id, "Coupon", c.id, "created", _row_to_dict(c, ["code", "discount_type", "discount_value"]), user_id)
    return c

def buscar_cupom(store_id: int, coupon_id: int) -> Coupon:
    c = db.session.get(Coupon, coupon_id)
    if not c or c.store_id != store_id:
        raise NotFound("Cupom não encontrado")
    return c

def atualizar_cupom(coupon: Coupon, dados: Dict[str, Any], user_id: Optional[str]) -> Coupon:
    before = _row_to_dict(coupon, CAMPOS_CUPOM)
    for k, v in dados.items():
        if k in CAMPOS_CUPOM:
            setattr(coupon, k, v)
    _checar_cupom(coupon.store_id, coupon)
    audit_log(coupon.store_id, "Coupon", coupon.id, "updated", {"before": before, "after": _row_to_dict(coupon, CAMPOS_CUPOM)}, user_id)
    return coupon

def remover_cupom(coupon: Coupon, user_id: Optional[str]) -> None:
    audit_log(coupon.store_id, "Coupon", coupon.id, "deleted", {"code": coupon.code}, user_id)
    db.session.delete(coupon)

def buscar_cupom_por_codigo(store_id: int, code: str) -> Optional[Coupon]:
    try:
        return db.session.query(Coupon).filter_by(store_id=store_id, code=discounts.normalize_code(code)).first()
    except SQLAlchemyError as e:
        logger.exception("Falha ao buscar cupom %s da loja %s", code, store_id)
        raise CouponLookupFailed("Falha ao consultar cupom") from e

def listar_cupons(store_id: int) -> List[Coupon]:
    return db.session.query(Coupon).filter_by(store_id=store_id).order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()

def estatisticas_cupons(store_id: int, now: Optional[datetime] = None) -> Dict[str, int]:
    now = now or utcnow()
    cupons = listar_cupons(store_id)
    return {
        "total": len(cupons),
        "active": sum(1 for c in cupons if c.is_active and c.valid_until >= now),
        "expired": sum(1 for c in cupons if c.valid_until < now),
        "total_usage": sum(c.used_count or 0 for c in cupons),
    }

def registrar_uso_cupom(coupon_id: int, user_id: Optional[str] = None) -> None:
    """Incrementa used_count somente se ainda abaixo do limite (UPDATE condicional)."""
    stmt = (
        update(Coupon)
        .where(
            Coupon.id == coupon_id,
            or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
        )
        .values(used_count=Coupon.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount == 0:
        logger.warning("Uso do cupom %s recusado: limite atingido", coupon_id)
        raise ServiceError("Cupom já foi utilizado o máximo de vezes")

    cupom = db.session.get(Coupon, coupon_id)
    if cupom is not None:
        db.session.expire(cupom, ["used_count"])

# =============================================================================
# Carrinho e Pedidos
# =============================================================================

def montar_carrinho(store: Store, itens: List[Dict[str, Any]]) -> CartSnapshot:
    """Monta o snapshot do carrinho com preços do catálogo (nunca do cliente)."""
    _ensure(itens, "Carrinho vazio")
    linhas = []
    for item in itens:
        qtd = item.get("quantity")
        _ensure(isinstance(qtd, int) and not isinstance(qtd, bool) and qtd > 0, "Quantidade deve ser um inteiro positivo")
        p = _produto_da_loja(store.id, item.get("product_id"))
        _ensure(p.is_active, f"Produto indisponível: {p.name}")
        opt = _opcao_do_produto(p, item.get("variant_option_id"))
        if opt is not None:
            _ensure(opt.is_active, f"Opção indisponível: {p.name} - {opt.name}")
        linhas.append(CartLine(
            product_id=p.id,
            category=p.category,
            quantity=qtd,
            unit_price=as_money(opt.price if opt is not None else p.price),
            variant_option_id=opt.id if opt is not None else None,
            name=f"{p.name} - {opt.name}" if opt is not None else p.name,
            weight=Decimal(str(opt.weight if opt is not None and opt.weight is not None else p.weight or 0)),
        ))
    return CartSnapshot(tuple(linhas))

def validar_cupom_no_carrinho(store: Store, code: str, cart: CartSnapshot, now: Optional[datetime] = None) -> Tuple[Coupon, checkout.AppliedDiscount]:
    cupom = buscar_cupom_por_codigo(store.id, code)
    if cupom is None:
        raise NotFound("Cupom não encontrado")
    validation, applied = checkout.apply_coupon(cupom.to_snapshot(), cart, now=now)
    if not validation.valid:
        raise CouponRejected(validation.error)
    return cupom, applied

def opcoes_de_frete(store: Store, cart: CartSnapshot, destination_state: Optional[str]) -> List[shipping.ShippingOption]:
    return shipping.calculate_shipping(store.shipping_settings, cart.total, destination_state or "", cart.total_weight)

def ledger_da_loja(store_id: int) -> InventoryLedger:
    return InventoryLedger(SqlMovementStore(db.session, store_id))

def criar_pedido(
    store: Store,
    itens: List[Dict[str, Any]],
    cliente: Dict[str, Any],
    shipping_option_id: Optional[str] = None,
    coupon_code: Optional[str] = None,
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[Order, checkout.Breakdown, checkout.PixCharge]:
    chave = chave_pix_ativa(store)
    if chave is None:
        raise InvalidPixKey("Loja não possui chave PIX ativa")

    cart = montar_carrinho(store, itens)

    cupom, applied = None, None
    if coupon_code and coupon_code.strip():
        cupom, applied = validar_cupom_no_carrinho(store, coupon_code, cart, now=now)

    opcoes = opcoes_de_frete(store, cart, cliente.get("state"))
    escolhida = None
    if shipping_option_id:
        escolhida = shipping.find_option(opcoes, shipping_option_id)
        _ensure(escolhida is not None, "Opção de frete indisponível")
    else:
        _ensure(not opcoes, "Selecione uma opção de frete")

    breakdown = checkout.build_breakdown(cart, shipping=escolhida, discount=applied)

    order = Order(
        store_id=store.id,
        customer_name=cliente["name"],
        customer_email=cliente["email"],
        customer_phone=cliente["phone"],
        address=cliente.get("address"),
        city=cliente.get("city"),
        state=(cliente.get("state") or "").upper() or None,
        zip_code=cliente.get("zip_code"),
        status="pending",
        payment_method="pix",
        payment_status="pending",
        subtotal=breakdown.subtotal,
        discount_amount=breakdown.discount_amount,
        shipping_cost=breakdown.shipping_cost,
        shipping_discount=breakdown.shipping_discount,
        total=breakdown.total,
        coupon_id=cupom.id if cupom else None,
        coupon_code=cupom.code if cupom else None,
        shipping_option_id=escolhida.id if escolhida else None,
        shipping_name=escolhida.name if escolhida else None,
    )
    for line in cart.lines:
        order.items.append(OrderItem(
            product_id=line.product_id,
            variant_option_id=line.variant_option_id,
            product_name=line.name,
            quantity=line.quantity,
            unit_price=line.unit_price,
            total=line.line_total,
        ))
    db.session.add(order)
    db.session.flush()

    ledger_da_loja(store.id).reserve(order, created_by=user_id or "system")
    order.stock_reserved = True

    if cupom is not None:
        registrar_uso_cupom(cupom.id, user_id)

    charge = checkout.create_pix_charge(
        store.name,
        chave.key,
        breakdown.total,
        str(order.id),
        expiration_minutes=current_app.config.get("PIX_EXPIRATION_MINUTES", 30),
        now=now,
    )
    order.pix_transaction_id = charge.transaction_id
    order.pix_payload = charge.payload
    order.pix_expires_at = charge.expires_at

    audit_log(store.id, "Order", order.id, "created", {"total": str(order.total), "coupon": order.coupon_code}, user_id)
    logger.info("Pedido %s criado na loja %s (total %s)", order.id, store.slug, order.total)
    return order, breakdown, charge

def buscar_pedido(store_id: int, order_id: int) -> Order:
    o = db.session.get(Order, order_id)
    if not o or o.store_id != store_id:
        raise NotFound("Pedido não encontrado")
    return o

TRANSICOES = {
    "pending": {"confirmed"},
    "confirmed": {"preparing"},
    "preparing": {"shipped"},
    "shipped": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
}

def cancelar_pedido(order: Order, user_id: Optional[str]) -> Order:
    _ensure(order.status not in ("delivered", "cancelled"), "Pedido não pode ser cancelado")
    # só quem desmarcar stock_reserved devolve o estoque
    liberado = db.session.execute(
        update(Order)
        .where(Order.id == order.id, Order.stock_reserved.is_(True))
        .values(stock_reserved=False)
        .execution_options(synchronize_session=False)
    ).rowcount == 1
    db.session.expire(order, ["stock_reserved"])
    if liberado:
        ledger_da_loja(order.store_id).release(order.id, created_by=user_id or "system")
    before = order.status
    order.status = "cancelled"
    if order.payment_status == "confirmed":
        order.payment_status = "refunded"
    audit_log(order.store_id, "Order", order.id, "cancelled", {"before": before}, user_id)
    logger.info("Pedido %s cancelado", order.id)
    return order

def atualizar_status_pedido(order: Order, novo_status: str, user_id: Optional[str]) -> Order:
    if novo_status == "cancelled":
        return cancelar_pedido(order, user_id)
    _ensure(novo_status in TRANSICOES.get(order.status, set()), f"Transição inválida: {order.status} -> {novo_status}")
    before = order.status
    order.status = novo_status
    if novo_status == "confirmed":
        order.payment_status = "confirmed"
    audit_log(order.store_id, "Order", order.id, "status_changed", {"before": before, "after": novo_status}, user_id)
    return order

def estatisticas_pedidos(store_id: int) -> Dict[str, Any]:
    q = db.session.query(Order).filter_by(store_id=store_id)
    revenue = db.session.query(func.coalesce(func.sum(Order.total), 0)).filter(
        Order.store_id == store_id, Order.payment_status == "confirmed"
    ).scalar()
    return {
        "total": q.count(),
        "pending": q.filter(Order.status == "pending").count(),
        "confirmed": q.filter(Order.status.in_(("confirmed", "preparing", "shipped"))).count(),
        "revenue": str(as_money(revenue)),
    }

# =============================================================================
# Estoque
# =============================================================================

def ajustar_estoque(
    store_id: int,
    product_id: int,
    variant_option_id: Optional[int],
    delta: int,
    motivo: str,
    user_id: str,
) -> inventory.StockMovement:
    p = _produto_da_loja(store_id, product_id)
    _opcao_do_produto(p, variant_option_id)
    mov = ledger_da_loja(store_id).record_manual_adjustment(p.id, variant_option_id, delta, motivo, user_id)
    audit_log(store_id, "StockMovement", mov.id, "adjusted", {"product_id": p.id, "delta": delta, "reason": mov.reason}, user_id)
    return mov

def estoque_atual(store_id: int, product_id: int, variant_option_id: Optional[int] = None) -> int:
    p = _produto_da_loja(store_id, product_id)
    _opcao_do_produto(p, variant_option_id)
    return ledger_da_loja(store_id).current_stock(p.id, variant_option_id)

def historico_estoque(store_id: int, product_id: int, variant_option_id=ANY_VARIANT) -> List[inventory.StockMovement]:
    p = _produto_da_loja(store_id, product_id)
    return ledger_da_loja(store_id).history(p.id, variant_option_id)

def alertas_estoque_baixo(store_id: int, threshold: Optional[int] = None) -> List[inventory.StockAlert]:
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 5)
    chaves = []
    for p in db.session.query(Product).filter_by(store_id=store_id, is_active=True).order_by(Product.id):
        ativas = [o for o in p.options if o.is_active]
        if ativas:
            chaves.extend((p.id, o.id) for o in ativas)
        else:
            chaves.append((p.id, None))
    return ledger_da_loja(store_id).low_stock_alerts(chaves, threshold)
