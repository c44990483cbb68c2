# vitrine/views/checkout.py
from __future__ import annotations

from typing import Any, Dict, List

from flask import Blueprint, jsonify

from vitrine.core import checkout, services
from vitrine.core.forms import (
    CartItemForm, CheckoutForm, CouponCheckForm, OrderStatusForm, ShippingQuoteForm,
    json_formdata
)
from vitrine.core.services import transaction
from vitrine.views.common import InvalidForm, acting_user, payload, validated

bp = Blueprint("checkout", __name__)


# ----------------------------
# Helpers
# ----------------------------
def _itens(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    raw = data.get("items")
    if not isinstance(raw, list) or not raw:
        raise InvalidForm({"items": ["Carrinho vazio"]})

    itens, erros = [], {}
    for i, item in enumerate(raw):
        form = CartItemForm(formdata=json_formdata(item if isinstance(item, dict) else {}))
        if not form.validate():
            erros[f"items.{i}"] = form.errors
            continue
        itens.append({
            "product_id": form.product_id.data,
            "variant_option_id": form.variant_option_id.data,
            "quantity": form.quantity.data,
        })
    if erros:
        raise InvalidForm(erros)
    return itens


# ----------------------------
# Carrinho
# ----------------------------
@bp.post("/<slug>/checkout/coupon")
def check_coupon(slug: str):
    store = services.buscar_loja(slug)
    data = payload()
    form = validated(CouponCheckForm, data)
    cart = services.montar_carrinho(store, _itens(data))
    _, applied = services.validar_cupom_no_carrinho(store, form.code.data, cart)
    return jsonify(
        valid=True,
        discount=applied.to_dict(),
        breakdown=checkout.build_breakdown(cart, discount=applied).to_dict(),
    )


@bp.post("/<slug>/checkout/shipping")
def shipping_options(slug: str):
    store = services.buscar_loja(slug)
    data = payload()
    form = validated(ShippingQuoteForm, data)
    cart = services.montar_carrinho(store, _itens(data))
    options = services.opcoes_de_frete(store, cart, form.state.data)
    return jsonify(options=[o.to_dict() for o in options])


@bp.post("/<slug>/checkout")
def place_order(slug: str):
    store = services.buscar_loja(slug)
    data = payload()
    form = validated(CheckoutForm, data)
    itens = _itens(data)
    cliente = {
        "name": form.customer_name.data,
        "email": form.customer_email.data,
        "phone": form.customer_phone.data,
        "address": form.address.data or None,
        "city": form.city.data or None,
        "state": form.state.data or None,
        "zip_code": form.zip_code.data or None,
    }
    with transaction():
        order, breakdown, charge = services.criar_pedido(
            store,
            itens,
            cliente,
            shipping_option_id=form.shipping_option_id.data or None,
            coupon_code=form.coupon_code.data or None,
            user_id=acting_user(),
        )
    return jsonify(order=order.to_dict(), breakdown=breakdown.to_dict(), pix=charge.to_dict()), 201


# ----------------------------
# Pedidos
# ----------------------------
@bp.get("/<slug>/orders/stats")
def order_stats(slug: str):
    store = services.buscar_loja(slug)
    return jsonify(services.estatisticas_pedidos(store.id))


@bp.get("/<slug>/orders/<int:order_id>")
def order_detail(slug: str, order_id: int):
    store = services.buscar_loja(slug)
    order = services.buscar_pedido(store.id, order_id)
    return jsonify(order.to_dict())


@bp.post("/<slug>/orders/<int:order_id>/status")
def order_status(slug: str, order_id: int):
    store = services.buscar_loja(slug)
    form = validated(OrderStatusForm, payload())
    order = services.buscar_pedido(store.id, order_id)
    with transaction():
        services.atualizar_status_pedido(order, form.status.data, acting_user())
    return jsonify(order.to_dict())


@bp.post("/<slug>/orders/<int:order_id>/cancel")
def order_cancel(slug: str, order_id: int):
    store = services.buscar_loja(slug)
    order = services.buscar_pedido(store.id, order_id)
    with transaction():
        services.cancelar_pedido(order, acting_user())
    return jsonify(order.to_dict())
