# vitrine/views/stores.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List

from flask import Blueprint, jsonify

from vitrine.core import services
from vitrine.core.forms import (
    PixKeyForm, ProductForm, RegionalRateForm, ShippingSettingsForm, StoreForm,
    VariantOptionForm, WeightRateForm, json_formdata
)
from vitrine.core.services import transaction
from vitrine.views.common import InvalidForm, acting_user, payload, validated

bp = Blueprint("stores", __name__)


# ----------------------------
# Loja
# ----------------------------
@bp.post("")
def create():
    form = validated(StoreForm, payload())
    with transaction():
        store = services.criar_loja(
            owner_id=acting_user(),
            name=form.name.data,
            slug=form.slug.data or None,
            contact_email=form.contact_email.data,
            description=form.description.data or None,
            phone=form.phone.data or None,
            whatsapp=form.whatsapp.data or None,
            instagram=form.instagram.data or None,
            address=form.address.data or None,
        )
    return jsonify(store.to_dict()), 201


@bp.get("/<slug>")
def detail(slug: str):
    return jsonify(services.buscar_loja(slug).to_dict())


def _entradas(form_cls, data: Dict[str, Any], chave: str, erros: Dict[str, Any]) -> List[Dict[str, Any]]:
    brutas = data.get(chave) or []
    if not isinstance(brutas, list):
        erros[chave] = ["Deve ser uma lista"]
        return []
    entradas = []
    for i, raw in enumerate(brutas):
        form = form_cls(formdata=json_formdata(raw if isinstance(raw, dict) else {}))
        if not form.validate():
            erros[f"{chave}.{i}"] = form.errors
            continue
        entradas.append({
            name: (str(field.data) if isinstance(field.data, Decimal) else field.data)
            for name, field in form._fields.items()
            if name != "csrf_token" and field.data not in (None, "")
        })
    return entradas


@bp.put("/<slug>/shipping")
def update_shipping(slug: str):
    store = services.buscar_loja(slug)
    data = {"enabled": True, **payload()}
    form = validated(ShippingSettingsForm, data)

    erros: Dict[str, Any] = {}
    regional = _entradas(RegionalRateForm, data, "regional_table", erros)
    rates = _entradas(WeightRateForm, data, "weight_based_rates", erros)
    if erros:
        raise InvalidForm(erros)

    settings = {
        "enabled": form.enabled.data,
        "calculation_method": form.calculation_method.data,
        "fixed_price": str(form.fixed_price.data) if form.fixed_price.data is not None else None,
        "free_shipping_threshold": (
            str(form.free_shipping_threshold.data) if form.free_shipping_threshold.data is not None else None
        ),
        "regional_table": regional,
        "weight_based_rates": rates,
        "pickup_enabled": form.pickup_enabled.data,
        "pickup_message": form.pickup_message.data or None,
    }
    with transaction():
        services.atualizar_frete(store, settings, acting_user())
    return jsonify(shipping_settings=store.shipping_settings)


# ----------------------------
# Chaves PIX
# ----------------------------
@bp.post("/<slug>/pix-keys")
def add_pix_key(slug: str):
    store = services.buscar_loja(slug)
    form = validated(PixKeyForm, payload())
    with transaction():
        chave = services.adicionar_chave_pix(
            store, form.key.data, form.type.data, form.description.data or None, acting_user()
        )
    return jsonify(chave.to_dict()), 201


@bp.post("/<slug>/pix-keys/<int:key_id>/toggle")
def toggle_pix_key(slug: str, key_id: int):
    store = services.buscar_loja(slug)
    with transaction():
        chave = services.alternar_chave_pix(store, key_id, acting_user())
    return jsonify(chave.to_dict())


@bp.delete("/<slug>/pix-keys/<int:key_id>")
def delete_pix_key(slug: str, key_id: int):
    store = services.buscar_loja(slug)
    with transaction():
        services.remover_chave_pix(store, key_id, acting_user())
    return jsonify(ok=True)


# ----------------------------
# Produtos
# ----------------------------
@bp.post("/<slug>/products")
def create_product(slug: str):
    store = services.buscar_loja(slug)
    data = payload()
    form = validated(ProductForm, data)

    options, erros = [], {}
    for i, raw in enumerate(data.get("options") or []):
        opt = VariantOptionForm(formdata=json_formdata(raw if isinstance(raw, dict) else {}))
        if not opt.validate():
            erros[f"options.{i}"] = opt.errors
            continue
        options.append({
            "name": opt.name.data,
            "sku": opt.sku.data,
            "price": opt.price.data,
            "compare_price": opt.compare_price.data,
            "weight": opt.weight.data,
            "stock": opt.stock.data,
        })
    if erros:
        raise InvalidForm(erros)

    with transaction():
        product = services.criar_produto(
            store,
            name=form.name.data,
            price=form.price.data,
            category=form.category.data or None,
            description=form.description.data or None,
            weight=form.weight.data or 0,
            options=options,
            estoque_inicial=form.initial_stock.data or 0,
            user_id=acting_user(),
        )
    return jsonify(product.to_dict()), 201
