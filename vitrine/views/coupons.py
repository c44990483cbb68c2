# vitrine/views/coupons.py
from __future__ import annotations

from flask import Blueprint, jsonify

from vitrine.core import services
from vitrine.core.forms import CouponForm
from vitrine.core.services import CAMPOS_CUPOM, transaction
from vitrine.views.common import acting_user, payload, validated

bp = Blueprint("coupons", __name__)


def _dados(form: CouponForm) -> dict:
    return {k: getattr(form, k).data for k in CAMPOS_CUPOM}


@bp.get("")
def list_(slug: str):
    store = services.buscar_loja(slug)
    return jsonify(coupons=[c.to_dict() for c in services.listar_cupons(store.id)])


@bp.get("/stats")
def stats(slug: str):
    store = services.buscar_loja(slug)
    return jsonify(services.estatisticas_cupons(store.id))


@bp.post("")
def create(slug: str):
    store = services.buscar_loja(slug)
    form = validated(CouponForm, {"is_active": True, **payload()})
    with transaction():
        coupon = services.criar_cupom(store.id, _dados(form), acting_user())
    return jsonify(coupon.to_dict()), 201


@bp.put("/<int:coupon_id>")
def update(slug: str, coupon_id: int):
    store = services.buscar_loja(slug)
    coupon = services.buscar_cupom(store.id, coupon_id)
    # atualização parcial: campos ausentes mantêm o valor atual
    form = validated(CouponForm, {**coupon.to_dict(), **payload()})
    with transaction():
        services.atualizar_cupom(coupon, _dados(form), acting_user())
    return jsonify(coupon.to_dict())


@bp.delete("/<int:coupon_id>")
def delete(slug: str, coupon_id: int):
    store = services.buscar_loja(slug)
    coupon = services.buscar_cupom(store.id, coupon_id)
    with transaction():
        services.remover_cupom(coupon, acting_user())
    return jsonify(ok=True)
