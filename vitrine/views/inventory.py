# vitrine/views/inventory.py
from __future__ import annotations

import csv
from io import BytesIO, StringIO

from flask import Blueprint, abort, jsonify, request, send_file

from vitrine.core import services
from vitrine.core.forms import StockAdjustForm
from vitrine.core.inventory import ANY_VARIANT
from vitrine.core.services import transaction
from vitrine.views.common import acting_user, payload, validated

bp = Blueprint("inventory", __name__)


# ----------------------------
# Helpers
# ----------------------------
def _variant_arg(default=None):
    """?variant_option_id=<id> | base (produto sem variante) | ausente."""
    raw = (request.args.get("variant_option_id") or "").strip()
    if not raw:
        return default
    if raw == "base":
        return None
    try:
        return int(raw)
    except ValueError:
        abort(400, description="variant_option_id inválido")


# ----------------------------
# Consultas
# ----------------------------
@bp.get("/alerts")
def alerts(slug: str):
    store = services.buscar_loja(slug)
    threshold = request.args.get("threshold", type=int)
    items = services.alertas_estoque_baixo(store.id, threshold)
    return jsonify(alerts=[
        {
            "product_id": a.product_id,
            "variant_option_id": a.variant_option_id,
            "current_stock": a.current_stock,
            "threshold": a.threshold,
        }
        for a in items
    ])


@bp.get("/<int:product_id>")
def stock(slug: str, product_id: int):
    store = services.buscar_loja(slug)
    variant = _variant_arg()
    return jsonify(
        product_id=product_id,
        variant_option_id=variant,
        current_stock=services.estoque_atual(store.id, product_id, variant),
    )


@bp.get("/<int:product_id>/history")
def history(slug: str, product_id: int):
    store = services.buscar_loja(slug)
    movements = services.historico_estoque(store.id, product_id, _variant_arg(ANY_VARIANT))
    return jsonify(movements=[m.to_dict() for m in movements])


@bp.get("/<int:product_id>/movements.csv")
def export_csv(slug: str, product_id: int):
    store = services.buscar_loja(slug)
    movements = services.historico_estoque(store.id, product_id, _variant_arg(ANY_VARIANT))

    buf = StringIO()
    w = csv.writer(buf, lineterminator="\n")
    w.writerow([
        "id", "data", "tipo", "quantidade", "saldo_movimento", "variante",
        "motivo", "referencia", "usuario"
    ])
    for m in movements:
        w.writerow([
            m.id, m.created_at.isoformat(), m.type, m.quantity, m.signed_quantity,
            m.variant_option_id or "", m.reason, m.reference or "", m.created_by
        ])

    bio = BytesIO(buf.getvalue().encode("utf-8-sig"))
    bio.seek(0)
    return send_file(
        bio,
        mimetype="text/csv; charset=utf-8",
        as_attachment=True,
        download_name=f"movimentacoes_{product_id}.csv"
    )


# ----------------------------
# Ajuste manual
# ----------------------------
@bp.post("/<int:product_id>/adjust")
def adjust(slug: str, product_id: int):
    store = services.buscar_loja(slug)
    form = validated(StockAdjustForm, payload())
    with transaction():
        movement = services.ajustar_estoque(
            store.id, product_id, form.variant_option_id.data, form.delta.data,
            form.reason.data, acting_user()
        )
    return jsonify(
        movement=movement.to_dict(),
        current_stock=services.estoque_atual(store.id, product_id, form.variant_option_id.data),
    ), 201
