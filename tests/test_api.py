import pytest

from vitrine.pix import brcode

H = {"X-User": "ana"}
SLUG = "loja-exemplo"
CUSTOMER = {
    "customer_name": "Maria Souza",
    "customer_email": "maria@cliente.com.br",
    "customer_phone": "11999990000",
    "address": "Rua das Flores, 10",
    "city": "São Paulo",
    "state": "SP",
    "zip_code": "01001-000",
}
COUPON = {
    "code": "promo10",
    "discount_type": "percentage",
    "discount_value": 10,
    "min_order_value": 50,
    "usage_limit": 1,
    "valid_from": "2020-01-01T00:00:00",
    "valid_until": "2099-12-31T23:59:59",
}


def _create_store(client, name="Loja Exemplo"):
    r = client.post("/stores", json={"name": name, "contact_email": "contato@lojaexemplo.com.br"}, headers=H)
    assert r.status_code == 201, r.get_json()
    return r.get_json()


def _add_key(client, slug=SLUG, type="email", key="store@email.com"):
    return client.post(f"/stores/{slug}/pix-keys", json={"type": type, "key": key}, headers=H)


def _create_product(client, slug=SLUG, price="40.00", stock=10, **extra):
    body = {"name": "Camiseta", "price": price, "category": "roupas", "initial_stock": stock}
    body.update(extra)
    r = client.post(f"/stores/{slug}/products", json=body, headers=H)
    assert r.status_code == 201, r.get_json()
    return r.get_json()


def _stock(client, product_id, slug=SLUG):
    return client.get(f"/stores/{slug}/inventory/{product_id}").get_json()["current_stock"]


@pytest.fixture
def shop(client):
    store = _create_store(client)
    assert _add_key(client).status_code == 201
    product = _create_product(client)
    return {"store": store, "product": product}


def _order_body(product_id, quantity=2, **extra):
    body = dict(CUSTOMER)
    body["items"] = [{"product_id": product_id, "quantity": quantity}]
    body.update(extra)
    return body


# ----------------------------
# Infra
# ----------------------------
def test_health_and_csrf_token(client):
    assert client.get("/health").get_json() == {"ok": True}
    assert client.get("/csrf-token").get_json()["csrf_token"]


def test_unknown_store_is_404(client):
    r = client.get("/stores/nao-existe")
    assert r.status_code == 404
    assert r.get_json()["error"] == "Loja não encontrada"


# ----------------------------
# Lojas e chaves PIX
# ----------------------------
def test_create_store(client):
    store = _create_store(client)

    assert store["slug"] == SLUG
    assert store["shipping_settings"]["calculation_method"] == "fixed"
    assert client.get(f"/stores/{SLUG}").get_json()["name"] == "Loja Exemplo"

    dup = client.post("/stores", json={"name": "Loja Exemplo", "contact_email": "outro@loja.com.br"}, headers=H)
    assert dup.status_code == 400
    assert dup.get_json()["error"] == "Slug já está em uso"


def test_store_form_errors(client):
    r = client.post("/stores", json={"name": "Sem Email"}, headers=H)
    assert r.status_code == 400
    assert "contact_email" in r.get_json()["errors"]


def test_invalid_json_body(client):
    r = client.post("/stores", data="nao-e-json", content_type="text/plain", headers=H)
    assert r.status_code == 400


def test_pix_keys(client):
    _create_store(client)

    email_key = _add_key(client).get_json()
    cpf_key = _add_key(client, type="cpf", key="123.456.789-09").get_json()
    assert email_key["is_active"] is True
    assert cpf_key["is_active"] is False

    toggled = client.post(f"/stores/{SLUG}/pix-keys/{cpf_key['id']}/toggle", headers=H).get_json()
    assert toggled["is_active"] is True
    keys = {k["id"]: k["is_active"] for k in client.get(f"/stores/{SLUG}").get_json()["pix_keys"]}
    assert keys == {email_key["id"]: False, cpf_key["id"]: True}

    assert client.delete(f"/stores/{SLUG}/pix-keys/{email_key['id']}", headers=H).status_code == 200
    assert len(client.get(f"/stores/{SLUG}").get_json()["pix_keys"]) == 1
    assert client.delete(f"/stores/{SLUG}/pix-keys/9999", headers=H).status_code == 404


def test_pix_key_format_per_type(client):
    _create_store(client)

    bad = _add_key(client, type="cpf", key="abc")
    assert bad.status_code == 400
    assert "key" in bad.get_json()["errors"]

    assert _add_key(client, type="phone", key="+55 11 91234-5678").status_code == 201
    assert _add_key(client, type="random", key="3f1c9a2e-8b7d-4c1e-9f00-1a2b3c4d5e6f").status_code == 201


def test_update_shipping(client):
    _create_store(client)

    bad = client.put(f"/stores/{SLUG}/shipping", json={"enabled": True, "calculation_method": "bogus"}, headers=H)
    assert bad.status_code == 400

    settings = {"enabled": True, "calculation_method": "fixed", "fixed_price": "9.90", "pickup_enabled": False}
    r = client.put(f"/stores/{SLUG}/shipping", json=settings, headers=H)
    assert r.status_code == 200
    assert r.get_json()["shipping_settings"]["fixed_price"] == "9.90"


@pytest.mark.parametrize("body, campo", [
    ({"calculation_method": "weight_based", "weight_based_rates": [{"id": "x", "price": "9.90"}]}, "weight_based_rates.0"),
    ({"calculation_method": "weight_based", "weight_based_rates": [{"id": "x", "min_weight": "5", "max_weight": "1", "price": "9.90"}]}, "weight_based_rates.0"),
    ({"calculation_method": "weight_based", "weight_based_rates": [{"id": "x", "min_weight": "0", "max_weight": "1", "price": "abc"}]}, "weight_based_rates.0"),
    ({"calculation_method": "regional_table", "regional_table": [{"id": "sul", "name": "Sul", "price": "10"}]}, "regional_table.0"),
    ({"calculation_method": "regional_table", "regional_table": [{"id": "sul", "name": "Sul", "states": ["PARANA"], "price": "10"}]}, "regional_table.0"),
    ({"calculation_method": "fixed", "fixed_price": "9.90", "free_shipping_threshold": "cem"}, "free_shipping_threshold"),
    ({"calculation_method": "fixed", "fixed_price": "9.90", "regional_table": "SP"}, "regional_table"),
])
def test_update_shipping_rejects_malformed_settings(client, body, campo):
    _create_store(client)
    before = client.get(f"/stores/{SLUG}").get_json()["shipping_settings"]

    r = client.put(f"/stores/{SLUG}/shipping", json=body, headers=H)

    assert r.status_code == 400
    assert campo in r.get_json()["errors"]
    assert client.get(f"/stores/{SLUG}").get_json()["shipping_settings"] == before


def test_weight_based_settings_feed_the_quote(client):
    _create_store(client)
    product_id = _create_product(client, weight="0.500")["id"]
    body = {
        "calculation_method": "weight_based",
        "weight_based_rates": [{"id": "leve", "min_weight": 0, "max_weight": 2, "price": "11.50"}],
    }
    r = client.put(f"/stores/{SLUG}/shipping", json=body, headers=H)
    assert r.status_code == 200
    assert r.get_json()["shipping_settings"]["weight_based_rates"] == [
        {"id": "leve", "min_weight": "0", "max_weight": "2", "price": "11.50"}
    ]

    q = client.post(f"/{SLUG}/checkout/shipping", json={"state": "SP", "items": [{"product_id": product_id, "quantity": 1}]})
    assert q.status_code == 200
    assert [o["id"] for o in q.get_json()["options"]] == ["weight_leve"]


# ----------------------------
# Produtos
# ----------------------------
def test_create_product_with_variants(client):
    _create_store(client)
    product = _create_product(client, stock=0, options=[
        {"name": "P", "sku": "CAM-P", "stock": 3},
        {"name": "G", "sku": "CAM-G", "price": "45.00", "stock": 8},
    ])

    p, g = product["options"]
    assert p["price"] == "40.00"
    assert g["price"] == "45.00"

    stock_g = client.get(f"/stores/{SLUG}/inventory/{product['id']}?variant_option_id={g['id']}").get_json()
    assert stock_g["current_stock"] == 8
    assert _stock(client, product["id"]) == 0

    bad = client.post(f"/stores/{SLUG}/products", json={"name": "X", "price": "1", "options": [{"name": "sem sku"}]}, headers=H)
    assert bad.status_code == 400
    assert "options.0" in bad.get_json()["errors"]


# ----------------------------
# Cupons
# ----------------------------
def test_coupon_crud(client):
    _create_store(client)

    created = client.post(f"/stores/{SLUG}/coupons", json=COUPON, headers=H)
    assert created.status_code == 201
    coupon = created.get_json()
    assert coupon["code"] == "PROMO10"
    assert coupon["is_active"] is True
    assert coupon["summary"] == "10% OFF em pedidos acima de R$ 50.00 (1 usos restantes)"

    dup = client.post(f"/stores/{SLUG}/coupons", json=dict(COUPON, code="PROMO10"), headers=H)
    assert dup.status_code == 400
    assert dup.get_json()["error"] == "Código de cupom já existe"

    updated = client.put(f"/stores/{SLUG}/coupons/{coupon['id']}", json={"discount_value": 15}, headers=H)
    assert updated.status_code == 200
    assert updated.get_json()["discount_value"] == "15.00"
    assert updated.get_json()["min_order_value"] == "50.00"

    stats = client.get(f"/stores/{SLUG}/coupons/stats").get_json()
    assert stats == {"total": 1, "active": 1, "expired": 0, "total_usage": 0}

    assert client.delete(f"/stores/{SLUG}/coupons/{coupon['id']}", headers=H).status_code == 200
    assert client.get(f"/stores/{SLUG}/coupons").get_json()["coupons"] == []


def test_coupon_form_validation(client):
    _create_store(client)

    too_much = client.post(f"/stores/{SLUG}/coupons", json=dict(COUPON, discount_value=150), headers=H)
    assert too_much.status_code == 400
    assert "discount_value" in too_much.get_json()["errors"]

    backwards = client.post(
        f"/stores/{SLUG}/coupons",
        json=dict(COUPON, valid_from="2030-01-01T00:00:00", valid_until="2029-01-01T00:00:00"),
        headers=H,
    )
    assert backwards.status_code == 400
    assert "valid_until" in backwards.get_json()["errors"]


# ----------------------------
# Checkout
# ----------------------------
def test_shipping_quote(client, shop):
    pid = shop["product"]["id"]
    r = client.post(f"/{SLUG}/checkout/shipping", json={"state": "SP", "items": [{"product_id": pid, "quantity": 3}]})

    options = r.get_json()["options"]
    assert [o["id"] for o in options] == ["free", "pickup", "fixed"]


def test_coupon_check(client, shop):
    pid = shop["product"]["id"]
    client.post(f"/stores/{SLUG}/coupons", json=COUPON, headers=H)

    low = client.post(f"/{SLUG}/checkout/coupon", json={"code": "promo10", "items": [{"product_id": pid, "quantity": 1}]})
    assert low.status_code == 422
    assert low.get_json()["kind"] == "below_minimum_order"
    assert low.get_json()["minimum"] == "50.00"

    ok = client.post(f"/{SLUG}/checkout/coupon", json={"code": "promo10", "items": [{"product_id": pid, "quantity": 2}]})
    assert ok.status_code == 200
    assert ok.get_json()["discount"]["amount"] == "8.00"
    assert ok.get_json()["breakdown"]["total"] == "72.00"

    missing = client.post(f"/{SLUG}/checkout/coupon", json={"code": "NADA", "items": [{"product_id": pid, "quantity": 2}]})
    assert missing.status_code == 404


def test_full_checkout_flow(client, shop):
    pid = shop["product"]["id"]
    client.post(f"/stores/{SLUG}/coupons", json=COUPON, headers=H)

    body = _order_body(pid, shipping_option_id="fixed", coupon_code="promo10")
    body["items"][0]["unit_price"] = "0.01"  # ignorado: preço vem do catálogo
    r = client.post(f"/{SLUG}/checkout", json=body)
    assert r.status_code == 201, r.get_json()
    data = r.get_json()

    assert data["breakdown"] == {
        "subtotal": "80.00",
        "discount_amount": "8.00",
        "shipping_cost": "15.90",
        "shipping_discount": "0.00",
        "total": "87.90",
        "discount": data["breakdown"]["discount"],
        "shipping": data["breakdown"]["shipping"],
    }
    assert data["order"]["status"] == "pending"
    assert data["order"]["payment_status"] == "pending"
    assert data["order"]["coupon_code"] == "PROMO10"

    fields = brcode.parse(data["pix"]["payload"])
    assert fields["54"] == "87.90"
    assert fields["59"] == "LOJA EXEMPLO"
    assert fields["26"]["01"] == "store@email.com"
    assert fields["62"]["05"] == data["pix"]["transaction_id"] == data["order"]["pix_transaction_id"]

    order_id = data["order"]["id"]
    assert _stock(client, pid) == 8

    # limite de uso do cupom já consumido
    again = client.post(f"/{SLUG}/checkout", json=_order_body(pid, shipping_option_id="fixed", coupon_code="PROMO10"))
    assert again.status_code == 422
    assert again.get_json()["kind"] == "usage_limit_reached"
    assert _stock(client, pid) == 8

    cancelled = client.post(f"/{SLUG}/orders/{order_id}/cancel", headers=H)
    assert cancelled.status_code == 200
    assert cancelled.get_json()["status"] == "cancelled"
    assert _stock(client, pid) == 10

    assert client.post(f"/{SLUG}/orders/{order_id}/cancel", headers=H).status_code == 400
    assert _stock(client, pid) == 10

    history = client.get(f"/stores/{SLUG}/inventory/{pid}/history").get_json()["movements"]
    assert [m["type"] for m in history] == ["adjustment", "reservation", "in"]
    assert history[0]["reason"] == f"Cancelamento - Pedido #{order_id}"


def test_shipping_coupon_waives_fee(client, shop):
    pid = shop["product"]["id"]
    client.post(f"/stores/{SLUG}/coupons", json=dict(COUPON, code="FRETE", discount_type="shipping", discount_value=0, usage_limit=None), headers=H)

    r = client.post(f"/{SLUG}/checkout", json=_order_body(pid, shipping_option_id="fixed", coupon_code="frete"))
    breakdown = r.get_json()["breakdown"]

    assert breakdown["shipping_cost"] == "15.90"
    assert breakdown["shipping_discount"] == "15.90"
    assert breakdown["discount_amount"] == "0.00"
    assert breakdown["total"] == "80.00"


def test_checkout_requires_active_pix_key(client):
    _create_store(client)
    product = _create_product(client)

    r = client.post(f"/{SLUG}/checkout", json=_order_body(product["id"], shipping_option_id="pickup"))
    assert r.status_code == 400
    assert r.get_json()["error"] == "Loja não possui chave PIX ativa"
    assert _stock(client, product["id"]) == 10


def test_checkout_requires_shipping_choice(client, shop):
    r = client.post(f"/{SLUG}/checkout", json=_order_body(shop["product"]["id"]))
    assert r.status_code == 400
    assert r.get_json()["error"] == "Selecione uma opção de frete"


def test_checkout_validates_items(client, shop):
    empty = client.post(f"/{SLUG}/checkout", json=dict(CUSTOMER, items=[]))
    assert empty.status_code == 400
    assert "items" in empty.get_json()["errors"]

    bad_qty = client.post(f"/{SLUG}/checkout", json=_order_body(shop["product"]["id"], quantity=0))
    assert bad_qty.status_code == 400
    assert "items.0" in bad_qty.get_json()["errors"]


def test_product_from_other_store_is_rejected(client, shop):
    _create_store(client, name="Outra Loja")
    _add_key(client, slug="outra-loja")

    r = client.post("/outra-loja/checkout", json=_order_body(shop["product"]["id"], shipping_option_id="pickup"))
    assert r.status_code == 404
    assert r.get_json()["error"] == "Produto não encontrado"


def test_order_status_transitions_and_stats(client, shop):
    pid = shop["product"]["id"]
    order = client.post(f"/{SLUG}/checkout", json=_order_body(pid, shipping_option_id="pickup")).get_json()["order"]

    skip = client.post(f"/{SLUG}/orders/{order['id']}/status", json={"status": "shipped"}, headers=H)
    assert skip.status_code == 400

    confirmed = client.post(f"/{SLUG}/orders/{order['id']}/status", json={"status": "confirmed"}, headers=H).get_json()
    assert confirmed["status"] == "confirmed"
    assert confirmed["payment_status"] == "confirmed"

    assert client.get(f"/{SLUG}/orders/{order['id']}").get_json()["breakdown"]["total"] == "80.00"
    assert client.get(f"/{SLUG}/orders/999").status_code == 404

    stats = client.get(f"/{SLUG}/orders/stats").get_json()
    assert stats == {"total": 1, "pending": 0, "confirmed": 1, "revenue": "80.00"}


# ----------------------------
# Estoque
# ----------------------------
def test_inventory_adjust_history_and_csv(client, shop):
    pid = shop["product"]["id"]

    r = client.post(f"/stores/{SLUG}/inventory/{pid}/adjust", json={"delta": -2, "reason": "Quebra"}, headers=H)
    assert r.status_code == 201
    assert r.get_json()["current_stock"] == 8
    assert r.get_json()["movement"]["type"] == "out"
    assert r.get_json()["movement"]["created_by"] == "ana"

    zero = client.post(f"/stores/{SLUG}/inventory/{pid}/adjust", json={"delta": 0, "reason": "Nada"}, headers=H)
    assert zero.status_code == 400

    history = client.get(f"/stores/{SLUG}/inventory/{pid}/history").get_json()["movements"]
    assert [m["quantity"] for m in history] == [2, 10]

    csv_resp = client.get(f"/stores/{SLUG}/inventory/{pid}/movements.csv")
    assert csv_resp.mimetype == "text/csv"
    lines = csv_resp.data.decode("utf-8-sig").splitlines()
    assert lines[0].startswith("id,data,tipo,quantidade")
    assert len(lines) == 3


def test_low_stock_alerts(client, shop):
    pid = shop["product"]["id"]
    client.post(f"/stores/{SLUG}/inventory/{pid}/adjust", json={"delta": -7, "reason": "Venda balcão"}, headers=H)

    alerts = client.get(f"/stores/{SLUG}/inventory/alerts").get_json()["alerts"]
    assert alerts == [{"product_id": pid, "variant_option_id": None, "current_stock": 3, "threshold": 5}]

    assert client.get(f"/stores/{SLUG}/inventory/alerts?threshold=2").get_json()["alerts"] == []
