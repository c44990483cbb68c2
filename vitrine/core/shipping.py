# vitrine/core/shipping.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from vitrine.core.utils import as_money

METHODS = ("fixed", "regional_table", "weight_based", "free")


@dataclass(frozen=True)
class ShippingOption:
    id: str
    name: str
    price: Decimal
    delivery_days: str
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "price": str(self.price),
            "delivery_days": self.delivery_days,
            "description": self.description,
        }


def _dec(value) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


# =============================================================================
# Métodos de cálculo
# =============================================================================

def _fixed(settings: Dict[str, Any]) -> List[ShippingOption]:
    price = _dec(settings.get("fixed_price"))
    if not price:
        return []
    return [ShippingOption("fixed", "Entrega Padrão", as_money(price), "5-10 dias úteis")]


def _regional(settings: Dict[str, Any], destination_state: str) -> List[ShippingOption]:
    table = settings.get("regional_table") or []
    if not table:
        return []
    uf = (destination_state or "").strip().upper()
    for region in table:
        if uf in [s.upper() for s in region.get("states", [])]:
            return [ShippingOption(
                f"region_{region['id']}",
                f"Entrega - {region['name']}",
                as_money(region["price"]),
                region.get("delivery_days", ""),
            )]

    # região não encontrada: cai para o frete fixo
    price = _dec(settings.get("fixed_price"))
    if not price:
        return []
    return [ShippingOption("fixed_fallback", "Entrega Padrão", as_money(price), "7-14 dias úteis")]


def _weight_based(settings: Dict[str, Any], total_weight: Decimal) -> List[ShippingOption]:
    for rate in settings.get("weight_based_rates") or []:
        if _dec(rate["min_weight"]) <= total_weight <= _dec(rate["max_weight"]):
            return [ShippingOption(f"weight_{rate['id']}", "Entrega Padrão", as_money(rate["price"]), "5-12 dias úteis")]
    return []


def calculate_shipping(
    settings: Optional[Dict[str, Any]],
    cart_total: Decimal,
    destination_state: str,
    total_weight: Decimal = Decimal("0"),
) -> List[ShippingOption]:
    """Opções de frete disponíveis, da mais barata para a mais cara."""
    if not settings or not settings.get("enabled", True):
        return []

    total_weight = Decimal(str(total_weight))
    options: List[ShippingOption] = []

    threshold = _dec(settings.get("free_shipping_threshold"))
    if threshold and cart_total >= threshold:
        options.append(ShippingOption(
            "free", "Entrega Grátis", as_money(0), "7-14 dias úteis",
            "Parabéns! Você ganhou frete grátis",
        ))

    method = settings.get("calculation_method", "fixed")
    if method == "fixed":
        options.extend(_fixed(settings))
    elif method == "regional_table":
        options.extend(_regional(settings, destination_state))
    elif method == "weight_based":
        options.extend(_weight_based(settings, total_weight))
    elif method == "free" and not any(o.id == "free" for o in options):
        options.append(ShippingOption("free", "Frete Grátis", as_money(0), "7-14 dias úteis"))

    if settings.get("pickup_enabled"):
        options.append(ShippingOption(
            "pickup", "Retirada na Loja", as_money(0), "Imediato",
            settings.get("pickup_message") or "Retire seu pedido quando quiser",
        ))

    return sorted(options, key=lambda o: o.price)


def find_option(options: List[ShippingOption], option_id: Optional[str]) -> Optional[ShippingOption]:
    return next((o for o in options if o.id == option_id), None)


# =============================================================================
# Configuração
# =============================================================================

def default_shipping_settings() -> Dict[str, Any]:
    return {
        "enabled": True,
        "calculation_method": "fixed",
        "free_shipping_threshold": "100.00",
        "fixed_price": "15.90",
        "regional_table": [
            {
                "id": "sul_sudeste",
                "name": "Sul e Sudeste",
                "states": ["SP", "RJ", "MG", "ES", "PR", "SC", "RS"],
                "price": "12.90",
                "delivery_days": "3-7 dias úteis",
            },
            {
                "id": "centro_oeste",
                "name": "Centro-Oeste",
                "states": ["DF", "GO", "MT", "MS"],
                "price": "18.90",
                "delivery_days": "5-10 dias úteis",
            },
            {
                "id": "norte_nordeste",
                "name": "Norte e Nordeste",
                "states": ["AM", "PA", "CE", "BA", "PE", "MA", "RN", "PB", "AL",
                           "SE", "PI", "TO", "AP", "RR", "AC", "RO"],
                "price": "24.90",
                "delivery_days": "7-14 dias úteis",
            },
        ],
        "weight_based_rates": [
            {"id": "leve", "min_weight": "0", "max_weight": "1", "price": "12.90"},
            {"id": "medio", "min_weight": "1", "max_weight": "5", "price": "18.90"},
            {"id": "pesado", "min_weight": "5", "max_weight": "20", "price": "29.90"},
        ],
        "pickup_enabled": True,
        "pickup_message": "Retire seu pedido em até 2 horas",
    }


def _numero(value) -> bool:
    try:
        d = _dec(value)
    except (InvalidOperation, ValueError, TypeError):
        return False
    return d is not None and d.is_finite() and d >= 0


def _numero_opcional(value) -> bool:
    return value is None or value == "" or _numero(value)


def _erros_regiao(i: int, region) -> List[str]:
    if not isinstance(region, dict):
        return [f"Região {i + 1}: formato inválido"]
    errors = []
    if not str(region.get("id") or "").strip():
        errors.append(f"Região {i + 1}: identificador é obrigatório")
    if not str(region.get("name") or "").strip():
        errors.append(f"Região {i + 1}: nome é obrigatório")
    states = region.get("states")
    if not isinstance(states, list) or not states or not all(isinstance(s, str) and len(s.strip()) == 2 for s in states):
        errors.append(f"Região {i + 1}: informe as UFs atendidas")
    if not _numero(region.get("price")):
        errors.append(f"Região {i + 1}: preço inválido")
    return errors


def _erros_faixa(i: int, rate) -> List[str]:
    if not isinstance(rate, dict):
        return [f"Faixa de peso {i + 1}: formato inválido"]
    errors = []
    if not str(rate.get("id") or "").strip():
        errors.append(f"Faixa de peso {i + 1}: identificador é obrigatório")
    limites_ok = _numero(rate.get("min_weight")) and _numero(rate.get("max_weight"))
    if not limites_ok:
        errors.append(f"Faixa de peso {i + 1}: peso mínimo e máximo são obrigatórios")
    elif _dec(rate["min_weight"]) > _dec(rate["max_weight"]):
        errors.append(f"Faixa de peso {i + 1}: peso mínimo maior que o máximo")
    if not _numero(rate.get("price")):
        errors.append(f"Faixa de peso {i + 1}: preço inválido")
    return errors


def validate_shipping_settings(settings: Dict[str, Any]) -> List[str]:
    if not settings.get("enabled", True):
        return []

    errors = []
    method = settings.get("calculation_method")
    if method not in METHODS:
        errors.append("Método de cálculo de frete inválido")
    if not _numero_opcional(settings.get("fixed_price")):
        errors.append("Preço fixo inválido")
    elif method == "fixed" and not _dec(settings.get("fixed_price")):
        errors.append("Preço fixo é obrigatório para cálculo de frete fixo")
    if not _numero_opcional(settings.get("free_shipping_threshold")):
        errors.append("Valor mínimo para frete grátis inválido")

    regional = settings.get("regional_table") or []
    rates = settings.get("weight_based_rates") or []
    if not isinstance(regional, list) or not isinstance(rates, list):
        errors.append("Tabelas de frete devem ser listas")
        return errors
    if method == "regional_table" and not regional:
        errors.append("Tabela regional é obrigatória para cálculo regional")
    if method == "weight_based" and not rates:
        errors.append("Tabela de peso é obrigatória para cálculo baseado em peso")
    for i, region in enumerate(regional):
        errors.extend(_erros_regiao(i, region))
    for i, rate in enumerate(rates):
        errors.extend(_erros_faixa(i, rate))
    return errors
