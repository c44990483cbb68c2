# vitrine/core/inventory.py
"""
Livro de movimentações de estoque.

O estoque nunca é um contador mutável: é sempre a soma das movimentações
gravadas (entradas e ajustes somam; saídas e reservas subtraem). Reservas são
liberadas com um ajuste compensatório, nunca apagando a reserva original.
"""
from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Tuple

from vitrine.core.errors import InventoryReadFailed, InventoryWriteFailed, ServiceError
from vitrine.core.utils import utcnow

logger = logging.getLogger(__name__)

IN = "in"
OUT = "out"
ADJUSTMENT = "adjustment"
RESERVATION = "reservation"
MOVEMENT_TYPES = (IN, OUT, ADJUSTMENT, RESERVATION)

_SIGN = {IN: 1, ADJUSTMENT: 1, OUT: -1, RESERVATION: -1}


class _AnyVariant:
    def __repr__(self):
        return "ANY_VARIANT"


# Filtro curinga. `None` significa "produto base, sem variante".
ANY_VARIANT = _AnyVariant()


@dataclass(frozen=True)
class StockMovement:
    product_id: int
    type: str
    quantity: int
    reason: str
    created_by: str
    variant_option_id: Optional[int] = None
    reference: Optional[str] = None
    created_at: datetime = dataclasses.field(default_factory=utcnow)
    id: Optional[int] = None

    def __post_init__(self):
        if self.type not in MOVEMENT_TYPES:
            raise ValueError(f"Tipo de movimentação inválido: {self.type}")
        if not isinstance(self.quantity, int) or self.quantity <= 0:
            raise ValueError("Quantidade deve ser um inteiro positivo")

    @property
    def signed_quantity(self) -> int:
        return _SIGN[self.type] * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_option_id": self.variant_option_id,
            "type": self.type,
            "quantity": self.quantity,
            "reason": self.reason,
            "reference": self.reference,
            "created_at": self.created_at.isoformat(),
            "created_by": self.created_by,
        }


@dataclass(frozen=True)
class StockAlert:
    product_id: int
    variant_option_id: Optional[int]
    current_stock: int
    threshold: int


class MovementStore(Protocol):
    def append(self, movement: StockMovement) -> int:
        ...

    def query(
        self,
        product_id: Optional[int] = None,
        variant_option_id=ANY_VARIANT,
        reference: Optional[str] = None,
        type: Optional[str] = None,
    ) -> List[StockMovement]:
        """Movimentações filtradas, da mais recente para a mais antiga."""
        ...


# =============================================================================
# Transformações puras
# =============================================================================

def fold_stock(movements: Iterable[StockMovement]) -> int:
    return sum(m.signed_quantity for m in movements)


def reservation_movements(order_id, lines, created_by: str = "system") -> List[StockMovement]:
    reference = str(order_id)
    return [
        StockMovement(
            product_id=line.product_id,
            variant_option_id=line.variant_option_id,
            type=RESERVATION,
            quantity=int(line.quantity),
            reason=f"Reserva - Pedido #{reference}",
            reference=reference,
            created_by=created_by,
        )
        for line in lines
    ]


def compensating_movements(reservations: Iterable[StockMovement], created_by: str = "system") -> List[StockMovement]:
    return [
        StockMovement(
            product_id=r.product_id,
            variant_option_id=r.variant_option_id,
            type=ADJUSTMENT,
            quantity=r.quantity,
            reason=f"Cancelamento - Pedido #{r.reference}",
            reference=r.reference,
            created_by=created_by,
        )
        for r in reservations
        if r.type == RESERVATION
    ]


# =============================================================================
# Ledger
# =============================================================================

class InventoryLedger:
    def __init__(self, store: MovementStore):
        self.store = store

    def _append_all(self, movements: List[StockMovement]) -> List[StockMovement]:
        # Sem rollback: o que já foi gravado permanece no histórico
        recorded = []
        for m in movements:
            try:
                new_id = self.store.append(m)
            except Exception as e:
                logger.exception("Falha ao gravar movimentação %s de %s", m.type, m.product_id)
                raise InventoryWriteFailed("Falha ao registrar movimentação de estoque") from e
            recorded.append(dataclasses.replace(m, id=new_id))
        return recorded

    def _query(self, **filters) -> List[StockMovement]:
        try:
            return list(self.store.query(**filters))
        except Exception as e:
            logger.exception("Falha ao consultar movimentações %s", filters)
            raise InventoryReadFailed("Falha ao consultar movimentações de estoque") from e

    def reserve(self, order, created_by: str = "system") -> List[StockMovement]:
        recorded = self._append_all(reservation_movements(order.id, order.items, created_by))
        logger.info("Pedido %s: %d reservas registradas", order.id, len(recorded))
        return recorded

    def release(self, order_id, created_by: str = "system") -> List[StockMovement]:
        reservations = self._query(reference=str(order_id), type=RESERVATION)
        recorded = self._append_all(compensating_movements(reservations, created_by))
        logger.info("Pedido %s: %d reservas liberadas", order_id, len(recorded))
        return recorded

    def current_stock(self, product_id: int, variant_option_id: Optional[int] = None) -> int:
        return fold_stock(self._query(product_id=product_id, variant_option_id=variant_option_id))

    def history(self, product_id: int, variant_option_id=ANY_VARIANT) -> List[StockMovement]:
        return self._query(product_id=product_id, variant_option_id=variant_option_id)

    def record_manual_adjustment(
        self,
        product_id: int,
        variant_option_id: Optional[int],
        delta: int,
        reason: str,
        user_id: str,
    ) -> StockMovement:
        if delta == 0:
            raise ServiceError("Ajuste deve ser diferente de zero")
        movement = StockMovement(
            product_id=product_id,
            variant_option_id=variant_option_id,
            type=IN if delta > 0 else OUT,
            quantity=abs(int(delta)),
            reason=(reason or "Ajuste manual").strip()[:200],
            reference=f"manual_adjustment_{int(time.time() * 1000)}",
            created_by=user_id,
        )
        recorded = self._append_all([movement])[0]
        logger.info("Ajuste manual %+d em %s/%s por %s", delta, product_id, variant_option_id, user_id)
        return recorded

    def low_stock_alerts(self, keys: Iterable[Tuple[int, Optional[int]]], threshold: int = 5) -> List[StockAlert]:
        alerts = []
        for product_id, variant_option_id in keys:
            stock = self.current_stock(product_id, variant_option_id)
            if 0 < stock <= threshold:
                alerts.append(StockAlert(product_id, variant_option_id, stock, threshold))
        return alerts
