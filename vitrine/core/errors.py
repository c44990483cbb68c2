# vitrine/core/errors.py
from __future__ import annotations


class ServiceError(Exception):
    """Regra de negócio violada. Nunca deve ser re-tentada automaticamente."""

    retryable = False


class InvalidPixKey(ServiceError):
    pass


class InfrastructureError(ServiceError):
    """Falha do colaborador de persistência; pode ser re-tentada com backoff."""

    retryable = True


class InventoryWriteFailed(InfrastructureError):
    pass


class InventoryReadFailed(InfrastructureError):
    pass


class CouponLookupFailed(InfrastructureError):
    pass


class CouponRejected(ServiceError):
    """Cupom recusado no checkout; carrega o CouponRejection do motor de descontos."""

    def __init__(self, rejection):
        super().__init__(rejection.message)
        self.rejection = rejection


class NotFound(ServiceError):
    pass
