import dataclasses
from datetime import timedelta

import pytest

from vitrine import create_app
from vitrine.core.inventory import ANY_VARIANT
from vitrine.extensions import db


class InMemoryMovementStore:
    """Armazena movimentações em memória; `fail_after` simula falha de escrita."""

    def __init__(self, fail_after=None):
        self.rows = []
        self.fail_after = fail_after
        self.queries = 0

    def append(self, movement):
        if self.fail_after is not None and len(self.rows) >= self.fail_after:
            raise RuntimeError("armazenamento indisponível")
        # timestamps crescentes para ordenar de forma determinística
        created_at = movement.created_at + timedelta(microseconds=len(self.rows))
        row = dataclasses.replace(movement, id=len(self.rows) + 1, created_at=created_at)
        self.rows.append(row)
        return row.id

    def query(self, product_id=None, variant_option_id=ANY_VARIANT, reference=None, type=None):
        self.queries += 1
        out = [
            m for m in self.rows
            if (product_id is None or m.product_id == product_id)
            and (variant_option_id is ANY_VARIANT or m.variant_option_id == variant_option_id)
            and (reference is None or m.reference == reference)
            and (type is None or m.type == type)
        ]
        return sorted(out, key=lambda m: (m.created_at, m.id), reverse=True)


class BrokenMovementStore:
    def append(self, movement):
        raise RuntimeError("conexão perdida")

    def query(self, **filters):
        raise RuntimeError("conexão perdida")


@pytest.fixture
def movement_store():
    return InMemoryMovementStore()


@pytest.fixture
def flaky_store():
    return InMemoryMovementStore(fail_after=1)


@pytest.fixture
def broken_store():
    return BrokenMovementStore()


@pytest.fixture
def app():
    app = create_app("config.TestConfig")
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield
