# vitrine/views/common.py
from __future__ import annotations

from typing import Any, Dict

from flask import abort, request

from vitrine.core.forms import json_formdata


class InvalidForm(Exception):
    def __init__(self, errors: Dict[str, Any]):
        super().__init__("Dados inválidos")
        self.errors = errors


def payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400, description="Corpo JSON inválido")
    return data


def acting_user() -> str:
    # identidade vem do gateway de autenticação
    return (request.headers.get("X-User") or "").strip() or "anonymous"


def validated(form_cls, data: Dict[str, Any]):
    form = form_cls(formdata=json_formdata(data))
    if not form.validate():
        raise InvalidForm(form.errors)
    return form
