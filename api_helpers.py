"""
Helpers comuns dos endpoints JSON.

A autenticação é feita pelo serviço de auth externo, que grava o id do
usuário na sessão (``finance_user_id``). Aqui apenas lemos esse valor.
"""

from flask import jsonify, request, session


def get_user_id_from_request():
    user_id = session.get("finance_user_id")
    try:
        return int(user_id) if user_id is not None else None
    except (TypeError, ValueError):
        return None


def json_ok(status: int = 200, **payload):
    body = {"success": True}
    body.update(payload)
    return jsonify(body), status


def json_error(message: str, status: int, **extra):
    body = {"success": False, "message": message}
    body.update(extra)
    return jsonify(body), status


def get_json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
