from flask import Blueprint, current_app

from api_helpers import get_json_body, get_user_id_from_request, json_error, json_ok

from .service import sync_dividends

proventos_bp = Blueprint("proventos", __name__)


@proventos_bp.route("/sync", methods=["POST"])
def api_sync_proventos():
    """Sincroniza dividendos das posições do usuário (Yahoo Finance)."""
    user_id = get_user_id_from_request()
    if not user_id:
        return json_error("Não autenticado", 401)

    body = get_json_body()

    try:
        result = sync_dividends(user_id, body.get("range"))
    except Exception:
        current_app.logger.exception("[proventos] sync error")
        return json_error("Erro inesperado ao sincronizar proventos", 500)

    return json_ok(**result)
