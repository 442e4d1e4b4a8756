"""
Endpoints JSON das integrações bancárias e fluxo OAuth do Mercado Pago.
"""

import secrets
import time
from datetime import date, datetime, timedelta
from urllib.parse import urlencode

from flask import Blueprint, current_app, redirect, request, session

from api_helpers import get_json_body, get_user_id_from_request, json_error, json_ok
from models import BankConnection, BankTransaction
from extensions import db

from . import mercadopago, pluggy
from .config import get_setting, parse_bool
from .connections import disconnect, expires_at_from, serialize_connection, upsert_connection
from .errors import ConnectionNotFoundError, IntegrationError
from .import_service import import_transactions
from .normalizacao import clamp_days, parse_iso_date, to_amount
from .sync_service import sync_mercadopago, sync_openfinance

integracoes_bp = Blueprint(
    "integracoes",
    __name__,
)

_MP_STATE_KEY = "mp_oauth_state"
_PROVIDERS = ("mercadopago", "openfinance")


def _not_authenticated():
    return json_error("Não autenticado", 401)


def _integration_error(e: IntegrationError, tag: str):
    current_app.logger.error(f"[{tag}] {type(e).__name__}: {e.message}")
    return json_error(e.message, e.status_code)


def _redirect_to_app(path: str, **params):
    url = f"{mercadopago.get_app_url()}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return redirect(url)


def _openfinance_disabled():
    return json_error(
        "Open Finance está desativado neste projeto. Use importação de extrato (OFX/CSV) "
        "ou PDF com revisão manual.",
        410,
        code="OPENFINANCE_DISABLED",
    )


def serialize_transaction(tx: BankTransaction) -> dict:
    return {
        "id": tx.id,
        "provider": tx.provider,
        "external_id": tx.external_id,
        "account_id": tx.account_id,
        "direction": tx.direction,
        "amount": float(tx.amount or 0),
        "currency": tx.currency,
        "occurred_at": tx.occurred_at.isoformat() if tx.occurred_at else None,
        "description": tx.description,
        "raw": tx.raw,
        "imported": bool(tx.imported),
        "imported_at": tx.imported_at.isoformat() if tx.imported_at else None,
        "created_at": tx.created_at.isoformat() if tx.created_at else None,
    }


# ---------------------------------------------------------------------------
# Conexões
# ---------------------------------------------------------------------------

@integracoes_bp.route("/connections", methods=["GET"])
def api_list_connections():
    user_id = get_user_id_from_request()
    if not user_id:
        return _not_authenticated()

    try:
        rows = (
            BankConnection.query
            .filter_by(user_id=user_id)
            .order_by(BankConnection.created_at.desc(), BankConnection.id.desc())
            .all()
        )
    except Exception:
        current_app.logger.exception("[integrations] list connections error")
        return json_error("Erro ao buscar integrações", 500)

    return json_ok(connections=[serialize_connection(c) for c in rows])


@integracoes_bp.route("/connections/<provider>", methods=["DELETE"])
def api_disconnect(provider: str):
    user_id = get_user_id_from_request()
    if not user_id:
        return _not_authenticated()
    if provider not in _PROVIDERS:
        return json_error("Provedor desconhecido", 400)

    try:
        conn = disconnect(user_id, provider)
    except ConnectionNotFoundError as e:
        return json_error(e.message, 404)
    except Exception:
        current_app.logger.exception("[integrations] disconnect error")
        return json_error("Erro ao desconectar", 500)

    return json_ok(connection=serialize_connection(conn))


# ---------------------------------------------------------------------------
# Mercado Pago (OAuth + sync)
# ---------------------------------------------------------------------------

@integracoes_bp.route("/mercadopago/start", methods=["GET"])
def mercadopago_start():
    user_id = get_user_id_from_request()
    if not user_id:
        return _redirect_to_app(get_setting("LOGIN_PAGE"))

    # valida env antes (evita 500)
    if not get_setting("MP_CLIENT_ID") or not get_setting("APP_URL"):
        current_app.logger.error(
            f"[MP OAuth] missing env MP_CLIENT_ID={bool(get_setting('MP_CLIENT_ID'))} "
            f"APP_URL={bool(get_setting('APP_URL'))}"
        )
        return _redirect_to_app(get_setting("INTEGRATIONS_PAGE"), error="mp_env")

    state = mercadopago.create_state()
    session[_MP_STATE_KEY] = {"value": state, "created": time.time()}

    try:
        url = mercadopago.get_oauth_start_url(state)
    except IntegrationError as e:
        current_app.logger.error(f"[MP OAuth] start error: {e.message}")
        return _redirect_to_app(get_setting("INTEGRATIONS_PAGE"), error="mp_start")

    return redirect(url)


def _state_is_valid(received: str | None, stored) -> bool:
    if not received or not isinstance(stored, dict):
        return False
    expected = str(stored.get("value") or "")
    try:
        age = time.time() - float(stored.get("created") or 0)
    except (TypeError, ValueError):
        return False
    if not expected or age > int(get_setting("OAUTH_STATE_MAX_AGE")):
        return False
    return secrets.compare_digest(expected, str(received))


@integracoes_bp.route("/mercadopago/callback", methods=["GET"])
def mercadopago_callback():
    user_id = get_user_id_from_request()
    if not user_id:
        return _redirect_to_app(get_setting("LOGIN_PAGE"))

    page = get_setting("INTEGRATIONS_PAGE")
    code = request.args.get("code")
    state = request.args.get("state")
    stored_state = session.pop(_MP_STATE_KEY, None)

    if not code:
        return _redirect_to_app(page, error="missing_code")
    if not _state_is_valid(state, stored_state):
        return _redirect_to_app(page, error="invalid_state")

    try:
        token = mercadopago.exchange_code_for_token(code)
    except IntegrationError as e:
        current_app.logger.error(f"[MP OAuth] callback error: {e.message}")
        return _redirect_to_app(page, error="oauth")

    try:
        upsert_connection(
            user_id,
            mercadopago.PROVIDER,
            access_token=token["access_token"],
            refresh_token=token.get("refresh_token") or None,
            expires_at=expires_at_from(token, datetime.utcnow()),
            scope=token.get("scope") or None,
        )
    except Exception:
        current_app.logger.exception("[MP OAuth] upsert connection failed")
        return _redirect_to_app(page, error="db")

    return _redirect_to_app(page, connected="mercadopago")


@integracoes_bp.route("/mercadopago/sync", methods=["POST"])
def mercadopago_sync():
    user_id = get_user_id_from_request()
    if not user_id:
        return _not_authenticated()

    days = clamp_days(
        request.args.get("days"),
        int(get_setting("SYNC_DEFAULT_DAYS")),
        int(get_setting("SYNC_MAX_DAYS")),
    )

    try:
        result = sync_mercadopago(user_id, days)
    except IntegrationError as e:
        return _integration_error(e, "MP sync")
    except Exception:
        db.session.rollback()
        current_app.logger.exception("[MP sync] sync error")
        return json_error("Erro ao sincronizar", 500)

    return json_ok(**result.to_dict())


# ---------------------------------------------------------------------------
# Open Finance (Pluggy)
# ---------------------------------------------------------------------------

@integracoes_bp.route("/openfinance/connect-token", methods=["POST"])
def openfinance_connect_token():
    user_id = get_user_id_from_request()
    if not user_id:
        return _not_authenticated()
    if not get_setting("OPENFINANCE_ENABLED"):
        return _openfinance_disabled()

    body = get_json_body()
    item_id = body.get("itemId") if isinstance(body.get("itemId"), str) else None

    try:
        token = pluggy.create_connect_token(item_id)
    except IntegrationError as e:
        return _integration_error(e, "OpenFinance")

    return json_ok(connectToken=token)


def _validate_openfinance_callback(body: dict) -> dict:
    errors = {}
    item_id = body.get("itemId")
    if not isinstance(item_id, str) or len(item_id.strip()) < 3:
        errors["itemId"] = ["itemId deve ser texto com pelo menos 3 caracteres"]
    provider_name = body.get("providerName")
    if provider_name is not None and not isinstance(provider_name, str):
        errors["providerName"] = ["providerName deve ser texto"]
    return errors


@integracoes_bp.route("/openfinance/callback", methods=["POST"])
def openfinance_callback():
    user_id = get_user_id_from_request()
    if not user_id:
        return _not_authenticated()
    if not get_setting("OPENFINANCE_ENABLED"):
        return _openfinance_disabled()

    body = get_json_body()
    errors = _validate_openfinance_callback(body)
    if errors:
        return json_error("Payload inválido", 400, details=errors)

    try:
        conn = upsert_connection(
            user_id,
            pluggy.PROVIDER,
            access_token=body["itemId"].strip(),
            refresh_token=None,
            expires_at=None,
            scope=(body.get("providerName") or "pluggy")[:255],
        )
    except Exception:
        current_app.logger.exception("[OpenFinance] upsert connection failed")
        return json_error("Erro ao salvar conexão", 500)

    return json_ok(connection=serialize_connection(conn))


def _openfinance_window() -> tuple[date, date] | str:
    today = datetime.utcnow().date()
    raw_to = request.args.get("to")
    raw_from = request.args.get("from")

    date_to = parse_iso_date(raw_to) if raw_to else today
    if date_to is None:
        return "Parâmetro 'to' inválido (use YYYY-MM-DD)"

    if raw_from:
        date_from = parse_iso_date(raw_from)
        if date_from is None:
            return "Parâmetro 'from' inválido (use YYYY-MM-DD)"
    else:
        date_from = date_to - timedelta(days=int(get_setting("OPENFINANCE_DEFAULT_DAYS")))

    if date_from > date_to:
        return "'from' deve ser anterior a 'to'"

    max_days = int(get_setting("SYNC_MAX_DAYS"))
    if (date_to - date_from).days > max_days:
        date_from = date_to - timedelta(days=max_days)

    return date_from, date_to


@integracoes_bp.route("/openfinance/sync", methods=["GET", "POST"])
def openfinance_sync():
    user_id = get_user_id_from_request()
    if not user_id:
        return _not_authenticated()
    if not get_setting("OPENFINANCE_ENABLED"):
        return _openfinance_disabled()

    window = _openfinance_window()
    if isinstance(window, str):
        return json_error(window, 400)
    date_from, date_to = window

    try:
        result = sync_openfinance(user_id, date_from, date_to)
    except IntegrationError as e:
        return _integration_error(e, "OpenFinance")
    except Exception:
        db.session.rollback()
        current_app.logger.exception("[OpenFinance] sync error")
        return json_error("Erro ao sincronizar", 500)

    return json_ok(**result.to_dict())


# ---------------------------------------------------------------------------
# Transações pendentes
# ---------------------------------------------------------------------------

@integracoes_bp.route("/transactions", methods=["GET"])
def api_list_transactions():
    user_id = get_user_id_from_request()
    if not user_id:
        return _not_authenticated()

    provider = request.args.get("provider")
    pending_only = parse_bool(request.args.get("pending") or None, default=True)

    query = BankTransaction.query.filter_by(user_id=user_id)
    if provider:
        query = query.filter_by(provider=provider)
    if pending_only:
        query = query.filter(BankTransaction.imported.is_(False))

    try:
        rows = query.order_by(BankTransaction.occurred_at.desc(), BankTransaction.id.desc()).all()
    except Exception:
        current_app.logger.exception("[integrations] list transactions error")
        return json_error("Erro ao buscar transações", 500)

    return json_ok(transactions=[serialize_transaction(t) for t in rows])


def _build_patch(body: dict) -> tuple[dict, str | None]:
    patch = {}

    if "direction" in body:
        if body["direction"] not in ("debit", "credit"):
            return {}, "direction deve ser 'debit' ou 'credit'"
        patch["direction"] = body["direction"]

    if isinstance(body.get("description"), str):
        patch["description"] = body["description"].strip()[:255]

    if "occurred_at" in body:
        occurred = parse_iso_date(body["occurred_at"]) if isinstance(body["occurred_at"], str) else None
        if occurred is None:
            return {}, "occurred_at deve estar no formato YYYY-MM-DD"
        patch["occurred_at"] = occurred

    if "amount" in body:
        amount = body["amount"]
        if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount < 0:
            return {}, "amount deve ser um número maior ou igual a zero"
        patch["amount"] = to_amount(amount)

    return patch, None


@integracoes_bp.route("/transactions/<int:tx_id>", methods=["PATCH"])
def api_update_transaction(tx_id: int):
    user_id = get_user_id_from_request()
    if not user_id:
        return _not_authenticated()

    patch, error = _build_patch(get_json_body())
    if error:
        return json_error(error, 400)
    if not patch:
        return json_error("Nada para atualizar", 400)

    tx = BankTransaction.query.filter_by(id=tx_id, user_id=user_id).first()
    if not tx:
        return json_error("Transação não encontrada", 404)
    if tx.imported:
        return json_error("Transação já importada não pode ser editada", 409)

    for key, value in patch.items():
        setattr(tx, key, value)
    tx.updated_at = datetime.utcnow()

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("[integrations] update transaction error")
        return json_error("Erro ao atualizar", 500)

    return json_ok(transaction=serialize_transaction(tx))


@integracoes_bp.route("/transactions/import", methods=["POST"])
def api_import_transactions():
    user_id = get_user_id_from_request()
    if not user_id:
        return _not_authenticated()

    body = get_json_body()
    ids = body.get("ids") if isinstance(body.get("ids"), list) else []
    import_all_pending = bool(body.get("importAllPending"))

    try:
        result = import_transactions(user_id, ids=ids, import_all_pending=import_all_pending)
    except ValueError as e:
        return json_error(str(e), 400)
    except Exception:
        current_app.logger.exception("[integrations] import error")
        return json_error("Falha ao importar transações", 500)

    payload = result.to_dict()
    if result.imported == 0:
        payload["message"] = "Nada para importar"
    return json_ok(**payload)
