"""
Ciclo de vida das conexões (``BankConnection``).

Transições de status:
    (nova) -> connected             callback OAuth / itemId recebido
    connected -> expired            token vencido sem refresh possível
    connected|error -> error        item do agregador pede nova autenticação
    expired|error -> connected      refresh bem-sucedido ou novo callback
    * -> disconnected               usuário desconecta (tokens apagados)
"""

import logging
from datetime import datetime, timedelta

from extensions import db
from models import BankConnection

from . import mercadopago
from .errors import ConnectionNotFoundError, IntegrationError, TokenRefreshError

logger = logging.getLogger(__name__)


def expires_at_from(token: dict, now: datetime) -> datetime | None:
    try:
        seconds = int(token.get("expires_in") or 0)
    except (TypeError, ValueError):
        seconds = 0
    return now + timedelta(seconds=seconds) if seconds > 0 else None


def get_connection(user_id: int, provider: str) -> BankConnection | None:
    return BankConnection.query.filter_by(user_id=user_id, provider=provider).first()


def require_connection(user_id: int, provider: str, message: str) -> BankConnection:
    conn = get_connection(user_id, provider)
    if not conn or conn.status == BankConnection.STATUS_DISCONNECTED:
        raise ConnectionNotFoundError(message)
    return conn


def upsert_connection(user_id: int, provider: str, **fields) -> BankConnection:
    """Cria ou atualiza a conexão ``(user_id, provider)`` como ``connected``.

    Faz commit; em erro de banco faz rollback e propaga.
    """
    now = datetime.utcnow()
    conn = get_connection(user_id, provider)
    if conn is None:
        conn = BankConnection(user_id=user_id, provider=provider, created_at=now)
        db.session.add(conn)

    for key in ("access_token", "refresh_token", "expires_at", "scope"):
        if key in fields:
            setattr(conn, key, fields[key])
    conn.status = BankConnection.STATUS_CONNECTED
    conn.last_error = None
    conn.updated_at = now

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return conn


def mark_status(conn: BankConnection, status: str, error: str | None = None) -> None:
    conn.status = status
    conn.last_error = error[:500] if error else None
    conn.updated_at = datetime.utcnow()
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception(f"[integrations] falha ao gravar status {status} da conexão {conn.id}")


def ensure_fresh_token(conn: BankConnection, now: datetime | None = None) -> str:
    """Devolve um access token válido, renovando se vencido.

    Conexão já marcada ``expired`` também é renovada, mesmo com
    ``expires_at`` no futuro (o provedor recusou o token antes da hora).
    Token vencido sem refresh_token, ou refresh recusado, leva a conexão
    para ``expired`` e levanta ``TokenRefreshError``.
    """
    now = now or datetime.utcnow()
    access_token = str(conn.access_token or "")

    marked_expired = conn.status == BankConnection.STATUS_EXPIRED
    past_expiry = bool(conn.expires_at) and conn.expires_at <= now
    if not marked_expired and not past_expiry:
        return access_token

    if not conn.refresh_token:
        mark_status(conn, BankConnection.STATUS_EXPIRED, "Token expirado sem refresh_token")
        raise TokenRefreshError("Token expirou e não foi possível renovar.")

    try:
        token = mercadopago.refresh_access_token(str(conn.refresh_token))
    except IntegrationError as e:
        logger.error(f"[MP sync] refresh token failed: {e.message}")
        mark_status(conn, BankConnection.STATUS_EXPIRED, e.message)
        raise TokenRefreshError("Token expirou e não foi possível renovar.") from e

    conn.access_token = token["access_token"]
    conn.refresh_token = token.get("refresh_token") or conn.refresh_token
    conn.expires_at = expires_at_from(token, now)
    conn.scope = token.get("scope") or conn.scope
    conn.status = BankConnection.STATUS_CONNECTED
    conn.last_error = None
    conn.updated_at = now

    try:
        db.session.commit()
    except Exception:
        # O token novo ainda serve para esta sincronização
        db.session.rollback()
        logger.warning(f"[MP sync] failed updating refreshed token for connection {conn.id}")

    return token["access_token"]


def disconnect(user_id: int, provider: str) -> BankConnection:
    """Desconecta o provedor. Transações pendentes são mantidas."""
    conn = get_connection(user_id, provider)
    if conn is None:
        raise ConnectionNotFoundError("Integração não encontrada")

    conn.status = BankConnection.STATUS_DISCONNECTED
    conn.access_token = None
    conn.refresh_token = None
    conn.expires_at = None
    conn.updated_at = datetime.utcnow()
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return conn


def _iso(value):
    return value.isoformat() if value else None


def serialize_connection(conn: BankConnection) -> dict:
    return {
        "id": conn.id,
        "provider": conn.provider,
        "status": conn.status,
        "expires_at": _iso(conn.expires_at),
        "scope": conn.scope,
        "last_synced_at": _iso(conn.last_synced_at),
        "last_error": conn.last_error,
        "created_at": _iso(conn.created_at),
        "updated_at": _iso(conn.updated_at),
    }
