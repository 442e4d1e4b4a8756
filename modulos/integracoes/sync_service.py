"""
Sincronização de transações externas.

Cada provedor é lido, normalizado e gravado em ``bank_transactions`` com
upsert pela chave natural ``(user_id, provider, external_id)``. Rodar a
mesma sincronização duas vezes não duplica nada.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import BankConnection, BankTransaction

from . import mercadopago, pluggy
from .config import get_setting
from .connections import ensure_fresh_token, mark_status, require_connection
from .errors import ConnectionStateError, IntegrationError, ProviderError
from .normalizacao import mp_date_window, normalize_mercadopago_payment, normalize_pluggy_transaction

logger = logging.getLogger(__name__)

_LOOKUP_CHUNK = 500

# Status de item da Pluggy que exigem o usuário reabrir o widget
PLUGGY_REAUTH_STATUSES = {"LOGIN_ERROR", "WAITING_USER_INPUT"}


@dataclass
class UpsertResult:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.skipped


@dataclass
class SyncResult:
    provider: str
    synced: int = 0
    inserted: int = 0
    updated: int = 0
    accounts: int = 0
    failed_accounts: list = field(default_factory=list)
    message: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        if data["message"] is None:
            data.pop("message")
        return data


# ---------------------------------------------------------------------------
# Upsert idempotente
# ---------------------------------------------------------------------------

def _dedupe(rows: list[dict]) -> list[dict]:
    """Chaves repetidas no mesmo lote ficam com a última ocorrência."""
    by_key: dict[tuple, dict] = {}
    for row in rows:
        by_key[(row["provider"], row["external_id"])] = row
    return list(by_key.values())


def _existing_by_key(user_id: int, provider: str, external_ids: list[str]) -> dict[str, BankTransaction]:
    found: dict[str, BankTransaction] = {}
    for i in range(0, len(external_ids), _LOOKUP_CHUNK):
        chunk = external_ids[i:i + _LOOKUP_CHUNK]
        for tx in BankTransaction.query.filter(
            BankTransaction.user_id == user_id,
            BankTransaction.provider == provider,
            BankTransaction.external_id.in_(chunk),
        ).all():
            found[tx.external_id] = tx
    return found


def _apply_upsert(user_id: int, rows: list[dict], now: datetime) -> UpsertResult:
    result = UpsertResult()

    providers = sorted({r["provider"] for r in rows})
    for provider in providers:
        provider_rows = [r for r in rows if r["provider"] == provider]
        existing = _existing_by_key(user_id, provider, [r["external_id"] for r in provider_rows])

        for row in provider_rows:
            current = existing.get(row["external_id"])
            if current is None:
                db.session.add(BankTransaction(
                    user_id=user_id,
                    provider=provider,
                    external_id=row["external_id"],
                    account_id=row.get("account_id"),
                    direction=row["direction"],
                    amount=row["amount"],
                    currency=row["currency"],
                    occurred_at=row["occurred_at"],
                    description=row["description"],
                    raw=row.get("raw"),
                    imported=False,
                    created_at=now,
                    updated_at=now,
                ))
                result.inserted += 1
            elif current.imported:
                result.skipped += 1
            else:
                # Campos editáveis pelo usuário (direção, descrição, valor, data) são preservados
                current.raw = row.get("raw")
                current.currency = row["currency"]
                current.account_id = row.get("account_id") or current.account_id
                current.updated_at = now
                result.updated += 1

    return result


def upsert_transactions(user_id: int, rows: list[dict], now: datetime | None = None) -> UpsertResult:
    """Grava as linhas normalizadas. Faz commit.

    Se outra sincronização inserir a mesma chave ao mesmo tempo, o lote é
    refeito uma vez a partir do estado novo do banco.
    """
    now = now or datetime.utcnow()
    rows = _dedupe(rows)
    if not rows:
        return UpsertResult()

    for attempt in (1, 2):
        try:
            result = _apply_upsert(user_id, rows, now)
            db.session.commit()
            return result
        except IntegrityError:
            db.session.rollback()
            if attempt == 2:
                raise
            logger.warning(f"[integrations] conflito de chave no upsert do usuário {user_id}; refazendo lote")

    return UpsertResult()  # pragma: no cover


def _stamp_synced(conn: BankConnection, now: datetime, error: str | None = None) -> None:
    conn.status = BankConnection.STATUS_CONNECTED
    conn.last_synced_at = now
    conn.last_error = error[:500] if error else None
    conn.updated_at = now
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception(f"[integrations] falha ao registrar sincronização da conexão {conn.id}")


# ---------------------------------------------------------------------------
# Mercado Pago
# ---------------------------------------------------------------------------

def sync_mercadopago(user_id: int, days: int, now: datetime | None = None) -> SyncResult:
    now = now or datetime.utcnow()
    conn = require_connection(user_id, mercadopago.PROVIDER, "Conecte o Mercado Pago antes de sincronizar.")
    access_token = ensure_fresh_token(conn, now)

    begin_date, end_date = mp_date_window(days, now)
    try:
        payments = mercadopago.search_payments(access_token, begin_date, end_date)
    except ProviderError as e:
        if e.status == 401:
            mark_status(conn, BankConnection.STATUS_EXPIRED, e.message)
        raise

    today = now.date()
    rows = [r for r in (normalize_mercadopago_payment(p, today) for p in payments) if r]

    result = SyncResult(provider=mercadopago.PROVIDER)
    if not rows:
        _stamp_synced(conn, now)
        result.message = "Nenhuma transação encontrada no período."
        return result

    up = upsert_transactions(user_id, rows, now)
    _stamp_synced(conn, now)

    result.synced = up.total
    result.inserted = up.inserted
    result.updated = up.updated
    logger.info(f"[MP sync] usuário {user_id}: {up.inserted} novas, {up.updated} atualizadas, {up.skipped} já importadas")
    return result


# ---------------------------------------------------------------------------
# Open Finance (Pluggy)
# ---------------------------------------------------------------------------

def sync_openfinance(user_id: int, date_from: date, date_to: date, now: datetime | None = None) -> SyncResult:
    """Sincroniza todas as contas do item Pluggy do usuário.

    Falha em uma conta não impede as demais; só quando todas falham a
    sincronização inteira é considerada erro.
    """
    now = now or datetime.utcnow()
    conn = require_connection(user_id, pluggy.PROVIDER, "Conecte o Open Finance antes de sincronizar.")
    item_id = str(conn.access_token or "")
    if not item_id:
        raise ConnectionStateError("Conexão Open Finance sem itemId. Reconecte o banco.")

    item = pluggy.get_item(item_id)
    item_status = str(item.get("status") or "").upper()
    if item_status in PLUGGY_REAUTH_STATUSES:
        mark_status(conn, BankConnection.STATUS_ERROR, f"Item {item_status}")
        raise ConnectionStateError("O banco pediu nova autenticação. Reconecte o Open Finance.")

    accounts = pluggy.list_accounts(item_id)
    result = SyncResult(provider=pluggy.PROVIDER, accounts=len(accounts))
    if not accounts:
        _stamp_synced(conn, now)
        result.message = "Nenhuma conta encontrada para esta conexão."
        return result

    today = now.date()
    rows: list[dict] = []
    for account in accounts:
        account_id = str(account.get("id") or "")
        try:
            account_rows = [
                r for r in (
                    normalize_pluggy_transaction(tx, account_id, today)
                    for tx in pluggy.iter_transactions(account_id, date_from, date_to)
                ) if r
            ]
        except (IntegrationError, ValueError) as e:
            message = e.message if isinstance(e, IntegrationError) else f"Transação inválida: {e}"
            logger.warning(f"[OpenFinance] conta {account_id} falhou: {message}")
            result.failed_accounts.append({"account_id": account_id, "message": message})
            continue
        rows.extend(account_rows)

    if len(result.failed_accounts) == len(accounts):
        mark_status(conn, BankConnection.STATUS_ERROR, "Falha em todas as contas")
        raise ProviderError(pluggy.PROVIDER, None, "Falha ao buscar transações de todas as contas")

    up = upsert_transactions(user_id, rows, now)
    partial = None
    if result.failed_accounts:
        partial = f"{len(result.failed_accounts)} de {len(accounts)} contas falharam"
    _stamp_synced(conn, now, partial)

    result.synced = up.total
    result.inserted = up.inserted
    result.updated = up.updated
    if not rows:
        result.message = "Nenhuma transação encontrada no período."
    logger.info(
        f"[OpenFinance] usuário {user_id}: {up.inserted} novas, {up.updated} atualizadas, "
        f"{len(result.failed_accounts)} contas com falha"
    )
    return result


# ---------------------------------------------------------------------------
# Todas as conexões (scheduler / CLI)
# ---------------------------------------------------------------------------

def sync_all_connections(days: int | None = None, now: datetime | None = None) -> list[dict]:
    """Sincroniza toda conexão ``connected``, e as ``expired`` que ainda têm
    refresh_token; erro de uma não para as outras.
    """
    now = now or datetime.utcnow()
    days = days or int(get_setting("SYNC_DEFAULT_DAYS"))
    openfinance_enabled = bool(get_setting("OPENFINANCE_ENABLED"))

    renewable = or_(
        BankConnection.status == BankConnection.STATUS_CONNECTED,
        and_(
            BankConnection.status == BankConnection.STATUS_EXPIRED,
            BankConnection.refresh_token.isnot(None),
        ),
    )
    targets = [
        (c.id, c.user_id, c.provider)
        for c in BankConnection.query.filter(renewable).order_by(BankConnection.id).all()
    ]

    summaries: list[dict] = []
    for conn_id, user_id, provider in targets:
        summary = {"connection_id": conn_id, "user_id": user_id, "provider": provider}
        try:
            if provider == mercadopago.PROVIDER:
                result = sync_mercadopago(user_id, days, now)
            elif provider == pluggy.PROVIDER and openfinance_enabled:
                result = sync_openfinance(user_id, now.date() - timedelta(days=days), now.date(), now)
            else:
                summary["status"] = "skipped"
                summaries.append(summary)
                continue
            summary.update(status="ok", **result.to_dict())
        except IntegrationError as e:
            logger.warning(f"[integrations] sync automático da conexão {conn_id} falhou: {e.message}")
            summary.update(status="error", message=e.message)
        except Exception as e:  # noqa: BLE001
            db.session.rollback()
            logger.exception(f"[integrations] erro inesperado na conexão {conn_id}")
            summary.update(status="error", message=str(e))
        summaries.append(summary)

    return summaries
