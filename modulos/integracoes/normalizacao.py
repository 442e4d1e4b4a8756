"""
Normalização dos payloads dos provedores para o formato comum de
``BankTransaction``:

    {provider, external_id, account_id, direction, amount, currency,
     occurred_at, description, raw}
"""

import math
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENTS = Decimal("0.01")


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def to_amount(value) -> Decimal:
    """Valor absoluto com 2 casas."""
    try:
        return abs(Decimal(str(value))).quantize(CENTS, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValueError(f"Valor inválido: {value!r}")


def parse_iso_date(value) -> date | None:
    """Aceita ``YYYY-MM-DD`` ou um datetime ISO (usa só a data)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value or "").strip()[:10]
    try:
        return datetime.strptime(s, "%Y-%m-%d").date()
    except ValueError:
        return None


def clamp_days(value, default: int, maximum: int) -> int:
    """Dias da janela de sincronização; fora de 1..maximum usa o padrão."""
    try:
        days = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    if days <= 0 or days > maximum:
        return default
    return days


def mp_date_window(days: int, now: datetime) -> tuple[str, str]:
    """Janela no formato exigido pelo ``/v1/payments/search``."""
    end = now.date()
    begin = end - timedelta(days=days)
    return (
        f"{begin.isoformat()}T00:00:00.000-00:00",
        f"{end.isoformat()}T23:59:59.999-00:00",
    )


def normalize_mercadopago_payment(payment: dict, today: date) -> dict | None:
    """Pagamento do Mercado Pago -> linha comum. ``None`` se inválido.

    Entra sempre como débito; o usuário ajusta a direção antes de importar.
    """
    pid = payment.get("id")
    amount = payment.get("transaction_amount")
    if not isinstance(pid, int) or isinstance(pid, bool) or not _is_number(amount):
        return None

    occurred = parse_iso_date(payment.get("date_approved") or payment.get("date_created")) or today
    description = (
        payment.get("description")
        or payment.get("statement_descriptor")
        or payment.get("payment_method_id")
        or f"Pagamento {pid}"
    )

    return {
        "provider": "mercadopago",
        "external_id": str(pid),
        "account_id": None,
        "direction": "debit",
        "amount": to_amount(amount),
        "currency": payment.get("currency_id") or "BRL",
        "occurred_at": occurred,
        "description": str(description)[:255],
        "raw": payment,
    }


def normalize_pluggy_transaction(tx: dict, account_id: str, today: date) -> dict | None:
    """Transação da Pluggy -> linha comum. ``None`` se inválida."""
    tid = tx.get("id")
    amount = tx.get("amount")
    if not tid or not _is_number(amount):
        return None

    kind = str(tx.get("type") or "").upper()
    if kind == "CREDIT":
        direction = "credit"
    elif kind == "DEBIT":
        direction = "debit"
    else:
        direction = "debit" if amount < 0 else "credit"

    description = tx.get("description") or tx.get("descriptionRaw") or f"Transação {tid}"

    return {
        "provider": "openfinance",
        "external_id": str(tid),
        "account_id": str(account_id),
        "direction": direction,
        "amount": to_amount(amount),
        "currency": tx.get("currencyCode") or "BRL",
        "occurred_at": parse_iso_date(tx.get("date")) or today,
        "description": str(description)[:255],
        "raw": tx,
    }
