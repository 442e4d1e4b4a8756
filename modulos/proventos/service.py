import logging
from datetime import date
from decimal import Decimal

from extensions import db
from models import Dividend, Holding

from . import yahoo

logger = logging.getLogger(__name__)

VALID_RANGES = {"1mo", "3mo", "6mo", "1y", "2y", "5y", "10y", "max"}
DEFAULT_RANGE = "2y"

AUTO_NOTE = "Importado automaticamente (melhor esforço). Ajuste datas/quantidade se necessário."


def normalize_range(value) -> str:
    value = str(value or "").strip().lower()
    return value if value in VALID_RANGES else DEFAULT_RANGE


def dividend_key(ticker: str, kind: str, payment_date, amount) -> str:
    """Chave de deduplicação: ticker|tipo|data|valor (8 casas)."""
    return f"{ticker}|{kind}|{payment_date}|{float(amount):.8f}"


def user_tickers(user_id: int) -> list[str]:
    rows = db.session.query(Holding.ticker).filter(Holding.user_id == user_id).all()
    tickers = {str(t or "").strip().upper() for (t,) in rows}
    return sorted(t for t in tickers if t)


def sync_dividends(user_id: int, range_: str = DEFAULT_RANGE, today: date | None = None) -> dict:
    """Busca dividendos de todas as posições e insere só os novos."""
    today = today or date.today()
    range_ = normalize_range(range_)

    tickers = user_tickers(user_id)
    if not tickers:
        return {"inserted": 0, "skipped": 0, "tickers": 0}

    existing = {
        dividend_key(d.ticker, d.kind or "dividendo", d.payment_date.isoformat(), d.amount or 0)
        for d in Dividend.query.filter_by(user_id=user_id).all()
    }

    to_insert: list[Dividend] = []
    skipped = 0
    for ticker in tickers:
        for ev in yahoo.fetch_dividends(ticker, range_):
            key = dividend_key(ticker, "dividendo", ev["date"].isoformat(), ev["amount"])
            if key in existing:
                skipped += 1
                continue
            existing.add(key)
            to_insert.append(Dividend(
                user_id=user_id,
                ticker=ticker,
                kind="dividendo",
                amount=Decimal(str(ev["amount"])),
                payment_date=ev["date"],
                ex_date=None,
                base_quantity=None,
                status="pago" if ev["date"] < today else "confirmado",
                source=ev["source"],
                raw=ev["raw"],
                notes=AUTO_NOTE,
            ))

    if to_insert:
        try:
            db.session.add_all(to_insert)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    logger.info(f"[proventos] usuário {user_id}: {len(to_insert)} inseridos, {skipped} já existiam")
    return {"inserted": len(to_insert), "skipped": skipped, "tickers": len(tickers)}
