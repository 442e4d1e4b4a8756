"""
Eventos de dividendos pelo endpoint de gráfico do Yahoo Finance.

Para ativos da B3 os eventos podem vir incompletos; o usuário ajusta
manualmente depois.
"""

import logging
import math
from datetime import datetime, timezone
from urllib.parse import quote

from modulos.integracoes.errors import IntegrationError
from modulos.integracoes.http_client import request_json

logger = logging.getLogger(__name__)

PROVIDER = "yahoo"
CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"
SOURCE = "Yahoo Finance"
TIMEOUT = 12

_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64)",
    "Accept": "application/json",
}


def normalize_ticker(ticker: str) -> str:
    return (ticker or "").strip().upper()


def candidate_symbols(ticker: str) -> list[str]:
    """Tenta Brasil (.SA) e depois EUA (sem sufixo)."""
    t = normalize_ticker(ticker)
    return [t] if t.endswith(".SA") else [f"{t}.SA", t]


def fetch_chart(symbol: str, range_: str) -> dict:
    return request_json(
        PROVIDER,
        "GET",
        CHART_URL.format(symbol=quote(symbol, safe="")),
        params={"interval": "1d", "range": range_, "events": "div"},
        headers=_HEADERS,
        timeout=TIMEOUT,
    ) or {}


def parse_dividend_events(data: dict, ticker: str) -> list[dict]:
    try:
        result = (data.get("chart") or {}).get("result")[0]
        divs = (result.get("events") or {}).get("dividends")
    except (AttributeError, IndexError, TypeError):
        return []
    if not isinstance(divs, dict):
        return []

    events = []
    for ev in divs.values():
        if not isinstance(ev, dict):
            continue
        try:
            ts = float(ev.get("date"))
            amount = float(ev.get("amount"))
        except (TypeError, ValueError):
            continue
        if not math.isfinite(ts) or not math.isfinite(amount) or amount <= 0:
            continue
        events.append({
            "ticker": ticker,
            "date": datetime.fromtimestamp(ts, tz=timezone.utc).date(),
            "amount": amount,
            "raw": ev,
            "source": SOURCE,
        })

    return sorted(events, key=lambda e: e["date"])


def fetch_dividends(ticker: str, range_: str = "2y") -> list[dict]:
    t = normalize_ticker(ticker)
    for symbol in candidate_symbols(t):
        try:
            data = fetch_chart(symbol, range_)
        except IntegrationError as e:
            logger.info(f"[proventos] {symbol} sem dados: {e.message}")
            continue
        events = parse_dividend_events(data, t)
        if events:
            return events
    return []
