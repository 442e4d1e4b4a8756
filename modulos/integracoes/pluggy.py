"""
Cliente do agregador Open Finance (Pluggy).

A API key da Pluggy vale 2 horas; guardamos em memória por um pouco
menos que isso para não autenticar a cada chamada.
"""

import logging
import time
from datetime import date
from typing import Iterator

from .config import get_setting
from .errors import ConfigurationError, ProviderError
from .http_client import request_json

logger = logging.getLogger(__name__)

PROVIDER = "openfinance"

_API_KEY_TTL = 110 * 60
_api_key_cache: dict = {"key": None, "expires": 0.0}


def _base_url() -> str:
    return str(get_setting("PLUGGY_API_URL")).rstrip("/")


def reset_api_key_cache() -> None:
    _api_key_cache["key"] = None
    _api_key_cache["expires"] = 0.0


def get_api_key() -> str:
    if _api_key_cache["key"] and _api_key_cache["expires"] > time.monotonic():
        return _api_key_cache["key"]

    client_id = get_setting("PLUGGY_CLIENT_ID")
    client_secret = get_setting("PLUGGY_CLIENT_SECRET")
    if not client_id or not client_secret:
        raise ConfigurationError("PLUGGY_CLIENT_ID/PLUGGY_CLIENT_SECRET não estão definidos")

    data = request_json(
        PROVIDER,
        "POST",
        f"{_base_url()}/auth",
        json={"clientId": client_id, "clientSecret": client_secret},
    )
    api_key = (data or {}).get("apiKey")
    if not api_key:
        raise ProviderError(PROVIDER, None, "Resposta de /auth sem apiKey")

    logger.info("[OpenFinance] nova API key obtida")
    _api_key_cache["key"] = api_key
    _api_key_cache["expires"] = time.monotonic() + _API_KEY_TTL
    return api_key


def _headers() -> dict:
    return {"X-API-KEY": get_api_key()}


def create_connect_token(item_id: str | None = None) -> str:
    """Token usado pelo widget Pluggy Connect (novo item ou atualização)."""
    body = {"itemId": item_id} if item_id else {}
    data = request_json(PROVIDER, "POST", f"{_base_url()}/connect_token", json=body, headers=_headers())
    token = (data or {}).get("accessToken")
    if not token:
        raise ProviderError(PROVIDER, None, "Resposta de /connect_token sem accessToken")
    return token


def get_item(item_id: str) -> dict:
    return request_json(PROVIDER, "GET", f"{_base_url()}/items/{item_id}", headers=_headers()) or {}


def list_accounts(item_id: str) -> list[dict]:
    data = request_json(
        PROVIDER, "GET", f"{_base_url()}/accounts", params={"itemId": item_id}, headers=_headers()
    ) or {}
    results = data.get("results")
    return [a for a in results if isinstance(a, dict)] if isinstance(results, list) else []


def iter_transactions(account_id: str, date_from: date, date_to: date, page_size: int | None = None) -> Iterator[dict]:
    """Percorre todas as páginas de transações de uma conta."""
    page_size = int(page_size or get_setting("PLUGGY_PAGE_SIZE"))
    page = 1

    while True:
        params = {
            "accountId": account_id,
            "from": date_from.isoformat(),
            "to": date_to.isoformat(),
            "page": page,
            "pageSize": page_size,
        }
        data = request_json(
            PROVIDER, "GET", f"{_base_url()}/transactions", params=params, headers=_headers()
        ) or {}

        results = data.get("results") if isinstance(data.get("results"), list) else []
        for tx in results:
            if isinstance(tx, dict):
                yield tx

        try:
            total_pages = int(data.get("totalPages") or 1)
        except (TypeError, ValueError):
            total_pages = 1

        if not results or page >= total_pages:
            break
        page += 1
