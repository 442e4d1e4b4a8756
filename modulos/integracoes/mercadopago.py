"""
Cliente do Mercado Pago: OAuth (autorização, troca de código, refresh) e
busca paginada de pagamentos.
"""

import logging
import uuid
from urllib.parse import urlencode

from .config import get_setting
from .errors import ConfigurationError, ProviderError
from .http_client import request_json

logger = logging.getLogger(__name__)

PROVIDER = "mercadopago"


def get_app_url() -> str:
    return str(get_setting("APP_URL")).rstrip("/")


def get_redirect_uri() -> str:
    return f"{get_app_url()}/api/integrations/mercadopago/callback"


def create_state() -> str:
    return str(uuid.uuid4())


def get_oauth_start_url(state: str) -> str:
    client_id = get_setting("MP_CLIENT_ID")
    if not client_id:
        raise ConfigurationError("MP_CLIENT_ID não está definido")

    params = {
        "response_type": "code",
        "client_id": client_id,
        "platform_id": "mp",
        "redirect_uri": get_redirect_uri(),
        "state": state,
    }
    return f"{str(get_setting('MP_AUTH_URL')).rstrip('/')}/authorization?{urlencode(params)}"


def _client_credentials() -> tuple[str, str]:
    client_id = get_setting("MP_CLIENT_ID")
    client_secret = get_setting("MP_CLIENT_SECRET")
    if not client_id or not client_secret:
        raise ConfigurationError("MP_CLIENT_ID/MP_CLIENT_SECRET não estão definidos")
    return client_id, client_secret


def _post_token(data: dict) -> dict:
    url = f"{str(get_setting('MP_API_URL')).rstrip('/')}/oauth/token"
    token = request_json(
        PROVIDER,
        "POST",
        url,
        data=data,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    if not isinstance(token, dict) or not token.get("access_token"):
        raise ProviderError(PROVIDER, None, "Resposta de token sem access_token")
    return token


def exchange_code_for_token(code: str) -> dict:
    """Troca o ``code`` do callback por access/refresh token."""
    client_id, client_secret = _client_credentials()
    return _post_token({
        "grant_type": "authorization_code",
        "client_id": client_id,
        "client_secret": client_secret,
        "code": code,
        "redirect_uri": get_redirect_uri(),
    })


def refresh_access_token(refresh_token: str) -> dict:
    client_id, client_secret = _client_credentials()
    return _post_token({
        "grant_type": "refresh_token",
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
    })


def search_payments(access_token: str, begin_date: str, end_date: str, limit: int | None = None) -> list[dict]:
    """Busca todos os pagamentos do período, seguindo ``paging``.

    Para após ``MP_MAX_PAGES`` páginas para não varrer contas enormes
    em uma única requisição do usuário.
    """
    url = f"{str(get_setting('MP_API_URL')).rstrip('/')}/v1/payments/search"
    limit = int(limit or get_setting("MP_PAGE_SIZE"))
    max_pages = int(get_setting("MP_MAX_PAGES"))
    headers = {"Authorization": f"Bearer {access_token}"}

    results: list[dict] = []
    offset = 0

    for _ in range(max_pages):
        params = {
            "begin_date": begin_date,
            "end_date": end_date,
            "range": "date_created",
            "sort": "date_created",
            "criteria": "desc",
            "offset": offset,
            "limit": limit,
        }
        data = request_json(PROVIDER, "GET", url, params=params, headers=headers) or {}

        page = data.get("results") if isinstance(data.get("results"), list) else []
        results.extend(p for p in page if isinstance(p, dict))

        paging = data.get("paging") or {}
        try:
            total = int(paging.get("total", len(results)))
        except (TypeError, ValueError):
            total = len(results)

        offset += len(page)
        if not page or offset >= total:
            break
    else:
        logger.warning(f"[MP sync] limite de {max_pages} páginas atingido ({len(results)} pagamentos)")

    return results
