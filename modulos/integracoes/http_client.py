"""
Cliente HTTP compartilhado pelos provedores.

Toda chamada externa passa por ``request_json`` para ter timeout e
tradução de erros uniformes.
"""

import logging

import requests

from .config import get_setting
from .errors import ProviderError

logger = logging.getLogger(__name__)

_session = requests.Session()
_session.headers.update({"Accept": "application/json"})


def request_json(provider: str, method: str, url: str, *, timeout=None, **kwargs):
    """Executa a requisição e devolve o JSON decodificado.

    Respostas fora de 2xx, falhas de rede e JSON inválido viram
    ``ProviderError``.
    """
    timeout = timeout or int(get_setting("HTTP_TIMEOUT"))

    try:
        response = _session.request(method, url, timeout=timeout, **kwargs)
    except requests.RequestException as exc:
        logger.warning(f"[{provider}] falha de rede em {method} {url}: {exc}")
        raise ProviderError(provider, None, str(exc)) from exc

    if not response.ok:
        logger.warning(f"[{provider}] {method} {url} -> HTTP {response.status_code}")
        raise ProviderError(provider, response.status_code, response.text or "")

    try:
        return response.json()
    except ValueError as exc:
        raise ProviderError(provider, response.status_code, "Resposta inválida (JSON)") from exc
