import os

from dotenv import load_dotenv
from flask import current_app, has_app_context

load_dotenv()


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    v = str(value).strip().lower()
    return v in ("1", "true", "t", "yes", "y", "on", "sim")


def _env_int(key: str, default: int) -> int:
    try:
        value = int((os.getenv(key) or "").strip())
    except ValueError:
        return default
    return value if value > 0 else default


class Config:
    """Configurações das integrações, lidas do ambiente (.env)"""

    # URL pública do app (usada no redirect_uri do OAuth)
    APP_URL = os.getenv("APP_URL") or (
        f"https://{os.getenv('VERCEL_URL')}" if os.getenv("VERCEL_URL") else "http://localhost:5000"
    )

    # Mercado Pago
    MP_CLIENT_ID = os.getenv("MP_CLIENT_ID", "")
    MP_CLIENT_SECRET = os.getenv("MP_CLIENT_SECRET", "")
    MP_AUTH_URL = os.getenv("MP_AUTH_URL", "https://auth.mercadopago.com.br")
    MP_API_URL = os.getenv("MP_API_URL", "https://api.mercadopago.com")
    MP_PAGE_SIZE = _env_int("MP_PAGE_SIZE", 100)
    MP_MAX_PAGES = _env_int("MP_MAX_PAGES", 50)

    # Open Finance (Pluggy)
    PLUGGY_CLIENT_ID = os.getenv("PLUGGY_CLIENT_ID", "")
    PLUGGY_CLIENT_SECRET = os.getenv("PLUGGY_CLIENT_SECRET", "")
    PLUGGY_API_URL = os.getenv("PLUGGY_API_URL", "https://api.pluggy.ai")
    PLUGGY_PAGE_SIZE = _env_int("PLUGGY_PAGE_SIZE", 500)
    OPENFINANCE_ENABLED = parse_bool(
        os.getenv("OPENFINANCE_ENABLED"),
        default=bool(os.getenv("PLUGGY_CLIENT_ID") and os.getenv("PLUGGY_CLIENT_SECRET")),
    )

    # HTTP
    HTTP_TIMEOUT = _env_int("HTTP_TIMEOUT", 10)

    # Sincronização
    SYNC_DEFAULT_DAYS = _env_int("SYNC_DEFAULT_DAYS", 30)
    OPENFINANCE_DEFAULT_DAYS = _env_int("OPENFINANCE_DEFAULT_DAYS", 60)
    SYNC_MAX_DAYS = _env_int("SYNC_MAX_DAYS", 365)
    SYNC_AUTOMATICO = parse_bool(os.getenv("SYNC_AUTOMATICO"), default=False)
    SYNC_INTERVAL_MIN = _env_int("SYNC_INTERVAL_MIN", 360)

    # Importação de fatura em PDF
    FATURA_PDF_MAX_MB = _env_int("FATURA_PDF_MAX_MB", 10)

    # OAuth state (segundos)
    OAUTH_STATE_MAX_AGE = _env_int("OAUTH_STATE_MAX_AGE", 10 * 60)

    # Páginas do front para onde o OAuth redireciona
    INTEGRATIONS_PAGE = "/dashboard/integracoes"
    LOGIN_PAGE = "/auth/login"


def get_setting(key: str):
    """Lê a configuração do app ativo, caindo para ``Config`` fora de contexto."""
    if has_app_context() and key in current_app.config:
        return current_app.config[key]
    return getattr(Config, key)
