"""Exceções do pipeline de integrações."""


class IntegrationError(Exception):
    """Erro base das integrações bancárias."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(IntegrationError):
    """Variáveis de ambiente obrigatórias ausentes."""

    status_code = 500


class ProviderError(IntegrationError):
    """Falha HTTP (ou de rede) ao falar com um provedor."""

    status_code = 502

    def __init__(self, provider: str, status: int | None, detail: str = ""):
        self.provider = provider
        self.status = status
        self.detail = (detail or "")[:500]
        label = f"HTTP {status}" if status is not None else "sem resposta"
        super().__init__(f"{provider}: {label} {self.detail}".strip())


class TokenRefreshError(IntegrationError):
    """Token expirado que não pôde ser renovado."""

    status_code = 401


class ConnectionNotFoundError(IntegrationError):
    """Usuário ainda não conectou o provedor (ou desconectou)."""

    status_code = 409


class ConnectionStateError(IntegrationError):
    """Conexão existe mas não está em um estado sincronizável."""

    status_code = 409
