from flask import Blueprint

from modulos.importacao.routes import importacao_bp
from modulos.integracoes.routes import integracoes_bp
from modulos.proventos.routes import proventos_bp

main_bp = Blueprint("main", __name__)


@main_bp.route("/health")
def health():
    return "OK"


def register_blueprints(app):
    """Registra todos os blueprints globais da aplicação."""
    # Health check
    app.register_blueprint(main_bp)

    # Integrações bancárias (Mercado Pago, Open Finance)
    app.register_blueprint(integracoes_bp, url_prefix="/api/integrations")

    # Proventos
    app.register_blueprint(proventos_bp, url_prefix="/api/proventos")

    # Importação de arquivos (fatura do cartão em PDF)
    app.register_blueprint(importacao_bp, url_prefix="/api/import")
