# application.py
"""
Arquivo de entrada WSGI (Gunicorn / Elastic Beanstalk).
O servidor procura especificamente por uma variável chamada 'application'.
"""

import logging
import os

import click
from apscheduler.schedulers.background import BackgroundScheduler
from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS

from extensions import db, migrate, get_current_db_url, init_database
from global_blueprints import register_blueprints
from modulos.integracoes.config import Config

# Carregar variáveis de ambiente
load_dotenv()


def _configure_logging(app: Flask) -> None:
    level_name = (os.getenv("LOG_LEVEL") or ("DEBUG" if app.debug else "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.logger.setLevel(level)
    # Sem log de cada requisição do werkzeug em produção
    logging.getLogger("werkzeug").setLevel(logging.WARNING)


def _iniciar_scheduler_sync(app: Flask):
    """Inicia o scheduler que sincroniza todas as conexões periodicamente.

    Se SYNC_AUTOMATICO estiver desligado, o scheduler NÃO é iniciado.
    """
    if not app.config.get("SYNC_AUTOMATICO"):
        app.logger.info("[sync] SYNC_AUTOMATICO desativado. Scheduler não será iniciado.")
        return None

    # Com o reloader do Flask em debug, só o processo filho agenda
    if app.debug and os.environ.get("WERKZEUG_RUN_MAIN") != "true":
        return None

    intervalo_min = int(app.config.get("SYNC_INTERVAL_MIN") or 360)
    scheduler = BackgroundScheduler(timezone="UTC")

    def _job_sync_conexoes():
        """Wrapper que garante contexto da aplicação ao rodar o sync."""
        from modulos.integracoes.sync_service import sync_all_connections

        with app.app_context():
            summaries = sync_all_connections()
            falhas = sum(1 for s in summaries if s.get("status") == "error")
            app.logger.info(f"[sync] {len(summaries)} conexões processadas, {falhas} com erro")

    scheduler.add_job(
        _job_sync_conexoes,
        "interval",
        minutes=intervalo_min,
        id="sync_conexoes_job",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    app.logger.info(f"[sync] scheduler iniciado a cada {intervalo_min} min")
    return scheduler


def create_app(test_config: dict | None = None) -> Flask:

    app = Flask(__name__)
    app.config.from_object(Config)

    # Configuração do banco usando config_db.py
    database_url = (test_config or {}).get('SQLALCHEMY_DATABASE_URI') or get_current_db_url()
    app.config['SQLALCHEMY_DATABASE_URI'] = database_url
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    if not database_url.startswith('sqlite'):
        app.config['SQLALCHEMY_ENGINE_OPTIONS'] = {
            'pool_pre_ping': True,
            'pool_recycle': 300,
        }

    # Configurar chave secreta para sessões (state do OAuth fica na sessão)
    app.secret_key = os.getenv('SECRET_KEY', 'chave_padrao_insegura')
    app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'
    app.config['SESSION_COOKIE_HTTPONLY'] = True
    app.config['SESSION_COOKIE_SECURE'] = os.getenv('FLASK_ENV') == 'production'

    if test_config:
        app.config.update(test_config)

    _configure_logging(app)

    # Inicializar extensões
    db.init_app(app)
    migrate.init_app(app, db)

    CORS(app, resources={
        r"/api/*": {
            "origins": os.getenv("CORS_ORIGINS", "*").split(","),
            "methods": ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization"],
            "supports_credentials": True,
        }
    })

    # Registrar todos os blueprints da aplicação
    register_blueprints(app)

    @app.after_request
    def add_no_cache_headers(response):
        if request.path.startswith('/api/'):
            response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
            response.headers['Pragma'] = 'no-cache'
            response.headers['Expires'] = '0'
        return response

    @app.errorhandler(404)
    def api_404(error):
        if request.path.startswith('/api/'):
            return jsonify({'success': False, 'message': 'Endpoint não encontrado', 'path': request.path}), 404
        return error

    @app.errorhandler(405)
    def api_405(error):
        if request.path.startswith('/api/'):
            return jsonify({'success': False, 'message': 'Método não permitido', 'path': request.path}), 405
        return error

    @app.errorhandler(500)
    def api_500(error):
        if request.path.startswith('/api/'):
            return jsonify({'success': False, 'message': 'Erro interno no servidor', 'path': request.path}), 500
        return error

    @app.cli.command('init-db')
    def init_db_command():
        """Cria as tabelas no banco configurado."""
        with app.app_context():
            init_database()
        click.echo('✅ Banco inicializado com sucesso!')

    @app.cli.command('db-stats')
    def db_stats_command():
        """Mostra estatísticas do banco de dados."""
        from config_db import get_db_stats
        with app.app_context():
            stats = get_db_stats()
        click.echo(f"📊 Banco: {stats['type']} ({stats['url']})")
        click.echo(f"🔗 Status: {stats['status']}")
        if stats.get('tables'):
            click.echo(f"📋 Tabelas: {', '.join(stats['tables'])}")

    @app.cli.command('sync-all')
    @click.option('--days', type=int, default=None, help='Janela em dias (padrão SYNC_DEFAULT_DAYS)')
    def sync_all_command(days):
        """Sincroniza todas as conexões ativas uma vez."""
        from modulos.integracoes.sync_service import sync_all_connections
        with app.app_context():
            summaries = sync_all_connections(days=days)
        for s in summaries:
            line = f"{s['provider']} (usuário {s['user_id']}): {s['status']}"
            if s.get('status') == 'ok':
                line += f" - {s.get('inserted', 0)} novas, {s.get('updated', 0)} atualizadas"
            elif s.get('message'):
                line += f" - {s['message']}"
            click.echo(line)
        click.echo(f"✅ {len(summaries)} conexões processadas")

    if not app.testing:
        _iniciar_scheduler_sync(app)

    return app


# Instância global usada por WSGI/Gunicorn
application: Flask = create_app()

# Alias para compatibilidade com código que usa "app"
app = application


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    application.run(debug=False, host='0.0.0.0', port=port)
