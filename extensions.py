"""
Extensões Flask - Configuração Centralizada
==========================================

Instâncias únicas das extensões usadas em toda a aplicação
Finanças Conectadas. São ligadas ao app em ``create_app()``.
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Instância global do SQLAlchemy
db = SQLAlchemy()

# Instância global do Flask-Migrate
migrate = Migrate()

from config_db import get_database_url, init_database


def get_current_db_url():
    """Retorna URL atual do banco"""
    return get_database_url('auto')


__all__ = [
    'db',
    'migrate',
    'get_current_db_url',
    'init_database',
]
