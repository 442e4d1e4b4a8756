"""
Configuração Centralizada do Banco de Dados - Finanças Conectadas
=================================================================

Centraliza a resolução da URL de conexão e a inicialização das tabelas.

Suporte a múltiplos bancos:
- PostgreSQL (produção - Supabase/Render, via DATABASE_URL)
- SQLite (desenvolvimento/local)

Uso:
    from config_db import get_database_url, init_database

    url = get_database_url()
    init_database()   # dentro de um app_context
"""

import os
from typing import Dict, Any
from urllib.parse import urlparse

from sqlalchemy import inspect, text
from dotenv import load_dotenv

# Carregar variáveis de ambiente
load_dotenv()

DEFAULT_CONFIG = {
    # PostgreSQL (Produção)
    'postgresql': {
        'host': 'localhost',
        'port': 5432,
        'database': 'financas',
        'username': 'postgres',
        'password': '',
    },

    # SQLite (Desenvolvimento)
    'sqlite': {
        'database': 'financas.db',
        'path': './instance/financas.db',
    },
}


def _detect_db_type(database_url: str | None) -> str:
    if not database_url:
        return 'sqlite'
    scheme = urlparse(database_url).scheme
    if scheme == 'sqlite':
        return 'sqlite'
    # Fallback para PostgreSQL se não reconhecer
    return 'postgresql'


def get_db_config(db_type: str = 'auto') -> Dict[str, Any]:
    """
    Retorna configuração completa do banco de dados.

    Args:
        db_type: Tipo de banco ('postgresql', 'sqlite', 'auto')

    Returns:
        Dicionário com configurações do banco
    """
    if db_type == 'auto':
        actual_db_type = _detect_db_type(os.getenv('DATABASE_URL'))
    else:
        actual_db_type = db_type

    config = DEFAULT_CONFIG.get(actual_db_type, {}).copy()

    # Sobrescrever com variáveis de ambiente
    if actual_db_type == 'postgresql':
        config.update({
            'host': os.getenv('DB_HOST', config.get('host')),
            'port': int(os.getenv('DB_PORT', config.get('port'))),
            'database': os.getenv('DB_NAME', config.get('database')),
            'username': os.getenv('DB_USER', config.get('username')),
            'password': os.getenv('DB_PASSWORD', config.get('password')),
        })
    elif actual_db_type == 'sqlite':
        config.update({
            'database': os.getenv('SQLITE_DB', config.get('database')),
            'path': os.getenv('SQLITE_PATH', config.get('path')),
        })

    config['type'] = actual_db_type
    return config


def get_database_url(db_type: str = 'auto') -> str:
    """
    Retorna a URL de conexão completa para o banco.

    ``postgres://`` (formato do Supabase/Heroku) é reescrito para
    ``postgresql://``, que é o único aceito pelo SQLAlchemy 2.
    """
    if db_type == 'auto':
        database_url = os.getenv('DATABASE_URL')
        if database_url:
            if database_url.startswith('postgres://'):
                database_url = 'postgresql://' + database_url[len('postgres://'):]
            return database_url

    config = get_db_config(db_type if db_type != 'auto' else 'sqlite')

    if config['type'] == 'postgresql':
        return (
            f"postgresql://{config['username']}:{config['password']}"
            f"@{config['host']}:{config['port']}/{config['database']}"
        )

    db_path = config.get('path') or f"./instance/{config['database']}"
    directory = os.path.dirname(os.path.abspath(db_path))
    os.makedirs(directory, exist_ok=True)
    return f"sqlite:///{os.path.abspath(db_path)}"


def init_database() -> None:
    """
    Cria as tabelas de todos os modelos no banco configurado.

    Precisa rodar dentro de um ``app_context``.
    """
    from extensions import db
    import models  # noqa: F401  (registra os modelos no metadata)

    db.create_all()
    db.session.execute(text("SELECT 1"))


def get_db_stats() -> Dict[str, Any]:
    """
    Retorna estatísticas do banco de dados (tipo, tabelas e status).

    Precisa rodar dentro de um ``app_context``.
    """
    from extensions import db

    url = str(db.engine.url.render_as_string(hide_password=True))
    stats: Dict[str, Any] = {
        'type': db.engine.dialect.name,
        'url': url,
        'tables': [],
    }

    try:
        stats['tables'] = sorted(inspect(db.engine).get_table_names())
        stats['status'] = 'connected'
    except Exception as e:
        stats['status'] = f'error: {e}'

    return stats
