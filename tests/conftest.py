import os
from datetime import date
from decimal import Decimal

import pytest

# Banco em memória antes de importar a aplicação (a instância global usa DATABASE_URL)
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SYNC_AUTOMATICO"] = "0"

from application import create_app  # noqa: E402
from extensions import db, init_database  # noqa: E402
from models import BankConnection, BankTransaction, User  # noqa: E402
from modulos.integracoes import pluggy  # noqa: E402

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "SECRET_KEY": "test-secret",
    "APP_URL": "http://app.test",
    "MP_CLIENT_ID": "mp-client",
    "MP_CLIENT_SECRET": "mp-secret",
    "MP_AUTH_URL": "https://auth.mp.test",
    "MP_API_URL": "https://api.mp.test",
    "PLUGGY_CLIENT_ID": "pluggy-id",
    "PLUGGY_CLIENT_SECRET": "pluggy-secret",
    "PLUGGY_API_URL": "https://api.pluggy.test",
    "OPENFINANCE_ENABLED": True,
    "SYNC_AUTOMATICO": False,
}


@pytest.fixture
def app():
    app = create_app(dict(TEST_CONFIG))
    with app.app_context():
        init_database()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def _reset_pluggy_cache():
    pluggy.reset_api_key_cache()
    yield
    pluggy.reset_api_key_cache()


@pytest.fixture
def make_user(app):
    def _make(email="ana@example.com"):
        user = User(email=email)
        db.session.add(user)
        db.session.commit()
        return user.id
    return _make


@pytest.fixture
def user_id(make_user):
    return make_user()


@pytest.fixture
def client(app, user_id):
    client = app.test_client()
    with client.session_transaction() as sess:
        sess["finance_user_id"] = user_id
    return client


@pytest.fixture
def anon_client(app):
    return app.test_client()


@pytest.fixture
def make_connection(app):
    def _make(user_id, provider="mercadopago", **fields):
        values = {
            "status": BankConnection.STATUS_CONNECTED,
            "access_token": "token-atual",
            "refresh_token": "refresh-atual",
            "expires_at": None,
        }
        values.update(fields)
        conn = BankConnection(user_id=user_id, provider=provider, **values)
        db.session.add(conn)
        db.session.commit()
        return conn
    return _make


@pytest.fixture
def make_bank_tx(app):
    def _make(user_id, external_id, provider="mercadopago", **fields):
        values = {
            "direction": "debit",
            "amount": Decimal("10.00"),
            "currency": "BRL",
            "occurred_at": date(2024, 3, 10),
            "description": f"Compra {external_id}",
            "raw": {"id": external_id},
            "imported": False,
        }
        values.update(fields)
        tx = BankTransaction(user_id=user_id, provider=provider, external_id=str(external_id), **values)
        db.session.add(tx)
        db.session.commit()
        return tx
    return _make
