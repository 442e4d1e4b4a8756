import time
from datetime import date, datetime, timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from extensions import db
from models import BankConnection, BankTransaction, Expense
from modulos.integracoes import routes, sync_service
from modulos.integracoes.errors import ProviderError


def redirect_params(resp):
    location = urlparse(resp.headers["Location"])
    return location.path, {k: v[0] for k, v in parse_qs(location.query).items()}


def test_health(anon_client):
    assert anon_client.get("/health").data == b"OK"


def test_unknown_api_route_is_json(anon_client):
    resp = anon_client.get("/api/nao-existe")
    assert resp.status_code == 404
    assert resp.get_json()["success"] is False


@pytest.mark.parametrize("method, url", [
    ("get", "/api/integrations/connections"),
    ("post", "/api/integrations/mercadopago/sync"),
    ("get", "/api/integrations/transactions"),
    ("post", "/api/integrations/transactions/import"),
    ("post", "/api/integrations/openfinance/connect-token"),
    ("post", "/api/proventos/sync"),
])
def test_requires_authentication(anon_client, method, url):
    resp = getattr(anon_client, method)(url)
    assert resp.status_code == 401
    assert resp.get_json() == {"success": False, "message": "Não autenticado"}


# ---------------------------------------------------------------------------
# Conexões
# ---------------------------------------------------------------------------

def test_list_connections(client, user_id, make_connection):
    make_connection(user_id)

    body = client.get("/api/integrations/connections").get_json()

    assert body["success"] is True
    assert [c["provider"] for c in body["connections"]] == ["mercadopago"]
    assert "access_token" not in body["connections"][0]


def test_disconnect(client, user_id, make_connection):
    conn = make_connection(user_id)

    resp = client.delete("/api/integrations/connections/mercadopago")

    assert resp.status_code == 200
    assert resp.get_json()["connection"]["status"] == "disconnected"
    assert db.session.get(BankConnection, conn.id).access_token is None


def test_disconnect_errors(client):
    assert client.delete("/api/integrations/connections/banco-x").status_code == 400
    assert client.delete("/api/integrations/connections/mercadopago").status_code == 404


# ---------------------------------------------------------------------------
# OAuth Mercado Pago
# ---------------------------------------------------------------------------

def test_oauth_start_redirects_to_login_when_anonymous(anon_client):
    resp = anon_client.get("/api/integrations/mercadopago/start")
    assert resp.status_code == 302
    assert redirect_params(resp)[0] == "/auth/login"


def test_oauth_start_stores_state(client):
    resp = client.get("/api/integrations/mercadopago/start")

    assert resp.status_code == 302
    location = urlparse(resp.headers["Location"])
    assert location.netloc == "auth.mp.test"
    state = parse_qs(location.query)["state"][0]
    with client.session_transaction() as sess:
        assert sess["mp_oauth_state"]["value"] == state


def test_oauth_start_without_env(app, client):
    app.config["MP_CLIENT_ID"] = ""
    resp = client.get("/api/integrations/mercadopago/start")
    assert redirect_params(resp) == ("/dashboard/integracoes", {"error": "mp_env"})


def _store_state(client, value="estado-ok", created=None):
    with client.session_transaction() as sess:
        sess["mp_oauth_state"] = {"value": value, "created": created or time.time()}


def test_oauth_callback_success(client, user_id, monkeypatch):
    _store_state(client)
    monkeypatch.setattr(
        routes.mercadopago,
        "exchange_code_for_token",
        lambda code: {"access_token": "AT", "refresh_token": "RT", "expires_in": 3600, "scope": "read"},
    )

    resp = client.get("/api/integrations/mercadopago/callback?code=abc&state=estado-ok")

    assert redirect_params(resp) == ("/dashboard/integracoes", {"connected": "mercadopago"})
    conn = BankConnection.query.filter_by(user_id=user_id, provider="mercadopago").one()
    assert conn.access_token == "AT"
    assert conn.refresh_token == "RT"
    assert conn.expires_at is not None
    with client.session_transaction() as sess:
        assert "mp_oauth_state" not in sess


@pytest.mark.parametrize("query, stored, error", [
    ("state=estado-ok", "estado-ok", "missing_code"),
    ("code=abc&state=outro", "estado-ok", "invalid_state"),
    ("code=abc", "estado-ok", "invalid_state"),
    ("code=abc&state=estado-ok", None, "invalid_state"),
])
def test_oauth_callback_rejections(client, query, stored, error):
    if stored:
        _store_state(client, stored)

    resp = client.get(f"/api/integrations/mercadopago/callback?{query}")

    assert redirect_params(resp) == ("/dashboard/integracoes", {"error": error})
    assert BankConnection.query.count() == 0


def test_oauth_callback_expired_state(client):
    _store_state(client, created=time.time() - 3600)
    resp = client.get("/api/integrations/mercadopago/callback?code=abc&state=estado-ok")
    assert redirect_params(resp)[1] == {"error": "invalid_state"}


def test_oauth_callback_exchange_failure(client, monkeypatch):
    _store_state(client)

    def refused(code):
        raise ProviderError("mercadopago", 400, "invalid_grant")

    monkeypatch.setattr(routes.mercadopago, "exchange_code_for_token", refused)

    resp = client.get("/api/integrations/mercadopago/callback?code=abc&state=estado-ok")
    assert redirect_params(resp)[1] == {"error": "oauth"}


# ---------------------------------------------------------------------------
# Sync Mercado Pago
# ---------------------------------------------------------------------------

def test_mercadopago_sync_not_connected(client):
    resp = client.post("/api/integrations/mercadopago/sync")
    assert resp.status_code == 409
    assert resp.get_json()["message"] == "Conecte o Mercado Pago antes de sincronizar."


def test_mercadopago_sync_expired_token(client, user_id, make_connection):
    make_connection(user_id, expires_at=datetime.utcnow() - timedelta(hours=1), refresh_token=None)

    resp = client.post("/api/integrations/mercadopago/sync")

    assert resp.status_code == 401
    assert resp.get_json()["message"] == "Token expirou e não foi possível renovar."


def test_mercadopago_sync_ok(client, user_id, make_connection, monkeypatch):
    make_connection(user_id)
    seen = {}

    def fake_search(access_token, begin_date, end_date):
        seen["begin"] = begin_date
        return [{"id": 1, "transaction_amount": 9.9, "description": "Uber"}]

    monkeypatch.setattr(sync_service.mercadopago, "search_payments", fake_search)

    resp = client.post("/api/integrations/mercadopago/sync?days=7")
    body = resp.get_json()

    assert resp.status_code == 200
    assert (body["synced"], body["inserted"], body["updated"]) == (1, 1, 0)
    expected_begin = (datetime.utcnow().date() - timedelta(days=7)).isoformat()
    assert seen["begin"].startswith(expected_begin)


def test_mercadopago_sync_provider_failure(client, user_id, make_connection, monkeypatch):
    make_connection(user_id)

    def down(*args):
        raise ProviderError("mercadopago", 503, "unavailable")

    monkeypatch.setattr(sync_service.mercadopago, "search_payments", down)

    resp = client.post("/api/integrations/mercadopago/sync")
    assert resp.status_code == 502
    assert resp.get_json()["success"] is False


# ---------------------------------------------------------------------------
# Open Finance
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("method, url", [
    ("post", "/api/integrations/openfinance/connect-token"),
    ("post", "/api/integrations/openfinance/callback"),
    ("get", "/api/integrations/openfinance/sync"),
])
def test_openfinance_disabled(app, client, method, url):
    app.config["OPENFINANCE_ENABLED"] = False
    resp = getattr(client, method)(url)
    assert resp.status_code == 410
    assert resp.get_json()["code"] == "OPENFINANCE_DISABLED"


def test_openfinance_connect_token(client, monkeypatch):
    monkeypatch.setattr(routes.pluggy, "create_connect_token", lambda item_id=None: "CT-123")
    body = client.post("/api/integrations/openfinance/connect-token", json={}).get_json()
    assert body == {"success": True, "connectToken": "CT-123"}


@pytest.mark.parametrize("payload", [{}, {"itemId": "ab"}, {"itemId": 12345}, {"itemId": "item-1", "providerName": 3}])
def test_openfinance_callback_invalid_payload(client, payload):
    resp = client.post("/api/integrations/openfinance/callback", json=payload)
    body = resp.get_json()
    assert resp.status_code == 400
    assert body["message"] == "Payload inválido"
    assert body["details"]


def test_openfinance_callback_saves_item(client, user_id):
    resp = client.post("/api/integrations/openfinance/callback", json={"itemId": " item-99 ", "providerName": "Nubank"})

    assert resp.status_code == 200
    conn = BankConnection.query.filter_by(user_id=user_id, provider="openfinance").one()
    assert conn.access_token == "item-99"
    assert conn.scope == "Nubank"
    assert conn.status == "connected"


@pytest.mark.parametrize("query", ["from=2024-13-01", "to=ontem", "from=2024-03-10&to=2024-03-01"])
def test_openfinance_sync_invalid_window(client, query):
    resp = client.get(f"/api/integrations/openfinance/sync?{query}")
    assert resp.status_code == 400


def test_openfinance_sync_caps_window(app, client, user_id, make_connection, monkeypatch):
    make_connection(user_id, provider="openfinance", access_token="item-1")
    app.config["SYNC_MAX_DAYS"] = 90
    seen = {}

    def fake_sync(uid, date_from, date_to):
        seen.update(date_from=date_from, date_to=date_to)
        return sync_service.SyncResult(provider="openfinance", accounts=1)

    monkeypatch.setattr(routes, "sync_openfinance", fake_sync)

    resp = client.post("/api/integrations/openfinance/sync?from=2023-01-01&to=2024-03-31")

    assert resp.status_code == 200
    assert seen == {"date_from": date(2024, 1, 1), "date_to": date(2024, 3, 31)}
    assert resp.get_json()["failed_accounts"] == []


# ---------------------------------------------------------------------------
# Transações pendentes
# ---------------------------------------------------------------------------

def test_list_transactions_pending_filter(client, user_id, make_bank_tx):
    make_bank_tx(user_id, "1")
    make_bank_tx(user_id, "2", imported=True)
    make_bank_tx(user_id, "3", provider="openfinance")

    pending = client.get("/api/integrations/transactions").get_json()["transactions"]
    everything = client.get("/api/integrations/transactions?pending=0").get_json()["transactions"]
    mp_only = client.get("/api/integrations/transactions?provider=mercadopago").get_json()["transactions"]

    assert {t["external_id"] for t in pending} == {"1", "3"}
    assert len(everything) == 3
    assert [t["external_id"] for t in mp_only] == ["1"]


@pytest.mark.parametrize("flag, expected", [
    ("false", 2), ("no", 2), ("off", 2), ("0", 2), ("true", 1), ("1", 1), ("", 1),
])
def test_list_transactions_pending_flag_values(client, user_id, make_bank_tx, flag, expected):
    make_bank_tx(user_id, "1")
    make_bank_tx(user_id, "2", imported=True)

    body = client.get(f"/api/integrations/transactions?pending={flag}").get_json()

    assert len(body["transactions"]) == expected


def test_patch_transaction(client, user_id, make_bank_tx):
    tx = make_bank_tx(user_id, "1")

    resp = client.patch(
        f"/api/integrations/transactions/{tx.id}",
        json={"direction": "credit", "description": "  Reembolso  ", "amount": 15.5, "occurred_at": "2024-03-02"},
    )
    body = resp.get_json()["transaction"]

    assert resp.status_code == 200
    assert body["direction"] == "credit"
    assert body["description"] == "Reembolso"
    assert body["amount"] == 15.5
    assert body["occurred_at"] == "2024-03-02"


@pytest.mark.parametrize("payload, message", [
    ({}, "Nada para atualizar"),
    ({"foo": 1}, "Nada para atualizar"),
    ({"direction": "saida"}, "direction deve ser 'debit' ou 'credit'"),
    ({"amount": -1}, "amount deve ser um número maior ou igual a zero"),
    ({"amount": "10"}, "amount deve ser um número maior ou igual a zero"),
    ({"occurred_at": "02/03/2024"}, "occurred_at deve estar no formato YYYY-MM-DD"),
])
def test_patch_transaction_validation(client, user_id, make_bank_tx, payload, message):
    tx = make_bank_tx(user_id, "1")
    resp = client.patch(f"/api/integrations/transactions/{tx.id}", json=payload)
    assert resp.status_code == 400
    assert resp.get_json()["message"] == message


def test_patch_transaction_not_found_or_imported(client, user_id, make_user, make_bank_tx):
    imported = make_bank_tx(user_id, "1", imported=True)
    foreign = make_bank_tx(make_user("outro@example.com"), "2")

    assert client.patch("/api/integrations/transactions/9999", json={"description": "x"}).status_code == 404
    assert client.patch(f"/api/integrations/transactions/{foreign.id}", json={"description": "x"}).status_code == 404
    assert client.patch(f"/api/integrations/transactions/{imported.id}", json={"description": "x"}).status_code == 409


def test_import_endpoint(client, user_id, make_bank_tx):
    tx = make_bank_tx(user_id, "1")

    resp = client.post("/api/integrations/transactions/import", json={"ids": [tx.id]})
    body = resp.get_json()

    assert resp.status_code == 200
    assert body["imported"] == 1
    assert body["inserted_expenses"] == 1
    assert Expense.query.count() == 1
    assert db.session.get(BankTransaction, tx.id).imported is True

    again = client.post("/api/integrations/transactions/import", json={"importAllPending": True}).get_json()
    assert again["imported"] == 0
    assert again["message"] == "Nada para importar"


def test_import_endpoint_requires_selection(client):
    resp = client.post("/api/integrations/transactions/import", json={})
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Informe ids ou use importAllPending"
