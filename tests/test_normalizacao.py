from datetime import date, datetime
from decimal import Decimal

import pytest

from modulos.integracoes.normalizacao import (
    clamp_days,
    mp_date_window,
    normalize_mercadopago_payment,
    normalize_pluggy_transaction,
    parse_iso_date,
    to_amount,
)

TODAY = date(2024, 3, 31)


def test_to_amount_is_absolute_with_two_places():
    assert to_amount(-12.345) == Decimal("12.35")
    assert to_amount("7") == Decimal("7.00")


def test_to_amount_rejects_garbage():
    with pytest.raises(ValueError):
        to_amount("abc")


@pytest.mark.parametrize("value, expected", [
    ("2024-03-05", date(2024, 3, 5)),
    ("2024-03-05T10:00:00.000-04:00", date(2024, 3, 5)),
    ("05/03/2024", None),
    (None, None),
])
def test_parse_iso_date(value, expected):
    assert parse_iso_date(value) == expected


@pytest.mark.parametrize("value, expected", [
    ("15", 15),
    ("0", 30),
    ("-3", 30),
    ("400", 30),
    ("abc", 30),
    (None, 30),
])
def test_clamp_days(value, expected):
    assert clamp_days(value, 30, 365) == expected


def test_mp_date_window_covers_whole_days():
    begin, end = mp_date_window(30, datetime(2024, 3, 31, 15, 30))
    assert begin == "2024-03-01T00:00:00.000-00:00"
    assert end == "2024-03-31T23:59:59.999-00:00"


def test_normalize_mercadopago_payment():
    payment = {
        "id": 1001,
        "transaction_amount": -25.5,
        "date_approved": "2024-03-10T10:00:00.000-04:00",
        "date_created": "2024-03-09T10:00:00.000-04:00",
        "description": "Padaria",
        "currency_id": "BRL",
    }
    row = normalize_mercadopago_payment(payment, TODAY)

    assert row["provider"] == "mercadopago"
    assert row["external_id"] == "1001"
    assert row["direction"] == "debit"
    assert row["amount"] == Decimal("25.50")
    assert row["occurred_at"] == date(2024, 3, 10)
    assert row["description"] == "Padaria"
    assert row["raw"] is payment


def test_normalize_mercadopago_payment_fallbacks():
    row = normalize_mercadopago_payment({"id": 7, "transaction_amount": 3}, TODAY)
    assert row["description"] == "Pagamento 7"
    assert row["occurred_at"] == TODAY
    assert row["currency"] == "BRL"

    row = normalize_mercadopago_payment(
        {"id": 8, "transaction_amount": 3, "statement_descriptor": "LOJA X"}, TODAY
    )
    assert row["description"] == "LOJA X"


@pytest.mark.parametrize("payment", [
    {"id": "1001", "transaction_amount": 10},
    {"id": True, "transaction_amount": 10},
    {"id": 1001},
    {"id": 1001, "transaction_amount": "10"},
])
def test_normalize_mercadopago_payment_skips_invalid(payment):
    assert normalize_mercadopago_payment(payment, TODAY) is None


def test_normalize_pluggy_transaction_direction():
    credit = normalize_pluggy_transaction({"id": "t1", "amount": 100, "type": "CREDIT"}, "acc", TODAY)
    debit = normalize_pluggy_transaction({"id": "t2", "amount": -40.1}, "acc", TODAY)
    positive = normalize_pluggy_transaction({"id": "t3", "amount": 5}, "acc", TODAY)

    assert credit["direction"] == "credit"
    assert debit["direction"] == "debit"
    assert debit["amount"] == Decimal("40.10")
    assert positive["direction"] == "credit"
    assert credit["provider"] == "openfinance"
    assert credit["account_id"] == "acc"


def test_normalize_pluggy_transaction_description_and_date():
    row = normalize_pluggy_transaction(
        {"id": "t1", "amount": -1, "descriptionRaw": "PIX ENVIADO", "date": "2024-02-01T03:00:00.000Z"},
        "acc",
        TODAY,
    )
    assert row["description"] == "PIX ENVIADO"
    assert row["occurred_at"] == date(2024, 2, 1)

    row = normalize_pluggy_transaction({"id": "t9", "amount": -1}, "acc", TODAY)
    assert row["description"] == "Transação t9"
    assert row["occurred_at"] == TODAY


def test_normalize_pluggy_transaction_skips_without_id_or_amount():
    assert normalize_pluggy_transaction({"amount": 10}, "acc", TODAY) is None
    assert normalize_pluggy_transaction({"id": "t1"}, "acc", TODAY) is None


@pytest.mark.parametrize("amount", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_amounts_are_skipped(amount):
    assert normalize_mercadopago_payment({"id": 1, "transaction_amount": amount}, TODAY) is None
    assert normalize_pluggy_transaction({"id": "t1", "amount": amount, "type": "DEBIT"}, "acc-1", TODAY) is None
