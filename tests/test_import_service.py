import hashlib
from datetime import date, datetime
from decimal import Decimal

import pytest

from extensions import db
from models import BankTransaction, Expense, Income
from modulos.integracoes import import_service
from modulos.integracoes.import_service import compute_import_hash, import_transactions

NOW = datetime(2024, 3, 31, 12, 0, 0)


def test_compute_import_hash():
    expected = hashlib.sha256(b"5|mercadopago|123").hexdigest()
    assert compute_import_hash(5, "mercadopago", "123") == expected
    assert compute_import_hash(5, "openfinance", "123") != expected


def test_import_requires_ids_or_all_pending(app, user_id):
    with pytest.raises(ValueError, match="Informe ids ou use importAllPending"):
        import_transactions(user_id, ids=[])


def test_import_creates_ledger_rows(app, user_id, make_bank_tx):
    debit = make_bank_tx(user_id, "d1", amount=Decimal("42.90"), description="Mercado")
    credit = make_bank_tx(
        user_id, "c1", provider="openfinance", direction="credit",
        amount=Decimal("1500.00"), occurred_at=date(2024, 3, 1), description=None,
    )

    result = import_transactions(user_id, ids=[str(debit.id), credit.id], now=NOW)

    assert (result.imported, result.inserted_expenses, result.inserted_incomes) == (2, 1, 1)

    expense = Expense.query.one()
    assert expense.amount == Decimal("42.90")
    assert expense.description == "Mercado"
    assert expense.payment_method == "debito"
    assert expense.origin == "banco"
    assert expense.total_installments == 1
    assert expense.import_hash == compute_import_hash(user_id, "mercadopago", "d1")

    income = Income.query.one()
    assert income.source == "Banco (openfinance)"
    assert income.description == "Transação openfinance c1"
    assert income.date == date(2024, 3, 1)
    assert income.import_hash == compute_import_hash(user_id, "openfinance", "c1")

    for tx in BankTransaction.query.all():
        assert tx.imported is True
        assert tx.imported_at == NOW


def test_import_is_at_most_once(app, user_id, make_bank_tx):
    tx = make_bank_tx(user_id, "d1")

    import_transactions(user_id, ids=[tx.id], now=NOW)
    again = import_transactions(user_id, ids=[tx.id], now=NOW)

    assert again.imported == 0
    assert Expense.query.count() == 1


def test_import_skips_hash_already_in_ledger(app, user_id, make_bank_tx):
    tx = make_bank_tx(user_id, "d1")
    db.session.add(Expense(
        user_id=user_id, amount=Decimal("10.00"), date=date(2024, 3, 10), description="manual",
        import_hash=compute_import_hash(user_id, "mercadopago", "d1"),
    ))
    db.session.commit()

    result = import_transactions(user_id, ids=[tx.id], now=NOW)

    assert result.imported == 1
    assert result.skipped_duplicates == 1
    assert result.inserted_expenses == 0
    assert Expense.query.count() == 1
    assert db.session.get(BankTransaction, tx.id).imported is True


def test_import_all_pending_ignores_other_users(app, user_id, make_user, make_bank_tx):
    other = make_user("outro@example.com")
    make_bank_tx(user_id, "a")
    make_bank_tx(user_id, "b", imported=True)
    foreign = make_bank_tx(other, "c")

    result = import_transactions(user_id, import_all_pending=True, now=NOW)

    assert result.imported == 1
    assert db.session.get(BankTransaction, foreign.id).imported is False


def test_import_ignores_foreign_ids(app, user_id, make_user, make_bank_tx):
    other = make_user("outro@example.com")
    foreign = make_bank_tx(other, "c")

    result = import_transactions(user_id, ids=[foreign.id, "lixo"], now=NOW)

    assert result.imported == 0
    assert Expense.query.count() == 0


def test_import_rolls_back_on_failure(app, user_id, make_bank_tx, monkeypatch):
    tx = make_bank_tx(user_id, "d1")
    tx_id = tx.id

    def broken_commit():
        raise RuntimeError("disco cheio")

    monkeypatch.setattr(db.session(), "commit", broken_commit)

    with pytest.raises(RuntimeError):
        import_transactions(user_id, ids=[tx_id], now=NOW)

    monkeypatch.undo()
    assert Expense.query.count() == 0
    assert db.session.get(BankTransaction, tx_id).imported is False


def test_import_retries_when_hash_is_written_concurrently(app, user_id, make_bank_tx, monkeypatch):
    tx = make_bank_tx(user_id, "d1")
    tx_id = tx.id
    db.session.add(Expense(
        user_id=user_id, amount=Decimal("10.00"), date=date(2024, 3, 10), description="outra requisição",
        import_hash=compute_import_hash(user_id, "mercadopago", "d1"),
    ))
    db.session.commit()

    real_existing = import_service._existing_hashes
    calls = []

    def stale_on_first_call(hashes):
        calls.append(list(hashes))
        return set() if len(calls) == 1 else real_existing(hashes)

    monkeypatch.setattr(import_service, "_existing_hashes", stale_on_first_call)

    result = import_transactions(user_id, ids=[tx_id], now=NOW)

    assert len(calls) == 2
    assert result.skipped_duplicates == 1
    assert result.inserted_expenses == 0
    assert Expense.query.count() == 1
    assert db.session.get(BankTransaction, tx_id).imported is True
