"""
Importação de transações pendentes para o ledger (despesas/receitas).

Cada transação externa é importada no máximo uma vez: o hash
``sha256(user|provider|external_id)`` é único nas duas tabelas do ledger e
a marcação ``imported=True`` acontece na mesma transação do banco que os
inserts.
"""

import hashlib
import logging
from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from extensions import db
from models import BankTransaction, Expense, Income

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    imported: int = 0
    inserted_expenses: int = 0
    inserted_incomes: int = 0
    skipped_duplicates: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def compute_import_hash(user_id, provider: str, external_id: str) -> str:
    return hashlib.sha256(f"{user_id}|{provider}|{external_id}".encode("utf-8")).hexdigest()


def _normalize_ids(ids) -> list[int]:
    out: list[int] = []
    for raw in ids or []:
        try:
            out.append(int(str(raw).strip()))
        except (TypeError, ValueError):
            continue
    return out


def _existing_hashes(hashes: list[str]) -> set[str]:
    if not hashes:
        return set()
    found = {h for (h,) in db.session.query(Expense.import_hash).filter(Expense.import_hash.in_(hashes)).all()}
    found |= {h for (h,) in db.session.query(Income.import_hash).filter(Income.import_hash.in_(hashes)).all()}
    return found


def _pending_transactions(user_id: int, id_list: list[int], import_all_pending: bool) -> list[BankTransaction]:
    query = BankTransaction.query.filter(
        BankTransaction.user_id == user_id,
        BankTransaction.imported.is_(False),
    )
    if not import_all_pending:
        query = query.filter(BankTransaction.id.in_(id_list))
    return query.order_by(BankTransaction.occurred_at.asc(), BankTransaction.id.asc()).all()


def _apply_import(user_id: int, txs: list[BankTransaction], now: datetime) -> ImportResult:
    result = ImportResult()
    hashes = {tx.id: compute_import_hash(user_id, tx.provider, tx.external_id) for tx in txs}
    already = _existing_hashes(list(hashes.values()))

    for tx in txs:
        import_hash = hashes[tx.id]
        description = tx.description or f"Transação {tx.provider} {tx.external_id}"

        if import_hash in already:
            result.skipped_duplicates += 1
        elif tx.direction == "credit":
            db.session.add(Income(
                user_id=user_id,
                amount=tx.amount,
                source=f"Banco ({tx.provider})",
                date=tx.occurred_at,
                description=description,
                recurring=False,
                import_hash=import_hash,
                created_at=now,
            ))
            result.inserted_incomes += 1
        else:
            db.session.add(Expense(
                user_id=user_id,
                amount=tx.amount,
                category_id=None,
                subcategory=None,
                date=tx.occurred_at,
                description=description,
                payment_method="debito",
                card_id=None,
                recurring=False,
                installments=False,
                total_installments=1,
                current_installment=1,
                notes=None,
                origin="banco",
                import_hash=import_hash,
                created_at=now,
                updated_at=now,
            ))
            result.inserted_expenses += 1

        already.add(import_hash)
        tx.imported = True
        tx.imported_at = now
        result.imported += 1

    return result


def import_transactions(user_id: int, ids=None, import_all_pending: bool = False, now: datetime | None = None) -> ImportResult:
    """Promove transações pendentes do usuário para o ledger.

    Levanta ``ValueError`` quando não há ``ids`` nem ``import_all_pending``.
    Em erro de banco faz rollback e propaga; nada fica meio importado.
    Se outra requisição gravar o mesmo hash no meio do caminho, o lote é
    refeito uma vez a partir do estado novo do banco.
    """
    id_list = _normalize_ids(ids)
    if not id_list and not import_all_pending:
        raise ValueError("Informe ids ou use importAllPending")

    now = now or datetime.utcnow()

    for attempt in (1, 2):
        txs = _pending_transactions(user_id, id_list, import_all_pending)
        if not txs:
            return ImportResult()
        try:
            result = _apply_import(user_id, txs, now)
            db.session.commit()
            break
        except IntegrityError:
            db.session.rollback()
            if attempt == 2:
                logger.exception(f"[integrations] conflito persistente ao importar transações do usuário {user_id}")
                raise
            logger.warning(f"[integrations] hash de importação gravado em paralelo para o usuário {user_id}; refazendo lote")
        except Exception:
            db.session.rollback()
            logger.exception(f"[integrations] falha ao importar transações do usuário {user_id}")
            raise

    logger.info(
        f"[integrations] usuário {user_id}: {result.imported} importadas "
        f"({result.inserted_expenses} despesas, {result.inserted_incomes} receitas, "
        f"{result.skipped_duplicates} duplicadas)"
    )
    return result
