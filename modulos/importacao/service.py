"""
Gravação dos lançamentos de uma fatura de cartão como despesas.

Cada despesa (inclusive as parcelas futuras geradas) leva um
``import_hash`` derivado de usuário, cartão, data, descrição, valor e
parcela. Reimportar a mesma fatura não duplica nada.
"""

import calendar
import hashlib
import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError

from extensions import db
from models import Expense

logger = logging.getLogger(__name__)

_LOOKUP_CHUNK = 500


@dataclass
class FaturaImportResult:
    parsed: int = 0
    generated: int = 0
    inserted: int = 0
    skipped_duplicates: int = 0
    ignored_credits: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def fatura_hash(user_id, card_id, day: date, description: str, amount, current=None, total=None) -> str:
    base = f"{user_id}|{card_id}|{day.isoformat()}|{description}|{amount}|{current or ''}|{total or ''}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


def add_months(day: date, months: int) -> date:
    """Mesmo dia ``months`` meses depois; dia 31 vira o último dia do mês."""
    index = day.month - 1 + months
    year, month = day.year + index // 12, index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def build_expense_rows(user_id: int, card_id: int, items: list[dict], replicate_installments: bool = True) -> tuple[list[dict], int]:
    """Linhas de despesa da fatura (com parcelas futuras) e quantos créditos foram ignorados.

    Valores negativos são estornos/créditos da fatura e não viram despesa.
    """
    rows: list[dict] = []
    credits = 0

    for item in items:
        amount = item["amount"]
        if amount <= 0:
            credits += 1
            continue

        current = item.get("current_installment")
        total = item.get("total_installments")
        installments = [(item["date"], current)]
        if replicate_installments and current and total:
            installments += [(add_months(item["date"], n - current), n) for n in range(current + 1, total + 1)]

        for day, number in installments:
            rows.append({
                "date": day,
                "description": item["description"],
                "amount": amount,
                "category": item.get("category"),
                "current_installment": number,
                "total_installments": total,
                "import_hash": fatura_hash(user_id, card_id, day, item["description"], amount, number, total),
            })

    return rows, credits


def _existing_hashes(hashes: list[str]) -> set[str]:
    found: set[str] = set()
    for i in range(0, len(hashes), _LOOKUP_CHUNK):
        chunk = hashes[i:i + _LOOKUP_CHUNK]
        found |= {h for (h,) in db.session.query(Expense.import_hash).filter(Expense.import_hash.in_(chunk)).all()}
    return found


def _insert_new(user_id: int, card_id: int, rows: list[dict], now: datetime) -> tuple[int, int]:
    already = _existing_hashes([r["import_hash"] for r in rows])
    inserted = skipped = 0

    for row in rows:
        if row["import_hash"] in already:
            skipped += 1
            continue
        db.session.add(Expense(
            user_id=user_id,
            amount=row["amount"],
            category_id=None,
            subcategory=row["category"],
            date=row["date"],
            description=row["description"],
            payment_method="credito",
            card_id=card_id,
            recurring=False,
            installments=bool(row["total_installments"]),
            total_installments=row["total_installments"] or 1,
            current_installment=row["current_installment"] or 1,
            notes=None,
            origin="fatura",
            import_hash=row["import_hash"],
            created_at=now,
            updated_at=now,
        ))
        already.add(row["import_hash"])
        inserted += 1

    return inserted, skipped


def import_fatura(
    user_id: int,
    card_id: int,
    items: list[dict],
    replicate_installments: bool = True,
    now: datetime | None = None,
) -> FaturaImportResult:
    """Grava os lançamentos da fatura como despesas no cartão ``card_id``.

    Faz commit. Conflito de hash com outra importação simultânea refaz o lote
    uma vez; qualquer outro erro de banco faz rollback e propaga.
    """
    now = now or datetime.utcnow()
    rows, credits = build_expense_rows(user_id, card_id, items, replicate_installments)
    result = FaturaImportResult(parsed=len(items), generated=len(rows), ignored_credits=credits)
    if not rows:
        return result

    for attempt in (1, 2):
        try:
            result.inserted, result.skipped_duplicates = _insert_new(user_id, card_id, rows, now)
            db.session.commit()
            break
        except IntegrityError:
            db.session.rollback()
            if attempt == 2:
                logger.exception(f"[fatura] conflito persistente ao importar fatura do usuário {user_id}")
                raise
            logger.warning(f"[fatura] hash de importação gravado em paralelo para o usuário {user_id}; refazendo lote")
        except Exception:
            db.session.rollback()
            logger.exception(f"[fatura] falha ao gravar fatura do usuário {user_id}")
            raise

    logger.info(
        f"[fatura] usuário {user_id}, cartão {card_id}: {result.parsed} lidos, {result.generated} gerados, "
        f"{result.inserted} novos, {result.skipped_duplicates} duplicados"
    )
    return result
