"""
Leitura de faturas de cartão em PDF.

Só funciona com PDFs que têm texto incorporado (sem OCR). Cada linha que
começa com uma data abre um lançamento; o último valor monetário da linha
é o valor e o texto antes dele é a descrição. Quando a linha da data não
tem valor, as linhas seguintes sem data completam a descrição até o valor
aparecer.
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import List

import fitz  # PyMuPDF

CENTS = Decimal("0.01")

# Abaixo disso o PDF provavelmente é só imagem
MIN_TEXT_LENGTH = 20

MONTHS_PT = {
    "JAN": 1, "JANEIRO": 1,
    "FEV": 2, "FEVEREIRO": 2,
    "MAR": 3, "MARCO": 3, "MARÇO": 3,
    "ABR": 4, "ABRIL": 4,
    "MAI": 5, "MAIO": 5,
    "JUN": 6, "JUNHO": 6,
    "JUL": 7, "JULHO": 7,
    "AGO": 8, "AGOSTO": 8,
    "SET": 9, "SETEMBRO": 9,
    "OUT": 10, "OUTUBRO": 10,
    "NOV": 11, "NOVEMBRO": 11,
    "DEZ": 12, "DEZEMBRO": 12,
}

# Linhas de resumo da fatura, nunca lançamentos
SKIP_WORDS = ("TOTAL", "PAGAMENTO", "SALDO", "VENCIMENTO", "FECHAMENTO")

_NUMERIC_DATE_RE = re.compile(r"^(\d{1,2})[/.\-](\d{1,2})(?:[/.\-](\d{2,4}))?(?=\s|$)")
_MONTH_NAME_DATE_RE = re.compile(r"^(\d{1,2})\s+([A-ZÇ]{3,9})\.?(?:\s+(20\d{2}))?(?=\s|$)", re.IGNORECASE)
_MONEY_TOKEN_RE = re.compile(
    r"(?<![\w.,])(?:R\$\s*)?\(?-?\s*(?:\d{1,3}(?:\.\d{3})+|\d+)[.,]\d{2}\)?-?(?!\d)"
)
_INSTALLMENT_RE = re.compile(
    r"(?:^|\s)(?:PARC(?:ELA)?\.?\s*)?(\d{1,2})\s*(?:/|\s+DE\s+)\s*(\d{1,2})(?=\s|$)",
    re.IGNORECASE,
)
_YEAR_RE = re.compile(r"\b(20\d{2})\b")

CATEGORY_RULES = [
    (re.compile(r"uber|\b99\b|cabify|taxi|transporte|[oô]nibus|metr[oô]|combust|posto|gasolina|etanol|diesel"), "Transporte"),
    (re.compile(r"ifood|restaurante|lanchonete|pizza|hamburg|\bbar\b|delivery|caf[eé]"), "Alimentação"),
    (re.compile(r"mercado|supermerc|hortifruti|padaria|a[çc]ougue|carrefour|assai|atacad|\bextra\b"), "Mercado"),
    (re.compile(r"farm|drog|raia|pacheco|panvel|rem[eé]dio"), "Farmácia"),
    (re.compile(r"netflix|spotify|prime video|\bhbo\b|\bmax\b|deezer|assinatura|subscription"), "Assinaturas"),
    (re.compile(r"loja|magalu|mercado livre|amazon|shein|shopee|aliexpress|compra"), "Compras"),
    (re.compile(r"energia|\bluz\b|\b[aá]gua\b|internet|\bvivo\b|\bclaro\b|\btim\b|\boi\b|telefone|\bg[aá]s\b"), "Contas"),
    (re.compile(r"academia|\bgym\b|crossfit|pilates|nutri|sa[uú]de|m[eé]dico|dent|consulta"), "Saúde"),
    (re.compile(r"educa|curso|udemy|alura|faculdade|escola"), "Educação"),
]


def extract_pdf_text(data: bytes) -> str:
    """Extrai o texto incorporado de um PDF em memória usando PyMuPDF.

    Levanta ``ValueError`` se o arquivo não abre como PDF ou tem senha.
    """
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"Falha ao abrir PDF para extração de texto: {exc}") from exc

    try:
        if doc.needs_pass:
            raise ValueError("PDF protegido por senha")

        texts: List[str] = []
        for page_number in range(len(doc)):
            page = doc.load_page(page_number)
            texts.append(page.get_text("text") or "")
    finally:
        doc.close()

    return "\n".join(texts)


def normalize_line(line: str) -> str:
    return re.sub(r"\s+", " ", (line or "").replace("\u00a0", " ")).strip()


def parse_money_br(raw) -> Decimal | None:
    """``"R$ 1.234,56"`` -> ``Decimal("1234.56")``.

    Parênteses, ``-`` no início ou no fim deixam o valor negativo.
    """
    s = re.sub(r"R\$\s*", "", str(raw or "").replace("\u00a0", " "), flags=re.IGNORECASE).strip()
    negative = False

    if s.startswith("(") and s.endswith(")"):
        negative = True
        s = s[1:-1].strip()
    if s.endswith("-"):
        negative = True
        s = s.rstrip("-").strip()
    if s.startswith("-"):
        negative = True
        s = s.lstrip("-").strip()

    s = re.sub(r"\s*\b(CR|C|D)\b\s*$", "", s, flags=re.IGNORECASE)
    if "," in s:
        s = s.replace(".", "").replace(",", ".")
    s = re.sub(r"[^0-9.]", "", s)
    if not s:
        return None

    try:
        value = Decimal(s).quantize(CENTS)
    except InvalidOperation:
        return None
    return -value if negative else value


def guess_year(text: str, today: date | None = None) -> int:
    """Primeiro ano ``20xx`` do texto, senão o ano corrente."""
    m = _YEAR_RE.search(text or "")
    if m:
        return int(m.group(1))
    return (today or date.today()).year


def _full_year(raw: str | None, fallback: int) -> int:
    if not raw:
        return fallback
    year = int(raw)
    if len(raw) == 2:
        return 2000 + year
    return year if len(raw) == 4 else fallback


def parse_line_date(line: str, fallback_year: int) -> tuple[date, str] | None:
    """Data no início da linha (``12/03``, ``12.03.24``, ``12 MAR``) e o resto."""
    m = _NUMERIC_DATE_RE.match(line)
    if m:
        day, month = int(m.group(1)), int(m.group(2))
        year = _full_year(m.group(3), fallback_year)
    else:
        m = _MONTH_NAME_DATE_RE.match(line)
        if not m:
            return None
        month = MONTHS_PT.get(m.group(2).upper())
        if not month:
            return None
        day = int(m.group(1))
        year = int(m.group(3)) if m.group(3) else fallback_year

    try:
        return date(year, month, day), line[m.end():].strip()
    except ValueError:
        return None


def split_amount(text: str) -> tuple[str, Decimal | None]:
    """Separa o último valor monetário do texto que vem antes dele."""
    matches = list(_MONEY_TOKEN_RE.finditer(text))
    if not matches:
        return text.strip(), None
    last = matches[-1]
    return text[:last.start()].strip(), parse_money_br(last.group(0))


def detect_installments(description: str) -> tuple[int, int] | None:
    """``"LOJA 02/10"`` ou ``"PARC 2 DE 10"`` -> ``(2, 10)``."""
    for m in _INSTALLMENT_RE.finditer(description or ""):
        current, total = int(m.group(1)), int(m.group(2))
        if total >= 2 and 1 <= current <= total:
            return current, total
    return None


def guess_category(description: str) -> str | None:
    d = (description or "").lower()
    for pattern, category in CATEGORY_RULES:
        if pattern.search(d):
            return category
    return None


def _finish(items: list[dict], seen: set, current: dict | None) -> None:
    if not current or current["amount"] is None:
        return
    description = current["description"][:255] or "Lançamento da fatura"
    key = (current["date"], description, current["amount"])
    if key in seen:
        return
    seen.add(key)

    installment = detect_installments(description)
    items.append({
        "date": current["date"],
        "description": description,
        "amount": current["amount"],
        "current_installment": installment[0] if installment else None,
        "total_installments": installment[1] if installment else None,
        "category": guess_category(description),
    })


def parse_fatura_text(text: str, fallback_year: int | None = None) -> list[dict]:
    """Lançamentos da fatura, na ordem em que aparecem, sem repetições."""
    year = fallback_year or guess_year(text)
    items: list[dict] = []
    seen: set = set()
    current: dict | None = None

    for raw_line in (text or "").splitlines():
        line = normalize_line(raw_line)
        if not line:
            continue

        upper = line.upper()
        if any(word in upper for word in SKIP_WORDS):
            _finish(items, seen, current)
            current = None
            continue

        found = parse_line_date(line, year)
        if found:
            _finish(items, seen, current)
            day, rest = found
            description, amount = split_amount(rest)
            current = {"date": day, "description": description, "amount": amount}
            continue

        if current is None or current["amount"] is not None:
            continue

        description, amount = split_amount(line)
        current["description"] = f"{current['description']} {description}".strip()
        current["amount"] = amount

    _finish(items, seen, current)
    return items
