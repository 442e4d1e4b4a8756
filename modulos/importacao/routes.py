from flask import Blueprint, current_app, request
from werkzeug.utils import secure_filename

from api_helpers import get_user_id_from_request, json_error, json_ok
from modulos.integracoes.config import get_setting, parse_bool

from .fatura_pdf import MIN_TEXT_LENGTH, extract_pdf_text, normalize_line, parse_fatura_text
from .service import import_fatura

importacao_bp = Blueprint("importacao", __name__)

FILE_KEYS = ("file", "pdf", "fatura", "arquivo", "document")
CARD_KEYS = ("cartao_id", "cartaoId", "card_id", "cardId", "cartao", "card")
REPLICATE_KEYS = ("replicar_parcelas", "replicarParcelas")


def _first_file():
    for key in FILE_KEYS:
        f = request.files.get(key)
        if f and f.filename:
            return f
    return None


def _first_form_value(keys):
    for key in keys:
        value = (request.form.get(key) or "").strip()
        if value:
            return value
    return None


@importacao_bp.route("/cartao-fatura-pdf", methods=["POST"])
def api_import_fatura_pdf():
    """Importa a fatura do cartão (PDF com texto) como despesas."""
    user_id = get_user_id_from_request()
    if not user_id:
        return json_error("Não autenticado", 401)

    pdf_file = _first_file()
    raw_card = _first_form_value(CARD_KEYS)
    if not pdf_file or not raw_card:
        return json_error(
            "Envie o PDF da fatura e o cartão",
            400,
            expected={"file": list(FILE_KEYS), "cartao_id": list(CARD_KEYS)},
            receivedKeys=sorted(set(request.form.keys()) | set(request.files.keys())),
        )

    try:
        card_id = int(raw_card)
    except ValueError:
        card_id = 0
    if card_id <= 0:
        return json_error("cartao_id inválido", 400)

    filename = secure_filename(pdf_file.filename)
    if not filename.lower().endswith(".pdf"):
        return json_error("Apenas arquivos PDF são aceitos.", 400)

    max_bytes = int(get_setting("FATURA_PDF_MAX_MB")) * 1024 * 1024
    data = pdf_file.read(max_bytes + 1)
    if len(data) > max_bytes:
        return json_error(f"Arquivo maior que {get_setting('FATURA_PDF_MAX_MB')} MB", 413)

    replicate = parse_bool(_first_form_value(REPLICATE_KEYS), default=True)

    try:
        text = extract_pdf_text(data)
    except ValueError as e:
        current_app.logger.warning(f"[fatura] PDF inválido de usuário {user_id}: {e}")
        return json_error("Não foi possível abrir o PDF. Verifique o arquivo.", 400)

    text = "\n".join(normalize_line(line) for line in text.splitlines()).strip()
    if len(text) < MIN_TEXT_LENGTH:
        return json_error(
            "Não foi possível extrair texto do PDF. Ele pode ser uma imagem escaneada (precisa de OCR).",
            422,
        )

    items = parse_fatura_text(text)
    if not items:
        return json_error(
            "Não encontrei lançamentos no PDF. O layout da fatura pode ser diferente do esperado.",
            422,
            extractedTextPreview=text[:1200],
        )

    try:
        result = import_fatura(user_id, card_id, items, replicate_installments=replicate)
    except Exception:
        current_app.logger.exception("[fatura] import error")
        return json_error("Erro inesperado ao importar a fatura", 500)

    payload = result.to_dict()
    if result.inserted == 0:
        payload["message"] = "Nada novo para importar (tudo já existia)."
    return json_ok(**payload)
