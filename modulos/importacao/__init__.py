"""
Importação de arquivos para o ledger.

Componentes:
- fatura_pdf.py: leitura do texto de faturas de cartão em PDF (PyMuPDF)
- service.py: gravação dos lançamentos da fatura como despesas
- routes.py: upload ``POST /api/import/cartao-fatura-pdf``
"""
