"""
Proventos - sincronização de dividendos das posições em renda variável
a partir do Yahoo Finance (melhor esforço).
"""
