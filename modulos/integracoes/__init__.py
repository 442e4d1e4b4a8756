"""
Módulo de Integrações Bancárias - Finanças Conectadas
=====================================================

Sincroniza transações de provedores externos (Mercado Pago e Open Finance
via Pluggy), guarda cada uma como pendente e permite importá-las para o
livro de despesas/receitas do usuário.

Componentes:
- routes.py: Endpoints JSON e fluxo OAuth
- mercadopago.py / pluggy.py: clientes HTTP dos provedores
- normalizacao.py: formato comum das transações
- connections.py: ciclo de vida das conexões (tokens e status)
- sync_service.py: sincronização e upsert idempotente
- import_service.py: promoção das pendentes para o ledger
"""

__version__ = "1.0.0"
