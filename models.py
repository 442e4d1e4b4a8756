from datetime import datetime

from extensions import db


class User(db.Model):
    """Usuário autenticado pelo serviço de auth externo"""
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    bank_connections = db.relationship("BankConnection", backref="user", lazy="dynamic", cascade="all, delete-orphan")
    bank_transactions = db.relationship("BankTransaction", backref="user", lazy="dynamic", cascade="all, delete-orphan")

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User {self.email}>"


# ============================================================================
# INTEGRAÇÕES BANCÁRIAS
# ============================================================================

class BankConnection(db.Model):
    """Credencial OAuth/estado de um usuário em um provedor"""
    __tablename__ = "bank_connections"
    __table_args__ = (
        db.UniqueConstraint("user_id", "provider", name="uq_bank_connections_user_provider"),
    )

    STATUS_CONNECTED = "connected"
    STATUS_EXPIRED = "expired"
    STATUS_ERROR = "error"
    STATUS_DISCONNECTED = "disconnected"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    provider = db.Column(db.String(30), nullable=False)  # mercadopago, openfinance
    status = db.Column(db.String(20), default=STATUS_CONNECTED, nullable=False)

    # Para Open Finance (Pluggy) o itemId fica em access_token
    access_token = db.Column(db.Text)
    refresh_token = db.Column(db.Text)
    expires_at = db.Column(db.DateTime)
    scope = db.Column(db.String(255))

    last_synced_at = db.Column(db.DateTime)
    last_error = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<BankConnection {self.provider}:{self.user_id} {self.status}>"


class BankTransaction(db.Model):
    """Transação externa sincronizada, pendente até ser importada"""
    __tablename__ = "bank_transactions"
    __table_args__ = (
        db.UniqueConstraint("user_id", "provider", "external_id", name="uq_bank_transactions_external"),
        db.Index("ix_bank_transactions_pending", "user_id", "imported", "occurred_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    provider = db.Column(db.String(30), nullable=False)
    external_id = db.Column(db.String(100), nullable=False)
    account_id = db.Column(db.String(100))

    direction = db.Column(db.String(10), nullable=False, default="debit")  # debit ou credit
    amount = db.Column(db.Numeric(15, 2), nullable=False)
    currency = db.Column(db.String(10), nullable=False, default="BRL")
    occurred_at = db.Column(db.Date, nullable=False)
    description = db.Column(db.String(255))
    raw = db.Column(db.JSON)

    imported = db.Column(db.Boolean, default=False, nullable=False)
    imported_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<BankTransaction {self.provider}:{self.external_id} R$ {self.amount}>"


# ============================================================================
# LANÇAMENTOS (LEDGER)
# ============================================================================

class Expense(db.Model):
    """Despesas do usuário"""
    __tablename__ = "expenses"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(15, 2), nullable=False)
    category_id = db.Column(db.Integer)
    subcategory = db.Column(db.String(100))
    date = db.Column(db.Date, nullable=False)
    description = db.Column(db.String(255), nullable=False)

    payment_method = db.Column(db.String(30))  # dinheiro, debito, credito, pix
    card_id = db.Column(db.Integer)
    recurring = db.Column(db.Boolean, default=False, nullable=False)
    installments = db.Column(db.Boolean, default=False, nullable=False)
    total_installments = db.Column(db.Integer, default=1, nullable=False)
    current_installment = db.Column(db.Integer, default=1, nullable=False)
    notes = db.Column(db.Text)

    origin = db.Column(db.String(20), default="manual", nullable=False)  # manual, banco, fatura
    import_hash = db.Column(db.String(64), unique=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Expense {self.description} R$ {self.amount}>"


class Income(db.Model):
    """Receitas do usuário"""
    __tablename__ = "incomes"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(15, 2), nullable=False)
    source = db.Column(db.String(100), nullable=False)
    date = db.Column(db.Date, nullable=False)
    description = db.Column(db.String(255))
    recurring = db.Column(db.Boolean, default=False, nullable=False)
    import_hash = db.Column(db.String(64), unique=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Income {self.source} R$ {self.amount}>"


# ============================================================================
# INVESTIMENTOS
# ============================================================================

class Holding(db.Model):
    """Posição em renda variável"""
    __tablename__ = "holdings"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    ticker = db.Column(db.String(20), nullable=False)
    quantity = db.Column(db.Numeric(18, 6), default=0, nullable=False)
    average_price = db.Column(db.Numeric(15, 4))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Holding {self.ticker} x{self.quantity}>"


class Dividend(db.Model):
    """Proventos recebidos ou anunciados"""
    __tablename__ = "dividends"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    ticker = db.Column(db.String(20), nullable=False)
    kind = db.Column(db.String(20), default="dividendo", nullable=False)  # dividendo, jcp, rendimento
    amount = db.Column(db.Numeric(18, 8), nullable=False)
    payment_date = db.Column(db.Date, nullable=False)
    ex_date = db.Column(db.Date)
    base_quantity = db.Column(db.Numeric(18, 6))
    status = db.Column(db.String(20), default="confirmado", nullable=False)  # pago, confirmado
    source = db.Column(db.String(50))
    raw = db.Column(db.JSON)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Dividend {self.ticker} {self.payment_date} {self.amount}>"
