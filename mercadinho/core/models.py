# mercadinho/core/models.py
from __future__ import annotations

import os
import re
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from flask_login import UserMixin
from sqlalchemy import (
    CheckConstraint, Column, Integer, BigInteger, String, DateTime,
    Boolean, ForeignKey, UniqueConstraint, Numeric, Enum, JSON, Index,
    func
)
from sqlalchemy.orm import relationship, backref, validates
from werkzeug.security import generate_password_hash as _wzh, check_password_hash as _wzc

from mercadinho.extensions import db  # type: ignore


# =============================================================================
# Utilidades e Mixins
# =============================================================================

MONEY = Numeric(12, 2)   # 999.999.999,99 máx
PERCENT = Numeric(5, 2)  # 0,01 a 100,00

def _as_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if isinstance(value, Decimal):
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

def normalize_barcode(codigo: Optional[str]) -> Optional[str]:
    """Leitor USB e câmera entregam texto livre; só os dígitos identificam o produto."""
    if not codigo:
        return None
    digits = re.sub(r"\D+", "", str(codigo))
    return digits or None

def mes_referencia(quando: datetime) -> str:
    return quando.strftime("%Y-%m")

class TimestampMixin:
    criado_em = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    atualizado_em = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


# =============================================================================
# Enums
# =============================================================================

RoleEnum = Enum("admin", "operador", name="role_enum")
TipoPagamentoEnum = Enum("caderneta", "pix", name="tipo_pagamento_enum")
TipoPromocaoEnum = Enum("global", "produto", name="tipo_promocao_enum")

TIPOS_PAGAMENTO = ("caderneta", "pix")


# =============================================================================
# Tabelas principais
# =============================================================================

class Mercadinho(db.Model, TimestampMixin):
    __tablename__ = "mercadinhos"

    id = Column(Integer, primary_key=True)
    nome = Column(String(120), nullable=False)
    ativo = Column(Boolean, default=True, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("nome", name="uq_mercadinhos_nome"),
    )

    def __repr__(self):
        return f"<Mercadinho {self.id} {self.nome}>"


class User(db.Model, UserMixin, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    nome = Column(String(120), nullable=False)
    email = Column(String(180), nullable=False, unique=True, index=True)
    _password_hash = Column("password_hash", String(255), nullable=False)
    role = Column(RoleEnum, nullable=False, default="operador", index=True)
    ativo = Column(Boolean, default=True, nullable=False)
    ultimo_login = Column(DateTime, nullable=True)

    @property
    def is_active(self):
        return bool(self.ativo)

    def set_password(self, raw: str):
        if not raw or len(raw) < 6:
            raise ValueError("Senha muito curta")
        self._password_hash = _wzh(raw, method="pbkdf2:sha256", salt_length=16)

    def check_password(self, raw: str) -> bool:
        if not self._password_hash:
            return False
        return _wzc(self._password_hash, raw)

    @validates("email")
    def _val_email(self, key, value):
        if not value or "@" not in value:
            raise ValueError("Email inválido")
        return value.lower()

    def __repr__(self):
        return f"<User {self.id} {self.email} {self.role}>"


class Produto(db.Model, TimestampMixin):
    __tablename__ = "produtos"

    id = Column(Integer, primary_key=True)
    nome = Column(String(200), nullable=False, index=True)
    codigo_barras = Column(String(32), nullable=True, unique=True, index=True)
    preco_compra = Column(MONEY, default=Decimal("0.00"), nullable=False)
    preco_venda = Column(MONEY, default=Decimal("0.00"), nullable=False)
    # Estoque central (depósito); separado das prateleiras
    quantidade_atual = Column(Integer, default=0, nullable=False)
    ativo = Column(Boolean, default=True, nullable=False)
    # Aviso de prateleira quase vazia
    alerta_estoque_baixo_ativo = Column(Boolean, default=False, nullable=False)
    alerta_estoque_baixo_min = Column(Integer, default=2, nullable=False)

    prateleiras = relationship("PrateleiraProduto", back_populates="produto", lazy="dynamic")

    __table_args__ = (
        CheckConstraint("preco_venda >= 0", name="ck_produtos_preco_venda"),
        CheckConstraint("preco_compra >= 0", name="ck_produtos_preco_compra"),
        CheckConstraint("quantidade_atual >= 0", name="ck_produtos_quantidade_atual"),
        CheckConstraint("alerta_estoque_baixo_min >= 0", name="ck_produtos_alerta_min"),
    )

    @validates("codigo_barras")
    def _val_codigo(self, key, value):
        return normalize_barcode(value)

    @validates("preco_venda", "preco_compra")
    def _val_money(self, key, value):
        return _as_money(value)

    def __repr__(self):
        return f"<Produto {self.id} {self.nome} EAN={self.codigo_barras}>"


class PrateleiraProduto(db.Model, TimestampMixin):
    """
    Exposição: lote de um produto numa prateleira de um mercadinho,
    com preço próprio. Entradas com preço novo criam outra linha em vez
    de alterar o preço do estoque antigo.
    """
    __tablename__ = "prateleiras_produtos"

    id = Column(Integer, primary_key=True)
    mercadinho_id = Column(Integer, ForeignKey("mercadinhos.id", ondelete="RESTRICT"), nullable=False, index=True)
    produto_id = Column(Integer, ForeignKey("produtos.id", ondelete="RESTRICT"), nullable=False, index=True)
    preco_venda_prateleira = Column(MONEY, nullable=False)
    quantidade_prateleira = Column(Integer, default=0, nullable=False)
    ativo = Column(Boolean, default=True, nullable=False)

    mercadinho = relationship("Mercadinho")
    produto = relationship("Produto", back_populates="prateleiras")

    __table_args__ = (
        CheckConstraint("quantidade_prateleira >= 0", name="ck_prateleiras_qtd_nao_negativa"),
        CheckConstraint("preco_venda_prateleira >= 0", name="ck_prateleiras_preco"),
        Index("ix_prateleiras_mercadinho_produto", "mercadinho_id", "produto_id", "ativo"),
    )

    @validates("preco_venda_prateleira")
    def _val_money(self, key, value):
        return _as_money(value)

    def __repr__(self):
        return f"<PrateleiraProduto {self.id} m={self.mercadinho_id} p={self.produto_id} R${self.preco_venda_prateleira} x{self.quantidade_prateleira}>"


class EntradaEstoque(db.Model, TimestampMixin):
    __tablename__ = "entradas_estoque"

    id = Column(Integer, primary_key=True)
    produto_id = Column(Integer, ForeignKey("produtos.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantidade_total = Column(Integer, nullable=False)
    preco_compra_entrada = Column(MONEY, nullable=False)
    preco_venda_sugerido = Column(MONEY, nullable=False)
    rateio_central = Column(Integer, default=0, nullable=False)
    rateios = Column(JSON, nullable=False, default=dict)  # {"<mercadinho_id>": qtd}
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    produto = relationship("Produto")

    __table_args__ = (
        CheckConstraint("quantidade_total > 0", name="ck_entradas_qtd"),
        CheckConstraint("rateio_central >= 0", name="ck_entradas_rateio_central"),
    )


class Cliente(db.Model, TimestampMixin):
    __tablename__ = "clientes"

    id = Column(Integer, primary_key=True)
    nome = Column(String(180), nullable=False)
    telefone = Column(String(40), nullable=True)
    ativo = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<Cliente {self.id} {self.nome}>"


class Promocao(db.Model, TimestampMixin):
    __tablename__ = "promocoes"

    id = Column(Integer, primary_key=True)
    nome = Column(String(120), nullable=False)
    desconto_percentual = Column(PERCENT, nullable=False)
    tipo = Column(TipoPromocaoEnum, nullable=False, default="global")
    produto_id = Column(Integer, ForeignKey("produtos.id", ondelete="CASCADE"), nullable=True, index=True)
    inicia_em = Column(DateTime, nullable=False)
    termina_em = Column(DateTime, nullable=True)
    ativa = Column(Boolean, default=True, nullable=False, index=True)

    produto = relationship("Produto")

    __table_args__ = (
        CheckConstraint("desconto_percentual > 0 AND desconto_percentual <= 100", name="ck_promocoes_percentual"),
        CheckConstraint("tipo = 'global' OR produto_id IS NOT NULL", name="ck_promocoes_produto"),
    )


class Compra(db.Model, TimestampMixin):
    __tablename__ = "compras"

    id = Column(Integer, primary_key=True)
    cliente_id = Column(Integer, ForeignKey("clientes.id", ondelete="SET NULL"), nullable=True, index=True)
    eh_visitante = Column(Boolean, default=False, nullable=False)
    mercadinho_id = Column(Integer, ForeignKey("mercadinhos.id", ondelete="RESTRICT"), nullable=False, index=True)
    tablet_id = Column(String(60), nullable=True)
    tipo_pagamento = Column(TipoPagamentoEnum, nullable=False, index=True)
    valor_total = Column(MONEY, default=Decimal("0.00"), nullable=False)
    data_compra = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    mes_referencia = Column(String(7), nullable=False, index=True)
    paga = Column(Boolean, default=False, nullable=False)
    paga_em = Column(DateTime, nullable=True)

    cliente = relationship("Cliente", backref=backref("compras", lazy="dynamic"))
    mercadinho = relationship("Mercadinho")
    itens = relationship("ItemCompra", cascade="all, delete-orphan", backref="compra")

    __table_args__ = (
        CheckConstraint("valor_total >= 0", name="ck_compras_total"),
        Index("ix_compras_cliente_mes", "cliente_id", "mes_referencia"),
    )

    @validates("valor_total")
    def _val_money(self, key, value):
        return _as_money(value)


class ItemCompra(db.Model, TimestampMixin):
    __tablename__ = "itens_compra"

    id = Column(Integer, primary_key=True)
    compra_id = Column(Integer, ForeignKey("compras.id", ondelete="CASCADE"), nullable=False, index=True)
    produto_id = Column(Integer, ForeignKey("produtos.id", ondelete="RESTRICT"), nullable=False, index=True)
    prateleira_id = Column(Integer, ForeignKey("prateleiras_produtos.id", ondelete="SET NULL"), nullable=True, index=True)
    valor_unitario = Column(MONEY, nullable=False)
    quantidade = Column(Integer, nullable=False)
    valor_total = Column(MONEY, nullable=False)

    produto = relationship("Produto")

    __table_args__ = (
        CheckConstraint("quantidade > 0", name="ck_itens_compra_qtd"),
        CheckConstraint("valor_unitario >= 0", name="ck_itens_compra_valor"),
        CheckConstraint("valor_total >= 0", name="ck_itens_compra_total"),
    )

    @validates("valor_unitario", "valor_total")
    def _val_money(self, key, value):
        return _as_money(value)


class AuditLog(db.Model, TimestampMixin):
    __tablename__ = "audit_logs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    mercadinho_id = Column(Integer, ForeignKey("mercadinhos.id", ondelete="SET NULL"), nullable=True, index=True)
    entidade = Column(String(60), nullable=False)
    entidade_id = Column(Integer, nullable=True)
    acao = Column(String(60), nullable=False)  # created, updated, entrada, transfer, purchase, refund, stock_drift
    payload_json = Column(JSON, nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    user = relationship("User")


# =============================================================================
# Índices
# =============================================================================

Index("ix_produtos_nome_lower", func.lower(Produto.nome))
Index("ix_clientes_nome_lower", func.lower(Cliente.nome))


# =============================================================================
# Seeds e utilidades
# =============================================================================

def ensure_admin():
    """
    Cria mercadinho padrão e admin, se não existirem.
    Usa variáveis de ambiente ADMIN_EMAIL e ADMIN_PASS.
    """
    admin_email = os.getenv("ADMIN_EMAIL", "admin@mercadinho.com.br").lower()
    admin_pass = os.getenv("ADMIN_PASS", "admin123")

    loja = Mercadinho.query.order_by(Mercadinho.id).first()
    if not loja:
        loja = Mercadinho(nome="Mercadinho Padrão", ativo=True)
        db.session.add(loja)
        db.session.flush()

    user = User.query.filter_by(email=admin_email).first()
    if not user:
        user = User(
            nome="Administrador",
            email=admin_email,
            role="admin",
            ativo=True,
        )
        user.set_password(admin_pass)
        db.session.add(user)

    db.session.commit()
