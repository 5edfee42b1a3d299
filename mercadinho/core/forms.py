# mercadinho/core/forms.py
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from flask_wtf import FlaskForm
from wtforms import (
    StringField, PasswordField, BooleanField, IntegerField,
    SelectField, DateTimeLocalField,
)
from wtforms.fields.core import Field
from wtforms.validators import (
    DataRequired, InputRequired, Optional as Opt, Length, NumberRange, Email, Regexp, ValidationError
)

from mercadinho.core.models import normalize_barcode


# =============================================================================
# Utilidades
# =============================================================================

PAGAMENTO_CHOICES = [("caderneta", "Anotar na caderneta"), ("pix", "PIX")]
TIPO_PROMOCAO_CHOICES = [("global", "Global"), ("produto", "Produto")]
DATETIME_FORMATS = ["%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S"]

def _q2(v: Decimal) -> Decimal:
    return v.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

def preenchido(form, field):
    """Como InputRequired, mas aceita zero."""
    if field.data is None:
        raise ValidationError("Campo obrigatório")

def parse_decimal(text: Any) -> Decimal:
    """
    Converte string para Decimal aceitando vírgula ou ponto.
    Vazio vira 0. Números vindos de JSON também são aceitos.
    """
    if text is None:
        return Decimal("0")
    if isinstance(text, (int, float, Decimal)) and not isinstance(text, bool):
        return _q2(Decimal(str(text)))
    s = str(text).strip()
    if s == "":
        return Decimal("0")
    s = s.replace(".", "").replace(",", ".") if s.count(",") == 1 and s.count(".") > 0 else s.replace(",", ".")
    try:
        d = Decimal(s)
    except InvalidOperation:
        raise ValueError("Valor numérico inválido")
    return _q2(d)


# =============================================================================
# Campos customizados
# =============================================================================

class DecimalMoneyField(Field):
    """
    Entrada textual que vira Decimal com 2 casas.
    """
    def __init__(self, label=None, validators=None, **kwargs):
        super().__init__(label, validators, **kwargs)
        self.data = None

    def _value(self):
        return str(self.data) if isinstance(self.data, Decimal) else (self.data or "")

    def process_formdata(self, valuelist):
        if valuelist:
            self.data = parse_decimal(valuelist[0])


# =============================================================================
# Autenticação
# =============================================================================

class LoginForm(FlaskForm):
    email = StringField("E-mail", validators=[DataRequired(), Email(), Length(max=180)])
    password = PasswordField("Senha", validators=[DataRequired(), Length(min=6, max=72)])
    remember = BooleanField("Manter conectado")


# =============================================================================
# Quiosque
# =============================================================================

class SessaoKioskForm(FlaskForm):
    mercadinho_id = IntegerField("Mercadinho", validators=[Opt(), NumberRange(min=1)])
    tablet_id = StringField("Tablet", validators=[Opt(), Length(max=60)])
    cliente_id = IntegerField("Cliente", validators=[Opt(), NumberRange(min=1)])
    visitante = BooleanField("Visitante")

    def validate_cliente_id(self, field):
        if field.data and self.visitante.data:
            raise ValueError("Escolha cliente ou visitante")

class ScanForm(FlaskForm):
    codigo = StringField("Código de barras", validators=[DataRequired(), Length(max=64)])

    def validate_codigo(self, field):
        if not normalize_barcode(field.data):
            raise ValueError("Código de barras inválido")
        field.data = normalize_barcode(field.data)

class CheckoutForm(FlaskForm):
    tipo_pagamento = SelectField("Pagamento", choices=PAGAMENTO_CHOICES, validators=[DataRequired()])


# =============================================================================
# Cadastros
# =============================================================================

class ProdutoForm(FlaskForm):
    nome = StringField("Nome", validators=[DataRequired(), Length(max=200)])
    codigo_barras = StringField("Código de barras", validators=[Opt(), Length(max=32)])
    preco_compra = DecimalMoneyField("Preço de compra", validators=[Opt()])
    preco_venda = DecimalMoneyField("Preço de venda", validators=[Opt()])

    def validate_codigo_barras(self, field):
        if field.data:
            digits = normalize_barcode(field.data)
            if not digits:
                raise ValueError("Código de barras inválido")
            field.data = digits

class ClienteForm(FlaskForm):
    nome = StringField("Nome", validators=[DataRequired(), Length(max=180)])
    telefone = StringField("Telefone", validators=[Opt(), Length(max=40)])


# =============================================================================
# Estoque
# =============================================================================

class EntradaEstoqueForm(FlaskForm):
    produto_id = IntegerField("Produto", validators=[InputRequired(), NumberRange(min=1)])
    quantidade_total = IntegerField("Quantidade total", validators=[InputRequired(), NumberRange(min=1)])
    preco_compra = DecimalMoneyField("Preço de compra", validators=[preenchido])
    preco_venda = DecimalMoneyField("Preço de venda", validators=[preenchido])
    rateio_central = IntegerField("Central", validators=[Opt(), NumberRange(min=0)], default=0)

class AjusteCentralForm(FlaskForm):
    tipo = SelectField("Tipo", choices=[("entrada", "Entrada"), ("saida", "Saída")], validators=[DataRequired()])
    qtd = IntegerField("Quantidade", validators=[InputRequired(), NumberRange(min=1)])
    motivo = StringField("Motivo", validators=[Opt(), Length(max=200)])

class TransferenciaForm(FlaskForm):
    produto_id = IntegerField("Produto", validators=[InputRequired(), NumberRange(min=1)])
    mercadinho_id = IntegerField("Mercadinho", validators=[InputRequired(), NumberRange(min=1)])
    quantidade = IntegerField("Quantidade", validators=[InputRequired(), NumberRange(min=1)])
    preco_venda = DecimalMoneyField("Preço na prateleira", validators=[Opt()])

class AjustePrateleiraForm(FlaskForm):
    quantidade = IntegerField("Quantidade", validators=[NumberRange(min=0)])
    motivo = StringField("Motivo", validators=[Opt(), Length(max=200)])


# =============================================================================
# Promoções
# =============================================================================

class PromocaoForm(FlaskForm):
    nome = StringField("Nome", validators=[DataRequired(), Length(max=120)])
    desconto_percentual = DecimalMoneyField("Desconto %", validators=[preenchido])
    tipo = SelectField("Tipo", choices=TIPO_PROMOCAO_CHOICES, validators=[DataRequired()])
    produto_id = IntegerField("Produto", validators=[Opt(), NumberRange(min=1)])
    inicia_em = DateTimeLocalField("Início", format=DATETIME_FORMATS, validators=[DataRequired()])
    termina_em = DateTimeLocalField("Término", format=DATETIME_FORMATS, validators=[Opt()])

    def validate_desconto_percentual(self, field):
        if field.data is None or not (Decimal("0") < field.data <= Decimal("100")):
            raise ValueError("Desconto deve estar entre 0 e 100%")

    def validate_tipo(self, field):
        if field.data == "produto" and not self.produto_id.data:
            raise ValueError("Selecione um produto")


# =============================================================================
# Caderneta e estornos
# =============================================================================

class PagamentoMesForm(FlaskForm):
    mes_referencia = StringField("Mês", validators=[DataRequired(), Regexp(r"^\d{4}-\d{2}$", message="Use AAAA-MM")])

class EstornoForm(FlaskForm):
    devolver_estoque = BooleanField("Devolver ao estoque", default=True)
    motivo = StringField("Motivo", validators=[Opt(), Length(max=200)])
    prateleira_id = IntegerField("Prateleira", validators=[Opt(), NumberRange(min=1)])
