# mercadinho/views/kiosk.py
"""
API JSON do tablet do quiosque.

Cada requisição é uma ação do cliente: o carrinho é lido da sessão,
transformado e regravado no fim. As respostas de leitura de código levam
``som`` para o tablet tocar o bipe de sucesso ou o de erro.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from flask import Blueprint, current_app, jsonify, session

from mercadinho.extensions import db
from mercadinho.core.carrinho import Carrinho, adicionar_scan, decrementar, incrementar, remover
from mercadinho.core.checkout import finalizar_compra
from mercadinho.core.estoque import EstoquePrateleira
from mercadinho.core.forms import CheckoutForm, ScanForm, SessaoKioskForm
from mercadinho.core.models import Cliente, Mercadinho
from mercadinho.core.services import (
    EstoqueAlterado, FalhaNaLiquidacao, ItemNaoEncontrado, ProdutoNaoEncontrado,
    QuantidadeMaximaAtingida, SemEstoque, ServiceError, buscar_produto_por_codigo,
)
from mercadinho.logger import checkout_logger, estoque_logger

bp = Blueprint("kiosk", __name__)

SESSAO_KEY = "kiosk"

_STATUS = {
    ProdutoNaoEncontrado: 404,
    ItemNaoEncontrado: 404,
    SemEstoque: 409,
    QuantidadeMaximaAtingida: 409,
    EstoqueAlterado: 409,
    FalhaNaLiquidacao: 500,
}


# ----------------------------
# Estado da sessão
# ----------------------------
@dataclass
class SessaoKiosk:
    mercadinho_id: int
    tablet_id: Optional[str] = None
    cliente_id: Optional[int] = None
    visitante: bool = True
    carrinho: Carrinho = field(default_factory=Carrinho)

    @classmethod
    def carregar(cls) -> "SessaoKiosk":
        data = session.get(SESSAO_KEY) or {}
        return cls(
            mercadinho_id=int(data.get("mercadinho_id") or current_app.config["MERCADINHO_PADRAO_ID"]),
            tablet_id=data.get("tablet_id"),
            cliente_id=data.get("cliente_id"),
            visitante=data.get("visitante", True),
            carrinho=Carrinho.de_dict(data.get("carrinho")),
        )

    def salvar(self) -> None:
        session[SESSAO_KEY] = {
            "mercadinho_id": self.mercadinho_id,
            "tablet_id": self.tablet_id,
            "cliente_id": self.cliente_id,
            "visitante": self.visitante,
            "carrinho": self.carrinho.para_dict(),
        }

    def linha(self, pos: int):
        if pos < 0 or pos >= len(self.carrinho):
            raise ItemNaoEncontrado()
        return self.carrinho.itens[pos]

    def para_dict(self) -> dict:
        diferentes = self.carrinho.linhas_com_preco_maior()
        itens = []
        for pos, item in enumerate(self.carrinho):
            d = item.para_dict()
            d["pos"] = pos
            d["subtotal"] = str(item.subtotal)
            d["preco_diferente"] = item.chave in diferentes
            itens.append(d)
        return {
            "mercadinho_id": self.mercadinho_id,
            "tablet_id": self.tablet_id,
            "cliente_id": self.cliente_id,
            "visitante": self.visitante,
            "itens": itens,
            "quantidade_total": self.carrinho.quantidade_total(),
            "total": str(self.carrinho.total()),
        }


# ----------------------------
# Helpers
# ----------------------------
def _sucesso(sessao: SessaoKiosk, mensagem: Optional[str] = None, som: Optional[str] = None, **extra):
    sessao.salvar()
    return jsonify(ok=True, mensagem=mensagem, som=som, carrinho=sessao.para_dict(), **extra)

def _falha(sessao: SessaoKiosk, e: ServiceError):
    status = _STATUS.get(type(e), 400)
    if isinstance(e, (SemEstoque, QuantidadeMaximaAtingida, ProdutoNaoEncontrado)):
        estoque_logger.info("ALOCACAO_RECUSADA: mercadinho=%s codigo=%s %s", sessao.mercadinho_id, e.codigo, e)
    return jsonify(ok=False, codigo=e.codigo, mensagem=e.mensagem, som="erro",
                   carrinho=sessao.para_dict()), status

def _invalido(form):
    return jsonify(ok=False, codigo="dados_invalidos", mensagem="Dados inválidos",
                   erros=form.errors, som="erro"), 400


# ----------------------------
# Sessão
# ----------------------------
@bp.get("/carrinho")
def carrinho():
    return jsonify(ok=True, carrinho=SessaoKiosk.carregar().para_dict())

@bp.post("/sessao")
def iniciar_sessao():
    form = SessaoKioskForm()
    if not form.validate_on_submit():
        return _invalido(form)
    atual = SessaoKiosk.carregar()
    mercadinho_id = form.mercadinho_id.data or atual.mercadinho_id
    m = db.session.get(Mercadinho, mercadinho_id)
    if m is None or not m.ativo:
        return _falha(atual, ServiceError("Mercadinho inválido"))
    cliente_id = form.cliente_id.data
    if cliente_id:
        c = db.session.get(Cliente, cliente_id)
        if c is None or not c.ativo:
            return _falha(atual, ServiceError("Cliente inválido"))

    # Reservas valem só para o mercadinho em que foram feitas
    carrinho = atual.carrinho if mercadinho_id == atual.mercadinho_id else Carrinho()
    sessao = SessaoKiosk(
        mercadinho_id=mercadinho_id,
        tablet_id=form.tablet_id.data or atual.tablet_id,
        cliente_id=cliente_id or None,
        visitante=not cliente_id,
        carrinho=carrinho,
    )
    return _sucesso(sessao, mensagem=f"Bem-vindo ao {m.nome}")

@bp.post("/reset")
def reset():
    atual = SessaoKiosk.carregar()
    sessao = SessaoKiosk(mercadinho_id=atual.mercadinho_id, tablet_id=atual.tablet_id)
    return _sucesso(sessao)


# ----------------------------
# Carrinho
# ----------------------------
@bp.post("/scan")
def scan():
    sessao = SessaoKiosk.carregar()
    form = ScanForm()
    if not form.validate_on_submit():
        return _invalido(form)
    try:
        produto = buscar_produto_por_codigo(form.codigo.data)
        sessao.carrinho = adicionar_scan(sessao.carrinho, produto, sessao.mercadinho_id, EstoquePrateleira())
    except ServiceError as e:
        return _falha(sessao, e)
    return _sucesso(sessao, mensagem=f"{produto.nome} adicionado", som="beep")

@bp.post("/carrinho/<int:pos>/mais")
def mais(pos: int):
    sessao = SessaoKiosk.carregar()
    try:
        sessao.carrinho = incrementar(sessao.carrinho, sessao.linha(pos), sessao.mercadinho_id, EstoquePrateleira())
    except ServiceError as e:
        return _falha(sessao, e)
    return _sucesso(sessao)

@bp.post("/carrinho/<int:pos>/menos")
def menos(pos: int):
    sessao = SessaoKiosk.carregar()
    try:
        sessao.carrinho = decrementar(sessao.carrinho, sessao.linha(pos))
    except ServiceError as e:
        return _falha(sessao, e)
    return _sucesso(sessao)

@bp.delete("/carrinho/<int:pos>")
def remover_linha(pos: int):
    sessao = SessaoKiosk.carregar()
    try:
        sessao.carrinho = remover(sessao.carrinho, sessao.linha(pos))
    except ServiceError as e:
        return _falha(sessao, e)
    return _sucesso(sessao)


# ----------------------------
# Checkout
# ----------------------------
@bp.post("/checkout")
def checkout():
    sessao = SessaoKiosk.carregar()
    form = CheckoutForm()
    if not form.validate_on_submit():
        return _invalido(form)
    try:
        resultado = finalizar_compra(
            sessao.carrinho,
            sessao.mercadinho_id,
            form.tipo_pagamento.data,
            cliente_id=sessao.cliente_id,
            tablet_id=sessao.tablet_id,
        )
    except ServiceError as e:
        checkout_logger.info("CHECKOUT_RECUSADO: mercadinho=%s codigo=%s %s", sessao.mercadinho_id, e.codigo, e)
        return _falha(sessao, e)

    # Compra gravada: o tablet volta para a tela inicial
    nova = SessaoKiosk(mercadinho_id=sessao.mercadinho_id, tablet_id=sessao.tablet_id)
    return _sucesso(
        nova,
        mensagem="Compra finalizada",
        som="beep",
        compra={
            "id": resultado.compra_id,
            "valor_total": str(resultado.valor_total),
            "estado": resultado.estado.value,
            "divergencias": len(resultado.divergencias),
        },
    )
