# mercadinho/views/admin.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from flask import Blueprint, jsonify, request, abort
from flask_login import login_required, current_user
from sqlalchemy import or_

from mercadinho.extensions import db
from mercadinho.core.forms import (
    ProdutoForm, EntradaEstoqueForm, AjusteCentralForm, TransferenciaForm,
    AjustePrateleiraForm, PromocaoForm, ClienteForm, PagamentoMesForm, EstornoForm,
)
from mercadinho.core.models import Produto, PrateleiraProduto, Promocao, Cliente, Compra
from mercadinho.core.services import (
    ServiceError, transaction, require_role, _row_to_dict,
    criar_produto, atualizar_produto,
    registrar_entrada_estoque, ajuste_estoque_central, transferir_para_prateleira,
    ajustar_prateleira, alternar_prateleira, listar_prateleiras, prateleiras_estoque_baixo,
    criar_promocao, alternar_promocao,
    criar_cliente, debitos_caderneta, marcar_pago_mes,
    listar_compras, estornar_item, estornar_compra,
)

bp = Blueprint("admin", __name__)

CAMPOS_PRODUTO = ["id", "nome", "codigo_barras", "preco_compra", "preco_venda", "quantidade_atual", "ativo",
                  "alerta_estoque_baixo_ativo", "alerta_estoque_baixo_min"]
CAMPOS_PRATELEIRA = ["id", "mercadinho_id", "produto_id", "preco_venda_prateleira", "quantidade_prateleira", "ativo"]
CAMPOS_PROMOCAO = ["id", "nome", "desconto_percentual", "tipo", "produto_id", "inicia_em", "termina_em", "ativa"]
CAMPOS_CLIENTE = ["id", "nome", "telefone", "ativo"]
CAMPOS_COMPRA = ["id", "cliente_id", "eh_visitante", "mercadinho_id", "tablet_id", "tipo_pagamento",
                 "valor_total", "data_compra", "mes_referencia", "paga", "paga_em"]
CAMPOS_ITEM = ["id", "produto_id", "prateleira_id", "valor_unitario", "quantidade", "valor_total"]


# ----------------------------
# Helpers
# ----------------------------
def _exigir_edicao() -> None:
    try:
        require_role(current_user, ("admin",))
    except ServiceError:
        abort(403)

def _payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}

def _flag(nome: str, padrao: bool) -> bool:
    valor = _payload().get(nome, padrao)
    if isinstance(valor, str):
        return valor.strip().lower() not in ("", "0", "false", "nao", "não")
    return bool(valor)

def _data(texto: str) -> datetime:
    return datetime.strptime(texto, "%Y-%m-%d")

def _invalido(form):
    return jsonify(ok=False, codigo="dados_invalidos", mensagem="Dados inválidos", erros=form.errors), 400

def _compra_dict(c: Compra) -> Dict[str, Any]:
    d = _row_to_dict(c, CAMPOS_COMPRA)
    d["itens"] = [_row_to_dict(i, CAMPOS_ITEM) for i in c.itens]
    return d


# ----------------------------
# Produtos
# ----------------------------
@bp.get("/produtos")
@login_required
def produtos():
    q = (request.args.get("q") or "").strip().lower()
    query = Produto.query
    if request.args.get("all") != "1":
        query = query.filter(Produto.ativo.is_(True))
    if q:
        like = f"%{q}%"
        query = query.filter(or_(db.func.lower(Produto.nome).like(like), Produto.codigo_barras.like(like)))
    items = query.order_by(Produto.nome).limit(200).all()
    return jsonify(ok=True, produtos=[_row_to_dict(p, CAMPOS_PRODUTO) for p in items])

@bp.post("/produtos")
@login_required
def produto_novo():
    _exigir_edicao()
    form = ProdutoForm()
    if not form.validate_on_submit():
        return _invalido(form)
    with transaction():
        p = criar_produto(
            form.nome.data,
            codigo_barras=form.codigo_barras.data or None,
            preco_compra=form.preco_compra.data or 0,
            preco_venda=form.preco_venda.data or 0,
            created_by=current_user,
        )
    return jsonify(ok=True, produto=_row_to_dict(p, CAMPOS_PRODUTO)), 201

@bp.patch("/produtos/<int:pid>")
@login_required
def produto_editar(pid: int):
    _exigir_edicao()
    with transaction():
        p = atualizar_produto(pid, _payload(), current_user)
    return jsonify(ok=True, produto=_row_to_dict(p, CAMPOS_PRODUTO))

@bp.post("/produtos/<int:pid>/ajuste")
@login_required
def produto_ajuste(pid: int):
    _exigir_edicao()
    form = AjusteCentralForm()
    if not form.validate_on_submit():
        return _invalido(form)
    with transaction():
        p = ajuste_estoque_central(pid, form.qtd.data, form.tipo.data, form.motivo.data or "", current_user)
    return jsonify(ok=True, produto=_row_to_dict(p, CAMPOS_PRODUTO))


# ----------------------------
# Estoque
# ----------------------------
@bp.post("/entradas")
@login_required
def entrada():
    _exigir_edicao()
    form = EntradaEstoqueForm()
    if not form.validate_on_submit():
        return _invalido(form)
    rateios = _payload().get("rateios") or {}
    if not isinstance(rateios, dict):
        return jsonify(ok=False, codigo="dados_invalidos", mensagem="Rateios devem ser {mercadinho_id: quantidade}"), 400
    with transaction():
        e = registrar_entrada_estoque(
            form.produto_id.data,
            form.quantidade_total.data,
            form.preco_compra.data,
            form.preco_venda.data,
            rateio_central=form.rateio_central.data or 0,
            rateios=rateios,
            user=current_user,
        )
    return jsonify(ok=True, entrada={"id": e.id, "produto_id": e.produto_id, "rateios": e.rateios,
                                     "rateio_central": e.rateio_central}), 201

@bp.post("/transferencias")
@login_required
def transferencia():
    _exigir_edicao()
    form = TransferenciaForm()
    if not form.validate_on_submit():
        return _invalido(form)
    with transaction():
        expo = transferir_para_prateleira(
            form.produto_id.data,
            form.mercadinho_id.data,
            form.quantidade.data,
            preco_venda=form.preco_venda.data,
            user=current_user,
        )
    return jsonify(ok=True, prateleira=_row_to_dict(expo, CAMPOS_PRATELEIRA))

@bp.get("/prateleiras")
@login_required
def prateleiras():
    mercadinho_id = request.args.get("mercadinho_id", type=int)
    if not mercadinho_id:
        return jsonify(ok=False, codigo="dados_invalidos", mensagem="Informe o mercadinho"), 400
    items = listar_prateleiras(
        mercadinho_id,
        produto_id=request.args.get("produto_id", type=int),
        incluir_vazias=request.args.get("vazias") == "1",
    )
    return jsonify(ok=True, prateleiras=[_row_to_dict(p, CAMPOS_PRATELEIRA) for p in items])

@bp.get("/estoque-baixo")
@login_required
def estoque_baixo():
    itens = prateleiras_estoque_baixo(request.args.get("mercadinho_id", type=int))
    return jsonify(ok=True, prateleiras=itens)

@bp.post("/prateleiras/<int:prateleira_id>/ajuste")
@login_required
def prateleira_ajuste(prateleira_id: int):
    _exigir_edicao()
    form = AjustePrateleiraForm()
    if not form.validate_on_submit():
        return _invalido(form)
    with transaction():
        expo = ajustar_prateleira(prateleira_id, form.quantidade.data, form.motivo.data or "", current_user)
    return jsonify(ok=True, prateleira=_row_to_dict(expo, CAMPOS_PRATELEIRA))

@bp.post("/prateleiras/<int:prateleira_id>/alternar")
@login_required
def prateleira_alternar(prateleira_id: int):
    _exigir_edicao()
    with transaction():
        expo = alternar_prateleira(prateleira_id, current_user)
    return jsonify(ok=True, prateleira=_row_to_dict(expo, CAMPOS_PRATELEIRA))


# ----------------------------
# Promoções
# ----------------------------
@bp.get("/promocoes")
@login_required
def promocoes():
    items = Promocao.query.order_by(Promocao.id).all()
    return jsonify(ok=True, promocoes=[_row_to_dict(p, CAMPOS_PROMOCAO) for p in items])

@bp.post("/promocoes")
@login_required
def promocao_nova():
    _exigir_edicao()
    form = PromocaoForm()
    if not form.validate_on_submit():
        return _invalido(form)
    with transaction():
        promo = criar_promocao(
            form.nome.data,
            form.desconto_percentual.data,
            tipo=form.tipo.data,
            produto_id=form.produto_id.data,
            inicia_em=form.inicia_em.data,
            termina_em=form.termina_em.data,
            user=current_user,
        )
    return jsonify(ok=True, promocao=_row_to_dict(promo, CAMPOS_PROMOCAO)), 201

@bp.post("/promocoes/<int:promocao_id>/alternar")
@login_required
def promocao_alternar(promocao_id: int):
    _exigir_edicao()
    with transaction():
        promo = alternar_promocao(promocao_id, current_user)
    return jsonify(ok=True, promocao=_row_to_dict(promo, CAMPOS_PROMOCAO))


# ----------------------------
# Clientes e caderneta
# ----------------------------
@bp.get("/clientes")
@login_required
def clientes():
    items = Cliente.query.filter_by(ativo=True).order_by(Cliente.nome).limit(500).all()
    return jsonify(ok=True, clientes=[_row_to_dict(c, CAMPOS_CLIENTE) for c in items])

@bp.post("/clientes")
@login_required
def cliente_novo():
    _exigir_edicao()
    form = ClienteForm()
    if not form.validate_on_submit():
        return _invalido(form)
    with transaction():
        c = criar_cliente(form.nome.data, form.telefone.data, current_user)
    return jsonify(ok=True, cliente=_row_to_dict(c, CAMPOS_CLIENTE)), 201

@bp.get("/caderneta")
@login_required
def caderneta():
    return jsonify(ok=True, debitos=debitos_caderneta(request.args.get("cliente_id", type=int)))

@bp.post("/caderneta/<int:cliente_id>/pagar")
@login_required
def caderneta_pagar(cliente_id: int):
    _exigir_edicao()
    form = PagamentoMesForm()
    if not form.validate_on_submit():
        return _invalido(form)
    with transaction():
        n = marcar_pago_mes(cliente_id, form.mes_referencia.data, current_user)
    return jsonify(ok=True, compras_pagas=n)


# ----------------------------
# Compras e estornos
# ----------------------------
@bp.get("/compras")
@login_required
def compras():
    items = listar_compras(
        cliente_id=request.args.get("cliente_id", type=int),
        mercadinho_id=request.args.get("mercadinho_id", type=int),
        tipo_pagamento=request.args.get("tipo_pagamento") or None,
        mes_referencia=request.args.get("mes") or None,
        desde=request.args.get("desde", type=_data),
        ate=request.args.get("ate", type=_data),
    )
    return jsonify(ok=True, compras=[_row_to_dict(c, CAMPOS_COMPRA) for c in items])

@bp.get("/compras/<int:compra_id>")
@login_required
def compra(compra_id: int):
    c = db.session.get(Compra, compra_id)
    if c is None:
        abort(404)
    return jsonify(ok=True, compra=_compra_dict(c))

@bp.post("/itens/<int:item_id>/estorno")
@login_required
def item_estorno(item_id: int):
    _exigir_edicao()
    form = EstornoForm()
    if not form.validate_on_submit():
        return _invalido(form)
    with transaction():
        r = estornar_item(
            item_id,
            devolver_estoque=_flag("devolver_estoque", True),
            motivo=form.motivo.data or None,
            prateleira_id=form.prateleira_id.data,
            user=current_user,
        )
    return jsonify(ok=True, **r)

@bp.post("/compras/<int:compra_id>/estorno")
@login_required
def compra_estorno(compra_id: int):
    _exigir_edicao()
    form = EstornoForm()
    if not form.validate_on_submit():
        return _invalido(form)
    with transaction():
        n = estornar_compra(
            compra_id,
            devolver_estoque=_flag("devolver_estoque", True),
            motivo=form.motivo.data or None,
            user=current_user,
        )
    return jsonify(ok=True, itens_estornados=n)
