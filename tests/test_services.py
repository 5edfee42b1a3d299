from datetime import datetime
from decimal import Decimal

import pytest

from conftest import criar_lote
from mercadinho.extensions import db
from mercadinho.core.carrinho import Carrinho, adicionar_scan
from mercadinho.core.checkout import Liquidacao
from mercadinho.core.estoque import EstoquePrateleira
from mercadinho.core.models import AuditLog, Compra, EntradaEstoque, Mercadinho, PrateleiraProduto, Produto
from mercadinho.core.services import (
    ProdutoNaoEncontrado, ServiceError, transaction,
    ajuste_estoque_central, buscar_produto_por_codigo, criar_produto, atualizar_produto,
    debitos_caderneta, estornar_compra, estornar_item, listar_compras, marcar_pago_mes,
    prateleiras_estoque_baixo, registrar_entrada_estoque, transferir_para_prateleira, alternar_prateleira,
)


def _compra(mercadinho, produto, unidades, pagamento="pix", cliente=None, agora=None):
    carrinho = Carrinho()
    for _ in range(unidades):
        carrinho = adicionar_scan(carrinho, produto, mercadinho.id, EstoquePrateleira())
    resultado = Liquidacao(carrinho, mercadinho.id, pagamento,
                           cliente_id=cliente.id if cliente else None, agora=agora).executar()
    return db.session.get(Compra, resultado.compra_id)


# ----------------------------
# Catálogo
# ----------------------------
def test_busca_por_codigo_ignora_pontuacao(produto):
    assert buscar_produto_por_codigo(" 7894900-011517\n").id == produto.id
    with pytest.raises(ProdutoNaoEncontrado):
        buscar_produto_por_codigo("abc")


def test_produto_inativo_nao_e_encontrado(produto):
    produto.ativo = False
    db.session.commit()
    with pytest.raises(ProdutoNaoEncontrado):
        buscar_produto_por_codigo(produto.codigo_barras)


def test_codigo_de_barras_unico(produto):
    with pytest.raises(ServiceError):
        with transaction():
            criar_produto("Outro", codigo_barras="789.490.001.151-7")
    with transaction():
        novo = criar_produto("Pão de queijo", codigo_barras="123", preco_venda=Decimal("4.5"))
    with pytest.raises(ServiceError):
        with transaction():
            atualizar_produto(novo.id, {"codigo_barras": produto.codigo_barras})
    assert db.session.get(Produto, novo.id).preco_venda == Decimal("4.50")


# ----------------------------
# Estoque
# ----------------------------
def test_entrada_com_rateio(mercadinho, produto):
    criar_lote(mercadinho, produto, "3.50", 2)
    with transaction():
        entrada = registrar_entrada_estoque(
            produto.id, 12, Decimal("1.50"), Decimal("3.50"),
            rateio_central=4, rateios={str(mercadinho.id): 8},
        )

    assert db.session.get(EntradaEstoque, entrada.id).rateios == {str(mercadinho.id): 8}
    p = db.session.get(Produto, produto.id)
    assert p.quantidade_atual == 14
    assert p.preco_compra == Decimal("1.50")
    lotes = PrateleiraProduto.query.filter_by(produto_id=produto.id).all()
    assert [(l.preco_venda_prateleira, l.quantidade_prateleira) for l in lotes] == [(Decimal("3.50"), 10)]


def test_entrada_com_preco_novo_cria_outro_lote(mercadinho, produto):
    criar_lote(mercadinho, produto, "3.00", 2)
    with transaction():
        registrar_entrada_estoque(produto.id, 5, Decimal("1.80"), Decimal("3.90"), rateios={mercadinho.id: 5})
    assert PrateleiraProduto.query.filter_by(produto_id=produto.id).count() == 2


def test_entrada_com_rateio_que_nao_fecha(mercadinho, produto):
    with pytest.raises(ServiceError):
        with transaction():
            registrar_entrada_estoque(produto.id, 10, Decimal("1"), Decimal("2"),
                                      rateio_central=3, rateios={mercadinho.id: 5})
    assert EntradaEstoque.query.count() == 0
    assert db.session.get(Produto, produto.id).quantidade_atual == 10


def test_saida_central_nao_passa_do_estoque(produto):
    with pytest.raises(ServiceError, match=r"\(há 10\)"):
        with transaction():
            ajuste_estoque_central(produto.id, 11, "saida")
    with transaction():
        ajuste_estoque_central(produto.id, 4, "saida", motivo="vencido")
    assert db.session.get(Produto, produto.id).quantidade_atual == 6


def test_transferencia_para_prateleira(mercadinho, produto):
    with transaction():
        expo = transferir_para_prateleira(produto.id, mercadinho.id, 6)
    assert db.session.get(Produto, produto.id).quantidade_atual == 4
    assert expo.preco_venda_prateleira == Decimal("3.00")
    assert expo.quantidade_prateleira == 6
    with pytest.raises(ServiceError, match=r"\(há 4\)"):
        with transaction():
            transferir_para_prateleira(produto.id, mercadinho.id, 5)


def test_alternar_prateleira_tira_do_quiosque(mercadinho, produto):
    lote = criar_lote(mercadinho, produto, "2.00", 3)
    with transaction():
        alternar_prateleira(lote.id)
    assert EstoquePrateleira().disponibilidade(mercadinho.id, produto.id).total == 0
    assert AuditLog.query.filter_by(entidade="PrateleiraProduto", acao="toggled").count() == 1


def test_estoque_baixo_so_com_alerta_ligado(mercadinho, produto):
    produto.alerta_estoque_baixo_ativo = True
    agua = Produto(nome="Água Mineral", codigo_barras="7896000000011", preco_venda=Decimal("2.00"),
                   alerta_estoque_baixo_ativo=True, alerta_estoque_baixo_min=1)
    bala = Produto(nome="Bala", codigo_barras="7896000000028", preco_venda=Decimal("0.50"))
    db.session.add_all([agua, bala])
    db.session.commit()

    no_limite = criar_lote(mercadinho, produto, "3.00", 2)
    criar_lote(mercadinho, produto, "3.50", 3)
    criar_lote(mercadinho, produto, "2.50", 0)
    criar_lote(mercadinho, produto, "2.80", 1, ativo=False)
    agua_lote = criar_lote(mercadinho, agua, "2.00", 1)
    criar_lote(mercadinho, bala, "0.50", 1)

    baixo = prateleiras_estoque_baixo()
    assert [(b["prateleira_id"], b["quantidade_prateleira"]) for b in baixo] == [(agua_lote.id, 1), (no_limite.id, 2)]
    assert baixo[1]["alerta_estoque_baixo_min"] == 2
    assert baixo[1]["mercadinho_nome"] == mercadinho.nome


def test_minimo_do_alerta_editavel(produto):
    with transaction():
        atualizar_produto(produto.id, {"alerta_estoque_baixo_ativo": True, "alerta_estoque_baixo_min": "5"})
    assert db.session.get(Produto, produto.id).alerta_estoque_baixo_min == 5
    with pytest.raises(ServiceError):
        with transaction():
            atualizar_produto(produto.id, {"alerta_estoque_baixo_min": -1})


# ----------------------------
# Estornos
# ----------------------------
def test_estorno_de_item_devolve_para_o_lote(mercadinho, produto, dois_lotes):
    l1, l2 = dois_lotes
    compra = _compra(mercadinho, produto, 3)
    item_l2 = next(i for i in compra.itens if i.prateleira_id == l2.id)

    with transaction():
        r = estornar_item(item_l2.id, motivo="produto vencido")

    assert r["compra_removida"] is False
    assert r["valor_total"] == "2.00"
    assert db.session.get(PrateleiraProduto, l2.id).quantidade_prateleira == 5
    assert db.session.get(PrateleiraProduto, l1.id).quantidade_prateleira == 0


def test_estorno_sem_devolucao(mercadinho, produto, dois_lotes):
    l1, _ = dois_lotes
    compra = _compra(mercadinho, produto, 1)
    with transaction():
        r = estornar_item(compra.itens[0].id, devolver_estoque=False)
    assert r["compra_removida"] is True
    assert db.session.get(PrateleiraProduto, l1.id).quantidade_prateleira == 0


def test_estorno_da_compra_inteira(mercadinho, produto, dois_lotes):
    compra = _compra(mercadinho, produto, 4)
    compra_id = compra.id
    with transaction():
        n = estornar_compra(compra_id)
    assert n == 2
    assert db.session.get(Compra, compra_id) is None
    assert EstoquePrateleira().total_disponivel(mercadinho.id, produto.id) == 6


def test_estorno_nao_devolve_para_outro_mercadinho(mercadinho, produto, dois_lotes):
    outro = Mercadinho(nome="Mercadinho da Portaria", ativo=True)
    db.session.add(outro)
    db.session.commit()
    lote_de_fora = criar_lote(outro, produto, "3.00", 2)
    compra = _compra(mercadinho, produto, 1)

    with pytest.raises(ServiceError, match="outro mercadinho"):
        with transaction():
            estornar_item(compra.itens[0].id, prateleira_id=lote_de_fora.id)
    assert db.session.get(PrateleiraProduto, lote_de_fora.id).quantidade_prateleira == 2
    assert len(db.session.get(Compra, compra.id).itens) == 1


# ----------------------------
# Compras
# ----------------------------
def test_listar_compras_com_filtros(mercadinho, produto, dois_lotes, cliente):
    abril = _compra(mercadinho, produto, 1, "caderneta", cliente, agora=datetime(2026, 4, 2))
    maio_pix = _compra(mercadinho, produto, 1, "pix", agora=datetime(2026, 5, 3))
    maio_cliente = _compra(mercadinho, produto, 1, "pix", cliente, agora=datetime(2026, 5, 20))

    assert [c.id for c in listar_compras()] == [maio_cliente.id, maio_pix.id, abril.id]
    assert [c.id for c in listar_compras(cliente_id=cliente.id)] == [maio_cliente.id, abril.id]
    assert [c.id for c in listar_compras(mes_referencia="2026-05", tipo_pagamento="pix")] == [maio_cliente.id, maio_pix.id]
    assert [c.id for c in listar_compras(desde=datetime(2026, 5, 1), ate=datetime(2026, 5, 20))] == [maio_pix.id]
    assert listar_compras(mercadinho_id=mercadinho.id + 1) == []
    with pytest.raises(ServiceError):
        listar_compras(tipo_pagamento="cartao")


# ----------------------------
# Caderneta
# ----------------------------
def test_debitos_e_pagamento_do_mes(mercadinho, produto, dois_lotes, cliente):
    _compra(mercadinho, produto, 1, "caderneta", cliente, agora=datetime(2026, 4, 2))
    _compra(mercadinho, produto, 2, "caderneta", cliente, agora=datetime(2026, 5, 3))
    _compra(mercadinho, produto, 1, "pix", cliente, agora=datetime(2026, 5, 4))

    debitos = debitos_caderneta()
    assert len(debitos) == 1
    assert debitos[0]["total"] == "8.00"
    assert [(m["mes_referencia"], m["total"]) for m in debitos[0]["meses"]] == [("2026-04", "2.00"), ("2026-05", "6.00")]

    with transaction():
        assert marcar_pago_mes(cliente.id, "2026-04") == 1
    assert [m["mes_referencia"] for m in debitos_caderneta(cliente.id)[0]["meses"]] == ["2026-05"]

    with pytest.raises(ServiceError):
        with transaction():
            marcar_pago_mes(cliente.id, "2026-04")
