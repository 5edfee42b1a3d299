from decimal import Decimal

from conftest import criar_lote
from mercadinho.extensions import db
from mercadinho.core.estoque import EstoquePrateleira
from mercadinho.core.models import PrateleiraProduto


def test_disponibilidade_ordena_e_soma(mercadinho, produto):
    caro = criar_lote(mercadinho, produto, "4.00", 4)
    criar_lote(mercadinho, produto, "1.00", 0)
    barato = criar_lote(mercadinho, produto, "2.00", 2)
    criar_lote(mercadinho, produto, "0.50", 9, ativo=False)

    estoque = EstoquePrateleira()
    disp = estoque.disponibilidade(mercadinho.id, produto.id)

    assert [e.id for e in disp.exposicoes] == [barato.id, caro.id]
    assert disp.total == 6
    assert estoque.total_disponivel(mercadinho.id, produto.id) == 6


def test_disponibilidade_e_por_mercadinho(mercadinho, produto):
    from mercadinho.core.models import Mercadinho
    outro = Mercadinho(nome="Mercadinho da Portaria", ativo=True)
    db.session.add(outro)
    db.session.commit()
    criar_lote(outro, produto, "2.00", 3)
    assert EstoquePrateleira().disponibilidade(mercadinho.id, produto.id).total == 0


def test_decrementar_nunca_deixa_negativo(mercadinho, produto):
    lote = criar_lote(mercadinho, produto, "2.00", 2)
    estoque = EstoquePrateleira()

    assert estoque.decrementar(lote.id, 3) is False
    assert estoque.decrementar(lote.id, 2) is True
    db.session.commit()
    assert db.session.get(PrateleiraProduto, lote.id).quantidade_prateleira == 0
    assert estoque.decrementar(lote.id, 1) is False


def test_quantidade_atual_de_lote_inativo_ou_inexistente(mercadinho, produto):
    lote = criar_lote(mercadinho, produto, "2.00", 5, ativo=False)
    estoque = EstoquePrateleira()
    assert estoque.quantidade_atual(lote.id) == 0
    assert estoque.quantidade_atual(9999) == 0


def test_creditar_soma_no_lote_de_mesmo_preco(mercadinho, produto):
    lote = criar_lote(mercadinho, produto, "2.00", 1)
    estoque = EstoquePrateleira()

    mesmo = estoque.creditar(mercadinho.id, produto.id, Decimal("2.00"), 4)
    novo = estoque.creditar(mercadinho.id, produto.id, Decimal("2.50"), 3)
    db.session.commit()

    assert mesmo.id == lote.id
    assert mesmo.quantidade_prateleira == 5
    assert novo.id != lote.id
    assert estoque.total_disponivel(mercadinho.id, produto.id) == 8


def test_ajustar_central(produto):
    estoque = EstoquePrateleira()
    assert estoque.ajustar_central(produto.id, -11) is False
    assert estoque.ajustar_central(produto.id, -10) is True
    assert estoque.ajustar_central(produto.id, 3) is True
    db.session.commit()
    assert estoque.quantidade_central(produto.id) == 3
