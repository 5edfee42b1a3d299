from decimal import Decimal

import pytest

from conftest import EstoqueFalso, ProdutoFalso, sem_promocao
from mercadinho.core.carrinho import (
    Carrinho, ItemCarrinho, adicionar_scan, decrementar, incrementar, remover,
)
from mercadinho.core.promocoes import PrecoFinal
from mercadinho.core.services import ItemNaoEncontrado, QuantidadeMaximaAtingida, SemEstoque

M = 1


def _scan(carrinho, estoque, produto=None):
    return adicionar_scan(carrinho, produto or ProdutoFalso(), M, estoque, precificador=sem_promocao)


def test_scan_consome_lote_mais_barato_e_depois_o_seguinte():
    estoque = EstoqueFalso({1: ("2.00", 1, True), 2: ("3.00", 5, True)})
    carrinho = Carrinho()

    carrinho = _scan(carrinho, estoque)
    assert [(i.prateleira_id, i.preco, i.quantidade) for i in carrinho] == [(1, Decimal("2.00"), 1)]

    for _ in range(5):
        carrinho = _scan(carrinho, estoque)
    assert [(i.prateleira_id, i.quantidade) for i in carrinho] == [(1, 1), (2, 5)]
    assert carrinho.total() == Decimal("17.00")

    with pytest.raises(QuantidadeMaximaAtingida):
        _scan(carrinho, estoque)


def test_scan_sem_estoque():
    estoque = EstoqueFalso({1: ("2.00", 0, True), 2: ("3.00", 4, False)})
    with pytest.raises(SemEstoque):
        _scan(Carrinho(), estoque)


def test_scan_ignora_lote_vazio_no_total():
    estoque = EstoqueFalso({1: ("2.00", 2, True), 2: ("1.00", 0, True), 3: ("4.00", 4, True)})
    carrinho = Carrinho()
    for _ in range(6):
        carrinho = _scan(carrinho, estoque)
    assert carrinho.reservado_por_exposicao() == {1: 2, 3: 4}
    with pytest.raises(QuantidadeMaximaAtingida):
        _scan(carrinho, estoque)


def test_scan_com_promocao_guarda_preco_original():
    estoque = EstoqueFalso({1: ("10.00", 3, True)})

    def dez_por_cento(produto_id, preco_base):
        return PrecoFinal(preco=Decimal("9.00"), com_desconto=True, percentual=Decimal("10"))

    carrinho = adicionar_scan(Carrinho(), ProdutoFalso(), M, estoque, precificador=dez_por_cento)
    item = carrinho.itens[0]
    assert item.preco == Decimal("9.00")
    assert item.preco_original == Decimal("10.00")


def test_incrementar_cresce_a_propria_linha_com_folga():
    estoque = EstoqueFalso({1: ("2.00", 3, True)})
    carrinho = _scan(Carrinho(), estoque)
    carrinho = incrementar(carrinho, carrinho.itens[0], M, estoque, precificador=sem_promocao)
    assert len(carrinho) == 1
    assert carrinho.itens[0].quantidade == 2


def test_incrementar_vai_para_nova_linha_quando_lote_zera():
    estoque = EstoqueFalso({1: ("2.00", 2, True), 2: ("3.00", 5, True)})
    carrinho = _scan(Carrinho(), estoque)
    linha = carrinho.itens[0]

    # outro tablet vendeu o resto do lote 1
    estoque.lotes[1][1] = 0
    carrinho = incrementar(carrinho, linha, M, estoque, precificador=sem_promocao)

    assert [(i.prateleira_id, i.preco, i.quantidade) for i in carrinho] == [
        (1, Decimal("2.00"), 1),
        (2, Decimal("3.00"), 1),
    ]
    assert carrinho.linhas_com_preco_maior() == {(1, Decimal("3.00"), 2)}


def test_incrementar_sem_folga_em_lote_nenhum():
    estoque = EstoqueFalso({1: ("2.00", 1, True)})
    carrinho = _scan(Carrinho(), estoque)
    with pytest.raises(QuantidadeMaximaAtingida):
        incrementar(carrinho, carrinho.itens[0], M, estoque, precificador=sem_promocao)


def test_incrementar_linha_inexistente():
    estoque = EstoqueFalso({1: ("2.00", 1, True)})
    with pytest.raises(ItemNaoEncontrado):
        incrementar(Carrinho(), (1, Decimal("2.00"), 1), M, estoque, precificador=sem_promocao)


def test_decrementar_ate_zero_remove_a_linha():
    estoque = EstoqueFalso({1: ("2.00", 3, True)})
    carrinho = _scan(_scan(Carrinho(), estoque), estoque)
    carrinho = decrementar(carrinho, carrinho.itens[0])
    assert carrinho.itens[0].quantidade == 1
    carrinho = decrementar(carrinho, carrinho.itens[0])
    assert len(carrinho) == 0
    assert estoque.baixas == []


def test_adicionar_e_remover_volta_ao_carrinho_anterior():
    estoque = EstoqueFalso({1: ("2.00", 3, True)})
    outro = EstoqueFalso({7: ("5.50", 2, True)})
    inicial = _scan(Carrinho(), estoque)
    com_outro = _scan(inicial, outro, ProdutoFalso(id=2, nome="Leite", codigo_barras="456"))
    assert remover(com_outro, com_outro.itens[1]) == inicial


def test_total_nao_depende_da_ordem():
    a = ItemCarrinho(1, "A", "1", Decimal("2.35"), 3, 10)
    b = ItemCarrinho(2, "B", "2", Decimal("0.99"), 7, 20)
    assert Carrinho((a, b)).total() == Carrinho((b, a)).total() == Decimal("13.98")


def test_carrinho_e_imutavel():
    estoque = EstoqueFalso({1: ("2.00", 3, True)})
    vazio = Carrinho()
    cheio = _scan(vazio, estoque)
    assert len(vazio) == 0
    assert len(cheio) == 1


def test_serializacao_da_sessao():
    item = ItemCarrinho(1, "A", "1", Decimal("2.00"), 2, 10, preco_original=Decimal("2.50"))
    carrinho = Carrinho((item,))
    assert Carrinho.de_dict(carrinho.para_dict()) == carrinho
