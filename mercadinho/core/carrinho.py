# mercadinho/core/carrinho.py
"""
Carrinho do quiosque com reservas leves de estoque.

O carrinho é um valor imutável: cada operação devolve um carrinho novo.
Cada linha guarda a exposição (prateleira) contra a qual a unidade foi
reservada e o preço cobrado, já com desconto. O mesmo produto pode
aparecer em várias linhas quando a exposição mais barata se esgota no
meio da compra; linhas de preços ou prateleiras diferentes nunca são
juntadas.

Nada aqui grava no banco. A baixa real só acontece no checkout.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple, Union

from mercadinho.core.alocacao import Exposicao, folga, proxima_exposicao, somar_por_exposicao
from mercadinho.core.models import _as_money
from mercadinho.core.promocoes import PrecoFinal, preco_para
from mercadinho.core.services import ItemNaoEncontrado, QuantidadeMaximaAtingida, SemEstoque

Chave = Tuple[int, Decimal, Optional[int]]
Precificador = Callable[[int, Decimal], PrecoFinal]


@dataclass(frozen=True)
class ItemCarrinho:
    produto_id: int
    nome: str
    codigo_barras: str
    preco: Decimal
    quantidade: int
    prateleira_id: Optional[int] = None
    preco_original: Optional[Decimal] = None

    @property
    def chave(self) -> Chave:
        return (self.produto_id, self.preco, self.prateleira_id)

    @property
    def subtotal(self) -> Decimal:
        return _as_money(self.preco * self.quantidade)

    def para_dict(self) -> Dict[str, Any]:
        return {
            "produto_id": self.produto_id,
            "nome": self.nome,
            "codigo_barras": self.codigo_barras,
            "preco": str(self.preco),
            "preco_original": str(self.preco_original) if self.preco_original is not None else None,
            "quantidade": self.quantidade,
            "prateleira_id": self.prateleira_id,
        }

    @classmethod
    def de_dict(cls, data: Dict[str, Any]) -> "ItemCarrinho":
        original = data.get("preco_original")
        return cls(
            produto_id=int(data["produto_id"]),
            nome=data.get("nome") or "",
            codigo_barras=data.get("codigo_barras") or "",
            preco=_as_money(data["preco"]),
            quantidade=int(data["quantidade"]),
            prateleira_id=data.get("prateleira_id"),
            preco_original=_as_money(original) if original is not None else None,
        )


def _chave_de(linha: Union[ItemCarrinho, Chave]) -> Chave:
    if isinstance(linha, ItemCarrinho):
        return linha.chave
    produto_id, preco, prateleira_id = linha
    return (produto_id, _as_money(preco), prateleira_id)


@dataclass(frozen=True)
class Carrinho:
    itens: Tuple[ItemCarrinho, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.itens)

    def __iter__(self) -> Iterator[ItemCarrinho]:
        return iter(self.itens)

    def __bool__(self) -> bool:
        return bool(self.itens)

    # ------------------------------------------------------------------
    # Consultas
    # ------------------------------------------------------------------

    def buscar(self, linha: Union[ItemCarrinho, Chave]) -> ItemCarrinho:
        chave = _chave_de(linha)
        for item in self.itens:
            if item.chave == chave:
                return item
        raise ItemNaoEncontrado()

    def linhas_do_produto(self, produto_id: int) -> List[ItemCarrinho]:
        return [i for i in self.itens if i.produto_id == produto_id]

    def quantidade_do_produto(self, produto_id: int) -> int:
        return sum(i.quantidade for i in self.linhas_do_produto(produto_id))

    def reservado_por_exposicao(self, produto_id: Optional[int] = None) -> Dict[int, int]:
        itens = self.itens if produto_id is None else self.linhas_do_produto(produto_id)
        return somar_por_exposicao((i.prateleira_id, i.quantidade) for i in itens)

    def total(self) -> Decimal:
        return _as_money(sum((i.preco * i.quantidade for i in self.itens), Decimal("0")))

    def quantidade_total(self) -> int:
        return sum(i.quantidade for i in self.itens)

    def linhas_com_preco_maior(self) -> Set[Chave]:
        """Linhas de um produto cobradas acima da linha mais barata do mesmo produto."""
        menor: Dict[int, Decimal] = {}
        for i in self.itens:
            if i.produto_id not in menor or i.preco < menor[i.produto_id]:
                menor[i.produto_id] = i.preco
        return {i.chave for i in self.itens if i.preco > menor[i.produto_id]}

    # ------------------------------------------------------------------
    # Transformações (sempre devolvem um carrinho novo)
    # ------------------------------------------------------------------

    def com_unidade(self, modelo: ItemCarrinho) -> "Carrinho":
        """Soma uma unidade na linha de mesma chave ou cria a linha com quantidade 1."""
        itens = list(self.itens)
        for pos, item in enumerate(itens):
            if item.chave == modelo.chave:
                itens[pos] = replace(item, quantidade=item.quantidade + 1)
                return Carrinho(tuple(itens))
        itens.append(replace(modelo, quantidade=1))
        return Carrinho(tuple(itens))

    def com_quantidade(self, linha: Union[ItemCarrinho, Chave], quantidade: int) -> "Carrinho":
        chave = self.buscar(linha).chave
        if quantidade <= 0:
            return Carrinho(tuple(i for i in self.itens if i.chave != chave))
        return Carrinho(tuple(
            replace(i, quantidade=quantidade) if i.chave == chave else i
            for i in self.itens
        ))

    def sem(self, linha: Union[ItemCarrinho, Chave]) -> "Carrinho":
        chave = self.buscar(linha).chave
        return Carrinho(tuple(i for i in self.itens if i.chave != chave))

    # ------------------------------------------------------------------
    # Serialização (sessão do quiosque)
    # ------------------------------------------------------------------

    def para_dict(self) -> List[Dict[str, Any]]:
        return [i.para_dict() for i in self.itens]

    @classmethod
    def de_dict(cls, data: Optional[List[Dict[str, Any]]]) -> "Carrinho":
        return cls(tuple(ItemCarrinho.de_dict(d) for d in (data or [])))


# =============================================================================
# Operações de alocação
# =============================================================================

def _linha_para(produto_id: int, nome: str, codigo_barras: str, expo: Exposicao,
                precificador: Precificador) -> ItemCarrinho:
    final = precificador(produto_id, expo.preco)
    return ItemCarrinho(
        produto_id=produto_id,
        nome=nome,
        codigo_barras=codigo_barras or "",
        preco=_as_money(final.preco),
        quantidade=1,
        prateleira_id=expo.id,
        preco_original=expo.preco if final.com_desconto else None,
    )


def adicionar_scan(carrinho: Carrinho, produto, mercadinho_id: int, estoque,
                   precificador: Optional[Precificador] = None) -> Carrinho:
    """
    Reserva uma unidade de ``produto`` na exposição mais barata que ainda
    tem folga depois das reservas deste carrinho.

    ``produto`` precisa de ``id``, ``nome`` e ``codigo_barras``; ``estoque``
    precisa de ``disponibilidade(mercadinho_id, produto_id)``.

    Raises:
        SemEstoque: nenhuma exposição ativa ou total zerado.
        QuantidadeMaximaAtingida: o carrinho já tem todo o disponível.
    """
    precificador = precificador or preco_para
    disp = estoque.disponibilidade(mercadinho_id, produto.id)
    if disp.total <= 0 or not disp.exposicoes:
        raise SemEstoque(f"{produto.nome} sem estoque")

    reservado = carrinho.reservado_por_exposicao(produto.id)
    if carrinho.quantidade_do_produto(produto.id) >= disp.total:
        raise QuantidadeMaximaAtingida(f"Quantidade máxima de {produto.nome} atingida ({disp.total})")

    expo = proxima_exposicao(disp.exposicoes, reservado)
    if expo is None:
        # total e exposições divergem; não deveria ocorrer com leitura única
        raise SemEstoque(f"{produto.nome} sem estoque")

    linha = _linha_para(produto.id, produto.nome, produto.codigo_barras, expo, precificador)
    return carrinho.com_unidade(linha)


def incrementar(carrinho: Carrinho, linha: Union[ItemCarrinho, Chave], mercadinho_id: int, estoque,
                precificador: Optional[Precificador] = None) -> Carrinho:
    """
    Soma uma unidade a uma linha. Se a prateleira da linha ainda tem folga,
    a própria linha cresce; senão a unidade vai para a próxima exposição
    mais barata, em linha própria.

    Raises:
        ItemNaoEncontrado: a linha não está no carrinho.
        QuantidadeMaximaAtingida: nenhuma exposição tem folga.
    """
    precificador = precificador or preco_para
    atual = carrinho.buscar(linha)
    disp = estoque.disponibilidade(mercadinho_id, atual.produto_id)
    reservado = carrinho.reservado_por_exposicao(atual.produto_id)

    if not disp.exposicoes or carrinho.quantidade_do_produto(atual.produto_id) >= disp.total:
        raise QuantidadeMaximaAtingida(f"Quantidade máxima de {atual.nome} atingida ({disp.total})")

    propria = disp.por_id(atual.prateleira_id)
    if propria is not None and folga(propria, reservado) > 0:
        return carrinho.com_quantidade(atual, atual.quantidade + 1)

    expo = proxima_exposicao(disp.exposicoes, reservado)
    if expo is None:
        raise QuantidadeMaximaAtingida(f"Quantidade máxima de {atual.nome} atingida ({disp.total})")
    nova = _linha_para(atual.produto_id, atual.nome, atual.codigo_barras, expo, precificador)
    return carrinho.com_unidade(nova)


def decrementar(carrinho: Carrinho, linha: Union[ItemCarrinho, Chave]) -> Carrinho:
    atual = carrinho.buscar(linha)
    return carrinho.com_quantidade(atual, atual.quantidade - 1)


def remover(carrinho: Carrinho, linha: Union[ItemCarrinho, Chave]) -> Carrinho:
    return carrinho.sem(linha)
