# mercadinho/core/alocacao.py
"""
Seleção de exposições (lotes de prateleira) por menor preço.

Um produto pode estar exposto num mesmo mercadinho em várias linhas de
prateleira, cada uma com preço e quantidade próprios. A regra é sempre
consumir da exposição mais barata e só passar para a próxima quando a
atual estiver esgotada pelas reservas já feitas no carrinho.

As funções aqui são puras: recebem a leitura mais recente das exposições
e o que o carrinho já reservou, e não guardam nada entre chamadas.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional


@dataclass(frozen=True)
class Exposicao:
    """Leitura de uma linha de ``prateleiras_produtos`` ativa."""
    id: int
    preco: Decimal
    quantidade: int


@dataclass(frozen=True)
class Disponibilidade:
    """Exposições e total disponível obtidos na mesma leitura."""
    exposicoes: List[Exposicao]
    total: int

    @classmethod
    def de_exposicoes(cls, exposicoes: Iterable[Exposicao]) -> "Disponibilidade":
        ordenadas = ordenar_exposicoes(exposicoes)
        return cls(exposicoes=ordenadas, total=sum(e.quantidade for e in ordenadas))

    def por_id(self, prateleira_id: Optional[int]) -> Optional[Exposicao]:
        for expo in self.exposicoes:
            if expo.id == prateleira_id:
                return expo
        return None


def ordenar_exposicoes(exposicoes: Iterable[Exposicao]) -> List[Exposicao]:
    """Descarta exposições vazias e ordena por preço crescente (desempate pelo id)."""
    return sorted(
        (e for e in exposicoes if e.quantidade > 0),
        key=lambda e: (e.preco, e.id),
    )


def folga(exposicao: Exposicao, reservado: Mapping[int, int]) -> int:
    return exposicao.quantidade - reservado.get(exposicao.id, 0)


def proxima_exposicao(
    exposicoes: Iterable[Exposicao],
    reservado: Mapping[int, int],
) -> Optional[Exposicao]:
    """
    Primeira exposição, na ordem recebida, que ainda tem unidade livre
    depois de descontar o que o carrinho reservou nela.

    Retorna ``None`` quando todas estão tomadas.
    """
    for expo in exposicoes:
        if folga(expo, reservado) > 0:
            return expo
    return None


def somar_por_exposicao(pares: Iterable[tuple]) -> Dict[int, int]:
    """Agrupa pares ``(prateleira_id, quantidade)`` ignorando linhas sem prateleira."""
    total: Dict[int, int] = {}
    for prateleira_id, quantidade in pares:
        if prateleira_id is None:
            continue
        total[prateleira_id] = total.get(prateleira_id, 0) + quantidade
    return total
