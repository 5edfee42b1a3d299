# mercadinho/core/promocoes.py
"""
Preço com promoção.

No máximo um desconto por produto: promoção do próprio produto vence a
global; sem nenhuma válida, o preço fica como está. Entre promoções do
mesmo escopo vale a primeira pela ordem de id.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from mercadinho.extensions import db
from mercadinho.core.models import Promocao, _as_money


@dataclass(frozen=True)
class PrecoFinal:
    preco: Decimal
    com_desconto: bool
    percentual: Decimal = Decimal("0")


def vigente(promo: Promocao, agora: datetime) -> bool:
    if not promo.ativa:
        return False
    if promo.inicia_em > agora:
        return False
    return promo.termina_em is None or agora < promo.termina_em


def escolher_promocao(promocoes: Iterable[Promocao], produto_id: int, agora: datetime) -> Optional[Promocao]:
    # Aceita também listas fora de promocoes_ativas, por isso confere a janela de novo
    global_ = None
    for promo in promocoes:
        if not vigente(promo, agora):
            continue
        if promo.tipo == "produto" and promo.produto_id == produto_id:
            return promo
        if promo.tipo == "global" and global_ is None:
            global_ = promo
    return global_


def aplicar_desconto(preco_base: Decimal, percentual: Decimal) -> Decimal:
    preco_base = _as_money(preco_base)
    fator = Decimal("1") - (Decimal(str(percentual)) / Decimal("100"))
    return _as_money(preco_base * fator)


def promocoes_ativas(produto_id: int, agora: datetime) -> List[Promocao]:
    return (
        db.session.query(Promocao)
        .filter(
            Promocao.ativa.is_(True),
            Promocao.inicia_em <= agora,
            (Promocao.termina_em.is_(None)) | (Promocao.termina_em > agora),
            (Promocao.tipo == "global") | (Promocao.produto_id == produto_id),
        )
        .order_by(Promocao.id.asc())
        .all()
    )


def preco_para(produto_id: int, preco_base: Decimal, agora: Optional[datetime] = None) -> PrecoFinal:
    agora = agora or datetime.utcnow()
    promo = escolher_promocao(promocoes_ativas(produto_id, agora), produto_id, agora)
    if promo is None:
        return PrecoFinal(preco=_as_money(preco_base), com_desconto=False)
    pct = Decimal(str(promo.desconto_percentual))
    return PrecoFinal(preco=aplicar_desconto(preco_base, pct), com_desconto=True, percentual=pct)
