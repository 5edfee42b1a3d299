# mercadinho/core/checkout.py
"""
Finalização de compra no quiosque.

Fluxo de uma tentativa::

    VALIDANDO -> GRAVANDO -> CONCLUIDA
                          -> CONCLUIDA_COM_DIVERGENCIA

1. Validação: relê cada prateleira reservada; se o estoque vivo ficou
   abaixo do que o carrinho reservou, aborta com ``EstoqueAlterado`` sem
   gravar nada.
2. Gravação: compra e itens numa única transação; qualquer erro vira
   ``FalhaNaLiquidacao`` e nenhum estoque é tocado.
3. Baixa: prateleira por prateleira, cada uma na sua transação. Uma baixa
   que falha não desfaz a compra nem interrompe as demais; vira
   divergência reportada.

A validação é uma conferência de melhor esforço: outro tablet pode vender
a mesma unidade entre a validação e a baixa.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from mercadinho.extensions import db
from mercadinho.core.alertas import DivergenciaEstoque, reportar_divergencia
from mercadinho.core.carrinho import Carrinho
from mercadinho.core.estoque import EstoquePrateleira
from mercadinho.core.models import TIPOS_PAGAMENTO, Cliente, Compra, ItemCompra, _as_money, mes_referencia
from mercadinho.core.services import (
    EstoqueAlterado, FalhaNaLiquidacao, ServiceError, _ensure, audit_log, transaction,
)
from mercadinho.logger import checkout_logger


class EstadoCheckout(str, enum.Enum):
    VALIDANDO = "validando"
    GRAVANDO = "gravando"
    CONCLUIDA = "concluida"
    CONCLUIDA_COM_DIVERGENCIA = "concluida_com_divergencia"


@dataclass
class ResultadoCheckout:
    compra_id: int
    valor_total: Decimal
    estado: EstadoCheckout
    divergencias: List[DivergenciaEstoque] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.estado in (EstadoCheckout.CONCLUIDA, EstadoCheckout.CONCLUIDA_COM_DIVERGENCIA)


class Liquidacao:

    def __init__(
        self,
        carrinho: Carrinho,
        mercadinho_id: int,
        tipo_pagamento: str,
        cliente_id: Optional[int] = None,
        tablet_id: Optional[str] = None,
        estoque: Optional[EstoquePrateleira] = None,
        relator: Optional[Callable[[DivergenciaEstoque], None]] = None,
        agora: Optional[datetime] = None,
    ):
        self.carrinho = carrinho
        self.mercadinho_id = mercadinho_id
        self.tipo_pagamento = tipo_pagamento
        self.cliente_id = cliente_id
        self.tablet_id = tablet_id
        self.estoque = estoque or EstoquePrateleira()
        self.relator = relator or reportar_divergencia
        self.agora = agora or datetime.utcnow()
        self.estado = EstadoCheckout.VALIDANDO

    def executar(self) -> ResultadoCheckout:
        self._validar_pedido()
        self._validar_estoque()
        self.estado = EstadoCheckout.GRAVANDO
        compra_id, valor_total, baixas = self._gravar()
        divergencias = self._baixar(compra_id, baixas)
        self.estado = EstadoCheckout.CONCLUIDA_COM_DIVERGENCIA if divergencias else EstadoCheckout.CONCLUIDA
        checkout_logger.info("COMPRA_CONCLUIDA: compra=%s total=%s pagamento=%s estado=%s",
                             compra_id, valor_total, self.tipo_pagamento, self.estado.value)
        return ResultadoCheckout(compra_id=compra_id, valor_total=valor_total,
                                 estado=self.estado, divergencias=divergencias)

    # ------------------------------------------------------------------

    def _validar_pedido(self) -> None:
        _ensure(len(self.carrinho) > 0, "Carrinho vazio")
        _ensure(self.tipo_pagamento in TIPOS_PAGAMENTO, "Pagamento inválido")
        if self.tipo_pagamento == "caderneta":
            _ensure(self.cliente_id is not None, "Visitante só pode pagar via PIX")
        if self.cliente_id is not None:
            cliente = db.session.get(Cliente, self.cliente_id)
            _ensure(cliente is not None and cliente.ativo, "Cliente inválido")

    def _validar_estoque(self) -> None:
        reservado = self.carrinho.reservado_por_exposicao()
        nomes: Dict[int, str] = {}
        for item in self.carrinho:
            if item.prateleira_id is not None:
                nomes.setdefault(item.prateleira_id, item.nome)
        for prateleira_id, quantidade in reservado.items():
            disponivel = self.estoque.quantidade_atual(prateleira_id)
            if disponivel < quantidade:
                checkout_logger.warning("CHECKOUT_ABORTADO: prateleira=%s reservado=%s disponivel=%s",
                                        prateleira_id, quantidade, disponivel)
                raise EstoqueAlterado(nomes[prateleira_id], disponivel)

    def _gravar(self):
        visitante = self.cliente_id is None
        total = self.carrinho.total()
        pix = self.tipo_pagamento == "pix"
        try:
            with transaction():
                compra = Compra(
                    cliente_id=self.cliente_id,
                    eh_visitante=visitante,
                    mercadinho_id=self.mercadinho_id,
                    tablet_id=self.tablet_id,
                    tipo_pagamento=self.tipo_pagamento,
                    valor_total=total,
                    data_compra=self.agora,
                    mes_referencia=mes_referencia(self.agora),
                    paga=pix,
                    paga_em=self.agora if pix else None,
                )
                db.session.add(compra)
                db.session.flush()
                db.session.add_all([
                    ItemCompra(
                        compra_id=compra.id,
                        produto_id=item.produto_id,
                        prateleira_id=item.prateleira_id,
                        valor_unitario=item.preco,
                        quantidade=item.quantidade,
                        valor_total=item.subtotal,
                    )
                    for item in self.carrinho
                ])
                audit_log("Compra", compra.id, "purchase", {
                    "tipo_pagamento": self.tipo_pagamento, "valor_total": str(total),
                    "itens": len(self.carrinho), "tablet_id": self.tablet_id,
                }, mercadinho_id=self.mercadinho_id)
                compra_id = compra.id
        except ServiceError as e:
            checkout_logger.warning("CHECKOUT_FALHOU: %s", e)
            raise FalhaNaLiquidacao() from e
        baixas = [(i.produto_id, i.prateleira_id, i.quantidade) for i in self.carrinho if i.prateleira_id is not None]
        return compra_id, _as_money(total), baixas

    def _baixar(self, compra_id: int, baixas) -> List[DivergenciaEstoque]:
        divergencias: List[DivergenciaEstoque] = []
        for produto_id, prateleira_id, quantidade in baixas:
            motivo = None
            try:
                with transaction():
                    if not self.estoque.decrementar(prateleira_id, quantidade):
                        motivo = "Quantidade insuficiente na prateleira"
            except ServiceError as e:
                motivo = str(e)
            if motivo is None:
                continue
            div = DivergenciaEstoque(
                compra_id=compra_id, produto_id=produto_id, prateleira_id=prateleira_id,
                quantidade=quantidade, motivo=motivo, mercadinho_id=self.mercadinho_id,
            )
            divergencias.append(div)
            self.relator(div)
        return divergencias


def finalizar_compra(carrinho: Carrinho, mercadinho_id: int, tipo_pagamento: str,
                     cliente_id: Optional[int] = None, tablet_id: Optional[str] = None,
                     estoque: Optional[EstoquePrateleira] = None, relator=None) -> ResultadoCheckout:
    return Liquidacao(
        carrinho, mercadinho_id, tipo_pagamento,
        cliente_id=cliente_id, tablet_id=tablet_id, estoque=estoque, relator=relator,
    ).executar()
