# mercadinho/core/estoque.py
"""
Acesso ao estoque persistido: exposições de prateleira e estoque central.

Só leitura e atualização atômica de uma contagem por vez; as regras de
alocação ficam em ``alocacao`` e ``carrinho``. Nenhum método faz commit:
quem chama decide a transação (ver ``services.transaction``).
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import update

from mercadinho.extensions import db
from mercadinho.core.alocacao import Disponibilidade, Exposicao, ordenar_exposicoes
from mercadinho.core.models import PrateleiraProduto, Produto, _as_money
from mercadinho.logger import estoque_logger


class EstoquePrateleira:

    def __init__(self, session=None):
        self.session = session or db.session

    # ------------------------------------------------------------------
    # Leitura
    # ------------------------------------------------------------------

    def _consulta_ativas(self, mercadinho_id: int, produto_id: int):
        return (
            self.session.query(PrateleiraProduto)
            .filter(
                PrateleiraProduto.mercadinho_id == mercadinho_id,
                PrateleiraProduto.produto_id == produto_id,
                PrateleiraProduto.ativo.is_(True),
                PrateleiraProduto.quantidade_prateleira > 0,
            )
        )

    def listar_exposicoes(self, mercadinho_id: int, produto_id: int) -> List[Exposicao]:
        rows = (
            self._consulta_ativas(mercadinho_id, produto_id)
            .order_by(PrateleiraProduto.preco_venda_prateleira.asc(), PrateleiraProduto.id.asc())
            .all()
        )
        return ordenar_exposicoes(
            Exposicao(id=r.id, preco=_as_money(r.preco_venda_prateleira), quantidade=int(r.quantidade_prateleira))
            for r in rows
        )

    def total_disponivel(self, mercadinho_id: int, produto_id: int) -> int:
        total = (
            self.session.query(db.func.coalesce(db.func.sum(PrateleiraProduto.quantidade_prateleira), 0))
            .filter(
                PrateleiraProduto.mercadinho_id == mercadinho_id,
                PrateleiraProduto.produto_id == produto_id,
                PrateleiraProduto.ativo.is_(True),
                PrateleiraProduto.quantidade_prateleira > 0,
            )
            .scalar()
        )
        return int(total or 0)

    def disponibilidade(self, mercadinho_id: int, produto_id: int) -> Disponibilidade:
        """Exposições e total numa só leitura, para o total nunca divergir da lista."""
        return Disponibilidade.de_exposicoes(self.listar_exposicoes(mercadinho_id, produto_id))

    def quantidade_atual(self, prateleira_id: int) -> int:
        """Quantidade vendável agora; exposição inativa ou inexistente conta como zero."""
        row = (
            self.session.query(PrateleiraProduto.quantidade_prateleira, PrateleiraProduto.ativo)
            .filter(PrateleiraProduto.id == prateleira_id)
            .first()
        )
        if row is None or not row.ativo:
            return 0
        return int(row.quantidade_prateleira)

    def quantidade_central(self, produto_id: int) -> int:
        qtd = self.session.query(Produto.quantidade_atual).filter(Produto.id == produto_id).scalar()
        return int(qtd or 0)

    # ------------------------------------------------------------------
    # Escrita
    # ------------------------------------------------------------------

    def decrementar(self, prateleira_id: int, quantidade: int) -> bool:
        """
        Baixa ``quantidade`` da exposição. Falha (retorna False) quando o
        resultado ficaria negativo; o UPDATE condicional é a única proteção
        contra vendas concorrentes na mesma linha.
        """
        if quantidade <= 0:
            return False
        result = self.session.execute(
            update(PrateleiraProduto)
            .where(
                PrateleiraProduto.id == prateleira_id,
                PrateleiraProduto.quantidade_prateleira >= quantidade,
            )
            .values(quantidade_prateleira=PrateleiraProduto.quantidade_prateleira - quantidade)
            .execution_options(synchronize_session="evaluate")
        )
        ok = result.rowcount == 1
        if ok:
            estoque_logger.info("BAIXA_PRATELEIRA: prateleira=%s qtd=%s", prateleira_id, quantidade)
        else:
            estoque_logger.warning("BAIXA_RECUSADA: prateleira=%s qtd=%s", prateleira_id, quantidade)
        return ok

    def creditar(self, mercadinho_id: int, produto_id: int, preco: Decimal, quantidade: int) -> PrateleiraProduto:
        """Soma na exposição ativa com o mesmo preço ou cria uma nova."""
        preco = _as_money(preco)
        expo = (
            self.session.query(PrateleiraProduto)
            .filter_by(mercadinho_id=mercadinho_id, produto_id=produto_id, preco_venda_prateleira=preco, ativo=True)
            .order_by(PrateleiraProduto.id.asc())
            .first()
        )
        if expo:
            expo.quantidade_prateleira = int(expo.quantidade_prateleira) + quantidade
        else:
            expo = PrateleiraProduto(
                mercadinho_id=mercadinho_id,
                produto_id=produto_id,
                preco_venda_prateleira=preco,
                quantidade_prateleira=quantidade,
                ativo=True,
            )
            self.session.add(expo)
        self.session.flush()
        estoque_logger.info("CREDITO_PRATELEIRA: prateleira=%s m=%s p=%s preco=%s qtd=%s",
                            expo.id, mercadinho_id, produto_id, preco, quantidade)
        return expo

    def devolver(self, prateleira_id: int, quantidade: int) -> Optional[PrateleiraProduto]:
        expo = self.session.get(PrateleiraProduto, prateleira_id)
        if expo is None:
            return None
        expo.quantidade_prateleira = int(expo.quantidade_prateleira) + quantidade
        self.session.flush()
        estoque_logger.info("DEVOLUCAO_PRATELEIRA: prateleira=%s qtd=%s", prateleira_id, quantidade)
        return expo

    def ajustar_central(self, produto_id: int, delta: int) -> bool:
        """Soma ``delta`` (pode ser negativo) ao estoque central sem deixá-lo negativo."""
        stmt = update(Produto).where(Produto.id == produto_id)
        if delta < 0:
            stmt = stmt.where(Produto.quantidade_atual >= -delta)
        result = self.session.execute(
            stmt.values(quantidade_atual=Produto.quantidade_atual + delta)
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount == 1
