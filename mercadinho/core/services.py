# mercadinho/core/services.py
from __future__ import annotations

from collections import OrderedDict
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Dict, Any

from sqlalchemy.exc import IntegrityError

from mercadinho.extensions import db
from mercadinho.core.estoque import EstoquePrateleira
from mercadinho.core.models import (
    _as_money, normalize_barcode,
    Mercadinho, User, Produto, PrateleiraProduto, EntradaEstoque,
    Cliente, Promocao, Compra, ItemCompra, AuditLog,
)
from mercadinho.logger import admin_logger

# =============================================================================
# Exceções e utilidades
# =============================================================================

class ServiceError(Exception):
    codigo = "erro"
    mensagem_padrao = "Operação não permitida"

    def __init__(self, mensagem: Optional[str] = None):
        super().__init__(mensagem or self.mensagem_padrao)

    @property
    def mensagem(self) -> str:
        return str(self)

class ProdutoNaoEncontrado(ServiceError):
    codigo = "produto_nao_encontrado"
    mensagem_padrao = "Produto não encontrado"

class SemEstoque(ServiceError):
    codigo = "sem_estoque"
    mensagem_padrao = "Produto sem estoque"

class QuantidadeMaximaAtingida(ServiceError):
    codigo = "quantidade_maxima"
    mensagem_padrao = "Quantidade máxima disponível atingida"

class ItemNaoEncontrado(ServiceError):
    codigo = "item_nao_encontrado"
    mensagem_padrao = "Item não está no carrinho"

class EstoqueAlterado(ServiceError):
    codigo = "estoque_alterado"

    def __init__(self, produto_nome: str, disponivel: int = 0):
        self.produto_nome = produto_nome
        self.disponivel = disponivel
        super().__init__(f"Estoque de {produto_nome} mudou: restam {disponivel}. Ajuste o carrinho.")

class FalhaNaLiquidacao(ServiceError):
    codigo = "falha_liquidacao"
    mensagem_padrao = "Erro ao finalizar compra"

def _ensure(cond: bool, msg: str):
    if not cond:
        raise ServiceError(msg)

def _row_to_dict(obj, keys: Iterable[str]) -> Dict[str, Any]:
    return {k: _jsonable(getattr(obj, k, None)) for k in keys}

def _jsonable(v):
    if isinstance(v, Decimal):
        return str(v)
    if isinstance(v, datetime):
        return v.isoformat()
    return v

@contextmanager
def transaction():
    try:
        yield
        db.session.commit()
    except IntegrityError as ie:
        db.session.rollback()
        raise ServiceError(f"Violação de integridade: {ie.orig}") from ie
    except ServiceError:
        db.session.rollback()
        raise
    except Exception as e:
        db.session.rollback()
        raise ServiceError(str(e)) from e

def audit_log(entidade: str, entidade_id: Optional[int], acao: str, payload: dict,
              user: Optional[User] = None, mercadinho_id: Optional[int] = None):
    log = AuditLog(
        mercadinho_id=mercadinho_id,
        entidade=entidade,
        entidade_id=entidade_id,
        acao=acao,
        payload_json=payload or {},
        user_id=user.id if user else None,
    )
    db.session.add(log)

def require_role(user: User, allowed: Iterable[str]):
    if not user or not getattr(user, "ativo", False):
        raise ServiceError("Usuário inválido ou inativo")
    if user.role not in allowed and "*" not in allowed:
        raise ServiceError("Permissão negada")

def _mercadinho_valido(mercadinho_id: int) -> Mercadinho:
    m = db.session.get(Mercadinho, mercadinho_id)
    _ensure(m is not None and m.ativo, "Mercadinho inválido")
    return m

def _produto_valido(produto_id: int) -> Produto:
    p = db.session.get(Produto, produto_id)
    _ensure(p is not None, "Produto não encontrado")
    return p

# =============================================================================
# Catálogo
# =============================================================================

def buscar_produto_por_codigo(codigo: Optional[str]) -> Produto:
    digits = normalize_barcode(codigo)
    if not digits:
        raise ProdutoNaoEncontrado()
    p = Produto.query.filter_by(codigo_barras=digits, ativo=True).first()
    if not p:
        raise ProdutoNaoEncontrado()
    return p

def criar_produto(
    nome: str,
    codigo_barras: Optional[str] = None,
    preco_compra: Decimal = Decimal("0"),
    preco_venda: Decimal = Decimal("0"),
    ativo: bool = True,
    created_by: Optional[User] = None
) -> Produto:
    _ensure(bool(nome and nome.strip()), "Nome do produto obrigatório")
    codigo = normalize_barcode(codigo_barras)
    if codigo:
        _ensure(Produto.query.filter_by(codigo_barras=codigo).first() is None, "Código de barras já cadastrado")
    _ensure(_as_money(preco_venda) >= 0 and _as_money(preco_compra) >= 0, "Preço inválido")
    p = Produto(
        nome=nome.strip(),
        codigo_barras=codigo,
        preco_compra=_as_money(preco_compra),
        preco_venda=_as_money(preco_venda),
        quantidade_atual=0,
        ativo=ativo,
    )
    db.session.add(p)
    db.session.flush()
    audit_log("Produto", p.id, "created", _row_to_dict(p, ["nome", "codigo_barras", "preco_venda"]), created_by)
    return p

def atualizar_produto(
    produto_id: int,
    dados: Dict[str, Any],
    updated_by: Optional[User] = None
) -> Produto:
    p = _produto_valido(produto_id)
    campos_editaveis = {"nome", "codigo_barras", "preco_compra", "preco_venda", "ativo",
                        "alerta_estoque_baixo_ativo", "alerta_estoque_baixo_min"}
    before = _row_to_dict(p, list(campos_editaveis))
    for k, v in dados.items():
        if k not in campos_editaveis or v is None:
            continue
        if k == "codigo_barras":
            codigo = normalize_barcode(v)
            if codigo:
                outro = Produto.query.filter(Produto.codigo_barras == codigo, Produto.id != p.id).first()
                _ensure(outro is None, "Código de barras já cadastrado")
            p.codigo_barras = codigo
        elif k in {"preco_compra", "preco_venda"}:
            valor = _as_money(v)
            _ensure(valor >= 0, "Preço inválido")
            setattr(p, k, valor)
        elif k == "nome":
            _ensure(bool(str(v).strip()), "Nome do produto obrigatório")
            p.nome = str(v).strip()
        elif k == "alerta_estoque_baixo_min":
            try:
                minimo = int(v)
            except (TypeError, ValueError):
                raise ServiceError("Mínimo do alerta inválido")
            _ensure(minimo >= 0, "Mínimo do alerta inválido")
            p.alerta_estoque_baixo_min = minimo
        else:
            setattr(p, k, bool(v))
    audit_log("Produto", p.id, "updated", {"before": before, "after": _row_to_dict(p, list(campos_editaveis))}, updated_by)
    return p

# =============================================================================
# Estoque: entradas, central e prateleiras
# =============================================================================

def registrar_entrada_estoque(
    produto_id: int,
    quantidade_total: int,
    preco_compra: Decimal,
    preco_venda: Decimal,
    rateio_central: int = 0,
    rateios: Optional[Dict[int, int]] = None,
    user: Optional[User] = None,
    estoque: Optional[EstoquePrateleira] = None,
) -> EntradaEstoque:
    """
    Registra a chegada de mercadoria e a divide entre o depósito central e
    as prateleiras dos mercadinhos. A soma do rateio tem de bater com o total.
    """
    estoque = estoque or EstoquePrateleira()
    rateios = {int(k): int(v or 0) for k, v in (rateios or {}).items()}
    _ensure(quantidade_total > 0, "Quantidade deve ser positiva")
    _ensure(rateio_central >= 0 and all(v >= 0 for v in rateios.values()), "Rateio não pode ser negativo")
    soma = rateio_central + sum(rateios.values())
    _ensure(soma == quantidade_total, f"Soma dos rateios ({soma}) deve ser igual à quantidade total ({quantidade_total})")
    preco_compra = _as_money(preco_compra)
    preco_venda = _as_money(preco_venda)
    _ensure(preco_compra >= 0 and preco_venda >= 0, "Preço inválido")

    p = _produto_valido(produto_id)
    for mercadinho_id, qtd in rateios.items():
        if qtd > 0:
            _mercadinho_valido(mercadinho_id)

    entrada = EntradaEstoque(
        produto_id=p.id,
        quantidade_total=quantidade_total,
        preco_compra_entrada=preco_compra,
        preco_venda_sugerido=preco_venda,
        rateio_central=rateio_central,
        rateios={str(k): v for k, v in rateios.items()},
        created_by_id=user.id if user else None,
    )
    db.session.add(entrada)

    p.preco_compra = preco_compra
    p.preco_venda = preco_venda
    if rateio_central:
        estoque.ajustar_central(p.id, rateio_central)

    # Preço novo vira exposição nova; mesmo preço soma na existente
    for mercadinho_id, qtd in rateios.items():
        if qtd > 0:
            estoque.creditar(mercadinho_id, p.id, preco_venda, qtd)

    db.session.flush()
    audit_log("EntradaEstoque", entrada.id, "entrada", {
        "produto_id": p.id, "quantidade_total": quantidade_total,
        "rateio_central": rateio_central, "rateios": entrada.rateios,
        "preco_venda": str(preco_venda),
    }, user)
    admin_logger.info("ENTRADA_ESTOQUE: produto=%s total=%s central=%s rateios=%s",
                      p.id, quantidade_total, rateio_central, rateios)
    return entrada

def ajuste_estoque_central(produto_id: int, qtd: int, tipo: str, motivo: str = "",
                           user: Optional[User] = None, estoque: Optional[EstoquePrateleira] = None) -> Produto:
    _ensure(tipo in ("entrada", "saida"), "Tipo de ajuste inválido")
    _ensure(qtd > 0, "Quantidade deve ser positiva")
    estoque = estoque or EstoquePrateleira()
    p = _produto_valido(produto_id)
    delta = qtd if tipo == "entrada" else -qtd
    if not estoque.ajustar_central(p.id, delta):
        raise ServiceError(f"Quantidade maior que o estoque disponível (há {estoque.quantidade_central(p.id)})")
    audit_log("Produto", p.id, "adjust", {"qtd": qtd, "tipo": tipo, "motivo": (motivo or "").strip()[:200]}, user)
    return p

def transferir_para_prateleira(
    produto_id: int,
    mercadinho_id: int,
    quantidade: int,
    preco_venda: Optional[Decimal] = None,
    user: Optional[User] = None,
    estoque: Optional[EstoquePrateleira] = None,
) -> PrateleiraProduto:
    """Leva unidades do depósito central para a prateleira de um mercadinho."""
    estoque = estoque or EstoquePrateleira()
    _ensure(quantidade > 0, "Quantidade deve ser positiva")
    p = _produto_valido(produto_id)
    _mercadinho_valido(mercadinho_id)
    preco = _as_money(preco_venda if preco_venda is not None else p.preco_venda)
    _ensure(preco >= 0, "Preço inválido")
    if not estoque.ajustar_central(p.id, -quantidade):
        raise ServiceError(f"Estoque central insuficiente (há {estoque.quantidade_central(p.id)})")
    expo = estoque.creditar(mercadinho_id, p.id, preco, quantidade)
    audit_log("PrateleiraProduto", expo.id, "transfer", {
        "produto_id": p.id, "quantidade": quantidade, "preco": str(preco),
    }, user, mercadinho_id)
    return expo

def ajustar_prateleira(prateleira_id: int, quantidade: int, motivo: str = "", user: Optional[User] = None) -> PrateleiraProduto:
    expo = db.session.get(PrateleiraProduto, prateleira_id)
    _ensure(expo is not None, "Prateleira não encontrada")
    _ensure(quantidade >= 0, "Quantidade não pode ser negativa")
    before = int(expo.quantidade_prateleira)
    expo.quantidade_prateleira = quantidade
    audit_log("PrateleiraProduto", expo.id, "adjust", {
        "before": before, "after": quantidade, "motivo": (motivo or "").strip()[:200],
    }, user, expo.mercadinho_id)
    return expo

def alternar_prateleira(prateleira_id: int, user: Optional[User] = None) -> PrateleiraProduto:
    expo = db.session.get(PrateleiraProduto, prateleira_id)
    _ensure(expo is not None, "Prateleira não encontrada")
    expo.ativo = not expo.ativo
    audit_log("PrateleiraProduto", expo.id, "toggled", {"ativo": expo.ativo}, user, expo.mercadinho_id)
    return expo

def listar_prateleiras(mercadinho_id: int, produto_id: Optional[int] = None, incluir_vazias: bool = False) -> List[PrateleiraProduto]:
    q = PrateleiraProduto.query.filter_by(mercadinho_id=mercadinho_id)
    if produto_id:
        q = q.filter_by(produto_id=produto_id)
    if not incluir_vazias:
        q = q.filter(PrateleiraProduto.quantidade_prateleira > 0)
    return q.order_by(PrateleiraProduto.produto_id, PrateleiraProduto.preco_venda_prateleira, PrateleiraProduto.id).all()

def prateleiras_estoque_baixo(mercadinho_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    Exposições ativas ainda com estoque, mas no mínimo de alerta do produto
    ou abaixo dele. Só entram produtos com o alerta ligado; as zeradas
    ficam de fora porque já somem do quiosque.
    """
    q = (
        db.session.query(PrateleiraProduto, Produto, Mercadinho)
        .join(Produto, Produto.id == PrateleiraProduto.produto_id)
        .join(Mercadinho, Mercadinho.id == PrateleiraProduto.mercadinho_id)
        .filter(
            PrateleiraProduto.ativo.is_(True),
            PrateleiraProduto.quantidade_prateleira > 0,
            PrateleiraProduto.quantidade_prateleira <= Produto.alerta_estoque_baixo_min,
            Produto.alerta_estoque_baixo_ativo.is_(True),
        )
    )
    if mercadinho_id:
        q = q.filter(PrateleiraProduto.mercadinho_id == mercadinho_id)
    q = q.order_by(PrateleiraProduto.quantidade_prateleira, Produto.nome, PrateleiraProduto.id)
    return [
        {
            "prateleira_id": expo.id,
            "produto_id": p.id,
            "produto_nome": p.nome,
            "mercadinho_id": m.id,
            "mercadinho_nome": m.nome,
            "preco_venda_prateleira": str(_as_money(expo.preco_venda_prateleira)),
            "quantidade_prateleira": int(expo.quantidade_prateleira),
            "alerta_estoque_baixo_min": int(p.alerta_estoque_baixo_min),
        }
        for expo, p, m in q
    ]

# =============================================================================
# Promoções
# =============================================================================

def criar_promocao(
    nome: str,
    desconto_percentual: Decimal,
    tipo: str = "global",
    produto_id: Optional[int] = None,
    inicia_em: Optional[datetime] = None,
    termina_em: Optional[datetime] = None,
    ativa: bool = True,
    user: Optional[User] = None,
) -> Promocao:
    _ensure(bool(nome and nome.strip()), "Nome da promoção obrigatório")
    _ensure(tipo in ("global", "produto"), "Tipo de promoção inválido")
    pct = Decimal(str(desconto_percentual or 0))
    _ensure(Decimal("0") < pct <= Decimal("100"), "Desconto deve estar entre 0 e 100%")
    if tipo == "produto":
        _ensure(produto_id is not None, "Selecione um produto")
        _produto_valido(produto_id)
    else:
        produto_id = None
    inicia_em = inicia_em or datetime.utcnow()
    _ensure(termina_em is None or termina_em > inicia_em, "Término deve ser depois do início")
    promo = Promocao(
        nome=nome.strip(),
        desconto_percentual=pct,
        tipo=tipo,
        produto_id=produto_id,
        inicia_em=inicia_em,
        termina_em=termina_em,
        ativa=ativa,
    )
    db.session.add(promo)
    db.session.flush()
    audit_log("Promocao", promo.id, "created", _row_to_dict(promo, ["nome", "desconto_percentual", "tipo", "produto_id"]), user)
    return promo

def alternar_promocao(promocao_id: int, user: Optional[User] = None) -> Promocao:
    promo = db.session.get(Promocao, promocao_id)
    _ensure(promo is not None, "Promoção não encontrada")
    promo.ativa = not promo.ativa
    audit_log("Promocao", promo.id, "toggled", {"ativa": promo.ativa}, user)
    return promo

# =============================================================================
# Clientes e caderneta
# =============================================================================

def criar_cliente(nome: str, telefone: Optional[str] = None, user: Optional[User] = None) -> Cliente:
    _ensure(bool(nome and nome.strip()), "Nome do cliente obrigatório")
    c = Cliente(nome=nome.strip(), telefone=(telefone or "").strip() or None, ativo=True)
    db.session.add(c)
    db.session.flush()
    audit_log("Cliente", c.id, "created", {"nome": c.nome}, user)
    return c

def debitos_caderneta(cliente_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """Compras em caderneta ainda não pagas, agrupadas por cliente e mês."""
    q = (
        db.session.query(
            Compra.cliente_id,
            Cliente.nome,
            Compra.mes_referencia,
            db.func.sum(Compra.valor_total).label("total"),
            db.func.count(Compra.id).label("compras"),
        )
        .join(Cliente, Cliente.id == Compra.cliente_id)
        .filter(Compra.tipo_pagamento == "caderneta", Compra.paga.is_(False))
    )
    if cliente_id:
        q = q.filter(Compra.cliente_id == cliente_id)
    q = q.group_by(Compra.cliente_id, Cliente.nome, Compra.mes_referencia).order_by(Cliente.nome, Compra.mes_referencia)

    por_cliente: "OrderedDict[int, Dict[str, Any]]" = OrderedDict()
    for row in q:
        entry = por_cliente.setdefault(row.cliente_id, {
            "cliente_id": row.cliente_id, "nome": row.nome, "meses": [], "total": _as_money(0),
        })
        total = _as_money(row.total or 0)
        entry["meses"].append({"mes_referencia": row.mes_referencia, "total": str(total), "compras": int(row.compras)})
        entry["total"] = _as_money(entry["total"] + total)
    out = []
    for entry in por_cliente.values():
        entry["total"] = str(entry["total"])
        out.append(entry)
    return out

def marcar_pago_mes(cliente_id: int, mes_referencia: str, user: Optional[User] = None) -> int:
    compras = Compra.query.filter_by(
        cliente_id=cliente_id, mes_referencia=mes_referencia, tipo_pagamento="caderneta", paga=False
    ).all()
    _ensure(len(compras) > 0, "Nenhuma compra em aberto neste mês")
    agora = datetime.utcnow()
    for c in compras:
        c.paga = True
        c.paga_em = agora
    audit_log("Cliente", cliente_id, "caderneta_paga", {"mes_referencia": mes_referencia, "compras": len(compras)}, user)
    return len(compras)

# =============================================================================
# Compras
# =============================================================================

def listar_compras(
    cliente_id: Optional[int] = None,
    mercadinho_id: Optional[int] = None,
    tipo_pagamento: Optional[str] = None,
    mes_referencia: Optional[str] = None,
    desde: Optional[datetime] = None,
    ate: Optional[datetime] = None,
    limite: int = 200,
) -> List[Compra]:
    """Compras mais recentes primeiro; ``ate`` é exclusivo."""
    q = Compra.query
    if cliente_id:
        q = q.filter(Compra.cliente_id == cliente_id)
    if mercadinho_id:
        q = q.filter(Compra.mercadinho_id == mercadinho_id)
    if tipo_pagamento:
        _ensure(tipo_pagamento in ("caderneta", "pix"), "Tipo de pagamento inválido")
        q = q.filter(Compra.tipo_pagamento == tipo_pagamento)
    if mes_referencia:
        q = q.filter(Compra.mes_referencia == mes_referencia)
    if desde:
        q = q.filter(Compra.data_compra >= desde)
    if ate:
        q = q.filter(Compra.data_compra < ate)
    return q.order_by(Compra.data_compra.desc(), Compra.id.desc()).limit(limite).all()

# =============================================================================
# Estornos
# =============================================================================

def estornar_item(
    item_id: int,
    devolver_estoque: bool = True,
    motivo: Optional[str] = None,
    prateleira_id: Optional[int] = None,
    user: Optional[User] = None,
    estoque: Optional[EstoquePrateleira] = None,
) -> Dict[str, Any]:
    """
    Remove um item de compra. Com ``devolver_estoque``, as unidades voltam
    para a prateleira de origem (ou para ``prateleira_id``). A compra é
    apagada quando perde o último item.
    """
    estoque = estoque or EstoquePrateleira()
    item = db.session.get(ItemCompra, item_id)
    _ensure(item is not None, "Item de compra não encontrado")
    compra = item.compra
    destino = prateleira_id or item.prateleira_id

    if devolver_estoque:
        _ensure(destino is not None, "Item sem prateleira de origem; informe a prateleira")
        expo = db.session.get(PrateleiraProduto, destino)
        _ensure(expo is not None and expo.produto_id == item.produto_id, "Prateleira não corresponde ao produto")
        _ensure(expo.mercadinho_id == compra.mercadinho_id, "Prateleira de outro mercadinho")
        estoque.devolver(destino, int(item.quantidade))

    payload = {
        "compra_id": compra.id, "produto_id": item.produto_id, "quantidade": int(item.quantidade),
        "valor_total": str(item.valor_total), "devolver_estoque": devolver_estoque,
        "prateleira_id": destino if devolver_estoque else None, "motivo": motivo,
    }
    compra.itens.remove(item)
    db.session.flush()

    compra_removida = len(compra.itens) == 0
    if compra_removida:
        db.session.delete(compra)
    else:
        compra.valor_total = _as_money(sum((_as_money(i.valor_total) for i in compra.itens), Decimal("0")))
    audit_log("ItemCompra", item_id, "refund", payload, user, compra.mercadinho_id)
    admin_logger.info("ESTORNO_ITEM: %s", payload)
    return {
        "compra_id": payload["compra_id"],
        "compra_removida": compra_removida,
        "valor_total": None if compra_removida else str(compra.valor_total),
    }

def estornar_compra(compra_id: int, devolver_estoque: bool = True, motivo: Optional[str] = None,
                    user: Optional[User] = None, estoque: Optional[EstoquePrateleira] = None) -> int:
    compra = db.session.get(Compra, compra_id)
    _ensure(compra is not None, "Compra não encontrada")
    itens = [i.id for i in compra.itens]
    _ensure(len(itens) > 0, "Compra sem itens")
    for item_id in itens:
        estornar_item(item_id, devolver_estoque=devolver_estoque, motivo=motivo, user=user, estoque=estoque)
    return len(itens)
