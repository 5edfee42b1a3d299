# mercadinho/core/alertas.py
"""
Divergências de estoque: baixa de prateleira que falhou depois de a
compra já estar gravada. A compra continua valendo; a divergência vai
para o log, para a trilha de auditoria e, se configurado, por e-mail.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional

from flask import current_app
from flask_mail import Message
from sqlalchemy.exc import SQLAlchemyError

from mercadinho.extensions import db, mail
from mercadinho.core.models import AuditLog
from mercadinho.logger import checkout_logger


@dataclass(frozen=True)
class DivergenciaEstoque:
    compra_id: int
    produto_id: int
    prateleira_id: int
    quantidade: int
    motivo: str
    mercadinho_id: Optional[int] = None


def reportar_divergencia(div: DivergenciaEstoque) -> None:
    checkout_logger.error(
        "DIVERGENCIA_ESTOQUE: compra=%s produto=%s prateleira=%s qtd=%s motivo=%s",
        div.compra_id, div.produto_id, div.prateleira_id, div.quantidade, div.motivo,
    )
    try:
        db.session.add(AuditLog(
            mercadinho_id=div.mercadinho_id,
            entidade="PrateleiraProduto",
            entidade_id=div.prateleira_id,
            acao="stock_drift",
            payload_json=asdict(div),
        ))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        checkout_logger.exception("Falha ao gravar divergência na auditoria: compra=%s", div.compra_id)

    destino = current_app.config.get("ALERTA_DIVERGENCIA_EMAIL")
    if destino:
        _enviar_email(destino, div)


def _enviar_email(destino: str, div: DivergenciaEstoque) -> None:
    msg = Message(
        subject=f"[Mercadinho] Divergência de estoque na compra {div.compra_id}",
        recipients=[destino],
        body=(
            f"A compra {div.compra_id} foi gravada, mas a baixa de {div.quantidade} "
            f"unidade(s) do produto {div.produto_id} na prateleira {div.prateleira_id} falhou.\n"
            f"Motivo: {div.motivo}\n"
            "Confira a contagem física da prateleira."
        ),
    )
    try:
        mail.send(msg)
    except OSError:
        checkout_logger.exception("Falha ao enviar alerta de divergência: compra=%s", div.compra_id)
