# mercadinho/logger.py
"""
Loggers das operações de estoque, checkout e administração.

As operações críticas (baixas de prateleira, finalização de compras,
divergências de estoque) são registradas em loggers nomeados. Quando
``LOG_DIR`` está configurado, cada logger também grava em arquivo próprio.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

estoque_logger = logging.getLogger("mercadinho.estoque")
checkout_logger = logging.getLogger("mercadinho.checkout")
admin_logger = logging.getLogger("mercadinho.admin")

_ARQUIVOS = {
    "mercadinho.estoque": "estoque.log",
    "mercadinho.checkout": "checkout.log",
    "mercadinho.admin": "admin.log",
}


def setup_logger(name: str, log_file: Optional[str] = None, level: int = logging.INFO) -> logging.Logger:
    """
    Configura um logger específico.

    Args:
        name: Nome do logger
        log_file: Caminho do arquivo de log (opcional; sem ele, usa stderr)
        level: Nível de logging

    Returns:
        Logger configurado
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Remove handlers de uma configuração anterior (ex.: vários create_app nos testes)
    while logger.handlers:
        logger.removeHandler(logger.handlers[0])

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file, encoding='utf-8')
    else:
        handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    logger.addHandler(handler)
    return logger


def configure_logging(app) -> None:
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO
    log_dir = app.config.get("LOG_DIR")
    for name, arquivo in _ARQUIVOS.items():
        log_file = str(Path(log_dir) / arquivo) if log_dir else None
        setup_logger(name, log_file, level)
