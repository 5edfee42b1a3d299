# mercadinho/extensions.py
from __future__ import annotations

from flask import jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager, AnonymousUserMixin
from flask_wtf import CSRFProtect
from flask_mail import Mail
from flask_cors import CORS
from sqlalchemy import event
from sqlalchemy.engine import Engine

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
csrf = CSRFProtect()
mail = Mail()


class Visitante(AnonymousUserMixin):
    """Quem usa o quiosque sem login de retaguarda."""
    role = None
    ativo = False


def _fk_sqlite(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    mail.init_app(app)
    # Tablets carregam a interface do quiosque de outra origem
    CORS(app, supports_credentials=True, resources={r"/kiosk/*": {"origins": "*"}})

    # SQLite só respeita as FKs com o pragma ligado em cada conexão
    if app.config.get("SQLALCHEMY_DATABASE_URI", "").startswith("sqlite"):
        if not event.contains(Engine, "connect", _fk_sqlite):
            event.listen(Engine, "connect", _fk_sqlite)

    _configurar_login()


def _configurar_login():
    # Import tardio para evitar import circular
    from mercadinho.core.models import User

    login_manager.anonymous_user = Visitante

    @login_manager.user_loader
    def load_user(user_id: str):
        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    # Retaguarda é só API; sem tela de login para redirecionar
    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify(ok=False, codigo="login_necessario", mensagem="Login necessário"), 401
