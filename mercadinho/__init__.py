# mercadinho/__init__.py
from __future__ import annotations

from flask import Flask, jsonify
from .extensions import init_extensions, db, csrf
from .logger import configure_logging

def create_app(config_object: str = "config.Config"):
    app = Flask(__name__)

    # Config básica
    app.config.from_object(config_object)
    # Segurança adicional padrão
    app.config.setdefault("SESSION_COOKIE_SAMESITE", "Lax")
    app.config.setdefault("SESSION_COOKIE_SECURE", False)
    app.config.setdefault("WTF_CSRF_TIME_LIMIT", None)

    configure_logging(app)
    init_extensions(app)

    # Blueprints
    from .auth.routes import bp as auth_bp
    from .views.kiosk import bp as kiosk_bp
    from .views.admin import bp as admin_bp

    # Tablet do quiosque não tem sessão de formulário; fala só JSON
    csrf.exempt(kiosk_bp)

    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(kiosk_bp, url_prefix="/kiosk")
    app.register_blueprint(admin_bp, url_prefix="/admin")

    # Healthcheck simples
    @app.get("/health")
    def health():
        return jsonify(ok=True)

    # Erros básicos
    from .core.services import ServiceError

    @app.errorhandler(ServiceError)
    def service_error(e):
        return jsonify(ok=False, codigo=e.codigo, mensagem=e.mensagem), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify(ok=False, codigo="nao_encontrado", mensagem="Recurso não encontrado"), 404

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify(ok=False, codigo="proibido", mensagem="Permissão negada"), 403

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify(ok=False, codigo="metodo_invalido", mensagem="Método não permitido"), 405

    @app.errorhandler(500)
    def server_error(e):
        return jsonify(ok=False, codigo="erro_interno", mensagem="Erro interno"), 500

    # Primeira execução: cria admin e mercadinho padrão
    from .core.models import ensure_admin
    with app.app_context():
        db.create_all()
        ensure_admin()

    return app
