# mercadinho/auth/routes.py
from __future__ import annotations

from flask import Blueprint, jsonify
from flask_login import login_user, logout_user, login_required, current_user

from mercadinho.core.forms import LoginForm
from mercadinho.core.models import User
from mercadinho.logger import admin_logger

bp = Blueprint("auth", __name__)


def _usuario_dict(user: User) -> dict:
    return {"id": user.id, "nome": user.nome, "email": user.email, "role": user.role}


@bp.get("/me")
def me():
    if not getattr(current_user, "is_authenticated", False):
        return jsonify(ok=False, mensagem="Login necessário"), 401
    return jsonify(ok=True, usuario=_usuario_dict(current_user))


@bp.post("/login")
def login_post():
    form = LoginForm()
    if not form.validate_on_submit():
        return jsonify(ok=False, mensagem="Credenciais inválidas", erros=form.errors), 400

    user = User.query.filter(User.email == form.email.data.lower()).first()
    if not user or not user.check_password(form.password.data) or not user.ativo:
        admin_logger.warning("LOGIN_RECUSADO: email=%s", form.email.data.lower())
        return jsonify(ok=False, mensagem="Usuário ou senha incorretos"), 401

    login_user(user, remember=form.remember.data)
    admin_logger.info("LOGIN: user=%s", user.id)
    return jsonify(ok=True, usuario=_usuario_dict(user))


@bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify(ok=True, mensagem="Sessão encerrada.")
