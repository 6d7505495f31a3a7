from __future__ import annotations

from flask import Blueprint, jsonify
from flask.views import MethodView
from flask_login import current_user, login_user, logout_user

from ..errors import ValidationError
from ..extensions import db
from ..models import Organizer
from ..policies import json_body
from ..security import hash_client_key, verify_client_key


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _organizer_dict(o: Organizer) -> dict:
    return {"id": o.id, "name": o.name, "email": o.email}


class RegisterView(MethodView):
    def post(self):
        data = json_body()
        name = (data.get("name") or "").strip()
        email = (data.get("email") or "").strip().lower() or None
        client_hash = (data.get("client_hash") or "").strip().lower()

        if not name:
            raise ValidationError("Name is required.")
        if not client_hash:
            raise ValidationError("Missing passphrase hash.")
        if Organizer.query.filter_by(name=name).first():
            raise ValidationError("That name is already registered.")
        if email and Organizer.query.filter_by(email=email).first():
            raise ValidationError("That email is already registered.")

        organizer = Organizer(name=name, email=email, passkey_hash=hash_client_key(client_hash))
        db.session.add(organizer)
        db.session.commit()
        return jsonify(_organizer_dict(organizer)), 201


class LoginView(MethodView):
    def post(self):
        data = json_body()
        name = (data.get("name") or "").strip()
        client_hash = (data.get("client_hash") or "").strip().lower()

        if not name:
            raise ValidationError("Name is required.")

        organizer = Organizer.query.filter_by(name=name).first()
        if not organizer or not client_hash or not verify_client_key(client_hash, organizer.passkey_hash):
            return jsonify({"error": "unauthorized", "message": "Invalid name or passphrase."}), 401

        login_user(organizer)
        return jsonify(_organizer_dict(organizer))


class LogoutView(MethodView):
    def post(self):
        if current_user.is_authenticated:
            logout_user()
        return "", 204


auth_bp.add_url_rule("/register", view_func=RegisterView.as_view("register"), methods=["POST"])
auth_bp.add_url_rule("/login", view_func=LoginView.as_view("login"), methods=["POST"])
auth_bp.add_url_rule("/logout", view_func=LogoutView.as_view("logout"), methods=["POST"])
