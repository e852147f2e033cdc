from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from sqlalchemy.exc import IntegrityError

from models.customer_model import Customer
from models.extensions import db
from services.errors import ValidationError
from services.input_validation import (
    MAX_NAME_LEN,
    normalize_email,
    normalize_phone,
    normalize_text,
    validate_password,
)
from services.permissions import json_error
from services.rate_limiter import enforce

auth_bp = Blueprint("auth", __name__)


def _payload() -> dict:
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def _customer_json(customer: Customer) -> dict:
    return {"id": customer.id, "email": customer.email, "name": customer.name}


@auth_bp.post("/register")
def register():
    data = _payload()
    email = normalize_email(data.get("email"))

    rate_block = enforce("register", identifier=email)
    if rate_block is not None:
        return rate_block

    name = normalize_text(data.get("name"), max_len=MAX_NAME_LEN, min_len=2)
    invalid = []
    if not email:
        invalid.append("email")
    if not name:
        invalid.append("name")
    try:
        password = validate_password(data.get("password"))
    except ValidationError as exc:
        invalid.extend(exc.fields)
        password = None
    if invalid:
        return json_error("validation_error", 422, fields=invalid)

    if Customer.query.filter_by(email=email).first():
        return json_error("email_in_use", 409)

    customer = Customer(email=email, name=name, phone=normalize_phone(data.get("phone")))
    customer.set_password(password)
    db.session.add(customer)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return json_error("email_in_use", 409)

    login_user(customer)
    return jsonify({"ok": True, "customer": _customer_json(customer)}), 201


@auth_bp.post("/login")
def login():
    data = _payload()
    email = normalize_email(data.get("email"))
    password = data.get("password") or ""

    rate_block = enforce("login", identifier=email)
    if rate_block is not None:
        return rate_block

    if not email or not password:
        return json_error("missing_credentials", 400)

    customer = Customer.query.filter_by(email=email).first()
    if not customer or not customer.check_password(password) or not customer.is_active:
        return json_error("invalid_credentials", 401)

    login_user(customer)
    return jsonify({"ok": True, "customer": _customer_json(customer)})


@auth_bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"ok": True})


@auth_bp.get("/me")
@login_required
def me():
    return jsonify({"ok": True, "customer": _customer_json(current_user)})
