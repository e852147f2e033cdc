from __future__ import annotations

import os
import re
from dataclasses import dataclass

from services.errors import ValidationError


ALLOWED_PAYMENT_METHODS = {"card", "upi", "netbanking", "wallet"}

MAX_NAME_LEN = int(os.getenv("NAME_MAX_LEN", "140"))
MAX_EMAIL_LEN = int(os.getenv("EMAIL_MAX_LEN", "254"))
MAX_ADDRESS_LEN = int(os.getenv("BILLING_ADDRESS_MAX_LEN", "500"))
MAX_TAX_ID_LEN = int(os.getenv("TAX_ID_MAX_LEN", "32"))
MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class CheckoutForm:
    plan_id: int
    name: str
    email: str
    phone: str
    payment_method: str
    billing_address: str | None = None
    billing_tax_id: str | None = None

    def billing(self) -> dict:
        return {
            "name": self.name,
            "address": self.billing_address,
            "tax_id": self.billing_tax_id,
        }


def normalize_text(value, *, max_len: int, min_len: int = 0) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if min_len and len(text) < min_len:
        return None
    if len(text) > max_len:
        return None
    return text


def normalize_email(value) -> str | None:
    text = normalize_text(value, max_len=MAX_EMAIL_LEN, min_len=3)
    if not text:
        return None
    text = text.lower()
    return text if _EMAIL_RE.match(text) else None


def normalize_phone(value) -> str | None:
    if value is None:
        return None
    digits = re.sub(r"\D", "", str(value))
    if MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        return digits
    return None


def normalize_payment_method(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip().lower()
    return text if text in ALLOWED_PAYMENT_METHODS else None


def parse_positive_int(value) -> int | None:
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in _TRUTHY


def validate_checkout_form(data) -> CheckoutForm:
    """Valida o formulário de checkout. Reúne todos os campos inválidos."""
    data = data or {}
    invalid: list[str] = []

    plan_id = parse_positive_int(data.get("plan_id"))
    if plan_id is None:
        invalid.append("plan_id")
    name = normalize_text(data.get("name"), max_len=MAX_NAME_LEN, min_len=2)
    if not name:
        invalid.append("name")
    email = normalize_email(data.get("email"))
    if not email:
        invalid.append("email")
    phone = normalize_phone(data.get("phone"))
    if not phone:
        invalid.append("phone")
    payment_method = normalize_payment_method(data.get("payment_method"))
    if not payment_method:
        invalid.append("payment_method")
    if not parse_bool(data.get("accept_terms")):
        invalid.append("accept_terms")

    billing_address = None
    if data.get("billing_address"):
        billing_address = normalize_text(data.get("billing_address"), max_len=MAX_ADDRESS_LEN)
        if billing_address is None:
            invalid.append("billing_address")
    billing_tax_id = None
    if data.get("billing_tax_id"):
        billing_tax_id = normalize_text(data.get("billing_tax_id"), max_len=MAX_TAX_ID_LEN)
        if billing_tax_id is None:
            invalid.append("billing_tax_id")

    if invalid:
        raise ValidationError("Dados de checkout inválidos", invalid)

    return CheckoutForm(
        plan_id=plan_id,
        name=name,
        email=email,
        phone=phone,
        payment_method=payment_method,
        billing_address=billing_address or None,
        billing_tax_id=billing_tax_id or None,
    )


def validate_password(password: str | None) -> str:
    """Politica minima: 8 caracteres, ao menos 1 letra e 1 numero."""
    if not password or len(password) < 8:
        raise ValidationError("A senha deve ter ao menos 8 caracteres.", ["password"])
    if not re.search(r"[A-Za-z]", password) or not re.search(r"\d", password):
        raise ValidationError("A senha deve conter letras e numeros.", ["password"])
    return password
