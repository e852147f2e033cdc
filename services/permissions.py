"""CSRF da sessão e posse de recursos do cliente logado.

A API responde só JSON; o único endpoint sem sessão é o webhook do gateway,
que se autentica pela assinatura HMAC.
"""

from __future__ import annotations

import secrets

from flask import jsonify, request, session

from services import subscription_store
from services.records import SubscriptionRecord

CSRF_SESSION_KEY = "_csrf_token"
CSRF_HEADERS = ("X-CSRF-Token", "X-CSRFToken")
UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

CSRF_EXEMPT_ENDPOINTS = frozenset({"webhooks.payment_webhook"})


def json_error(error: str, status: int, **extra):
    body = {"error": error}
    body.update(extra)
    return jsonify(body), status


def get_csrf_token() -> str:
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[CSRF_SESSION_KEY] = token
    return token


def _submitted_token() -> str | None:
    for header in CSRF_HEADERS:
        if request.headers.get(header):
            return request.headers[header]
    if request.is_json:
        value = (request.get_json(silent=True) or {}).get("csrf_token")
        return value if isinstance(value, str) else None
    return request.form.get("csrf_token")


def csrf_rejection():
    """None se a requisição pode seguir; 403 JSON se o token não confere."""
    if request.method not in UNSAFE_METHODS or request.endpoint in CSRF_EXEMPT_ENDPOINTS:
        return None
    expected = session.get(CSRF_SESSION_KEY)
    submitted = _submitted_token()
    if expected and submitted and secrets.compare_digest(submitted, expected):
        return None
    return json_error("csrf_failed", 403)


def owned_subscription(subscription_id: int, customer_id: int | None) -> SubscriptionRecord | None:
    # assinatura de outro cliente é tratada como inexistente
    subscription = subscription_store.get_subscription(subscription_id)
    if subscription is None or customer_id is None or subscription.customer_id != customer_id:
        return None
    return subscription
