from __future__ import annotations

import re
import uuid
from dataclasses import dataclass

from flask import g, has_request_context, request
from flask_login import current_user

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


@dataclass(frozen=True)
class RequestContext:
    """Quem está chamando e o id de correlação que vai em todo log."""

    customer_id: int | None
    correlation_id: str

    @classmethod
    def system(cls, label: str = "system") -> "RequestContext":
        # scripts e jobs: sem cliente, correlação própria
        return cls(customer_id=None, correlation_id=f"{label}-{uuid.uuid4().hex[:12]}")


def _incoming_request_id() -> str:
    raw = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    if raw and _REQUEST_ID_RE.match(raw):
        return raw
    return uuid.uuid4().hex


def build_request_context() -> RequestContext:
    customer_id = None
    if current_user and current_user.is_authenticated:
        customer_id = current_user.id
    return RequestContext(customer_id=customer_id, correlation_id=_incoming_request_id())


def current_context() -> RequestContext:
    if not has_request_context():
        return RequestContext.system()
    ctx = getattr(g, "request_context", None)
    if ctx is None:
        ctx = build_request_context()
        g.request_context = ctx
    return ctx
