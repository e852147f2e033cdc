"""Limite de tentativas por ação (checkout, login, cadastro).

Janela deslizante em memória, por processo. Limite e janela de cada ação
vêm do Config: RATE_LIMIT_<ACAO> e RATE_LIMIT_<ACAO>_WINDOW.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Mapping

from flask import current_app, jsonify, request

# (limite, janela em segundos) quando o Config não define
DEFAULT_LIMITS: dict[str, tuple[int, int]] = {
    "checkout": (10, 600),
    "login": (10, 900),
    "register": (5, 3600),
}


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    retry_after: int = 0


class ActionRateLimiter:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = Lock()
        self._hits: dict[tuple[str, str], deque[float]] = {}

    @staticmethod
    def limits_for(action: str, config: Mapping[str, Any]) -> tuple[int, int]:
        default_limit, default_window = DEFAULT_LIMITS.get(action, (0, 0))
        prefix = f"RATE_LIMIT_{action.upper()}"
        return (
            int(config.get(prefix, default_limit)),
            int(config.get(f"{prefix}_WINDOW", default_window)),
        )

    def hit(self, action: str, subject: str, config: Mapping[str, Any]) -> RateDecision:
        limit, window = self.limits_for(action, config)
        if limit <= 0 or window <= 0:
            return RateDecision(True)

        now = self._clock()
        with self._lock:
            hits = self._hits.setdefault((action, subject), deque())
            while hits and hits[0] <= now - window:
                hits.popleft()
            if len(hits) >= limit:
                return RateDecision(False, max(int(window - (now - hits[0])), 1))
            hits.append(now)
        return RateDecision(True)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


limiter = ActionRateLimiter()


def client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or "unknown"


def request_subject(customer_id: int | None = None, identifier: str | None = None) -> str:
    # cliente logado: por cliente; anônimo: por IP (+ e-mail tentado)
    if customer_id:
        return f"customer:{customer_id}"
    if identifier:
        return f"{client_ip()}:{identifier}"
    return client_ip()


def enforce(action: str, *, customer_id: int | None = None, identifier: str | None = None):
    """None se a tentativa passa; resposta 429 com Retry-After se não."""
    decision = limiter.hit(action, request_subject(customer_id, identifier), current_app.config)
    if decision.allowed:
        return None
    resp = jsonify({"error": "rate_limited"})
    resp.status_code = 429
    resp.headers["Retry-After"] = str(decision.retry_after)
    return resp
