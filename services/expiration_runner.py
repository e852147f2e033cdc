from __future__ import annotations

import logging
from datetime import date

from services import subscription_store
from services.request_context import RequestContext

logger = logging.getLogger(__name__)


def run_expiration(today: date | None = None, limit: int = 200, *, ctx: RequestContext | None = None) -> dict:
    """Marca como EXPIRED as assinaturas ACTIVE vencidas (end_date < hoje).

    A porta continua com a assinatura: uma renovação dentro do prazo reativa
    sem trocar de instância.
    """

    ctx = ctx or RequestContext.system("expire")
    today = today or date.today()
    expired = subscription_store.expire_due(today, limit=limit)
    logger.info(
        "[%s] Expiração %s: %s assinaturas expiradas",
        ctx.correlation_id,
        today.isoformat(),
        len(expired),
    )
    return {"count": len(expired), "subscription_ids": expired}
