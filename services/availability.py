"""Consulta consultiva de capacidade antes do checkout.

Não reserva nada: o número pode ficar velho entre esta leitura e o claim.
A garantia real de exclusividade é PortPool.claim_one.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from models.extensions import db
from services.port_pool import PortPool
from services.records import Availability

logger = logging.getLogger(__name__)


class AvailabilityProbe:
    def __init__(self, pool: PortPool | None = None) -> None:
        self.pool = pool or PortPool()

    def check_availability(self, plan_id: int | None = None) -> Availability:
        try:
            count = self.pool.count_available(plan_id)
        except SQLAlchemyError:
            db.session.rollback()
            logger.warning("Falha ao consultar disponibilidade de portas", exc_info=True)
            return Availability(available=False, count=0)
        return Availability(available=count > 0, count=count)
