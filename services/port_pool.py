"""Pool de portas (slots de instância).

O claim é um único UPDATE condicional cujo WHERE escolhe o candidato por
subquery. Nunca "SELECT e depois UPDATE": duas assinaturas concorrentes não
podem sair com a mesma porta.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased

from models.extensions import db
from models.port_model import Port as PortModel
from models.port_model import PortAllocationLog
from models.subscription_model import Subscription as SubscriptionModel
from services import subscription_store
from services.records import AllocationAction, ClaimResult, PortRecord, PortStatus

logger = logging.getLogger(__name__)

NONE_AVAILABLE = "NONE_AVAILABLE"


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_dto(m: PortModel) -> PortRecord:
    return PortRecord(
        id=m.id,
        status=m.status,
        instance_url=m.instance_url,
        plan_id=m.plan_id,
        allocated_subscription_id=m.allocated_subscription_id,
        allocated_at=m.allocated_at,
    )


def _available_conditions(model, plan_id):
    conditions = [model.status == PortStatus.AVAILABLE.value]
    if plan_id is not None:
        # afinidade do plano ou pool geral
        conditions.append(or_(model.plan_id == plan_id, model.plan_id.is_(None)))
    return conditions


def get_port(port_id) -> PortRecord | None:
    try:
        port_id = int(port_id)
    except (TypeError, ValueError):
        return None
    m = db.session.get(PortModel, port_id, populate_existing=True)
    return _to_dto(m) if m else None


class PortPool:
    MAX_CLAIM_ATTEMPTS = 3

    def _port_for_subscription(self, subscription_id: int) -> PortModel | None:
        return (
            PortModel.query.filter_by(allocated_subscription_id=subscription_id)
            .populate_existing()
            .first()
        )

    def _customer_of(self, subscription_id: int) -> int | None:
        row = (
            db.session.query(SubscriptionModel.customer_id)
            .filter(SubscriptionModel.id == subscription_id)
            .first()
        )
        return row[0] if row else None

    def _candidate_subquery(self, plan_id):
        candidate = aliased(PortModel)
        ordering = [candidate.created_at.asc(), candidate.id.asc()]
        if plan_id is not None:
            ordering.insert(0, case((candidate.plan_id == plan_id, 0), else_=1))
        stmt = (
            select(candidate.id)
            .where(*_available_conditions(candidate, plan_id))
            .order_by(*ordering)
            .limit(1)
        )
        if db.engine.dialect.name == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)
        return stmt.scalar_subquery()

    def claim_one(
        self,
        subscription_id: int,
        plan_id: int | None = None,
        customer_id: int | None = None,
    ) -> ClaimResult:
        """Aloca uma porta AVAILABLE para a assinatura e faz commit.

        Já tendo porta, devolve a mesma. Sem candidatos: ClaimResult sem porta
        e mensagem NONE_AVAILABLE (não é erro).
        """
        existing = self._port_for_subscription(subscription_id)
        if existing is not None:
            return ClaimResult(port=_to_dto(existing))

        for attempt in range(1, self.MAX_CLAIM_ATTEMPTS + 1):
            now = _now()
            try:
                result = db.session.execute(
                    update(PortModel)
                    .where(
                        PortModel.id == self._candidate_subquery(plan_id),
                        PortModel.status == PortStatus.AVAILABLE.value,
                    )
                    .values(
                        status=PortStatus.ALLOCATED.value,
                        allocated_subscription_id=subscription_id,
                        allocated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
            except IntegrityError:
                # outra chamada já alocou para esta assinatura
                db.session.rollback()
                existing = self._port_for_subscription(subscription_id)
                if existing is not None:
                    return ClaimResult(port=_to_dto(existing))
                raise

            if result.rowcount == 1:
                port = self._port_for_subscription(subscription_id)
                subscription_store.set_port(subscription_id, port.id)
                db.session.add(
                    PortAllocationLog(
                        port_id=port.id,
                        subscription_id=subscription_id,
                        customer_id=customer_id or self._customer_of(subscription_id),
                        action=AllocationAction.ASSIGNED.value,
                        performed_by=None,
                    )
                )
                db.session.commit()
                logger.info(
                    "Porta %s alocada para assinatura %s (%s)",
                    port.id,
                    subscription_id,
                    port.instance_url,
                )
                return ClaimResult(port=_to_dto(port))

            db.session.rollback()
            if self.count_available(plan_id) == 0:
                break
            logger.info(
                "Claim de porta perdeu a corrida (assinatura %s, tentativa %s)",
                subscription_id,
                attempt,
            )

        return ClaimResult(port=None, message=NONE_AVAILABLE)

    def release(self, port_id: int, performed_by: str | None = None) -> bool:
        """ALLOCATED -> AVAILABLE, limpa a assinatura dona e registra RELEASED."""
        port = db.session.get(PortModel, port_id, populate_existing=True)
        if port is None or port.status != PortStatus.ALLOCATED.value:
            return False
        subscription_id = port.allocated_subscription_id

        result = db.session.execute(
            update(PortModel)
            .where(
                PortModel.id == port_id,
                PortModel.status == PortStatus.ALLOCATED.value,
                PortModel.allocated_subscription_id == subscription_id,
            )
            .values(
                status=PortStatus.AVAILABLE.value,
                allocated_subscription_id=None,
                allocated_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            return False

        if subscription_id is not None:
            subscription_store.clear_port(subscription_id, port_id)
        db.session.add(
            PortAllocationLog(
                port_id=port_id,
                subscription_id=subscription_id,
                customer_id=self._customer_of(subscription_id) if subscription_id else None,
                action=AllocationAction.RELEASED.value,
                performed_by=performed_by,
            )
        )
        db.session.commit()
        logger.info("Porta %s liberada (assinatura %s)", port_id, subscription_id)
        return True

    def count_available(self, plan_id: int | None = None) -> int:
        total = (
            db.session.query(func.count(PortModel.id))
            .filter(*_available_conditions(PortModel, plan_id))
            .scalar()
        )
        return int(total or 0)
