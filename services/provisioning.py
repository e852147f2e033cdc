"""Provisionamento após pagamento confirmado.

Fluxo de um pedido novo:
  1) transição condicional PENDING -> SUCCESS (quem ganhar, provisiona);
  2) criação da assinatura na MESMA transação, commit;
  3) claim de porta numa transação separada.

Falta de porta não desfaz o pagamento: a assinatura fica ACTIVE sem porta e
allocate_pending_ports tenta de novo depois.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Mapping

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models.extensions import db
from services import order_store, plans, subscription_store
from services.errors import NotFoundError
from services.port_pool import NONE_AVAILABLE, PortPool, get_port
from services.records import (
    OrderStatus,
    ProvisioningResult,
    SubscriptionRecord,
    SubscriptionStatus,
    TransitionOutcome,
)
from services.request_context import RequestContext

logger = logging.getLogger(__name__)

ALLOCATION_ERROR = "ALLOCATION_ERROR"


class ProvisioningService:
    def __init__(
        self,
        pool: PortPool | None = None,
        plan_scoped: bool = False,
        ops_alert_email: str | None = None,
    ) -> None:
        self.pool = pool or PortPool()
        self.plan_scoped = plan_scoped
        self.ops_alert_email = ops_alert_email or "ops"

    @classmethod
    def from_config(cls, config: Mapping[str, Any], pool: PortPool | None = None) -> "ProvisioningService":
        return cls(
            pool=pool,
            plan_scoped=bool(config.get("PORT_POOL_PLAN_SCOPED", False)),
            ops_alert_email=config.get("OPS_ALERT_EMAIL"),
        )

    def process_successful_payment(
        self,
        order_id: str,
        gateway_payment_id: str | None = None,
        *,
        ctx: RequestContext | None = None,
        today: date | None = None,
    ) -> ProvisioningResult:
        ctx = ctx or RequestContext.system()
        today = today or date.today()

        order = order_store.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Pedido {order_id} não encontrado")
        plan = plans.get_plan(order.plan_id)
        if plan is None:
            raise NotFoundError(f"Plano {order.plan_id} do pedido {order_id} não encontrado")

        try:
            outcome = order_store.confirm_order_paid(order_id, gateway_payment_id)
            if outcome is TransitionOutcome.NOT_FOUND:
                db.session.rollback()
                raise NotFoundError(f"Pedido {order_id} não encontrado")
            if outcome is TransitionOutcome.ALREADY_PROCESSED:
                db.session.commit()
                return self._already_processed(order_id, ctx)

            subscription = subscription_store.create_subscription(order, plan, today)
            db.session.commit()
        except IntegrityError:
            # subscriptions.order_id é UNIQUE: outra confirmação já criou
            db.session.rollback()
            logger.info("[%s] Assinatura do pedido %s já existia", ctx.correlation_id, order_id)
            return self._already_processed(order_id, ctx)
        except SQLAlchemyError:
            db.session.rollback()
            raise

        logger.info(
            "[%s] Pedido %s pago: assinatura %s criada (%s a %s)",
            ctx.correlation_id,
            order_id,
            subscription.id,
            subscription.start_date.isoformat(),
            subscription.end_date.isoformat(),
        )
        return self._allocate(subscription, ctx)

    def _already_processed(self, order_id: str, ctx: RequestContext) -> ProvisioningResult:
        order = order_store.get_order(order_id)
        if order is not None and order.status is not OrderStatus.SUCCESS:
            logger.warning(
                "[%s] Confirmação de sucesso para pedido %s já finalizado como %s; verificar (%s)",
                ctx.correlation_id,
                order_id,
                order.status.value,
                self.ops_alert_email,
            )
            return ProvisioningResult(
                success=False,
                already_processed=True,
                error=f"order_{order.status.value.lower()}",
            )

        subscription = subscription_store.get_subscription_by_order(order_id)
        port = get_port(subscription.port_id) if subscription and subscription.port_id else None
        logger.info("[%s] Pedido %s já processado", ctx.correlation_id, order_id)
        return ProvisioningResult(
            success=True,
            subscription=subscription,
            port_allocated=port is not None,
            port=port,
            already_processed=True,
        )

    def _allocate(self, subscription: SubscriptionRecord, ctx: RequestContext) -> ProvisioningResult:
        plan_id = subscription.plan_id if self.plan_scoped else None
        try:
            claim = self.pool.claim_one(
                subscription.id, plan_id=plan_id, customer_id=subscription.customer_id
            )
        except SQLAlchemyError:
            db.session.rollback()
            logger.error(
                "[%s] Erro ao alocar porta para assinatura %s",
                ctx.correlation_id,
                subscription.id,
                exc_info=True,
            )
            return ProvisioningResult(
                success=True,
                subscription=subscription,
                port_allocated=False,
                port_message=ALLOCATION_ERROR,
            )

        if not claim.claimed:
            logger.warning(
                "[%s] Sem porta disponível para assinatura %s (cliente %s). Alocação pendente, avisar %s",
                ctx.correlation_id,
                subscription.id,
                subscription.customer_id,
                self.ops_alert_email,
            )
            return ProvisioningResult(
                success=True,
                subscription=subscription,
                port_allocated=False,
                port_message=claim.message,
            )

        return ProvisioningResult(
            success=True,
            subscription=subscription_store.get_subscription(subscription.id) or subscription,
            port_allocated=True,
            port=claim.port,
        )

    def process_failed_payment(
        self,
        order_id: str,
        gateway_payment_id: str | None = None,
        *,
        ctx: RequestContext | None = None,
    ) -> TransitionOutcome:
        ctx = ctx or RequestContext.system()
        try:
            outcome = order_store.confirm_order_failed(order_id, gateway_payment_id)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        logger.info("[%s] Falha de pagamento do pedido %s: %s", ctx.correlation_id, order_id, outcome.value)
        return outcome

    def allocate_pending_ports(self, limit: int = 50, *, ctx: RequestContext | None = None) -> dict:
        """Nova tentativa de claim para assinaturas ACTIVE sem porta."""
        ctx = ctx or RequestContext.system("allocate")
        allocated: list[int] = []
        pending: list[int] = []
        pool_exhausted = False
        for subscription in subscription_store.find_pending_allocation(limit):
            if pool_exhausted:
                pending.append(subscription.id)
                continue
            result = self._allocate(subscription, ctx)
            if result.port_allocated:
                allocated.append(subscription.id)
                continue
            pending.append(subscription.id)
            # só o pool geral vazio vale para todas; por plano, o próximo pode ter porta
            pool_exhausted = not self.plan_scoped and result.port_message == NONE_AVAILABLE
        logger.info(
            "[%s] Alocação pendente: %s alocadas, %s sem porta",
            ctx.correlation_id,
            len(allocated),
            len(pending),
        )
        return {"allocated": allocated, "pending": pending}

    def cancel_subscription(
        self,
        subscription_id: int,
        *,
        performed_by: str | None = None,
        ctx: RequestContext | None = None,
    ) -> bool:
        ctx = ctx or RequestContext.system()
        subscription = subscription_store.get_subscription(subscription_id)
        if subscription is None:
            raise NotFoundError(f"Assinatura {subscription_id} não encontrada")
        if subscription.status is SubscriptionStatus.CANCELLED:
            return False
        try:
            changed = subscription_store.cancel(subscription_id)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        if changed and subscription.port_id:
            self.pool.release(subscription.port_id, performed_by=performed_by)
        logger.info("[%s] Assinatura %s cancelada", ctx.correlation_id, subscription_id)
        return changed
