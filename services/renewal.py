from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.exc import SQLAlchemyError

from models.extensions import db
from models.subscription_model import Subscription as SubscriptionModel
from services import order_store, plans, subscription_store
from services.date_utils import add_months
from services.errors import NotFoundError, ValidationError
from services.records import (
    OrderRecord,
    OrderStatus,
    SubscriptionStatus,
    TransitionOutcome,
)
from services.request_context import RequestContext

logger = logging.getLogger(__name__)

RENEWABLE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED)


def renewed_end_date(current_end: date, today: date, months: int) -> date:
    # renovação antecipada soma ao fim atual; atrasada, a partir de hoje
    return add_months(max(current_end, today), months)


class RenewalService:
    """Renovação de assinaturas existentes.

    Usa a mesma transição condicional de pedidos do checkout. Só quem ganha
    a transição estende a assinatura; a porta nunca é trocada.
    """

    def initiate_renewal(self, subscription_id: int, ctx: RequestContext) -> OrderRecord:
        subscription = subscription_store.get_subscription(subscription_id)
        if subscription is None or subscription.customer_id != ctx.customer_id:
            raise NotFoundError(f"Assinatura {subscription_id} não encontrada")
        if subscription.status not in RENEWABLE_STATUSES:
            raise ValidationError("Assinatura cancelada não pode ser renovada", ["subscription_id"])

        plan = plans.get_active_plan(subscription.plan_id)
        if plan is None:
            raise NotFoundError("Plano da assinatura não está disponível")

        order = order_store.create_order(
            subscription.customer_id,
            plan,
            renewal_subscription_id=subscription.id,
        )
        logger.info(
            "[%s] Pedido de renovação %s criado para assinatura %s",
            ctx.correlation_id,
            order.id,
            subscription.id,
        )
        return order

    def renewal_quote(self, subscription_id: int, today: date | None = None) -> dict:
        today = today or date.today()
        subscription = subscription_store.get_subscription(subscription_id)
        if subscription is None:
            raise NotFoundError(f"Assinatura {subscription_id} não encontrada")
        plan = plans.get_plan(subscription.plan_id)
        if plan is None:
            raise NotFoundError("Plano da assinatura não encontrado")
        return {
            "subscription_id": subscription.id,
            "current_end_date": subscription.end_date.isoformat(),
            "new_end_date": renewed_end_date(
                subscription.end_date, today, plan.billing_period_months
            ).isoformat(),
            "amount": str(plan.price),
            "currency": plan.currency,
            "months": plan.billing_period_months,
        }

    def process_successful_renewal(
        self,
        order_id: str,
        subscription_id: int,
        *,
        gateway_payment_id: str | None = None,
        ctx: RequestContext | None = None,
        today: date | None = None,
    ) -> bool:
        _, extended = self.settle_successful_renewal(
            order_id,
            subscription_id,
            gateway_payment_id=gateway_payment_id,
            ctx=ctx,
            today=today,
        )
        return extended

    def settle_successful_renewal(
        self,
        order_id: str,
        subscription_id: int,
        *,
        gateway_payment_id: str | None = None,
        ctx: RequestContext | None = None,
        today: date | None = None,
    ) -> tuple[TransitionOutcome, bool]:
        """Como process_successful_renewal, mas expõe o resultado da transição.

        O bool é True para a renovação que estendeu a assinatura e para
        reentregas de um pedido já pago.
        """
        ctx = ctx or RequestContext.system()
        today = today or date.today()

        order = order_store.get_order(order_id)
        if order is None:
            logger.warning("[%s] Renovação: pedido %s não encontrado", ctx.correlation_id, order_id)
            return TransitionOutcome.NOT_FOUND, False
        if order.renewal_subscription_id is not None and order.renewal_subscription_id != subscription_id:
            logger.warning(
                "[%s] Renovação: pedido %s pertence à assinatura %s, não %s",
                ctx.correlation_id,
                order_id,
                order.renewal_subscription_id,
                subscription_id,
            )
            return TransitionOutcome.NOT_FOUND, False
        plan = plans.get_plan(order.plan_id)
        if plan is None:
            raise NotFoundError(f"Plano {order.plan_id} do pedido {order_id} não encontrado")

        try:
            outcome = order_store.confirm_order_paid(order_id, gateway_payment_id)
            if outcome is TransitionOutcome.NOT_FOUND:
                db.session.rollback()
                return outcome, False
            if outcome is TransitionOutcome.ALREADY_PROCESSED:
                db.session.commit()
                current = order_store.get_order(order_id)
                logger.info("[%s] Renovação %s já processada", ctx.correlation_id, order_id)
                return outcome, current is not None and current.status is OrderStatus.SUCCESS

            row = (
                db.session.query(SubscriptionModel)
                .filter(SubscriptionModel.id == subscription_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if row is None:
                db.session.rollback()
                logger.error(
                    "[%s] Renovação %s: assinatura %s não existe",
                    ctx.correlation_id,
                    order_id,
                    subscription_id,
                )
                return TransitionOutcome.NOT_FOUND, False
            if row.status == SubscriptionStatus.CANCELLED.value:
                # pagamento fica registrado; a assinatura não volta
                db.session.commit()
                logger.warning(
                    "[%s] Renovação %s paga para assinatura cancelada %s",
                    ctx.correlation_id,
                    order_id,
                    subscription_id,
                )
                return TransitionOutcome.WON, False

            previous_end = row.end_date
            new_end = renewed_end_date(previous_end, today, plan.billing_period_months)
            subscription_store.extend(subscription_id, new_end)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

        logger.info(
            "[%s] Assinatura %s renovada: %s -> %s",
            ctx.correlation_id,
            subscription_id,
            previous_end.isoformat(),
            new_end.isoformat(),
        )
        return TransitionOutcome.WON, True

    def process_failed_renewal(
        self,
        order_id: str,
        *,
        gateway_payment_id: str | None = None,
        ctx: RequestContext | None = None,
    ) -> bool:
        outcome = self.settle_failed_renewal(order_id, gateway_payment_id=gateway_payment_id, ctx=ctx)
        if outcome is TransitionOutcome.NOT_FOUND:
            return False
        order = order_store.get_order(order_id)
        return order is not None and order.status is OrderStatus.FAILED

    def settle_failed_renewal(
        self,
        order_id: str,
        *,
        gateway_payment_id: str | None = None,
        ctx: RequestContext | None = None,
    ) -> TransitionOutcome:
        ctx = ctx or RequestContext.system()
        try:
            outcome = order_store.confirm_order_failed(order_id, gateway_payment_id)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        logger.info("[%s] Falha de renovação do pedido %s: %s", ctx.correlation_id, order_id, outcome.value)
        return outcome
