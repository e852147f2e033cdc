from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import update

from models.extensions import db
from models.subscription_model import Subscription as SubscriptionModel
from services.date_utils import add_months
from services.records import (
    OrderRecord,
    PlanRecord,
    SubscriptionRecord,
    SubscriptionStatus,
)


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_dto(m: SubscriptionModel) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=m.id,
        customer_id=m.customer_id,
        plan_id=m.plan_id,
        order_id=m.order_id,
        status=m.status,
        start_date=m.start_date,
        end_date=m.end_date,
        port_id=m.port_id,
    )


def create_subscription(order: OrderRecord, plan: PlanRecord, start: date) -> SubscriptionRecord:
    """Cria a assinatura ACTIVE de um pedido pago.

    Não faz commit: roda na mesma transação da transição do pedido.
    subscriptions.order_id é UNIQUE, então um segundo insert para o mesmo
    pedido falha no banco.
    """
    m = SubscriptionModel(
        customer_id=order.customer_id,
        plan_id=plan.id,
        order_id=order.id,
        status=SubscriptionStatus.ACTIVE.value,
        start_date=start,
        end_date=add_months(start, plan.billing_period_months),
    )
    db.session.add(m)
    db.session.flush()
    return _to_dto(m)


def get_subscription(subscription_id) -> SubscriptionRecord | None:
    try:
        subscription_id = int(subscription_id)
    except (TypeError, ValueError):
        return None
    m = db.session.get(SubscriptionModel, subscription_id, populate_existing=True)
    return _to_dto(m) if m else None


def get_subscription_by_order(order_id: str) -> SubscriptionRecord | None:
    if not order_id:
        return None
    m = (
        SubscriptionModel.query.filter_by(order_id=str(order_id))
        .populate_existing()
        .first()
    )
    return _to_dto(m) if m else None


def list_subscriptions_by_customer(customer_id: int) -> list[SubscriptionRecord]:
    if not customer_id:
        return []
    rows = (
        SubscriptionModel.query.filter_by(customer_id=customer_id)
        .order_by(SubscriptionModel.created_at.desc())
        .all()
    )
    return [_to_dto(m) for m in rows]


def set_port(subscription_id: int, port_id: int) -> bool:
    # só grava se ainda não tiver porta; sem commit
    result = db.session.execute(
        update(SubscriptionModel)
        .where(
            SubscriptionModel.id == subscription_id,
            SubscriptionModel.port_id.is_(None),
        )
        .values(port_id=port_id, updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def clear_port(subscription_id: int, port_id: int) -> bool:
    result = db.session.execute(
        update(SubscriptionModel)
        .where(
            SubscriptionModel.id == subscription_id,
            SubscriptionModel.port_id == port_id,
        )
        .values(port_id=None, updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def extend(subscription_id: int, new_end: date) -> bool:
    """Nova data de fim e status ACTIVE. A porta é preservada. Sem commit."""
    result = db.session.execute(
        update(SubscriptionModel)
        .where(
            SubscriptionModel.id == subscription_id,
            SubscriptionModel.status != SubscriptionStatus.CANCELLED.value,
        )
        .values(
            end_date=new_end,
            status=SubscriptionStatus.ACTIVE.value,
            updated_at=_now(),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def find_pending_allocation(limit: int = 50) -> list[SubscriptionRecord]:
    query = (
        SubscriptionModel.query.filter(
            SubscriptionModel.status == SubscriptionStatus.ACTIVE.value,
            SubscriptionModel.port_id.is_(None),
        )
        .order_by(SubscriptionModel.created_at.asc(), SubscriptionModel.id.asc())
    )
    if limit:
        query = query.limit(limit)
    return [_to_dto(m) for m in query.all()]


def expire_due(today: date, limit: int = 200) -> list[int]:
    """ACTIVE -> EXPIRED para end_date < today. Faz commit.

    Cada linha passa por um UPDATE condicional; uma renovação concorrente que
    já estendeu a assinatura faz o UPDATE afetar zero linhas.
    """
    candidates = (
        db.session.query(SubscriptionModel.id)
        .filter(
            SubscriptionModel.status == SubscriptionStatus.ACTIVE.value,
            SubscriptionModel.end_date < today,
        )
        .order_by(SubscriptionModel.end_date.asc(), SubscriptionModel.id.asc())
        .limit(limit)
        .all()
    )
    expired: list[int] = []
    for (subscription_id,) in candidates:
        result = db.session.execute(
            update(SubscriptionModel)
            .where(
                SubscriptionModel.id == subscription_id,
                SubscriptionModel.status == SubscriptionStatus.ACTIVE.value,
                SubscriptionModel.end_date < today,
            )
            .values(status=SubscriptionStatus.EXPIRED.value, updated_at=_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            expired.append(subscription_id)
    db.session.commit()
    return expired


def cancel(subscription_id: int) -> bool:
    """ACTIVE/EXPIRED -> CANCELLED. Sem commit; a porta é liberada pelo caller."""
    result = db.session.execute(
        update(SubscriptionModel)
        .where(
            SubscriptionModel.id == subscription_id,
            SubscriptionModel.status.in_(
                [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.EXPIRED.value]
            ),
        )
        .values(status=SubscriptionStatus.CANCELLED.value, updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
