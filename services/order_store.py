"""Persistência de pedidos.

As transições de status não são "ler e depois gravar": cada uma é um único
UPDATE condicional (WHERE status = 'PENDING'). O banco é o único árbitro
entre o redirect do navegador e o webhook, que chegam em requests
independentes.

As funções de transição não fazem commit. O caller controla a transação.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import update

from models.extensions import db
from models.order_model import Order as OrderModel
from services.records import OrderRecord, OrderStatus, PlanRecord, TransitionOutcome


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_order_id() -> str:
    # 32 hex: cabe no receipt "order_<id>" (limite de 40 do gateway)
    return uuid.uuid4().hex


def _to_dto(m: OrderModel) -> OrderRecord:
    return OrderRecord(
        id=m.id,
        customer_id=m.customer_id,
        plan_id=m.plan_id,
        amount=Decimal(str(m.amount)),
        currency=m.currency,
        status=m.status,
        payment_method=m.payment_method,
        gateway_order_id=m.gateway_order_id,
        gateway_payment_id=m.gateway_payment_id,
        billing_name=m.billing_name,
        billing_address=m.billing_address,
        billing_tax_id=m.billing_tax_id,
        renewal_subscription_id=m.renewal_subscription_id,
        created_at=m.created_at,
        updated_at=m.updated_at,
    )


def create_order(
    customer_id: int,
    plan: PlanRecord,
    *,
    payment_method: str | None = None,
    billing: dict | None = None,
    renewal_subscription_id: int | None = None,
) -> OrderRecord:
    billing = billing or {}
    now = _now()
    m = OrderModel(
        id=_new_order_id(),
        customer_id=customer_id,
        plan_id=plan.id,
        amount=plan.price,
        currency=plan.currency,
        status=OrderStatus.PENDING.value,
        payment_method=payment_method,
        billing_name=(billing.get("name") or None),
        billing_address=(billing.get("address") or None),
        billing_tax_id=(billing.get("tax_id") or None),
        renewal_subscription_id=renewal_subscription_id,
        created_at=now,
        updated_at=now,
    )
    db.session.add(m)
    db.session.commit()
    return _to_dto(m)


def get_order(order_id: str) -> OrderRecord | None:
    if not order_id:
        return None
    m = db.session.get(OrderModel, str(order_id), populate_existing=True)
    return _to_dto(m) if m else None


def get_order_by_gateway_order_id(gateway_order_id: str) -> OrderRecord | None:
    if not gateway_order_id:
        return None
    m = (
        OrderModel.query.filter_by(gateway_order_id=str(gateway_order_id))
        .populate_existing()
        .first()
    )
    return _to_dto(m) if m else None


def list_orders_by_customer(customer_id: int, limit: int = 10) -> list[OrderRecord]:
    if not customer_id:
        return []
    query = OrderModel.query.filter_by(customer_id=customer_id).order_by(
        OrderModel.created_at.desc()
    )
    if limit:
        query = query.limit(limit)
    return [_to_dto(m) for m in query.all()]


def attach_gateway_order_id(order_id: str, gateway_order_id: str) -> bool:
    if not order_id or not gateway_order_id:
        return False
    result = db.session.execute(
        update(OrderModel)
        .where(
            OrderModel.id == order_id,
            OrderModel.status == OrderStatus.PENDING.value,
            OrderModel.gateway_order_id.is_(None),
        )
        .values(gateway_order_id=gateway_order_id, updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount == 1


def _attach_payment_id_once(order_id: str, gateway_payment_id: str | None) -> None:
    """Pedido finalizado aceita receber o gateway_payment_id uma única vez."""
    if not gateway_payment_id:
        return
    db.session.execute(
        update(OrderModel)
        .where(
            OrderModel.id == order_id,
            OrderModel.status != OrderStatus.PENDING.value,
            OrderModel.gateway_payment_id.is_(None),
        )
        .values(gateway_payment_id=gateway_payment_id)
        .execution_options(synchronize_session=False)
    )


def _transition(order_id: str, target: OrderStatus, gateway_payment_id: str | None) -> TransitionOutcome:
    values = {"status": target.value, "updated_at": _now()}
    if gateway_payment_id:
        values["gateway_payment_id"] = gateway_payment_id

    result = db.session.execute(
        update(OrderModel)
        .where(
            OrderModel.id == order_id,
            OrderModel.status == OrderStatus.PENDING.value,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return TransitionOutcome.WON

    # Zero linhas: ou o pedido não existe, ou o outro caminho já finalizou.
    exists = db.session.query(OrderModel.id).filter(OrderModel.id == order_id).first()
    if exists is None:
        return TransitionOutcome.NOT_FOUND
    _attach_payment_id_once(order_id, gateway_payment_id)
    return TransitionOutcome.ALREADY_PROCESSED


def confirm_order_paid(order_id: str, gateway_payment_id: str | None) -> TransitionOutcome:
    return _transition(order_id, OrderStatus.SUCCESS, gateway_payment_id)


def confirm_order_failed(order_id: str, gateway_payment_id: str | None = None) -> TransitionOutcome:
    return _transition(order_id, OrderStatus.FAILED, gateway_payment_id)
