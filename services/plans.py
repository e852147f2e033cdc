"""Leitura de planos (dado de referência, nunca alterado pelo core)."""

from __future__ import annotations

from decimal import Decimal

from models.extensions import db
from models.plan_model import Plan as PlanModel
from services.records import PlanRecord


def _to_dto(m: PlanModel) -> PlanRecord:
    return PlanRecord(
        id=m.id,
        name=m.name,
        price=Decimal(str(m.price)),
        currency=m.currency,
        billing_period_months=int(m.billing_period_months or 1),
        is_active=bool(m.is_active),
    )


def get_plan(plan_id) -> PlanRecord | None:
    try:
        plan_id = int(plan_id)
    except (TypeError, ValueError):
        return None
    m = db.session.get(PlanModel, plan_id)
    return _to_dto(m) if m else None


def get_active_plan(plan_id) -> PlanRecord | None:
    plan = get_plan(plan_id)
    if not plan or not plan.is_active:
        return None
    return plan


def list_active_plans() -> list[PlanRecord]:
    rows = PlanModel.query.filter_by(is_active=True).order_by(PlanModel.price.asc()).all()
    return [_to_dto(m) for m in rows]
