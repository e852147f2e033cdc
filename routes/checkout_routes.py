import logging

from flask import Blueprint, current_app, jsonify, redirect, request, url_for
from flask_login import current_user, login_required
from sqlalchemy.exc import SQLAlchemyError

from models.extensions import db
from services import order_store, subscription_store
from services.availability import AvailabilityProbe
from services.confirmation import ConfirmationDispatcher
from services.errors import NotFoundError, SignatureVerificationError, ValidationError
from services.gateway import GatewayClient, GatewayError, to_minor_units
from services.input_validation import parse_positive_int, validate_checkout_form
from services.permissions import json_error, owned_subscription
from services.plans import get_active_plan, list_active_plans
from services.port_pool import get_port
from services.provisioning import ProvisioningService
from services.rate_limiter import enforce
from services.records import OrderRecord
from services.renewal import RenewalService
from services.request_context import current_context

logger = logging.getLogger(__name__)

checkout_bp = Blueprint("checkout", __name__)


def _scoped_plan_id(plan_id):
    if current_app.config.get("PORT_POOL_PLAN_SCOPED"):
        return plan_id
    return None


def _request_data():
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def _start_remote_order(order: OrderRecord, metadata: dict, prefill: dict | None = None):
    """Cria o pedido remoto. Falha do gateway marca o pedido local como FAILED."""
    ctx = current_context()
    gateway = GatewayClient.from_config(current_app.config)
    try:
        remote = gateway.create_remote_order(
            to_minor_units(order.amount),
            order.currency,
            f"order_{order.id}",
            metadata,
        )
    except GatewayError as exc:
        order_store.confirm_order_failed(order.id)
        db.session.commit()
        logger.warning(
            "[%s] Gateway indisponivel para pedido %s: %s",
            ctx.correlation_id,
            order.id,
            exc,
        )
        return json_error("gateway_unavailable", 502, retry=True, order_id=order.id)
    except ValidationError as exc:
        # pedido que o gateway não aceita (ex.: plano de valor zero) não fica PENDING
        order_store.confirm_order_failed(order.id)
        db.session.commit()
        logger.warning(
            "[%s] Pedido %s recusado antes do gateway: %s",
            ctx.correlation_id,
            order.id,
            exc,
        )
        return json_error("validation_error", 422, fields=exc.fields, order_id=order.id)

    order_store.attach_gateway_order_id(order.id, remote.remote_order_id)
    logger.info(
        "[%s] Checkout iniciado: pedido %s -> %s",
        ctx.correlation_id,
        order.id,
        remote.remote_order_id,
    )
    return (
        jsonify(
            {
                "ok": True,
                "order_id": order.id,
                "gateway_order_id": remote.remote_order_id,
                "amount": remote.amount,
                "currency": remote.currency,
                "key_id": gateway.key_id,
                "name": current_app.config.get("APP_NAME"),
                "prefill": prefill or {},
                "callback_url": url_for("checkout.verify_payment"),
            }
        ),
        201,
    )


@checkout_bp.get("/plans")
def list_plans():
    items = [
        {
            "id": plan.id,
            "name": plan.name,
            "price": str(plan.price),
            "currency": plan.currency,
            "billing_period_months": plan.billing_period_months,
        }
        for plan in list_active_plans()
    ]
    return jsonify({"ok": True, "plans": items})


@checkout_bp.get("/orders")
@login_required
def list_orders():
    items = [
        {
            "id": order.id,
            "plan_id": order.plan_id,
            "amount": str(order.amount),
            "currency": order.currency,
            "status": order.status.value,
            "renewal": order.is_renewal,
            "created_at": order.created_at.isoformat() if order.created_at else None,
        }
        for order in order_store.list_orders_by_customer(current_user.id, limit=20)
    ]
    return jsonify({"ok": True, "orders": items})


@checkout_bp.get("/checkout/availability")
def availability():
    plan_id = parse_positive_int(request.args.get("plan_id"))
    result = AvailabilityProbe().check_availability(_scoped_plan_id(plan_id))
    return jsonify(result.as_dict())


@checkout_bp.post("/checkout")
@login_required
def start_checkout():
    ctx = current_context()
    rate_block = enforce("checkout", customer_id=ctx.customer_id)
    if rate_block is not None:
        return rate_block

    try:
        form = validate_checkout_form(_request_data())
    except ValidationError as exc:
        return json_error("validation_error", 422, fields=exc.fields)

    plan = get_active_plan(form.plan_id)
    if plan is None:
        return json_error("plan_not_found", 404)

    # consultivo: o claim de verdade acontece depois do pagamento
    if not AvailabilityProbe().check_availability(_scoped_plan_id(plan.id)).available:
        return json_error("no_capacity", 409)

    order = order_store.create_order(
        ctx.customer_id,
        plan,
        payment_method=form.payment_method,
        billing=form.billing(),
    )
    return _start_remote_order(
        order,
        {"order_id": order.id, "customer_id": order.customer_id, "plan_id": order.plan_id},
        prefill={"name": form.name, "email": form.email, "contact": form.phone},
    )


@checkout_bp.get("/subscriptions")
@login_required
def list_subscriptions():
    items = []
    for sub in subscription_store.list_subscriptions_by_customer(current_user.id):
        port = get_port(sub.port_id) if sub.port_id else None
        items.append(
            {
                "id": sub.id,
                "plan_id": sub.plan_id,
                "status": sub.status.value,
                "start_date": sub.start_date.isoformat(),
                "end_date": sub.end_date.isoformat(),
                "instance_url": port.instance_url if port else None,
            }
        )
    return jsonify({"ok": True, "subscriptions": items})


@checkout_bp.post("/subscriptions/<int:subscription_id>/renew")
@login_required
def renew_subscription(subscription_id):
    ctx = current_context()
    rate_block = enforce("checkout", customer_id=ctx.customer_id)
    if rate_block is not None:
        return rate_block

    renewals = RenewalService()
    try:
        order = renewals.initiate_renewal(subscription_id, ctx)
    except NotFoundError:
        return json_error("subscription_not_found", 404)
    except ValidationError as exc:
        return json_error("validation_error", 422, fields=exc.fields)

    return _start_remote_order(
        order,
        {
            "order_id": order.id,
            "customer_id": order.customer_id,
            "plan_id": order.plan_id,
            "subscription_id": subscription_id,
        },
        prefill={"name": current_user.name or "", "email": current_user.email},
    )


@checkout_bp.get("/subscriptions/<int:subscription_id>/renewal-quote")
@login_required
def renewal_quote(subscription_id):
    if owned_subscription(subscription_id, current_user.id) is None:
        return json_error("subscription_not_found", 404)
    return jsonify({"ok": True, **RenewalService().renewal_quote(subscription_id)})


@checkout_bp.post("/subscriptions/<int:subscription_id>/cancel")
@login_required
def cancel_subscription(subscription_id):
    ctx = current_context()
    if owned_subscription(subscription_id, ctx.customer_id) is None:
        return json_error("subscription_not_found", 404)
    changed = ProvisioningService.from_config(current_app.config).cancel_subscription(
        subscription_id,
        performed_by=f"customer:{ctx.customer_id}",
        ctx=ctx,
    )
    if not changed:
        return json_error("already_cancelled", 409)
    return jsonify({"ok": True, "status": "CANCELLED"})


@checkout_bp.get("/payment/verify")
@login_required
def verify_payment():
    ctx = current_context()
    payment_id = (request.args.get("gateway_payment_id") or "").strip()
    dispatcher = ConfirmationDispatcher.from_config(current_app.config)
    try:
        result = dispatcher.handle_redirect(
            (request.args.get("gateway_order_id") or "").strip(),
            payment_id,
            (request.args.get("gateway_signature") or "").strip(),
            ctx,
        )
    except SignatureVerificationError:
        return redirect(url_for("checkout.payment_failed", reason="verification_failed"))
    except NotFoundError:
        return redirect(url_for("checkout.payment_failed", reason="order_not_found"))
    except SQLAlchemyError:
        db.session.rollback()
        logger.error("[%s] Erro ao confirmar pagamento %s", ctx.correlation_id, payment_id, exc_info=True)
        return redirect(url_for("checkout.payment_failed", reason="processing_error"))

    if not result.success:
        return redirect(url_for("checkout.payment_failed", reason="processing_error"))
    return redirect(url_for("checkout.payment_success", payment_id=payment_id))


@checkout_bp.get("/payment/success")
@login_required
def payment_success():
    return jsonify({"ok": True, "status": "success", "payment_id": request.args.get("payment_id")})


@checkout_bp.get("/payment/failed")
def payment_failed():
    return jsonify({"ok": False, "status": "failed", "reason": request.args.get("reason")})


@checkout_bp.get("/payment/cancelled")
def payment_cancelled():
    # desistência no widget: nada muda no servidor, o pedido segue PENDING
    return jsonify({"ok": False, "status": "cancelled"})
