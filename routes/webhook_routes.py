import logging

from flask import Blueprint, current_app, jsonify, request

from models.extensions import db
from services.confirmation import ConfirmationDispatcher, WebhookOutcome
from services.errors import MalformedPayloadError, NotFoundError, SignatureVerificationError
from services.permissions import json_error
from services.request_context import current_context

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__)


@webhooks_bp.post("/webhook/payment")
def payment_webhook():
    ctx = current_context()
    # bytes crus: a assinatura é sobre eles, antes de qualquer parse
    raw_body = request.get_data(cache=True)
    header_name = current_app.config.get("GATEWAY_SIGNATURE_HEADER", "X-Razorpay-Signature")
    signature = (request.headers.get(header_name) or "").strip()
    if not raw_body or not signature:
        return json_error("missing_payload_or_signature", 400)

    dispatcher = ConfirmationDispatcher.from_config(current_app.config)
    try:
        outcome = dispatcher.handle_webhook(raw_body, signature, ctx)
    except SignatureVerificationError:
        return json_error("invalid_signature", 401)
    except MalformedPayloadError as exc:
        return json_error("malformed_payload", 400, fields=exc.fields)
    except NotFoundError:
        outcome = WebhookOutcome.ORDER_NOT_FOUND
    except Exception:
        db.session.rollback()
        logger.error("[%s] Erro ao processar webhook", ctx.correlation_id, exc_info=True)
        return json_error("internal_error", 500)

    status = "ignored" if outcome is WebhookOutcome.ORDER_NOT_FOUND else outcome.value
    return jsonify({"ok": True, "status": status}), 200
