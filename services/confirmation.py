"""Entradas de confirmação de pagamento: redirect do navegador e webhook.

As duas verificam a assinatura antes de ler ou gravar qualquer estado e
depois caem no mesmo despacho (renovação x compra nova). A ordem de chegada
entre elas não importa: a transição condicional do pedido decide.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Mapping

from services import order_store
from services.errors import MalformedPayloadError, NotFoundError, SignatureVerificationError
from services.gateway import GatewayClient
from services.provisioning import ProvisioningService
from services.records import ConfirmationResult, OrderRecord, TransitionOutcome
from services.renewal import RenewalService
from services.request_context import RequestContext

logger = logging.getLogger(__name__)

SUCCESS_EVENTS = frozenset({"payment.authorized", "payment.captured"})
FAILURE_EVENTS = frozenset({"payment.failed"})


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    ORDER_NOT_FOUND = "order_not_found"


def _payment_entity(payload: dict) -> dict | None:
    # payload.payment.entity; qualquer nível fora do formato invalida o evento
    node: Any = payload
    for key in ("payload", "payment", "entity"):
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node if isinstance(node, dict) else None


class ConfirmationDispatcher:
    def __init__(
        self,
        gateway: GatewayClient,
        provisioning: ProvisioningService | None = None,
        renewals: RenewalService | None = None,
    ) -> None:
        self.gateway = gateway
        self.provisioning = provisioning or ProvisioningService()
        self.renewals = renewals or RenewalService()

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ConfirmationDispatcher":
        return cls(
            gateway=GatewayClient.from_config(config),
            provisioning=ProvisioningService.from_config(config),
            renewals=RenewalService(),
        )

    # --- redirect ---------------------------------------------------------

    def handle_redirect(
        self,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: str,
        ctx: RequestContext,
    ) -> ConfirmationResult:
        if not gateway_order_id or not gateway_payment_id or not signature:
            raise SignatureVerificationError("Parâmetros de pagamento ausentes")
        if not self.gateway.verify_payment(gateway_order_id, gateway_payment_id, signature):
            logger.warning(
                "[%s] Assinatura inválida no retorno do pagamento (pedido remoto %s)",
                ctx.correlation_id,
                gateway_order_id,
            )
            raise SignatureVerificationError("Assinatura de pagamento inválida")

        order = order_store.get_order_by_gateway_order_id(gateway_order_id)
        # pedido de outro cliente é tratado como inexistente
        if order is None or (ctx.customer_id is not None and order.customer_id != ctx.customer_id):
            raise NotFoundError("Pedido não encontrado")

        return self._confirm_success(order, gateway_payment_id, ctx)

    # --- webhook ----------------------------------------------------------

    def handle_webhook(self, raw_body: bytes, signature_header: str, ctx: RequestContext) -> WebhookOutcome:
        if not self.gateway.verify_webhook(raw_body, signature_header):
            logger.warning("[%s] Webhook com assinatura inválida", ctx.correlation_id)
            raise SignatureVerificationError("Assinatura do webhook inválida")

        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise MalformedPayloadError("Payload do webhook não é JSON válido", ["payload"]) from None
        if not isinstance(payload, dict) or not payload.get("event"):
            raise MalformedPayloadError("Evento ausente no webhook", ["event"])

        event = str(payload["event"])
        if event not in SUCCESS_EVENTS and event not in FAILURE_EVENTS:
            logger.info("[%s] Webhook ignorado: evento %s", ctx.correlation_id, event)
            return WebhookOutcome.IGNORED

        entity = _payment_entity(payload)
        if entity is None or not entity.get("order_id"):
            raise MalformedPayloadError("Entidade de pagamento ausente no webhook", ["payload.payment.entity"])

        gateway_order_id = str(entity["order_id"])
        gateway_payment_id = entity.get("id")
        order = order_store.get_order_by_gateway_order_id(gateway_order_id)
        if order is None:
            notes = entity.get("notes") if isinstance(entity.get("notes"), dict) else {}
            order = order_store.get_order(notes.get("order_id"))
        if order is None:
            logger.info(
                "[%s] Webhook %s para pedido desconhecido %s",
                ctx.correlation_id,
                event,
                gateway_order_id,
            )
            return WebhookOutcome.ORDER_NOT_FOUND

        if event in SUCCESS_EVENTS:
            duplicate = self._confirm_success(order, gateway_payment_id, ctx).already_processed
        else:
            duplicate = self._confirm_failure(order, gateway_payment_id, ctx) is not TransitionOutcome.WON

        logger.info(
            "[%s] Webhook %s do pedido %s %s",
            ctx.correlation_id,
            event,
            order.id,
            "duplicado" if duplicate else "processado",
        )
        return WebhookOutcome.DUPLICATE if duplicate else WebhookOutcome.PROCESSED

    # --- despacho ---------------------------------------------------------

    def _confirm_success(
        self, order: OrderRecord, gateway_payment_id: str | None, ctx: RequestContext
    ) -> ConfirmationResult:
        if order.is_renewal:
            outcome, ok = self.renewals.settle_successful_renewal(
                order.id,
                order.renewal_subscription_id,
                gateway_payment_id=gateway_payment_id,
                ctx=ctx,
            )
            return ConfirmationResult(
                order=order_store.get_order(order.id) or order,
                success=ok,
                renewal=True,
                already_processed=outcome is TransitionOutcome.ALREADY_PROCESSED,
            )

        result = self.provisioning.process_successful_payment(order.id, gateway_payment_id, ctx=ctx)
        return ConfirmationResult(
            order=order_store.get_order(order.id) or order,
            success=result.success,
            provisioning=result,
            already_processed=result.already_processed,
        )

    def _confirm_failure(
        self, order: OrderRecord, gateway_payment_id: str | None, ctx: RequestContext
    ) -> TransitionOutcome:
        if order.is_renewal:
            return self.renewals.settle_failed_renewal(
                order.id, gateway_payment_id=gateway_payment_id, ctx=ctx
            )
        return self.provisioning.process_failed_payment(order.id, gateway_payment_id, ctx=ctx)
