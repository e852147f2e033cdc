from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Mapping, Optional

import requests

from services.errors import ValidationError

logger = logging.getLogger(__name__)

MAX_RECEIPT_LEN = 40


class GatewayError(RuntimeError):
    pass


@dataclass(frozen=True)
class RemoteOrder:
    remote_order_id: str
    amount: int
    currency: str


def to_minor_units(amount) -> int:
    """Converte valor decimal (ex.: 499.00) para a menor unidade (49900)."""
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return int(value * 100)


def compute_signature(secret: str, message: bytes | str) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new((secret or "").encode("utf-8"), message, hashlib.sha256).hexdigest()


def _signature_matches(expected: str, received: str | None) -> bool:
    if not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), str(received).strip().encode("utf-8"))


class GatewayClient:
    """Cliente do gateway de pagamento (API estilo Razorpay).

    Sem estado e sem persistência: cria o pedido remoto e verifica
    assinaturas HMAC. Quem chama decide o que fazer com um GatewayError;
    aqui não há retry automático.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str = "",
        base_url: str = "https://api.razorpay.com",
        timeout: float = 20,
    ) -> None:
        self.key_id = (key_id or "").strip()
        self.key_secret = (key_secret or "").strip()
        self.webhook_secret = (webhook_secret or "").strip()
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "GatewayClient":
        return cls(
            key_id=config.get("GATEWAY_KEY_ID", ""),
            key_secret=config.get("GATEWAY_KEY_SECRET", ""),
            webhook_secret=config.get("GATEWAY_WEBHOOK_SECRET", ""),
            base_url=config.get("GATEWAY_BASE_URL", "https://api.razorpay.com"),
            timeout=float(config.get("GATEWAY_TIMEOUT", 20)),
        )

    def create_remote_order(
        self,
        amount_minor_units: int,
        currency: str,
        receipt: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RemoteOrder:
        receipt = (receipt or "").strip()
        if not receipt or len(receipt) > MAX_RECEIPT_LEN:
            raise ValidationError(
                f"receipt deve ter entre 1 e {MAX_RECEIPT_LEN} caracteres", ["receipt"]
            )
        if int(amount_minor_units) <= 0:
            raise ValidationError("Valor do pedido deve ser positivo", ["amount"])
        if not self.key_id or not self.key_secret:
            raise GatewayError("Credenciais do gateway não configuradas.")

        payload = {
            "amount": int(amount_minor_units),
            "currency": (currency or "").strip().upper(),
            "receipt": receipt,
            "notes": {str(k): str(v) for k, v in (metadata or {}).items()},
        }
        url = f"{self.base_url}/v1/orders"
        try:
            resp = requests.post(
                url,
                json=payload,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Gateway: falha na requisicao POST %s", url, exc_info=True)
            raise GatewayError(f"Falha ao contatar o gateway: {exc}") from exc

        try:
            body = resp.json()
        except ValueError as exc:
            snippet = (resp.text or "").strip()
            logger.warning(
                "Gateway: JSON invalido em /v1/orders (HTTP %s). Trecho: %s",
                resp.status_code,
                snippet[:300],
            )
            raise GatewayError(f"Resposta invalida do gateway (HTTP {resp.status_code}).") from exc

        if not resp.ok:
            err = (body.get("error") or {}) if isinstance(body, dict) else {}
            description = err.get("description") if isinstance(err, dict) else err
            raise GatewayError(f"Erro do gateway: {description or f'HTTP {resp.status_code}'}")

        if not isinstance(body, dict) or not body.get("id"):
            raise GatewayError("Gateway não retornou o id do pedido.")

        remote = RemoteOrder(
            remote_order_id=str(body["id"]),
            amount=int(body.get("amount") or payload["amount"]),
            currency=str(body.get("currency") or payload["currency"]),
        )
        logger.info(
            "Gateway: pedido remoto %s criado (%s %s, receipt=%s)",
            remote.remote_order_id,
            remote.amount,
            remote.currency,
            receipt,
        )
        return remote

    @staticmethod
    def verify_payment_signature(
        remote_order_id: str,
        remote_payment_id: str,
        signature: str,
        secret: str,
    ) -> bool:
        if not remote_order_id or not remote_payment_id or not secret:
            return False
        expected = compute_signature(secret, f"{remote_order_id}|{remote_payment_id}")
        return _signature_matches(expected, signature)

    @staticmethod
    def verify_webhook_signature(
        raw_payload: bytes,
        signature_header: str,
        webhook_secret: str,
    ) -> bool:
        # Sempre sobre os bytes crus: re-serializar o JSON não garante os mesmos bytes.
        if not raw_payload or not webhook_secret:
            return False
        expected = compute_signature(webhook_secret, raw_payload)
        return _signature_matches(expected, signature_header)

    def verify_payment(self, remote_order_id: str, remote_payment_id: str, signature: str) -> bool:
        return self.verify_payment_signature(
            remote_order_id, remote_payment_id, signature, self.key_secret
        )

    def verify_webhook(self, raw_payload: bytes, signature_header: str) -> bool:
        return self.verify_webhook_signature(raw_payload, signature_header, self.webhook_secret)
