"""Registros tipados do core de pagamento.

Os modelos SQLAlchemy ficam em models/; aqui ficam os DTOs imutáveis que os
stores devolvem, com validação no construtor, e os resultados fechados das
operações (WON / ALREADY_PROCESSED / NOT_FOUND etc.).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from services.errors import ValidationError


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class PortStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    ALLOCATED = "ALLOCATED"


class AllocationAction(str, Enum):
    ASSIGNED = "ASSIGNED"
    RELEASED = "RELEASED"


class TransitionOutcome(str, Enum):
    WON = "WON"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    NOT_FOUND = "NOT_FOUND"


def _require(label: str, value) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"Campo obrigatório ausente: {label}", [label])


def _coerce_enum(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Valor inválido para {label}: {value!r}", [label]) from None


@dataclass(frozen=True)
class PlanRecord:
    id: int
    name: str
    price: Decimal
    currency: str
    billing_period_months: int
    is_active: bool = True

    def __post_init__(self) -> None:
        _require("id", self.id)
        _require("name", self.name)
        _require("currency", self.currency)
        if self.price is None or Decimal(self.price) < 0:
            raise ValidationError("Preço inválido", ["price"])
        if int(self.billing_period_months or 0) < 1:
            raise ValidationError("Período de cobrança inválido", ["billing_period_months"])


@dataclass(frozen=True)
class OrderRecord:
    id: str
    customer_id: int
    plan_id: int
    amount: Decimal
    currency: str
    status: OrderStatus
    payment_method: str | None = None
    gateway_order_id: str | None = None
    gateway_payment_id: str | None = None
    billing_name: str | None = None
    billing_address: str | None = None
    billing_tax_id: str | None = None
    renewal_subscription_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        for label in ("id", "customer_id", "plan_id", "amount", "currency"):
            _require(label, getattr(self, label))
        object.__setattr__(self, "status", _coerce_enum(OrderStatus, self.status, "status"))

    @property
    def is_renewal(self) -> bool:
        return self.renewal_subscription_id is not None


@dataclass(frozen=True)
class SubscriptionRecord:
    id: int
    customer_id: int
    plan_id: int
    order_id: str
    status: SubscriptionStatus
    start_date: date
    end_date: date
    port_id: int | None = None

    def __post_init__(self) -> None:
        for label in ("id", "customer_id", "plan_id", "order_id", "start_date", "end_date"):
            _require(label, getattr(self, label))
        object.__setattr__(
            self, "status", _coerce_enum(SubscriptionStatus, self.status, "status")
        )
        if self.end_date < self.start_date:
            raise ValidationError("end_date anterior a start_date", ["end_date"])


@dataclass(frozen=True)
class PortRecord:
    id: int
    status: PortStatus
    instance_url: str
    plan_id: int | None = None
    allocated_subscription_id: int | None = None
    allocated_at: datetime | None = None

    def __post_init__(self) -> None:
        _require("id", self.id)
        _require("instance_url", self.instance_url)
        object.__setattr__(self, "status", _coerce_enum(PortStatus, self.status, "status"))
        if self.status is PortStatus.ALLOCATED and self.allocated_subscription_id is None:
            raise ValidationError("Porta alocada sem assinatura", ["allocated_subscription_id"])


@dataclass(frozen=True)
class ClaimResult:
    port: PortRecord | None
    message: str | None = None

    @property
    def claimed(self) -> bool:
        return self.port is not None


@dataclass(frozen=True)
class Availability:
    """Contagem consultiva: não reserva nada e pode ficar velha antes do claim."""

    available: bool
    count: int

    def as_dict(self) -> dict:
        return {"available": self.available, "count": self.count}


@dataclass(frozen=True)
class ProvisioningResult:
    success: bool
    subscription: SubscriptionRecord | None = None
    port_allocated: bool = False
    port: PortRecord | None = None
    port_message: str | None = None
    already_processed: bool = False
    error: str | None = None


@dataclass(frozen=True)
class ConfirmationResult:
    order: OrderRecord
    success: bool
    renewal: bool = False
    provisioning: ProvisioningResult | None = None
    # a transição do pedido já tinha sido feita por outra confirmação
    already_processed: bool = False
