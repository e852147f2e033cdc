from __future__ import annotations

from datetime import datetime

from models.extensions import db


class Order(db.Model):
    """Uma tentativa de compra (ou renovação) ligada a um pedido no gateway.

    O status só anda para frente: PENDING -> SUCCESS | FAILED, sempre por
    UPDATE condicional (ver services/order_store.py).
    """

    __tablename__ = "orders"

    id = db.Column(db.String(32), primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("plans.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    status = db.Column(db.String(20), default="PENDING", nullable=False, index=True)
    payment_method = db.Column(db.String(32), nullable=True)

    gateway_order_id = db.Column(db.String(64), unique=True, nullable=True, index=True)
    gateway_payment_id = db.Column(db.String(64), nullable=True)

    # snapshot de cobrança no momento do checkout
    billing_name = db.Column(db.String(255), nullable=True)
    billing_address = db.Column(db.String(500), nullable=True)
    billing_tax_id = db.Column(db.String(32), nullable=True)

    # preenchido quando o pedido renova uma assinatura existente
    renewal_subscription_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
