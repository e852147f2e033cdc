from __future__ import annotations

from datetime import datetime

from models.extensions import db


class Port(db.Model):
    """Slot de provisionamento (instância) entregue a uma assinatura paga.

    O tamanho do pool é mantido pela administração; aqui só há claim/release.
    """

    __tablename__ = "ports"

    id = db.Column(db.Integer, primary_key=True)
    instance_url = db.Column(db.String(255), unique=True, nullable=False)
    status = db.Column(db.String(20), default="AVAILABLE", nullable=False, index=True)
    # afinidade opcional; NULL = pool geral
    plan_id = db.Column(db.Integer, db.ForeignKey("plans.id"), nullable=True, index=True)
    # UNIQUE: uma assinatura nunca segura duas portas
    allocated_subscription_id = db.Column(db.Integer, unique=True, nullable=True)
    allocated_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class PortAllocationLog(db.Model):
    __tablename__ = "port_allocation_logs"

    id = db.Column(db.Integer, primary_key=True)
    port_id = db.Column(db.Integer, db.ForeignKey("ports.id"), nullable=False, index=True)
    subscription_id = db.Column(db.Integer, nullable=True, index=True)
    customer_id = db.Column(db.Integer, nullable=True)
    action = db.Column(db.String(20), nullable=False)  # ASSIGNED | RELEASED
    performed_by = db.Column(db.String(64), nullable=True)  # NULL = automático

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
