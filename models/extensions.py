from __future__ import annotations

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text

db = SQLAlchemy()


def init_db(app):
    db.init_app(app)
    with app.app_context():
        # IMPORTANTE: os modelos precisam estar no metadata antes do create_all
        from models.customer_model import Customer  # noqa: F401
        from models.plan_model import Plan  # noqa: F401
        from models.order_model import Order  # noqa: F401
        from models.subscription_model import Subscription  # noqa: F401
        from models.port_model import Port, PortAllocationLog  # noqa: F401

        db.create_all()

        if db.engine.name == "sqlite":
            with db.engine.begin() as conn:
                conn.execute(text("PRAGMA journal_mode=WAL"))
                conn.execute(text("PRAGMA synchronous=NORMAL"))
                conn.execute(text("PRAGMA busy_timeout=5000"))
