"""Expira assinaturas vencidas. Rodar diariamente (cron)."""

import argparse
import os
import sys
from datetime import date


def _setup_path():
    root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    if root not in sys.path:
        sys.path.insert(0, root)


def main(argv=None):
    _setup_path()

    parser = argparse.ArgumentParser(description="Marca como EXPIRED as assinaturas vencidas.")
    parser.add_argument("--date", help="Data de referencia (YYYY-MM-DD). Padrao: hoje.")
    parser.add_argument("--limit", type=int, default=200)
    args = parser.parse_args(argv)

    today = date.fromisoformat(args.date) if args.date else None

    import app as app_module
    from services.expiration_runner import run_expiration

    with app_module.app.app_context():
        result = run_expiration(today=today, limit=args.limit)

    print(f"{result['count']} assinatura(s) expirada(s)")
    for subscription_id in result["subscription_ids"]:
        print(f"- {subscription_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
