"""Tenta alocar porta para assinaturas ACTIVE que ficaram sem porta."""

import argparse
import os
import sys


def _setup_path():
    root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    if root not in sys.path:
        sys.path.insert(0, root)


def main(argv=None):
    _setup_path()

    parser = argparse.ArgumentParser(description="Retenta alocacao de portas pendentes.")
    parser.add_argument("--limit", type=int, default=50)
    args = parser.parse_args(argv)

    import app as app_module
    from services.provisioning import ProvisioningService

    app = app_module.app
    with app.app_context():
        result = ProvisioningService.from_config(app.config).allocate_pending_ports(limit=args.limit)

    print(f"alocadas: {len(result['allocated'])} | sem porta: {len(result['pending'])}")
    # saida 1 sinaliza para o cron que ainda ha fila
    return 1 if result["pending"] else 0


if __name__ == "__main__":
    sys.exit(main())
