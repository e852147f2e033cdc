import logging

from dotenv import load_dotenv
from flask import Flask, g, jsonify
from flask_login import LoginManager
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

# Carrega variaveis de ambiente de .env (desenvolvimento local)
load_dotenv()

from config import Config
from models.customer_model import Customer
from models.extensions import db, init_db

from routes.auth_routes import auth_bp
from routes.checkout_routes import checkout_bp
from routes.webhook_routes import webhooks_bp

from services.permissions import csrf_rejection, get_csrf_token, json_error
from services.request_context import REQUEST_ID_HEADER, build_request_context

logging.basicConfig(
    level=getattr(logging, str(Config.LOG_LEVEL).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(config_object=Config) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object)

    # DB
    init_db(app)

    # Login manager
    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        if not user_id:
            return None

        try:
            return db.session.get(Customer, int(user_id))
        except OperationalError:
            # Conexao SSL instavel em pools remotos: tenta limpar e reabrir.
            db.session.rollback()
            db.session.remove()
            db.engine.dispose()
            try:
                return db.session.get(Customer, int(user_id))
            except OperationalError:
                db.session.rollback()
                return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return json_error("not_authenticated", 401)

    # Blueprints
    app.register_blueprint(auth_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(webhooks_bp)

    @app.before_request
    def attach_request_context():
        g.request_context = build_request_context()

    @app.before_request
    def enforce_csrf():
        return csrf_rejection()

    @app.after_request
    def echo_request_id(response):
        ctx = getattr(g, "request_context", None)
        if ctx is not None:
            response.headers[REQUEST_ID_HEADER] = ctx.correlation_id
        return response

    @app.get("/csrf-token")
    def csrf_token():
        return jsonify({"csrf_token": get_csrf_token()})

    @app.get("/healthz")
    def healthz():
        try:
            db.session.execute(text("SELECT 1"))
        except SQLAlchemyError:
            db.session.rollback()
            logger.warning("healthz: banco indisponivel", exc_info=True)
            return jsonify({"ok": False, "database": "unavailable"}), 503
        return jsonify({"ok": True})

    return app


app = create_app()


if __name__ == "__main__":
    app.run(debug=True, use_reloader=False)
