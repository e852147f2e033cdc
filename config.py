import os
from datetime import timedelta

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _normalize_database_url(url: str) -> str:
    # Alguns provedores usam "postgres://", SQLAlchemy prefere "postgresql://"
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)

    # Força psycopg (v3) em vez de psycopg2
    if url.startswith("postgresql+psycopg2://"):
        url = url.replace("postgresql+psycopg2://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)

    if url.startswith("postgresql+psycopg://") and "sslmode=" not in url:
        sep = "&" if "?" in url else "?"
        url = f"{url}{sep}sslmode={os.getenv('DB_SSLMODE', 'require')}"
    return url


class Config:
    APP_ENV = (
        os.getenv("APP_ENV")
        or os.getenv("FLASK_ENV")
        or os.getenv("ENV")
        or "development"
    ).lower()
    IS_PRODUCTION = APP_ENV in {"prod", "production"}

    APP_NAME = (os.getenv("APP_NAME", "Portal do Cliente") or "").strip() or "Portal do Cliente"

    def _is_weak_secret(value: str) -> bool:
        if not value:
            return True
        if value == "dev-secret-change-me":
            return True
        if len(value) < 32:
            return True
        return False

    SECRET_KEY = os.getenv("SECRET_KEY", "")
    if not SECRET_KEY:
        SECRET_KEY = "dev-secret-change-me"
    if IS_PRODUCTION and _is_weak_secret(SECRET_KEY):
        raise RuntimeError("SECRET_KEY ausente ou fraco em produção.")

    # Banco:
    # - Local: sqlite
    # - Produção: DATABASE_URL (Postgres)
    DATABASE_URL = os.getenv("DATABASE_URL")
    if DATABASE_URL:
        SQLALCHEMY_DATABASE_URI = _normalize_database_url(DATABASE_URL)
    else:
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + os.path.join(BASE_DIR, "database.db")

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        # Sessões em threads diferentes (redirect x webhook) disputam o mesmo arquivo.
        SQLALCHEMY_ENGINE_OPTIONS["connect_args"] = {
            "check_same_thread": False,
            "timeout": int(os.getenv("SQLITE_TIMEOUT", "30")),
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS["pool_recycle"] = int(os.getenv("DB_POOL_RECYCLE", "280"))
        SQLALCHEMY_ENGINE_OPTIONS["pool_timeout"] = int(os.getenv("DB_POOL_TIMEOUT", "30"))
        SQLALCHEMY_ENGINE_OPTIONS["connect_args"] = {
            "keepalives": 1,
            "keepalives_idle": 30,
            "keepalives_interval": 10,
            "keepalives_count": 5,
        }

    DEBUG = _env_bool("DEBUG", default=not IS_PRODUCTION)
    if IS_PRODUCTION:
        DEBUG = False
    TESTING = _env_bool("TESTING", default=False)

    LOG_LEVEL = (os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper()

    # Sessão / cookies
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv("SESSION_COOKIE_SAMESITE", "Lax")
    SESSION_COOKIE_SECURE = IS_PRODUCTION
    REMEMBER_COOKIE_SECURE = IS_PRODUCTION
    REMEMBER_COOKIE_HTTPONLY = True
    PERMANENT_SESSION_LIFETIME = timedelta(days=int(os.getenv("SESSION_LIFETIME_DAYS", "7")))
    PREFERRED_URL_SCHEME = "https" if IS_PRODUCTION else "http"

    _app_base_url = os.getenv("APP_BASE_URL")
    if not _app_base_url:
        if IS_PRODUCTION:
            raise RuntimeError("APP_BASE_URL deve estar configurado em produção.")
        _app_base_url = "http://127.0.0.1:5000"
    APP_BASE_URL = _app_base_url.rstrip("/")

    # Gateway de pagamento (API estilo Razorpay: orders + assinatura HMAC)
    GATEWAY_BASE_URL = (os.getenv("GATEWAY_BASE_URL", "https://api.razorpay.com") or "").rstrip("/")
    GATEWAY_KEY_ID = os.getenv("GATEWAY_KEY_ID", "")
    GATEWAY_KEY_SECRET = os.getenv("GATEWAY_KEY_SECRET", "")
    GATEWAY_WEBHOOK_SECRET = os.getenv("GATEWAY_WEBHOOK_SECRET", "")
    if IS_PRODUCTION and not GATEWAY_WEBHOOK_SECRET:
        raise RuntimeError("GATEWAY_WEBHOOK_SECRET deve estar configurado em produção.")
    GATEWAY_TIMEOUT = float(os.getenv("GATEWAY_TIMEOUT", "20"))
    GATEWAY_SIGNATURE_HEADER = os.getenv("GATEWAY_SIGNATURE_HEADER", "X-Razorpay-Signature")
    DEFAULT_CURRENCY = (os.getenv("DEFAULT_CURRENCY", "INR") or "INR").strip().upper()

    # Pool de portas: False = qualquer porta livre; True = respeita afinidade por plano
    PORT_POOL_PLAN_SCOPED = _env_bool("PORT_POOL_PLAN_SCOPED", default=False)
    # Destinatario dos alertas de alocacao manual (o envio fica fora deste servico)
    OPS_ALERT_EMAIL = os.getenv("OPS_ALERT_EMAIL", "ops@example.com")

    # Rate limiting (em memória - produção multi-instância exige Redis)
    RATE_LIMIT_CHECKOUT = int(os.getenv("RATE_LIMIT_CHECKOUT", "10"))
    RATE_LIMIT_CHECKOUT_WINDOW = int(os.getenv("RATE_LIMIT_CHECKOUT_WINDOW", "600"))
    RATE_LIMIT_LOGIN = int(os.getenv("RATE_LIMIT_LOGIN", "10"))
    RATE_LIMIT_LOGIN_WINDOW = int(os.getenv("RATE_LIMIT_LOGIN_WINDOW", "900"))
    RATE_LIMIT_REGISTER = int(os.getenv("RATE_LIMIT_REGISTER", "5"))
    RATE_LIMIT_REGISTER_WINDOW = int(os.getenv("RATE_LIMIT_REGISTER_WINDOW", "3600"))
