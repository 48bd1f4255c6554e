import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "escrow_pagamentos.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-escrow-pagamentos")
    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    RATE_LIMIT_ENABLED = _bool_env("RATE_LIMIT_ENABLED", True)
    RATE_LIMIT_WINDOW_SECONDS = _int_env("RATE_LIMIT_WINDOW_SECONDS", 60)
    RATE_LIMIT_MAX_REQUESTS = _int_env("RATE_LIMIT_MAX_REQUESTS", 300)
    SECURITY_HEADERS_ENABLED = _bool_env("SECURITY_HEADERS_ENABLED", True)
    CORS_ALLOWED_ORIGIN = os.environ.get("CORS_ALLOWED_ORIGIN", "*")

    # Header carrying the shared secret configured in the Asaas panel.
    WEBHOOK_AUTH_HEADER = os.environ.get("WEBHOOK_AUTH_HEADER", "asaas-access-token")
    WEBHOOK_TIMEOUT_SECONDS = _float_env("WEBHOOK_TIMEOUT_SECONDS", 10.0)
    WEBHOOK_CONFIG_CACHE_SECONDS = _int_env("WEBHOOK_CONFIG_CACHE_SECONDS", 0)
    AUDIT_ALL_TRANSITIONS = _bool_env("AUDIT_ALL_TRANSITIONS", False)

    PIX_DEFAULT_REFERENCE = os.environ.get("PIX_DEFAULT_REFERENCE", "COTIZ")
    PIX_MERCHANT_CITY = os.environ.get("PIX_MERCHANT_CITY", "BRASIL")

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL nao definida para ambiente de producao.")
        if env == "production" and self.SECRET_KEY == "dev-secret-escrow-pagamentos":
            raise RuntimeError("SECRET_KEY insegura para producao.")
