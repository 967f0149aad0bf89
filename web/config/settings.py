"""Django settings for the orders service.

Every deployment-specific value is read from the environment with a
development default. Malformed numeric or boolean values fail fast with
``ImproperlyConfigured`` when the settings module is imported.
"""

import os
from pathlib import Path

from django.core.exceptions import ImproperlyConfigured

BASE_DIR = Path(__file__).resolve().parent.parent  # .../web


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ImproperlyConfigured(f"{name} must be a boolean, got {raw!r}")


def _env_number(name: str, default, cast=float):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ImproperlyConfigured(f"{name} must be a {cast.__name__}, got {raw!r}")


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-insecure-orders-service-key")
DEBUG = _env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [h.strip() for h in os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",") if h.strip()]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "apps.orders.apps.OrdersConfig",
]

MIDDLEWARE = [
    "gateway.middleware.RequestIdMiddleware",
    "gateway.middleware.ApiSizeLimitMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

# ---- Database ----
if os.getenv("DATABASE_ENGINE", "sqlite") == "postgresql":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("POSTGRES_DB", "orders"),
            "USER": os.getenv("POSTGRES_USER", "orders"),
            "PASSWORD": os.getenv("POSTGRES_PASSWORD", "orders"),
            "HOST": os.getenv("POSTGRES_HOST", "orders-db"),
            "PORT": os.getenv("POSTGRES_PORT", "5432"),
            "CONN_MAX_AGE": _env_number("POSTGRES_CONN_MAX_AGE", 60, int),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.getenv("SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
USE_TZ = True
TIME_ZONE = "UTC"

# ---- REST framework ----
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_PARSER_CLASSES": ["rest_framework.parsers.JSONParser"],
    "DEFAULT_THROTTLE_RATES": {
        "orders_list": os.getenv("THROTTLE_ORDERS_LIST", "600/min"),
        "orders_create": os.getenv("THROTTLE_ORDERS_CREATE", "300/min"),
        "orders_detail": os.getenv("THROTTLE_ORDERS_DETAIL", "600/min"),
        "orders_update": os.getenv("THROTTLE_ORDERS_UPDATE", "300/min"),
        "payment_events": os.getenv("THROTTLE_PAYMENT_EVENTS", "1200/min"),
    },
}

# ---- Downstream services ----
USE_HTTP_ADAPTERS = _env_bool("USE_HTTP_ADAPTERS", True)
CATALOG_BASE_URL = os.getenv("CATALOG_BASE_URL", "http://catalog:9001")
PAYMENTS_BASE_URL = os.getenv("PAYMENTS_BASE_URL", "http://payments:9002")
PAYMENTS_CURRENCY = os.getenv("PAYMENTS_CURRENCY", "usd")

HTTP_TIMEOUT_SECS = _env_number("HTTP_TIMEOUT_SECS", 3.0)
HTTP_RETRY_MAX = _env_number("HTTP_RETRY_MAX", 2, int)
HTTP_RETRY_BACKOFF_BASE = _env_number("HTTP_RETRY_BACKOFF_BASE", 0.15)
HTTP_RETRY_MAX_SLEEP = _env_number("HTTP_RETRY_MAX_SLEEP", 0.5)
HTTP_CIRCUIT_FAIL_THRESHOLD = _env_number("HTTP_CIRCUIT_FAIL_THRESHOLD", 5, int)
HTTP_CIRCUIT_RESET_TIMEOUT = _env_number("HTTP_CIRCUIT_RESET_TIMEOUT", 30.0)

API_MAX_BYTES = _env_number("API_MAX_BYTES", 1 * 1024 * 1024, int)

# ---- Logging ----
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "request_id": {"()": "gateway.logging_filters.RequestIdFilter"},
    },
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "filters": ["request_id"],
            "formatter": "json",
        },
    },
    "loggers": {
        "orders": {"handlers": ["console"], "level": LOG_LEVEL},
        "django": {"handlers": ["console"], "level": os.getenv("DJANGO_LOG_LEVEL", "WARNING")},
    },
}
