from pathlib import Path
import os

BASE_DIR = Path(__file__).resolve().parent.parent

# ---------------------------------------------------------------------------
# Core Django settings
# ---------------------------------------------------------------------------

DEBUG = os.environ.get("DJANGO_DEBUG", "true").lower() == "true"

# SECRET_KEY must always come from the environment when DEBUG is False.
if DEBUG:
    SECRET_KEY = os.environ.get(
        "DJANGO_SECRET_KEY",
        "dev-secret-key-not-for-production",
    )
else:
    SECRET_KEY = os.environ["DJANGO_SECRET_KEY"]

# Example: DJANGO_ALLOWED_HOSTS="payments.example.com,api.example.com"
ALLOWED_HOSTS = [
    host.strip()
    for host in os.environ.get(
        "DJANGO_ALLOWED_HOSTS",
        "127.0.0.1,localhost",
    ).split(",")
    if host.strip()
]

# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "drf_spectacular",
    "corsheaders",
    "uploads",
    "rules",
    "processing",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "payments_project.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "payments_project.wsgi.application"

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

# Workers rely on SELECT ... FOR UPDATE SKIP LOCKED, so production runs on
# PostgreSQL.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.environ.get("POSTGRES_DB", "upload_payments"),
        "USER": os.environ.get("POSTGRES_USER", "postgres"),
        "PASSWORD": os.environ.get("POSTGRES_PASSWORD", ""),
        "HOST": os.environ.get("POSTGRES_HOST", "localhost"),
        "PORT": os.environ.get("POSTGRES_PORT", "5432"),
    }
}

# ---------------------------------------------------------------------------
# Internationalization
# ---------------------------------------------------------------------------

LANGUAGE_CODE = "en-us"

TIME_ZONE = "UTC"

USE_I18N = True

USE_TZ = True

# ---------------------------------------------------------------------------
# Static files
# ---------------------------------------------------------------------------

STATIC_URL = "/static/"
STATIC_ROOT = os.path.join(BASE_DIR, "staticfiles")

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        app: {
            "handlers": ["console"],
            "level": os.environ.get("DJANGO_LOG_LEVEL", "INFO"),
            "propagate": False,
        }
        for app in ("uploads", "rules", "processing")
    },
}

# ---------------------------------------------------------------------------
# REST framework configuration
# ---------------------------------------------------------------------------

REST_FRAMEWORK = {
    # Upload endpoints are addressed by an opaque per-upload token rather
    # than by user identity.
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.AllowAny",
    ],
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
}

SPECTACULAR_SETTINGS = {
    "TITLE": "Upload Payments API",
    "DESCRIPTION": "Intake and status surface for CSV payment instruction uploads.",
    "VERSION": "1.0.0",
}

# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

CORS_ALLOW_ALL_ORIGINS = os.environ.get("CORS_ALLOW_ALL_ORIGINS", "true").lower() == "true"

# ---------------------------------------------------------------------------
# Upload intake
# ---------------------------------------------------------------------------

PAYMENTS_MAX_UPLOAD_BYTES = int(
    os.environ.get("PAYMENTS_MAX_UPLOAD_BYTES", str(50 * 1024 * 1024))  # 50 MB
)

# ---------------------------------------------------------------------------
# Validation worker
# ---------------------------------------------------------------------------

PAYMENTS_WORKER_POLL_DELAY_MS = int(os.environ.get("PAYMENTS_WORKER_POLL_DELAY_MS", "500"))
PAYMENTS_CHUNK_SIZE_ROWS = int(os.environ.get("PAYMENTS_CHUNK_SIZE_ROWS", "1000"))
PAYMENTS_STALE_LOCK_SECONDS = int(os.environ.get("PAYMENTS_STALE_LOCK_SECONDS", "60"))
PAYMENTS_MAX_ATTEMPTS = int(os.environ.get("PAYMENTS_MAX_ATTEMPTS", "5"))
PAYMENTS_BACKOFF_BASE_SECONDS = float(os.environ.get("PAYMENTS_BACKOFF_BASE_SECONDS", "2"))
PAYMENTS_INGEST_BATCH_SIZE = int(os.environ.get("PAYMENTS_INGEST_BATCH_SIZE", "500"))

# Progress commits double as lease heartbeats, so this must stay well under
# PAYMENTS_STALE_LOCK_SECONDS worth of rows.
PAYMENTS_PROGRESS_COMMIT_ROWS = int(os.environ.get("PAYMENTS_PROGRESS_COMMIT_ROWS", "200"))
PAYMENTS_PROGRESS_NOTIFY_ROWS = int(os.environ.get("PAYMENTS_PROGRESS_NOTIFY_ROWS", "100"))
PAYMENTS_ERROR_FLUSH_ROWS = int(os.environ.get("PAYMENTS_ERROR_FLUSH_ROWS", "1000"))

# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

# Base URL of the push service, e.g. "http://api:8080". Empty disables HTTP
# delivery and events are only logged.
PAYMENTS_NOTIFY_BASE_URL = os.environ.get("PAYMENTS_NOTIFY_BASE_URL", "")
PAYMENTS_NOTIFY_TIMEOUT_SECONDS = float(
    os.environ.get("PAYMENTS_NOTIFY_TIMEOUT_SECONDS", "2.0")
)

# ---------------------------------------------------------------------------
# Validation rules
# ---------------------------------------------------------------------------

# Externalized default rule set that operators can edit without touching
# Python code. Loaded with `manage.py load_validation_rules`.
PAYMENTS_RULES_CONFIG_PATH = os.environ.get(
    "PAYMENTS_RULES_CONFIG_PATH",
    str(BASE_DIR / "rules" / "config" / "default_rules.yml"),
)

# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------

SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")

SESSION_COOKIE_SECURE = not DEBUG
CSRF_COOKIE_SECURE = not DEBUG
SECURE_SSL_REDIRECT = os.environ.get("DJANGO_SECURE_SSL_REDIRECT", "false").lower() == "true"
