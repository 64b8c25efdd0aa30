import os
from pathlib import Path

import environ

BASE_DIR = Path(__file__).resolve().parent.parent.parent

env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, ["localhost", "127.0.0.1"]),
    CSRF_TRUSTED_ORIGINS=(list, []),
)
environ.Env.read_env(os.path.join(BASE_DIR, ".env"))


# ============================================
# Docker Secrets Support
# ============================================
def get_secret(secret_name, default=None):
    """
    Read secret from Docker secrets or fall back to environment variable.

    Docker secrets are mounted at /run/secrets/<secret_name> in containers.
    """
    secret_path = f"/run/secrets/{secret_name}"
    if os.path.exists(secret_path):
        with open(secret_path) as f:
            return f.read().strip()
    # Fall back to environment variable (uppercase with underscores)
    env_key = secret_name.upper().replace("-", "_")
    return os.environ.get(env_key, default)


# ============================================
# Core Django Settings
# ============================================
SECRET_KEY = get_secret("django_secret_key", env("SECRET_KEY", default="insecure-dev-key-change-in-production"))
DEBUG = env("DEBUG")
ALLOWED_HOSTS = env("ALLOWED_HOSTS")

# Public URL of the app, used for links in emails
SITE_URL = env("SITE_URL", default="http://localhost:8000")

_csrf_origins = env("CSRF_TRUSTED_ORIGINS", default=[])
if SITE_URL and SITE_URL not in _csrf_origins:
    _csrf_origins.insert(0, SITE_URL)
CSRF_TRUSTED_ORIGINS = _csrf_origins

AUTH_USER_MODEL = "accounts.User"

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # Third party
    "django_q",
    # Local apps
    "apps.core",
    "apps.accounts",
    "apps.properties",
    "apps.leases",
    "apps.documents",
    "apps.notifications",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"

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

WSGI_APPLICATION = "config.wsgi.application"

DATABASES = {
    "default": env.db("DATABASE_URL", default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
}

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"
STORAGES = {
    # Generated lease agreements are stored here
    "default": {
        "BACKEND": env("DEFAULT_FILE_STORAGE", default="django.core.files.storage.FileSystemStorage"),
    },
    "staticfiles": {
        "BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage",
    },
}

MEDIA_URL = "media/"
MEDIA_ROOT = BASE_DIR / "media"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ============================================
# Django-Q2 Task Queue
# ============================================
REDIS_URL = env("REDIS_URL", default=None)

Q_CLUSTER = {
    "name": "leasemanager",
    "workers": env.int("Q_WORKERS", default=2),
    "recycle": 500,
    # Must exceed the longest job timeout in LEASE_JOBS
    "timeout": 660,
    "retry": 720,
    "queue_limit": 50,
    "bulk": 10,
}

# Use Redis broker when available, otherwise fall back to ORM
if REDIS_URL:
    Q_CLUSTER["redis"] = REDIS_URL
else:
    Q_CLUSTER["orm"] = "default"

# ============================================
# Email
# ============================================
EMAIL_BACKEND = env("EMAIL_BACKEND", default="django.core.mail.backends.console.EmailBackend")
EMAIL_HOST = env("EMAIL_HOST", default="smtp.gmail.com")
EMAIL_PORT = env.int("EMAIL_PORT", default=587)
EMAIL_USE_TLS = env.bool("EMAIL_USE_TLS", default=True)
EMAIL_HOST_USER = env("EMAIL_HOST_USER", default="")
EMAIL_HOST_PASSWORD = get_secret("email_host_password", env("EMAIL_HOST_PASSWORD", default=""))
DEFAULT_FROM_EMAIL = env("DEFAULT_FROM_EMAIL", default="noreply@leasemanager.local")
ADMINS = [("Operations", email) for email in env.list("ADMIN_EMAILS", default=[])]

# ============================================
# E-Signature
# ============================================
ESIGNATURE = {
    "default_provider": env("ESIGNATURE_DEFAULT_PROVIDER", default="boldsign"),
    "default_sender_name": env("ESIGNATURE_SENDER_NAME", default=""),
    "default_sender_email": env("ESIGNATURE_SENDER_EMAIL", default=""),
    "boldsign": {
        "api_url": env("BOLDSIGN_API_URL", default="https://api.boldsign.com"),
        "api_key": get_secret("boldsign_api_key", env("BOLDSIGN_API_KEY", default="")),
        "webhook_secret": get_secret("boldsign_webhook_secret", env("BOLDSIGN_WEBHOOK_SECRET", default="")),
        "timeout": env.int("BOLDSIGN_TIMEOUT", default=30),
        "expiry_days": env.int("BOLDSIGN_EXPIRY_DAYS", default=30),
    },
}

# ============================================
# Leases
# ============================================
LEASE_RENEWAL_GENERATION_TOLERANCE_DAYS = env.int("LEASE_RENEWAL_GENERATION_TOLERANCE_DAYS", default=1)
LEASE_AUTO_SEND_GRACE_DAYS = env.int("LEASE_AUTO_SEND_GRACE_DAYS", default=7)
LEASE_DEFAULT_RENEWAL_TERM_MONTHS = 12
LEASE_DEFAULT_RENEWAL_DAYS_BEFORE_EXPIRY = 30
LEASE_DEFAULT_SEND_FOR_SIGNATURE_DAYS = 14
LEASE_DOCUMENT_RENDERER = "apps.documents.services.pdf.render_lease_pdf"

# Per-job overrides: {"process-auto-renewals": {"schedule": "...", "enabled": False, "timeout_ms": ...}}
LEASE_JOBS = {
    "process-auto-renewals": {
        "schedule": env("LEASE_RENEWAL_JOB_SCHEDULE", default="0 0 * * *"),
        "enabled": env.bool("LEASE_RENEWAL_JOB_ENABLED", default=True),
    },
    "auto-send-renewals-for-signature": {
        "schedule": env("LEASE_AUTO_SEND_JOB_SCHEDULE", default="0 9 * * *"),
        "enabled": env.bool("LEASE_AUTO_SEND_JOB_ENABLED", default=True),
    },
}

# Logging
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {process:d} {thread:d} {message}",
            "style": "{",
        },
        "simple": {
            "format": "{levelname} {asctime} {module} {message}",
            "style": "{",
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
        "level": "INFO",
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": env("DJANGO_LOG_LEVEL", default="INFO"),
            "propagate": False,
        },
        "django.security": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
        "django_q": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "apps": {
            "handlers": ["console"],
            "level": env("APPS_LOG_LEVEL", default="INFO"),
            "propagate": False,
        },
    },
}
