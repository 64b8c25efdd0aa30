from .base import *  # noqa: F401, F403

DEBUG = False
SECRET_KEY = "test-secret-key"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.InMemoryStorage"},
    "staticfiles": {"BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage"},
}

# Tasks run inline in the calling process
Q_CLUSTER = {
    "name": "leasemanager-test",
    "sync": True,
    "orm": "default",
    "timeout": 60,
    "retry": 120,
}

ESIGNATURE = {
    "default_provider": "boldsign",
    "default_sender_name": "Lease Manager",
    "default_sender_email": "leases@example.com",
    "boldsign": {
        "api_url": "https://api.boldsign.test",
        "api_key": "test-api-key",
        "webhook_secret": "test-webhook-secret",
        "timeout": 5,
    },
}

LEASE_DOCUMENT_RENDERER = "tests.fakes.render_stub_pdf"
LEASE_JOBS = {}

LOGGING["root"]["level"] = "WARNING"  # noqa: F405
LOGGING["loggers"]["apps"]["propagate"] = True  # noqa: F405
