"""Django settings for the donation payments backend.

Every value can be overridden from the environment (or a `*_FILE` secret
file); defaults are suitable for local development and the test suite.
"""

from pathlib import Path

import environ
import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration

BASE_DIR = Path(__file__).resolve().parent.parent

env = environ.FileAwareEnv()

SECRET_KEY = env("SECRET_KEY", default="dev-only-not-a-secret")
DEBUG = env.bool("DEBUG", default=False)
ALLOWED_HOSTS = env.list("ALLOWED_HOSTS", default=["localhost", "127.0.0.1", "testserver"])

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "drf_spectacular",
    "common.apps.CommonConfig",
    "payments.apps.PaymentsConfig",
    "donations.apps.DonationsConfig",
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

ROOT_URLCONF = "avr.urls"
WSGI_APPLICATION = "avr.wsgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

############
# Database #
############
DATABASES = {
    "default": env.db("DATABASE_URL", default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
}
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "avr",
    }
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = env("TIME_ZONE", default="UTC")
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

#########
# Email #
#########
EMAIL_BACKEND = env("EMAIL_BACKEND", default="django.core.mail.backends.console.EmailBackend")
EMAIL_HOST = env("EMAIL_HOST", default="localhost")
EMAIL_PORT = env.int("EMAIL_PORT", default=587)
EMAIL_HOST_USER = env("EMAIL_HOST_USER", default="")
EMAIL_HOST_PASSWORD = env("EMAIL_HOST_PASSWORD", default="")
EMAIL_USE_TLS = env.bool("EMAIL_USE_TLS", default=True)
DEFAULT_FROM_EMAIL = env("DEFAULT_FROM_EMAIL", default="donations@example.org")

########
# REST #
########
REST_FRAMEWORK = {
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "DEFAULT_THROTTLE_RATES": {
        "payments": env("THROTTLE_PAYMENTS", default="120/min"),
        "payments_write": env("THROTTLE_PAYMENTS_WRITE", default="30/min"),
        "donations": env("THROTTLE_DONATIONS", default="60/min"),
        "donations_write": env("THROTTLE_DONATIONS_WRITE", default="10/min"),
    },
}

SPECTACULAR_SETTINGS = {
    "TITLE": "AVR Donations API",
    "DESCRIPTION": "Donation checkout and payment gateway webhooks.",
    "VERSION": "1.0.0",
}

##########
# Helcim #
##########
HELCIM_API_TOKEN = env("HELCIM_API_TOKEN", default="")
HELCIM_BASE_URL = env("HELCIM_BASE_URL", default="https://api.helcim.com/v2")
HELCIM_WEBHOOK_VERIFIER_TOKEN = env("HELCIM_WEBHOOK_VERIFIER_TOKEN", default="")
HELCIM_WEBHOOK_IPS = env.list("HELCIM_WEBHOOK_IPS", default=[])
HELCIM_TIMEOUT = env.float("HELCIM_TIMEOUT", default=15.0)
HELCIM_MAX_RETRIES = env.int("HELCIM_MAX_RETRIES", default=2)
HELCIM_RETRY_BACKOFF = env.float("HELCIM_RETRY_BACKOFF", default=0.5)

#############
# Donations #
#############
DONATIONS_SUPPORTED_CURRENCIES = env.list("DONATIONS_SUPPORTED_CURRENCIES", default=["USD", "CAD"])
DONATIONS_DEFAULT_CURRENCY = env("DONATIONS_DEFAULT_CURRENCY", default="USD")
# In cents.
DONATIONS_MAX_AMOUNT = env.int("DONATIONS_MAX_AMOUNT", default=10_000_000)
DONATIONS_RECONCILE_AFTER_HOURS = env.int("DONATIONS_RECONCILE_AFTER_HOURS", default=24)

ORGANIZATION_NAME = env("ORGANIZATION_NAME", default="American Veterans Rebuilding")
ORGANIZATION_EIN = env("ORGANIZATION_EIN", default="")
ORGANIZATION_ADDRESS = env("ORGANIZATION_ADDRESS", default="")

###########
# Logging #
###########
LOG_LEVEL = env("LOG_LEVEL", default="INFO")
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "verbose"},
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "avr.payments": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "avr.donations": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}

##########
# Sentry #
##########
SENTRY_DSN = env("SENTRY_DSN", default="")
if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[DjangoIntegration()],
        environment=env("SENTRY_ENVIRONMENT", default="production"),
        send_default_pii=False,
    )
