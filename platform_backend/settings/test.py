"""
Test settings for the community platform.

Uses an in-memory SQLite database and a local-memory cache, runs Celery
tasks eagerly and disables DRF throttling so API tests are deterministic.
"""
from .base import *  # noqa

DEBUG = False

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

REST_FRAMEWORK = {  # noqa: F405
    **REST_FRAMEWORK,  # noqa: F405
    "DEFAULT_THROTTLE_CLASSES": [],
}

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

STRIPE_SECRET_KEY = "sk_test_platform"
STRIPE_WEBHOOK_SECRET = "whsec_test_platform"
PLATFORM_FEE_PER_TICKET_CENTS = 500
STRIPE_PROCESSING_FEE_PERCENT = "0.029"
STRIPE_PROCESSING_FEE_FIXED_CENTS = 30
SOCIAL_SUBSCRIPTION_PRICE_ID = ""
SOCIAL_SUBSCRIPTION_AMOUNT_CENTS = 6500
FRONTEND_URL = "https://app.example.com/"
