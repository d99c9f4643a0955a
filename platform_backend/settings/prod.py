"""
Production settings for the payments platform.

Hosts come from ``DJANGO_ALLOWED_HOSTS`` and must be set explicitly.
Stripe keys are required at startup so a misconfigured deploy fails
before it accepts a checkout or a webhook.
"""
from django.core.exceptions import ImproperlyConfigured

from .base import *  # noqa

DEBUG = False

if not ALLOWED_HOSTS:  # noqa: F405
    raise ImproperlyConfigured("DJANGO_ALLOWED_HOSTS must list the production hostnames.")

for _name in ("DJANGO_SECRET_KEY", "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"):
    if not os.getenv(_name):  # noqa: F405
        raise ImproperlyConfigured(f"{_name} is required in production.")

if os.getenv("STRIPE_SECRET_KEY", "").startswith("sk_test_") and os.getenv("STRIPE_ALLOW_TEST_KEYS") != "True":  # noqa: F405
    raise ImproperlyConfigured("Refusing to run production with a Stripe test key.")

SESSION_COOKIE_SECURE = True
CSRF_COOKIE_SECURE = True
SECURE_SSL_REDIRECT = True
# TLS terminates at the load balancer; its health check calls plain HTTP.
SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
SECURE_REDIRECT_EXEMPT = [r"^health/$"]
SECURE_REFERRER_POLICY = "same-origin"

SECURE_HSTS_SECONDS = int(os.getenv("SECURE_HSTS_SECONDS", "31536000"))  # noqa: F405
SECURE_HSTS_INCLUDE_SUBDOMAINS = True
SECURE_HSTS_PRELOAD = True

DATABASES = {  # noqa: F405
    **DATABASES,  # noqa: F405
    "default": {**DATABASES["default"], "CONN_MAX_AGE": int(os.getenv("DB_CONN_MAX_AGE", "300"))},  # noqa: F405
}
