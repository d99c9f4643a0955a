"""
ASGI entry point for the community platform backend.

Only the HTTP protocol is served; the default settings module is the
development configuration.
"""

import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "platform_backend.settings.dev")

from django.conf import settings
from django.core.asgi import get_asgi_application
from django.contrib.staticfiles.handlers import ASGIStaticFilesHandler

application = get_asgi_application()

# Serve /static/ when using uvicorn in DEBUG mode
if settings.DEBUG:
    application = ASGIStaticFilesHandler(application)
