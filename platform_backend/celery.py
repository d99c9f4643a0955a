"""
Celery configuration for the community platform backend.

This module defines and exposes a Celery application instance.  Celery
discovers tasks by inspecting any `tasks.py` modules in installed apps.
Periodic jobs (payout execution, stale payment expiry) are declared in
``CELERY_BEAT_SCHEDULE`` in the settings module.
"""
import os
from celery import Celery

# Set default Django settings for Celery to pick configuration from settings
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "platform_backend.settings.dev")

celery_app = Celery("platform_backend")

# Namespacing Celery settings with the "CELERY_" prefix in Django settings
celery_app.config_from_object("django.conf:settings", namespace="CELERY")
celery_app.autodiscover_tasks()
