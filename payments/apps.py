from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"

    def ready(self):
        from .gateway import configure_stripe

        configure_stripe()
