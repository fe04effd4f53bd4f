from django.apps import AppConfig


class DisputesConfig(AppConfig):
    """Guest disputes against trip charges and their operator resolution."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "disputes"
    verbose_name = "Trip charge disputes"
