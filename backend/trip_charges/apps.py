from django.apps import AppConfig


class TripChargesConfig(AppConfig):
    """Register the trip charges app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "trip_charges"
