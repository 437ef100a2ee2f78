from django.apps import AppConfig


class DonationsConfig(AppConfig):
    """AppConfig for the donations app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "donations"
    verbose_name = "Donations"
