"""Common base models and mixins shared across apps.

Provides a single `TimeStampedModel` abstract base so every donation and
gateway record carries the same audit timestamps.
"""

from django.db import models


class TimeStampedModel(models.Model):
    """Abstract base model adding `created_at` and `updated_at` timestamps."""

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
