from django.db import models

from apps.utils.models import TimestampedModel


class WebhookEvent(TimestampedModel):
    """
    Idempotency store for gateway webhook events.
    """
    event_id = models.CharField(max_length=100, unique=True, help_text="Unique ID from Provider")
    event_type = models.CharField(max_length=100, db_index=True)
    provider = models.CharField(max_length=20, default="STRIPE")
    is_processed = models.BooleanField(default=False)
    payload = models.JSONField()

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.provider} - {self.event_type} - {self.event_id}"
