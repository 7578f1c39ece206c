import uuid

from django.conf import settings
from django.db import models

from .order import Order

__all__ = ["OrderRefund"]


class OrderRefund(models.Model):
    """Money returned against an order. The sum of rows never exceeds `order.total`."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, related_name="refunds", on_delete=models.PROTECT)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    reason = models.TextField()

    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL
    )
    processed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-processed_at"]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name="order_refund_amount_positive"),
        ]

    def __str__(self):
        return f"{self.order_id}: {self.amount}"
