import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models

from apps.utils.models import TimestampedModel
from apps.utils.utils import quantize_money

__all__ = ["Cart", "CartItem"]


class Cart(TimestampedModel):
    """
    Per-customer cart. Exactly one per user, created on first access.
    Totals are always computed from live product prices.
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        related_name="cart",
        on_delete=models.CASCADE,
    )

    class Meta:
        db_table = "carts"

    def __str__(self):
        return f"Cart for {self.user_id}"

    def lines(self):
        return self.items.select_related("product").order_by("added_at")

    @property
    def item_count(self) -> int:
        return self.items.aggregate(total=models.Sum("quantity"))["total"] or 0

    @property
    def subtotal(self) -> Decimal:
        return quantize_money(sum((line.line_total for line in self.lines()), Decimal("0.00")))


class CartItem(models.Model):
    """
    One product line in a cart.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    cart = models.ForeignKey(
        Cart,
        related_name="items",
        on_delete=models.CASCADE,
    )
    product = models.ForeignKey(
        "catalog.Product",
        related_name="cart_items",
        on_delete=models.CASCADE,
    )
    quantity = models.PositiveIntegerField(default=1)

    added_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "cart_items"
        constraints = [
            models.UniqueConstraint(fields=["cart", "product"], name="uniq_cart_product"),
            models.CheckConstraint(condition=models.Q(quantity__gte=1), name="cart_item_quantity_positive"),
        ]

    def __str__(self):
        return f"{self.cart_id} -> {self.product_id} x {self.quantity}"

    @property
    def line_total(self) -> Decimal:
        return quantize_money(self.product.price * self.quantity)
