import uuid

from django.conf import settings
from django.db import models

from apps.utils.models import TimestampedModel


class Wishlist(TimestampedModel):
    """
    Saved-for-later products. One per user, created on first access.
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        related_name="wishlist",
        on_delete=models.CASCADE,
    )

    class Meta:
        db_table = "wishlists"

    def __str__(self):
        return f"Wishlist for {self.user_id}"

    def lines(self):
        return self.items.select_related("product").order_by("-added_at")


class WishlistItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    wishlist = models.ForeignKey(
        Wishlist,
        related_name="items",
        on_delete=models.CASCADE,
    )
    product = models.ForeignKey(
        "catalog.Product",
        related_name="wishlist_items",
        on_delete=models.CASCADE,
    )
    added_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "wishlist_items"
        constraints = [
            models.UniqueConstraint(fields=["wishlist", "product"], name="uniq_wishlist_product"),
        ]

    def __str__(self):
        return f"{self.wishlist_id} -> {self.product_id}"
