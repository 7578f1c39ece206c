# apps/catalog/models.py
import uuid
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils.text import slugify

from apps.utils.models import TimestampedModel


def unique_slug(model, name, instance_pk=None):
    base_slug = slugify(name) or uuid.uuid4().hex[:8]
    slug_candidate = base_slug
    counter = 1

    while model.objects.filter(slug=slug_candidate).exclude(pk=instance_pk).exists():
        slug_candidate = f"{base_slug}-{counter}"
        counter += 1

    return slug_candidate


class Category(TimestampedModel):
    """
    Product category tree (e.g. Spices > Whole Spices)
    """
    name = models.CharField(max_length=100)
    slug = models.SlugField(unique=True, blank=True)
    description = models.TextField(blank=True, max_length=500)
    image_url = models.URLField(blank=True)
    parent = models.ForeignKey(
        'self',
        null=True,
        blank=True,
        on_delete=models.CASCADE,
        related_name='subcategories',
    )

    is_active = models.BooleanField(default=True)
    sort_order = models.PositiveIntegerField(default=0)

    class Meta:
        verbose_name_plural = "Categories"
        ordering = ["sort_order", "name"]
        indexes = [
            models.Index(fields=["parent", "sort_order"], name="catalog_cat_parent__4e1c2b_idx"),
            models.Index(fields=["is_active"], name="catalog_cat_is_acti_7d0a91_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["parent", "name"],
                name="uniq_category_per_parent_name",
            )
        ]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = unique_slug(Category, self.name, self.pk)
        super().save(*args, **kwargs)


class Product(TimestampedModel):
    """
    Sellable item. stock_quantity is the single source of truth for availability;
    ALL changes to it go through StockService.
    """
    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=220, unique=True, blank=True)
    description = models.TextField(blank=True, max_length=2000)
    short_description = models.CharField(max_length=300, blank=True)

    category = models.ForeignKey(
        Category,
        on_delete=models.PROTECT,
        related_name='products',
    )

    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
        help_text="Customer-facing selling price",
    )
    original_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal("0.00"))],
        help_text="MRP shown struck-through when higher than price",
    )
    image_url = models.URLField(blank=True)

    stock_quantity = models.PositiveIntegerField(default=0)
    low_stock_threshold = models.PositiveIntegerField(default=10)

    is_active = models.BooleanField(default=True)
    is_featured = models.BooleanField(default=False)
    sales_count = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["is_active", "category"], name="catalog_pro_is_acti_2b9f10_idx"),
            models.Index(fields=["price"], name="catalog_pro_price_5c7e3d_idx"),
            models.Index(fields=["created_at"], name="catalog_pro_created_a81f4e_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(stock_quantity__gte=0),
                name='product_stock_non_negative'
            ),
            models.CheckConstraint(
                condition=models.Q(price__gte=0),
                name='product_price_non_negative'
            ),
        ]

    def __str__(self):
        return self.name

    @property
    def in_stock(self):
        return self.stock_quantity > 0

    @property
    def is_low_stock(self):
        return 0 < self.stock_quantity <= self.low_stock_threshold

    @property
    def discount_percentage(self):
        if self.original_price and self.original_price > self.price:
            return int(round((self.original_price - self.price) / self.original_price * 100))
        return 0


class StockMovement(models.Model):
    """
    Immutable Ledger of all stock changes.
    """
    class MovementType(models.TextChoices):
        ORDER = "ORDER", "Outbound (Order)"
        CANCEL_RESTOCK = "CANCEL", "Restock (Cancellation)"
        ADJUSTMENT = "ADJUST", "Manual Adjustment"

    product = models.ForeignKey(
        Product,
        on_delete=models.CASCADE,
        related_name='stock_movements'
    )

    quantity_change = models.IntegerField(help_text="Delta value (+/-)")
    movement_type = models.CharField(max_length=20, choices=MovementType.choices)

    # Traceability
    reference = models.CharField(max_length=255, db_index=True, help_text="Order number or reason")
    balance_after = models.IntegerField(help_text="Snapshot of stock after the change")

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.product_id} {self.quantity_change:+d} ({self.movement_type})"
