# apps/catalog/serializers.py
from rest_framework import serializers

from .models import Category, Product, StockMovement


class CategorySerializer(serializers.ModelSerializer):
    imageUrl = serializers.URLField(source="image_url", required=False, allow_blank=True)
    isActive = serializers.BooleanField(source="is_active", required=False)
    sortOrder = serializers.IntegerField(source="sort_order", required=False, min_value=0)
    subcategories = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = Category
        fields = [
            "id",
            "name",
            "slug",
            "description",
            "parent",
            "imageUrl",
            "isActive",
            "sortOrder",
            "subcategories",
        ]
        read_only_fields = ["slug"]

    def get_subcategories(self, obj):
        qs = obj.subcategories.filter(is_active=True).order_by("sort_order", "name")
        return CategorySerializer(qs, many=True, context=self.context).data


class ProductSerializer(serializers.ModelSerializer):
    """
    Public product card / detail.
    """
    category = serializers.SlugRelatedField(slug_field="slug", read_only=True)
    categoryName = serializers.CharField(source="category.name", read_only=True)
    shortDescription = serializers.CharField(source="short_description", read_only=True)
    originalPrice = serializers.DecimalField(source="original_price", max_digits=10, decimal_places=2, read_only=True)
    imageUrl = serializers.URLField(source="image_url", read_only=True)
    stockQuantity = serializers.IntegerField(source="stock_quantity", read_only=True)
    inStock = serializers.BooleanField(source="in_stock", read_only=True)
    isFeatured = serializers.BooleanField(source="is_featured", read_only=True)
    discountPercentage = serializers.IntegerField(source="discount_percentage", read_only=True)

    class Meta:
        model = Product
        fields = [
            "id",
            "name",
            "slug",
            "description",
            "shortDescription",
            "category",
            "categoryName",
            "price",
            "originalPrice",
            "discountPercentage",
            "imageUrl",
            "stockQuantity",
            "inStock",
            "isFeatured",
        ]
        read_only_fields = fields


class AdminProductSerializer(serializers.ModelSerializer):
    """
    Write serializer for the admin catalog. The name is validated by
    ProductService, and stock only moves through adjust-stock.
    """
    name = serializers.CharField(max_length=255)
    category = serializers.PrimaryKeyRelatedField(queryset=Category.objects.all())
    shortDescription = serializers.CharField(source="short_description", required=False, allow_blank=True)
    originalPrice = serializers.DecimalField(
        source="original_price", max_digits=10, decimal_places=2,
        required=False, allow_null=True, min_value=0,
    )
    price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    imageUrl = serializers.URLField(source="image_url", required=False, allow_blank=True)
    stockQuantity = serializers.IntegerField(source="stock_quantity", required=False, min_value=0)
    lowStockThreshold = serializers.IntegerField(source="low_stock_threshold", required=False, min_value=0)
    isActive = serializers.BooleanField(source="is_active", required=False)
    isFeatured = serializers.BooleanField(source="is_featured", required=False)
    salesCount = serializers.IntegerField(source="sales_count", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    updatedAt = serializers.DateTimeField(source="updated_at", read_only=True)

    class Meta:
        model = Product
        fields = [
            "id",
            "name",
            "slug",
            "description",
            "shortDescription",
            "category",
            "price",
            "originalPrice",
            "imageUrl",
            "stockQuantity",
            "lowStockThreshold",
            "isActive",
            "isFeatured",
            "salesCount",
            "createdAt",
            "updatedAt",
        ]
        read_only_fields = ["slug"]

    def to_internal_value(self, data):
        # stock is settable on create only
        if self.instance is not None and "stockQuantity" in data:
            data = {k: v for k, v in data.items() if k != "stockQuantity"}
        return super().to_internal_value(data)


class StockAdjustmentSerializer(serializers.Serializer):
    delta = serializers.IntegerField()
    reason = serializers.CharField(max_length=200)

    def validate_delta(self, value):
        if value == 0:
            raise serializers.ValidationError("Delta cannot be zero.")
        return value


class StockMovementSerializer(serializers.ModelSerializer):
    quantityChange = serializers.IntegerField(source="quantity_change", read_only=True)
    movementType = serializers.CharField(source="movement_type", read_only=True)
    balanceAfter = serializers.IntegerField(source="balance_after", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = StockMovement
        fields = ["id", "quantityChange", "movementType", "reference", "balanceAfter", "createdAt"]
