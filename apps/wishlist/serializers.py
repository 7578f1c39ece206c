from rest_framework import serializers

from .models import Wishlist, WishlistItem


class WishlistItemSerializer(serializers.ModelSerializer):
    productId = serializers.UUIDField(source="product.id", read_only=True)
    name = serializers.CharField(source="product.name", read_only=True)
    slug = serializers.CharField(source="product.slug", read_only=True)
    price = serializers.DecimalField(source="product.price", max_digits=10, decimal_places=2, read_only=True)
    imageUrl = serializers.CharField(source="product.image_url", read_only=True)
    inStock = serializers.SerializerMethodField()
    addedAt = serializers.DateTimeField(source="added_at", read_only=True)

    class Meta:
        model = WishlistItem
        fields = ["id", "productId", "name", "slug", "price", "imageUrl", "inStock", "addedAt"]

    def get_inStock(self, obj):
        return obj.product.is_active and obj.product.stock_quantity > 0


class WishlistSerializer(serializers.ModelSerializer):
    items = serializers.SerializerMethodField()
    itemCount = serializers.SerializerMethodField()

    class Meta:
        model = Wishlist
        fields = ["id", "items", "itemCount"]

    def get_items(self, obj):
        return WishlistItemSerializer(obj.lines(), many=True).data

    def get_itemCount(self, obj):
        return obj.items.count()


class WishlistAddSerializer(serializers.Serializer):
    productId = serializers.UUIDField()
