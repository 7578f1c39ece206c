from decimal import Decimal

from rest_framework import serializers

from .models import Cart, CartItem, Order, OrderItem, OrderRefund, OrderTimeline

# Wire (camelCase) <-> snapshot (snake_case) keys for addresses
ADDRESS_WIRE_KEYS = {
    "fullName": "full_name",
    "street": "street",
    "city": "city",
    "state": "state",
    "zipCode": "zip_code",
    "country": "country",
    "phone": "phone",
}


class AddressField(serializers.DictField):
    """
    Accepts camelCase (or snake_case) keys; field-level checks happen in
    validate_address so that missing fields are reported together.
    """

    def to_internal_value(self, data):
        if not isinstance(data, dict):
            # validate_address reports it as invalid_address
            return data
        data = super().to_internal_value(data)
        return {ADDRESS_WIRE_KEYS.get(k, k): v for k, v in data.items()}

    def to_representation(self, value):
        reverse = {v: k for k, v in ADDRESS_WIRE_KEYS.items()}
        return {reverse.get(k, k): v for k, v in (value or {}).items()}


# --- Cart ---

class CartItemSerializer(serializers.ModelSerializer):
    productId = serializers.UUIDField(source="product.id", read_only=True)
    name = serializers.CharField(source="product.name", read_only=True)
    slug = serializers.CharField(source="product.slug", read_only=True)
    price = serializers.DecimalField(source="product.price", max_digits=10, decimal_places=2, read_only=True)
    imageUrl = serializers.CharField(source="product.image_url", read_only=True)
    stockQuantity = serializers.IntegerField(source="product.stock_quantity", read_only=True)
    isActive = serializers.BooleanField(source="product.is_active", read_only=True)
    lineTotal = serializers.DecimalField(source="line_total", max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = CartItem
        fields = [
            "id", "productId", "name", "slug", "price", "imageUrl",
            "stockQuantity", "isActive", "quantity", "lineTotal",
        ]


class CartSerializer(serializers.ModelSerializer):
    items = serializers.SerializerMethodField()
    itemCount = serializers.IntegerField(source="item_count", read_only=True)
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = Cart
        fields = ["id", "items", "itemCount", "subtotal"]

    def get_items(self, obj):
        return CartItemSerializer(obj.lines(), many=True).data


class CartItemInputSerializer(serializers.Serializer):
    productId = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1, default=1)


class CartItemUpdateSerializer(serializers.Serializer):
    productId = serializers.UUIDField()
    # <= 0 removes the line
    quantity = serializers.IntegerField()


# --- Orders ---

class OrderItemSerializer(serializers.ModelSerializer):
    productId = serializers.UUIDField(source="product_id", read_only=True)
    name = serializers.CharField(source="name_snapshot", read_only=True)
    price = serializers.DecimalField(source="price_snapshot", max_digits=10, decimal_places=2, read_only=True)
    lineTotal = serializers.DecimalField(source="line_total", max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = OrderItem
        fields = ["productId", "name", "price", "quantity", "lineTotal"]


class OrderTimelineSerializer(serializers.ModelSerializer):
    orderStatus = serializers.CharField(source="order_status", read_only=True)
    paymentStatus = serializers.CharField(source="payment_status", read_only=True)

    class Meta:
        model = OrderTimeline
        fields = ["orderStatus", "paymentStatus", "note", "timestamp"]


class OrderRefundSerializer(serializers.ModelSerializer):
    processedAt = serializers.DateTimeField(source="processed_at", read_only=True)

    class Meta:
        model = OrderRefund
        fields = ["id", "amount", "reason", "processedAt"]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    orderNumber = serializers.CharField(source="order_number", read_only=True)
    items = OrderItemSerializer(many=True, read_only=True)
    shippingAddress = AddressField(source="shipping_address", read_only=True)
    billingAddress = AddressField(source="billing_address", read_only=True)
    paymentMethod = serializers.CharField(source="payment_method", read_only=True)
    paymentStatus = serializers.CharField(source="payment_status", read_only=True)
    orderStatus = serializers.CharField(source="order_status", read_only=True)
    statusDisplay = serializers.CharField(source="get_order_status_display", read_only=True)
    shippingCost = serializers.DecimalField(source="shipping_cost", max_digits=12, decimal_places=2, read_only=True)
    trackingNumber = serializers.CharField(source="tracking_number", read_only=True)
    paidAt = serializers.DateTimeField(source="paid_at", read_only=True)
    shippedAt = serializers.DateTimeField(source="shipped_at", read_only=True)
    deliveredAt = serializers.DateTimeField(source="delivered_at", read_only=True)
    cancelledAt = serializers.DateTimeField(source="cancelled_at", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    updatedAt = serializers.DateTimeField(source="updated_at", read_only=True)

    class Meta:
        model = Order
        fields = [
            "id", "orderNumber", "items", "shippingAddress", "billingAddress",
            "paymentMethod", "paymentStatus", "orderStatus", "statusDisplay",
            "subtotal", "tax", "shippingCost", "total", "currency",
            "trackingNumber", "notes", "paidAt", "shippedAt", "deliveredAt",
            "cancelledAt", "createdAt", "updatedAt",
        ]
        read_only_fields = fields


class AdminOrderSerializer(OrderSerializer):
    customerEmail = serializers.EmailField(source="user.email", read_only=True)
    paymentReference = serializers.CharField(source="payment_reference", read_only=True)
    timeline = OrderTimelineSerializer(many=True, read_only=True)
    refunds = OrderRefundSerializer(many=True, read_only=True)

    class Meta(OrderSerializer.Meta):
        fields = OrderSerializer.Meta.fields + ["customerEmail", "paymentReference", "timeline", "refunds"]
        read_only_fields = fields


class PlaceOrderSerializer(serializers.Serializer):
    shippingAddress = AddressField(required=False, allow_null=True)
    billingAddress = AddressField(required=False, allow_null=True)
    paymentMethod = serializers.ChoiceField(choices=Order.PaymentMethod.choices)
    paymentToken = serializers.CharField(required=False, allow_blank=True, max_length=255)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=1000)


class OrderStatusUpdateSerializer(serializers.Serializer):
    orderStatus = serializers.ChoiceField(choices=Order.Status.choices)
    trackingNumber = serializers.CharField(required=False, allow_blank=True, max_length=100)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=1000)


class PaymentStatusUpdateSerializer(serializers.Serializer):
    paymentStatus = serializers.ChoiceField(choices=Order.PaymentStatus.choices)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=1000)


class RefundRequestSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"))
    reason = serializers.CharField(max_length=1000)


class QuoteSerializer(serializers.Serializer):
    itemCount = serializers.IntegerField(source="item_count")
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2)
    tax = serializers.DecimalField(max_digits=12, decimal_places=2)
    shippingCost = serializers.DecimalField(source="shipping_cost", max_digits=12, decimal_places=2)
    total = serializers.DecimalField(max_digits=12, decimal_places=2)
    currency = serializers.CharField()
