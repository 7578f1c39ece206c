import json

from django.contrib import admin
from django.utils.html import format_html

from .models import Cart, CartItem, Order, OrderItem, OrderRefund, OrderTimeline


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ("product", "name_snapshot", "price_snapshot", "quantity", "line_total")

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class OrderTimelineInline(admin.TabularInline):
    model = OrderTimeline
    extra = 0
    readonly_fields = ("timestamp", "order_status", "payment_status", "note", "created_by")

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class OrderRefundInline(admin.TabularInline):
    model = OrderRefund
    extra = 0
    readonly_fields = ("processed_at", "amount", "reason", "processed_by")

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """
    Read-only view. Status changes go through the admin API so that
    transitions, restocking and the timeline stay consistent.
    """
    list_display = (
        "order_number",
        "user",
        "order_status",
        "payment_status",
        "payment_method",
        "total",
        "created_at",
    )
    list_filter = ("order_status", "payment_status", "payment_method", "created_at")
    search_fields = ("order_number", "id", "user__email", "payment_reference", "tracking_number")
    inlines = [OrderItemInline, OrderTimelineInline, OrderRefundInline]

    readonly_fields = (
        "id",
        "order_number",
        "user",
        "order_status",
        "payment_status",
        "payment_method",
        "payment_reference",
        "subtotal",
        "tax",
        "shipping_cost",
        "total",
        "currency",
        "shipping_address_pretty",
        "billing_address_pretty",
        "paid_at",
        "shipped_at",
        "delivered_at",
        "cancelled_at",
        "created_at",
        "updated_at",
    )
    exclude = ("shipping_address", "billing_address")

    def shipping_address_pretty(self, obj):
        return format_html("<pre>{}</pre>", json.dumps(obj.shipping_address, indent=2))
    shipping_address_pretty.short_description = "Shipping Address"

    def billing_address_pretty(self, obj):
        return format_html("<pre>{}</pre>", json.dumps(obj.billing_address, indent=2))
    billing_address_pretty.short_description = "Billing Address"

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class CartItemInline(admin.TabularInline):
    model = CartItem
    extra = 0
    readonly_fields = ("product", "quantity", "added_at")


@admin.register(Cart)
class CartAdmin(admin.ModelAdmin):
    list_display = ("user", "updated_at")
    search_fields = ("user__email",)
    inlines = [CartItemInline]
