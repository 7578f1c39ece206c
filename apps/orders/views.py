import logging

import django_filters
from django.conf import settings
from django.core.cache import cache
from django.db.models import Q
from django.http import Http404
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import filters, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.accounts.permissions import IsAdminRole
from apps.utils.pagination import StandardResultsSetPagination
from .models import Order
from .serializers import (
    AdminOrderSerializer,
    CartItemInputSerializer,
    CartItemUpdateSerializer,
    CartSerializer,
    OrderSerializer,
    OrderStatusUpdateSerializer,
    PaymentStatusUpdateSerializer,
    PlaceOrderSerializer,
    QuoteSerializer,
    RefundRequestSerializer,
)
from .services import CartService, OrderService, order_lookup

logger = logging.getLogger(__name__)


class CartView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        cart = CartService.get_cart(request.user)
        return Response(CartSerializer(cart).data)

    def post(self, request):
        serializer = CartItemInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        cart = CartService.add_item(
            request.user,
            serializer.validated_data["productId"],
            serializer.validated_data["quantity"],
        )
        return Response(CartSerializer(cart).data)

    def put(self, request):
        serializer = CartItemUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        cart = CartService.update_item(
            request.user,
            serializer.validated_data["productId"],
            serializer.validated_data["quantity"],
        )
        return Response(CartSerializer(cart).data)

    def delete(self, request):
        product_id = request.query_params.get("productId")
        if not product_id:
            return Response(
                {"error": "productId query parameter is required", "code": "invalid"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        serializer = CartItemUpdateSerializer(data={"productId": product_id, "quantity": 0})
        serializer.is_valid(raise_exception=True)
        cart = CartService.remove_item(request.user, serializer.validated_data["productId"])
        return Response(CartSerializer(cart).data)


class CartClearView(APIView):
    permission_classes = [IsAuthenticated]

    def delete(self, request):
        cart = CartService.clear(request.user)
        return Response(CartSerializer(cart).data)

    post = delete


class OrderViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Customers see their own orders; admins see everyone's.
    """
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = StandardResultsSetPagination
    lookup_value_regex = "[^/]+"

    def get_queryset(self):
        qs = Order.objects.prefetch_related("items")
        if self.request.user.is_admin:
            return qs
        return qs.filter(user=self.request.user)

    def get_object(self):
        obj = self.get_queryset().filter(order_lookup(self.kwargs[self.lookup_field])).first()
        if obj is None:
            raise Http404("Order not found.")
        self.check_object_permissions(self.request, obj)
        return obj

    def create(self, request):
        """
        Checkout. An optional Idempotency-Key header rejects a duplicate
        submission while the first is in flight or recently succeeded.
        """
        serializer = PlaceOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        cache_key = None
        idempotency_key = request.headers.get("Idempotency-Key")
        if idempotency_key:
            cache_key = f"checkout_idempotency_{request.user.pk}_{idempotency_key}"
            if not cache.add(cache_key, "processing", timeout=settings.CHECKOUT_IDEMPOTENCY_TTL):
                return Response(
                    {"error": "Duplicate request detected", "code": "duplicate_request"},
                    status=status.HTTP_409_CONFLICT,
                )

        try:
            order = OrderService.place_order(
                user=request.user,
                shipping_address=data.get("shippingAddress"),
                billing_address=data.get("billingAddress"),
                payment_method=data["paymentMethod"],
                payment_token=data.get("paymentToken") or None,
                notes=data.get("notes", ""),
            )
        except Exception:
            # Release the key so the user can retry after fixing the problem
            if cache_key:
                cache.delete(cache_key)
            raise

        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"])
    def quote(self, request):
        return Response(QuoteSerializer(OrderService.quote_cart(request.user)).data)


class OrderFilter(django_filters.FilterSet):
    status = django_filters.ChoiceFilter(field_name="order_status", choices=Order.Status.choices)
    payment_status = django_filters.ChoiceFilter(choices=Order.PaymentStatus.choices)
    payment_method = django_filters.ChoiceFilter(choices=Order.PaymentMethod.choices)
    date_from = django_filters.DateFilter(field_name="created_at", lookup_expr="date__gte")
    date_to = django_filters.DateFilter(field_name="created_at", lookup_expr="date__lte")
    search = django_filters.CharFilter(method="filter_search")

    class Meta:
        model = Order
        fields = ["status", "payment_status", "payment_method", "date_from", "date_to"]

    def filter_search(self, queryset, name, value):
        return queryset.filter(
            Q(order_number__icontains=value)
            | Q(user__email__icontains=value)
            | Q(user__full_name__icontains=value)
            | Q(tracking_number__icontains=value)
        )


class AdminOrderViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Order.objects.select_related("user").prefetch_related("items", "timeline", "refunds")
    serializer_class = AdminOrderSerializer
    permission_classes = [IsAuthenticated, IsAdminRole]
    pagination_class = StandardResultsSetPagination
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_class = OrderFilter
    ordering_fields = ["created_at", "total"]
    lookup_value_regex = "[^/]+"

    def get_object(self):
        obj = self.get_queryset().filter(order_lookup(self.kwargs[self.lookup_field])).first()
        if obj is None:
            raise Http404("Order not found.")
        return obj

    @action(detail=True, methods=["put", "patch"], url_path="status")
    def update_status(self, request, pk=None):
        serializer = OrderStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = OrderService.update_order_status(
            self.get_object().pk,
            data["orderStatus"],
            user=request.user,
            tracking_number=data.get("trackingNumber"),
            notes=data.get("notes"),
        )
        return Response(self.get_serializer(order).data)

    @action(detail=True, methods=["put", "patch"], url_path="payment-status")
    def update_payment_status(self, request, pk=None):
        serializer = PaymentStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = OrderService.update_payment_status(
            self.get_object().pk,
            data["paymentStatus"],
            user=request.user,
            notes=data.get("notes"),
        )
        return Response(self.get_serializer(order).data)

    @action(detail=True, methods=["post"], url_path="refund")
    def refund(self, request, pk=None):
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order = self.get_object()
        OrderService.refund_order(order.pk, data["amount"], data["reason"], user=request.user)
        return Response(self.get_serializer(self.get_object()).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"], url_path="stats/summary")
    def stats_summary(self, request):
        period = request.query_params.get("period", "30d")
        summary = OrderService.stats_summary(period)
        return Response({
            "period": summary["period"],
            "totalOrders": summary["total_orders"],
            "byStatus": summary["by_status"],
            "revenue": str(summary["revenue"]),
            "topProducts": [
                {
                    "productId": p["product_id"],
                    "name": p["name"],
                    "quantity": p["quantity"],
                    "revenue": str(p["revenue"]),
                }
                for p in summary["top_products"]
            ],
        })
