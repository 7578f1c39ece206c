import django_filters
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import filters, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from apps.accounts.permissions import IsAdminRole
from apps.utils.pagination import StandardResultsSetPagination
from .models import Category, Product
from .serializers import (
    AdminProductSerializer,
    CategorySerializer,
    ProductSerializer,
    StockAdjustmentSerializer,
    StockMovementSerializer,
)
from .services import ProductService, StockService


class ProductFilter(django_filters.FilterSet):
    category = django_filters.CharFilter(method="filter_category")
    featured = django_filters.BooleanFilter(field_name="is_featured")
    min_price = django_filters.NumberFilter(field_name="price", lookup_expr="gte")
    max_price = django_filters.NumberFilter(field_name="price", lookup_expr="lte")

    class Meta:
        model = Product
        fields = ["category", "featured", "min_price", "max_price"]

    def filter_category(self, queryset, name, value):
        # Parent slug also matches products in its direct subcategories
        return queryset.filter(category__slug=value) | queryset.filter(category__parent__slug=value)


class CategoryViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Publicly accessible category list.
    """
    queryset = Category.objects.filter(is_active=True).select_related("parent")
    serializer_class = CategorySerializer
    permission_classes = [AllowAny]
    lookup_field = "slug"
    filter_backends = [filters.SearchFilter]
    search_fields = ["name"]


class ProductViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Public product list. Inactive products are hidden but never removed.
    """
    queryset = Product.objects.filter(is_active=True).select_related("category")
    serializer_class = ProductSerializer
    permission_classes = [AllowAny]
    pagination_class = StandardResultsSetPagination
    lookup_field = "slug"
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_class = ProductFilter
    search_fields = ["name", "description", "short_description"]
    ordering_fields = ["price", "created_at", "sales_count", "name"]
    ordering = ["-created_at"]


class AdminProductViewSet(viewsets.ModelViewSet):
    queryset = Product.objects.select_related("category").all()
    serializer_class = AdminProductSerializer
    permission_classes = [IsAuthenticated, IsAdminRole]
    pagination_class = StandardResultsSetPagination
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_fields = ["category", "is_active", "is_featured"]
    search_fields = ["name", "slug"]
    ordering_fields = ["price", "stock_quantity", "created_at", "sales_count"]

    def perform_create(self, serializer):
        serializer.instance = ProductService.create_product(
            user=self.request.user, **serializer.validated_data
        )

    def perform_update(self, serializer):
        serializer.instance = ProductService.update_product(
            serializer.instance, **serializer.validated_data
        )

    def destroy(self, request, *args, **kwargs):
        product = ProductService.deactivate(self.get_object())
        return Response(self.get_serializer(product).data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="adjust-stock")
    def adjust_stock(self, request, pk=None):
        """
        Manual override for stock counts.
        """
        product = self.get_object()
        serializer = StockAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        product = StockService.manual_adjustment(
            product_id=product.pk,
            delta_qty=serializer.validated_data["delta"],
            user=request.user,
            reason=serializer.validated_data["reason"],
        )
        return Response(self.get_serializer(product).data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["get"], url_path="stock-movements")
    def stock_movements(self, request, pk=None):
        qs = self.get_object().stock_movements.all()
        page = self.paginate_queryset(qs)
        serializer = StockMovementSerializer(page, many=True)
        return self.get_paginated_response(serializer.data)


class AdminCategoryViewSet(viewsets.ModelViewSet):
    queryset = Category.objects.select_related("parent").all()
    serializer_class = CategorySerializer
    permission_classes = [IsAuthenticated, IsAdminRole]
    filter_backends = [filters.SearchFilter]
    search_fields = ["name", "slug"]

    def perform_destroy(self, instance):
        # Products PROTECT their category; hide instead of deleting
        instance.is_active = False
        instance.save(update_fields=["is_active", "updated_at"])
