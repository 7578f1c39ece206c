from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import CartClearView, CartView, OrderViewSet

router = DefaultRouter()
router.register(r"orders", OrderViewSet, basename="orders")

urlpatterns = [
    path("cart/", CartView.as_view(), name="cart"),
    path("cart/clear/", CartClearView.as_view(), name="cart-clear"),
    path("", include(router.urls)),
]
