from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import AdminOrderViewSet

router = DefaultRouter()
router.register(r"orders", AdminOrderViewSet, basename="admin-orders")

urlpatterns = [
    path("", include(router.urls)),
]
