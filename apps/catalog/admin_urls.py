from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import AdminCategoryViewSet, AdminProductViewSet

router = DefaultRouter()
router.register(r"products", AdminProductViewSet, basename="admin-product")
router.register(r"categories", AdminCategoryViewSet, basename="admin-category")

urlpatterns = [
    path("", include(router.urls)),
]
