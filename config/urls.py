from django.conf import settings
from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

admin_url = settings.ADMIN_URL.strip("/") + "/"

urlpatterns = [
    path(admin_url, admin.site.urls),

    # --- APIs ---
    path("api/auth/", include("apps.accounts.urls")),
    path("api/utils/", include("apps.utils.urls")),
    path("api/payments/", include("apps.payments.urls")),
    path("api/wishlist/", include("apps.wishlist.urls")),
    path("api/admin/", include("apps.catalog.admin_urls")),
    path("api/admin/", include("apps.orders.admin_urls")),
    path("api/", include("apps.catalog.urls")),
    path("api/", include("apps.orders.urls")),

    # --- Schema ---
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path("api/docs/", SpectacularSwaggerView.as_view(url_name="schema"), name="swagger-ui"),
]
