from django.urls import path

from .views import WishlistItemView, WishlistMoveToCartView, WishlistView

urlpatterns = [
    path("", WishlistView.as_view(), name="wishlist"),
    path("<uuid:product_id>/", WishlistItemView.as_view(), name="wishlist-item"),
    path("<uuid:product_id>/move-to-cart/", WishlistMoveToCartView.as_view(), name="wishlist-move-to-cart"),
]
