from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.orders.serializers import CartSerializer
from .serializers import WishlistAddSerializer, WishlistSerializer
from .services import WishlistService


class WishlistView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        wishlist = WishlistService.get_wishlist(request.user)
        return Response(WishlistSerializer(wishlist).data)

    def post(self, request):
        serializer = WishlistAddSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        wishlist = WishlistService.add_item(request.user, serializer.validated_data["productId"])
        return Response(WishlistSerializer(wishlist).data, status=status.HTTP_201_CREATED)

    def delete(self, request):
        wishlist = WishlistService.clear(request.user)
        return Response(WishlistSerializer(wishlist).data)


class WishlistItemView(APIView):
    permission_classes = [IsAuthenticated]

    def delete(self, request, product_id):
        wishlist = WishlistService.remove_item(request.user, product_id)
        return Response(WishlistSerializer(wishlist).data)


class WishlistMoveToCartView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request, product_id):
        cart = WishlistService.move_to_cart(request.user, product_id)
        wishlist = WishlistService.get_wishlist(request.user)
        return Response({
            "cart": CartSerializer(cart).data,
            "wishlist": WishlistSerializer(wishlist).data,
        })
