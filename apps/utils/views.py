# apps/utils/views.py
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import AllowAny
from django.conf import settings


class ServerInfoView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        return Response({
            "app_name": settings.PROJECT_NAME,
            "version": "1.0.0",
            "debug": settings.DEBUG,
        })


class GlobalConfigView(APIView):
    """
    Pricing constants and public keys for the storefront frontend.
    """
    permission_classes = [AllowAny]

    def get(self, request):
        return Response({
            "currency": settings.ORDER_CURRENCY,
            "taxRate": str(settings.ORDER_TAX_RATE),
            "freeShippingThreshold": str(settings.FREE_SHIPPING_THRESHOLD),
            "flatShippingFee": str(settings.FLAT_SHIPPING_FEE),
            "stripePublishableKey": settings.STRIPE_PUBLISHABLE_KEY,
        })
