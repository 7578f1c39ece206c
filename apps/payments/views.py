import logging

import stripe
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.utils.throttle import BurstRateThrottle
from .serializers import PaymentIntentRequestSerializer
from .services import PaymentService

logger = logging.getLogger(__name__)


class PaymentIntentView(APIView):
    """
    Starts a card payment. Without orderNumber it covers the current cart and
    the frontend submits the intent id as paymentToken at checkout. With
    orderNumber it settles an existing unpaid order through the webhook.
    """
    permission_classes = [IsAuthenticated]
    throttle_classes = [BurstRateThrottle]

    def post(self, request):
        serializer = PaymentIntentRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = PaymentService.create_intent(
            request.user, order_number=serializer.validated_data.get("orderNumber") or None
        )
        return Response({
            "paymentIntentId": data["payment_intent_id"],
            "clientSecret": data["client_secret"],
            "amount": str(data["amount"]),
            "currency": data["currency"],
            "orderNumber": data["order_number"],
            "publishableKey": data["publishable_key"],
        }, status=status.HTTP_201_CREATED)


class StripeWebhookView(APIView):
    """
    Handles Stripe Webhooks with Strict Signature Verification.
    Idempotency is handled by the WebhookEvent log.
    """
    permission_classes = []  # Allow public access for webhook
    authentication_classes = []

    def post(self, request, *args, **kwargs):
        # 1. Get Signature from Header
        signature = request.headers.get("Stripe-Signature")
        if not signature:
            logger.warning("Stripe Webhook: Missing Signature")
            return Response({"error": "Missing signature", "code": "invalid_signature"},
                            status=status.HTTP_400_BAD_REQUEST)

        # 2. Verify Signature (must use raw request body bytes)
        try:
            event = PaymentService.construct_event(request.body, signature)
        except ValueError:
            logger.warning("Stripe Webhook: Invalid payload")
            return Response({"error": "Invalid payload", "code": "invalid_payload"},
                            status=status.HTTP_400_BAD_REQUEST)
        except stripe.SignatureVerificationError:
            logger.critical("Stripe Webhook: Invalid Signature detected! Possible attack.")
            return Response({"error": "Invalid signature", "code": "invalid_signature"},
                            status=status.HTTP_400_BAD_REQUEST)

        # 3. Process Payload (Idempotent)
        processed = PaymentService.process_webhook(event)
        return Response({"received": True, "duplicate": not processed}, status=status.HTTP_200_OK)
