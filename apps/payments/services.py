import json
import logging

import stripe
from django.conf import settings
from django.db import IntegrityError, transaction

from apps.orders.models import Order
from apps.orders.services import OrderService
from apps.utils.exceptions import InvalidTransitionError, NotFoundError, PaymentVerificationError
from apps.utils.utils import to_minor_units
from .models import WebhookEvent

logger = logging.getLogger(__name__)


class PaymentService:
    """
    Stripe is the only gateway. Amounts travel in minor units (paise).
    """

    @staticmethod
    def get_provider_client():
        if not settings.STRIPE_SECRET_KEY:
            raise PaymentVerificationError("Payment gateway is not configured.")
        stripe.api_key = settings.STRIPE_SECRET_KEY
        return stripe

    @staticmethod
    def create_intent(user, order_number=None) -> dict:
        """
        Creates a PaymentIntent either for the server-side quote of the current
        cart (paid at checkout via paymentToken) or for an existing unpaid order
        (settled by the payment_intent.succeeded webhook).
        """
        metadata = {"user_id": str(user.pk)}
        if order_number:
            order = Order.objects.filter(user=user, order_number=order_number).first()
            if order is None:
                raise NotFoundError("Order not found.", details={"order_id": order_number})
            if order.payment_status != Order.PaymentStatus.UNPAID or order.order_status == Order.Status.CANCELLED:
                raise InvalidTransitionError(
                    f"Order {order_number} cannot be paid.",
                    details={"order_status": order.order_status, "payment_status": order.payment_status},
                )
            amount, currency = order.total, order.currency
            metadata["order_number"] = order.order_number
        else:
            quote = OrderService.quote_cart(user)
            amount, currency = quote["total"], quote["currency"]

        client = PaymentService.get_provider_client()
        try:
            intent = client.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=currency.lower(),
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe PaymentIntent create failed for user {user.pk}: {e}")
            raise PaymentVerificationError("Payment Gateway Error")

        logger.info(f"PaymentIntent {intent['id']} created for user {user.pk} ({amount})")
        return {
            "payment_intent_id": intent["id"],
            "client_secret": intent["client_secret"],
            "amount": amount,
            "currency": currency,
            "order_number": metadata.get("order_number"),
            "publishable_key": settings.STRIPE_PUBLISHABLE_KEY,
        }

    @staticmethod
    def fetch_succeeded_intent(token: str) -> dict:
        """
        Network half of token verification. Runs before checkout opens its
        transaction so no row lock is held across the Stripe round trip.
        """
        client = PaymentService.get_provider_client()
        try:
            intent = client.PaymentIntent.retrieve(token)
        except stripe.StripeError as e:
            logger.warning(f"PaymentIntent lookup failed for {token}: {e}")
            raise PaymentVerificationError("Payment could not be verified.", details={"payment_token": token})

        if intent["status"] != "succeeded":
            raise PaymentVerificationError(
                "Payment has not succeeded.",
                details={"payment_token": token, "status": intent["status"]},
            )
        return intent

    @staticmethod
    def match_intent_amount(intent: dict, amount, currency: str) -> str:
        """
        Checks the fetched intent against the locked order total.
        Returns the reference to store on the order.
        """
        expected = to_minor_units(amount)
        if intent["amount_received"] != expected or str(intent["currency"]).lower() != currency.lower():
            logger.warning(
                f"PaymentIntent {intent['id']} mismatch: got {intent['amount_received']} {intent['currency']}, "
                f"expected {expected} {currency}"
            )
            raise PaymentVerificationError(
                "Payment amount does not match the order total.",
                details={"payment_token": intent["id"]},
            )
        return intent["id"]

    @staticmethod
    def construct_event(payload: bytes, signature: str) -> dict:
        """
        Strict Signature Verification. Raises ValueError or
        stripe.SignatureVerificationError on bad input.
        """
        stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
        return json.loads(payload)

    @staticmethod
    def process_webhook(event: dict):
        """
        Idempotent Webhook Processor.
        Handles: payment_intent.succeeded, charge.refunded, payment_intent.payment_failed
        """
        event_id = event.get("id")
        event_type = event.get("type", "")
        obj = event.get("data", {}).get("object", {})

        if WebhookEvent.objects.filter(event_id=event_id, is_processed=True).exists():
            logger.info(f"Skipping duplicate webhook event: {event_id}")
            return False

        with transaction.atomic():
            try:
                with transaction.atomic():
                    log, _ = WebhookEvent.objects.select_for_update().get_or_create(
                        event_id=event_id,
                        defaults={"event_type": event_type, "payload": event},
                    )
            except IntegrityError:
                # A concurrent delivery of the same event won the insert
                logger.info(f"Webhook event {event_id} is being processed concurrently")
                return False

            if log.is_processed:
                return False

            logger.info(f"Processing Webhook: {event_type} ({event_id})")
            if event_type == "payment_intent.succeeded":
                PaymentService._handle_succeeded(obj)
            elif event_type == "charge.refunded":
                PaymentService._handle_refunded(obj)
            elif event_type == "payment_intent.payment_failed":
                PaymentService._handle_failed(obj)
            else:
                logger.info(f"Ignoring webhook event type {event_type}")

            log.is_processed = True
            log.save(update_fields=["is_processed", "updated_at"])

        return True

    @staticmethod
    def _handle_succeeded(intent: dict):
        order_number = (intent.get("metadata") or {}).get("order_number")
        if not order_number:
            # Intents paid at checkout are already attached to their order
            logger.info(f"PaymentIntent {intent.get('id')} has no order_number; nothing to do")
            return

        order = Order.objects.filter(order_number=order_number).first()
        if order is None:
            logger.error(f"Webhook references unknown order {order_number}")
            return

        if order.payment_status != Order.PaymentStatus.UNPAID:
            logger.info(f"Order {order_number} already {order.payment_status}; ignoring success event")
            return

        if intent.get("amount_received") != to_minor_units(order.total):
            logger.error(
                f"PaymentIntent {intent.get('id')} amount {intent.get('amount_received')} "
                f"does not match order {order_number}"
            )
            return

        OrderService.update_payment_status(
            order.pk,
            Order.PaymentStatus.PAID,
            notes=f"Stripe payment {intent.get('id')} succeeded.",
            payment_reference=intent.get("id"),
        )

    @staticmethod
    def _handle_refunded(charge: dict):
        reference = charge.get("payment_intent")
        order = Order.objects.filter(payment_reference=reference).first() if reference else None
        if order is None:
            logger.error(f"Refund webhook for unknown payment {reference}")
            return

        if order.payment_status not in (Order.PaymentStatus.PAID, Order.PaymentStatus.REFUND_PENDING):
            logger.info(f"Order {order.order_number} is {order.payment_status}; ignoring refund event")
            return

        if order.payment_status == Order.PaymentStatus.PAID:
            OrderService.update_payment_status(
                order.pk, Order.PaymentStatus.REFUND_PENDING, notes="Refund initiated at Stripe."
            )
        OrderService.update_payment_status(
            order.pk, Order.PaymentStatus.REFUNDED, notes=f"Stripe charge {charge.get('id')} refunded."
        )

    @staticmethod
    def _handle_failed(intent: dict):
        order_number = (intent.get("metadata") or {}).get("order_number")
        if not order_number:
            return
        message = (intent.get("last_payment_error") or {}).get("message", "Payment failed")
        try:
            OrderService.add_note(order_number, f"Stripe payment failed: {message}")
        except NotFoundError:
            logger.error(f"Payment failure webhook for unknown order {order_number}")
