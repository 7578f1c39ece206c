import hashlib
import hmac
import json
import time
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.test import override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from apps.catalog.models import Category, Product
from apps.orders.models import Order, OrderTimeline
from apps.orders.services import CartService, OrderService
from .models import WebhookEvent
from .services import PaymentService

User = get_user_model()
PASSWORD = "Str0ng-Passw0rd!"
WEBHOOK_SECRET = "whsec_test_secret"

ADDRESS = {
    "full_name": "Asha Rao",
    "street": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "zip_code": "560001",
}


def make_cart(user, price="500.00", qty=2):
    category, _ = Category.objects.get_or_create(name="Spices")
    product = Product.objects.create(
        name="Cardamom", slug="cardamom", category=category, price=Decimal(price), stock_quantity=10
    )
    CartService.add_item(user, product.pk, qty)
    return product


@override_settings(STRIPE_SECRET_KEY="sk_test_123", STRIPE_PUBLISHABLE_KEY="pk_test_123")
class PaymentIntentAPITests(APITestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(email="asha@example.com", password=PASSWORD)
        self.client.force_authenticate(self.user)
        self.url = reverse("payment-intent")

    @patch("apps.payments.services.stripe.PaymentIntent.create")
    def test_intent_uses_server_quote(self, create):
        make_cart(self.user)
        create.return_value = {"id": "pi_1", "client_secret": "pi_1_secret"}

        resp = self.client.post(self.url, {}, format="json")

        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.data["clientSecret"], "pi_1_secret")
        self.assertEqual(resp.data["amount"], "1279.00")
        self.assertEqual(resp.data["publishableKey"], "pk_test_123")
        kwargs = create.call_args.kwargs
        self.assertEqual(kwargs["amount"], 127900)
        self.assertEqual(kwargs["currency"], "inr")
        self.assertEqual(kwargs["metadata"], {"user_id": str(self.user.pk)})

    @patch("apps.payments.services.stripe.PaymentIntent.create")
    def test_empty_cart_never_reaches_stripe(self, create):
        resp = self.client.post(self.url, {}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["code"], "empty_cart")
        create.assert_not_called()

    def _unpaid_order(self):
        make_cart(self.user)
        return OrderService.place_order(self.user, ADDRESS, payment_method=Order.PaymentMethod.STRIPE)

    @patch("apps.payments.services.stripe.PaymentIntent.create")
    def test_order_intent_carries_order_number(self, create):
        order = self._unpaid_order()
        create.return_value = {"id": "pi_2", "client_secret": "pi_2_secret"}

        resp = self.client.post(self.url, {"orderNumber": order.order_number}, format="json")

        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.data["orderNumber"], order.order_number)
        kwargs = create.call_args.kwargs
        self.assertEqual(kwargs["amount"], 127900)
        self.assertEqual(kwargs["metadata"]["order_number"], order.order_number)

    @patch("apps.payments.services.stripe.PaymentIntent.create")
    def test_order_intent_rejects_paid_order(self, create):
        order = self._unpaid_order()
        OrderService.update_payment_status(order.pk, Order.PaymentStatus.PAID)

        resp = self.client.post(self.url, {"orderNumber": order.order_number}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data["code"], "invalid_transition")
        create.assert_not_called()

    @patch("apps.payments.services.stripe.PaymentIntent.create")
    def test_order_intent_scoped_to_owner(self, create):
        order = self._unpaid_order()
        other = User.objects.create_user(email="other@example.com", password=PASSWORD)
        self.client.force_authenticate(other)

        resp = self.client.post(self.url, {"orderNumber": order.order_number}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        create.assert_not_called()


@override_settings(STRIPE_SECRET_KEY="sk_test_123", STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET)
class StripeWebhookTests(APITestCase):
    def setUp(self):
        self.client = APIClient()
        self.url = reverse("payment-webhook")
        self.user = User.objects.create_user(email="asha@example.com", password=PASSWORD)
        self.product = make_cart(self.user)
        self.order = OrderService.place_order(
            self.user, ADDRESS, payment_method=Order.PaymentMethod.STRIPE
        )

    def _signature(self, payload: str, secret=WEBHOOK_SECRET):
        timestamp = int(time.time())
        signed = hmac.new(
            bytes(secret, "utf-8"),
            bytes(f"{timestamp}.{payload}", "utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return f"t={timestamp},v1={signed}"

    def _post(self, event: dict, secret=WEBHOOK_SECRET):
        payload = json.dumps(event)
        return self.client.post(
            self.url,
            data=payload,
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE=self._signature(payload, secret),
        )

    def _succeeded(self, event_id="evt_1", amount=127900):
        return {
            "id": event_id,
            "object": "event",
            "type": "payment_intent.succeeded",
            "data": {"object": {
                "id": "pi_123",
                "object": "payment_intent",
                "amount_received": amount,
                "currency": "inr",
                "metadata": {"order_number": self.order.order_number},
            }},
        }

    def test_success_marks_order_paid(self):
        resp = self._post(self._succeeded())
        self.assertEqual(resp.status_code, status.HTTP_200_OK)

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PAID)
        self.assertEqual(self.order.payment_reference, "pi_123")
        self.assertTrue(WebhookEvent.objects.get(event_id="evt_1").is_processed)

    def test_duplicate_event_processed_once(self):
        self._post(self._succeeded())
        timeline_count = OrderTimeline.objects.filter(order=self.order).count()

        resp = self._post(self._succeeded())
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertTrue(resp.data["duplicate"])
        self.assertEqual(OrderTimeline.objects.filter(order=self.order).count(), timeline_count)
        self.assertEqual(WebhookEvent.objects.count(), 1)

    def test_amount_mismatch_leaves_order_unpaid(self):
        self._post(self._succeeded(amount=100))
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.UNPAID)

    def test_invalid_signature(self):
        resp = self._post(self._succeeded(), secret="whsec_wrong")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(WebhookEvent.objects.exists())

    def test_missing_signature(self):
        resp = self.client.post(self.url, data=json.dumps(self._succeeded()), content_type="application/json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

    def test_refund_completes(self):
        self._post(self._succeeded())
        resp = self._post({
            "id": "evt_2",
            "object": "event",
            "type": "charge.refunded",
            "data": {"object": {"id": "ch_1", "object": "charge", "payment_intent": "pi_123"}},
        })
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.REFUNDED)

    def test_payment_failure_adds_note(self):
        self._post({
            "id": "evt_3",
            "object": "event",
            "type": "payment_intent.payment_failed",
            "data": {"object": {
                "id": "pi_999",
                "object": "payment_intent",
                "metadata": {"order_number": self.order.order_number},
                "last_payment_error": {"message": "Your card was declined."},
            }},
        })
        self.assertTrue(
            OrderTimeline.objects.filter(order=self.order, note__icontains="card was declined").exists()
        )
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.UNPAID)

    def test_unknown_event_acknowledged(self):
        resp = self._post({"id": "evt_4", "object": "event", "type": "customer.created", "data": {"object": {}}})
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertTrue(WebhookEvent.objects.get(event_id="evt_4").is_processed)

    @patch("apps.payments.services.stripe.PaymentIntent.create")
    def test_order_intent_settled_by_webhook(self, create):
        create.return_value = {"id": "pi_order", "client_secret": "pi_order_secret"}
        self.client.force_authenticate(self.user)
        resp = self.client.post(reverse("payment-intent"), {"orderNumber": self.order.order_number}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.client.force_authenticate(None)

        sent = create.call_args.kwargs
        resp = self._post({
            "id": "evt_5",
            "object": "event",
            "type": "payment_intent.succeeded",
            "data": {"object": {
                "id": "pi_order",
                "object": "payment_intent",
                "amount_received": sent["amount"],
                "currency": sent["currency"],
                "metadata": sent["metadata"],
            }},
        })

        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PAID)
        self.assertEqual(self.order.payment_reference, "pi_order")

    def test_handler_database_error_is_not_a_duplicate(self):
        CartService.add_item(self.user, self.product.pk, 1)
        other = OrderService.place_order(self.user, ADDRESS, payment_method=Order.PaymentMethod.STRIPE)
        Order.objects.filter(pk=other.pk).update(payment_reference="pi_123")

        with self.assertRaises(IntegrityError):
            PaymentService.process_webhook(self._succeeded())

        self.assertFalse(WebhookEvent.objects.filter(event_id="evt_1", is_processed=True).exists())
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.UNPAID)
