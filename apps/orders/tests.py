# apps/orders/tests.py
import concurrent.futures
import unittest
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core import mail
from django.core.cache import cache
from django.db import connection
from django.test import TestCase, TransactionTestCase, override_settings
from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient, APITestCase

from apps.accounts.models import Role
from apps.catalog.models import Category, Product, StockMovement
from apps.catalog.services import StockService
from apps.utils.exceptions import (
    EmptyCartError,
    InsufficientStockError,
    InvalidAddressError,
    InvalidTransitionError,
    NotFoundError,
    PaymentVerificationError,
    StockConflictError,
)
from .models import Cart, CartItem, Order, OrderRefund, OrderTimeline
from .services import CartService, OrderService, calculate_pricing

User = get_user_model()
PASSWORD = "Str0ng-Passw0rd!"

ADDRESS = {
    "full_name": "Asha Rao",
    "street": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "zip_code": "560001",
}

WIRE_ADDRESS = {
    "fullName": "Asha Rao",
    "street": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "zipCode": "560001",
}


def make_product(name="Cardamom", price="500.00", stock=10, category=None):
    category = category or Category.objects.get_or_create(name="Spices")[0]
    return Product.objects.create(
        name=name,
        slug=name.lower().replace(" ", "-"),
        category=category,
        price=Decimal(price),
        stock_quantity=stock,
    )


class PricingTests(TestCase):
    def test_flat_shipping_below_threshold(self):
        pricing = calculate_pricing(Decimal("1000.00"))
        self.assertEqual(pricing["tax"], Decimal("180.00"))
        self.assertEqual(pricing["shipping_cost"], Decimal("99.00"))
        self.assertEqual(pricing["total"], Decimal("1279.00"))

    def test_free_shipping_at_threshold(self):
        pricing = calculate_pricing(Decimal("2000.00"))
        self.assertEqual(pricing["shipping_cost"], Decimal("0.00"))
        self.assertEqual(pricing["total"], Decimal("2360.00"))

    def test_tax_rounds_half_up(self):
        # 0.18 * 10.25 = 1.845
        self.assertEqual(calculate_pricing(Decimal("10.25"))["tax"], Decimal("1.85"))


class CartServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="asha@example.com", password=PASSWORD)
        self.product = make_product(stock=5)

    def test_add_creates_cart_and_line(self):
        cart = CartService.add_item(self.user, self.product.pk, 2)
        self.assertEqual(cart.item_count, 2)
        self.assertEqual(cart.subtotal, Decimal("1000.00"))

    def test_add_sums_existing_line(self):
        CartService.add_item(self.user, self.product.pk, 2)
        cart = CartService.add_item(self.user, self.product.pk, 3)
        self.assertEqual(cart.items.get().quantity, 5)

    def test_add_checks_summed_quantity_against_stock(self):
        CartService.add_item(self.user, self.product.pk, 4)
        with self.assertRaises(InsufficientStockError) as ctx:
            CartService.add_item(self.user, self.product.pk, 2)
        self.assertEqual(ctx.exception.details["available"], 5)
        self.assertEqual(CartItem.objects.get().quantity, 4)

    def test_add_inactive_product_not_found(self):
        self.product.is_active = False
        self.product.save()
        with self.assertRaises(NotFoundError):
            CartService.add_item(self.user, self.product.pk, 1)

    def test_update_replaces_quantity(self):
        CartService.add_item(self.user, self.product.pk, 2)
        cart = CartService.update_item(self.user, self.product.pk, 4)
        self.assertEqual(cart.items.get().quantity, 4)

        with self.assertRaises(InsufficientStockError):
            CartService.update_item(self.user, self.product.pk, 6)

    def test_update_to_zero_removes_and_is_idempotent(self):
        CartService.add_item(self.user, self.product.pk, 2)
        cart = CartService.update_item(self.user, self.product.pk, 0)
        self.assertEqual(cart.item_count, 0)
        # Absent line with quantity <= 0 is a no-op
        CartService.update_item(self.user, self.product.pk, -1)

    def test_update_missing_line(self):
        with self.assertRaises(NotFoundError) as ctx:
            CartService.update_item(self.user, self.product.pk, 1)
        self.assertEqual(ctx.exception.message, "Item not found in cart")

    def test_remove_and_clear_are_idempotent(self):
        CartService.add_item(self.user, self.product.pk, 1)
        CartService.remove_item(self.user, self.product.pk)
        CartService.remove_item(self.user, self.product.pk)
        cart = CartService.clear(self.user)
        self.assertEqual(cart.item_count, 0)

    def test_carts_are_per_user(self):
        other = User.objects.create_user(email="other@example.com", password=PASSWORD)
        CartService.add_item(self.user, self.product.pk, 1)
        self.assertEqual(CartService.get_cart(other).item_count, 0)


class PlaceOrderTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="asha@example.com", password=PASSWORD)
        self.product = make_product(price="500.00", stock=10)

    def _cart(self, *lines):
        for product, qty in lines:
            CartService.add_item(self.user, product.pk, qty)

    def test_places_order_and_consumes_cart(self):
        self._cart((self.product, 2))
        order = OrderService.place_order(self.user, ADDRESS, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 8)
        self.assertEqual(order.subtotal, Decimal("1000.00"))
        self.assertEqual(order.tax, Decimal("180.00"))
        self.assertEqual(order.shipping_cost, Decimal("99.00"))
        self.assertEqual(order.total, Decimal("1279.00"))
        self.assertEqual(order.order_status, Order.Status.PENDING)
        self.assertEqual(order.payment_status, Order.PaymentStatus.UNPAID)
        self.assertTrue(order.order_number.startswith("ORD-"))
        self.assertEqual(CartService.get_cart(self.user).item_count, 0)

        item = order.items.get()
        self.assertEqual(item.name_snapshot, "Cardamom")
        self.assertEqual(item.price_snapshot, Decimal("500.00"))
        self.assertEqual(item.line_total, Decimal("1000.00"))

        movement = StockMovement.objects.get(product=self.product)
        self.assertEqual(movement.reference, order.order_number)
        self.assertEqual(OrderTimeline.objects.filter(order=order).count(), 1)

    def test_billing_defaults_to_shipping(self):
        self._cart((self.product, 1))
        order = OrderService.place_order(self.user, ADDRESS, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY)
        self.assertEqual(order.billing_address, order.shipping_address)
        self.assertEqual(order.shipping_address["country"], "India")

    def test_snapshot_survives_price_change(self):
        self._cart((self.product, 1))
        order = OrderService.place_order(self.user, ADDRESS, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY)
        Product.objects.filter(pk=self.product.pk).update(price=Decimal("900.00"), name="Green Cardamom")

        item = order.items.get()
        self.assertEqual(item.price_snapshot, Decimal("500.00"))
        self.assertEqual(item.name_snapshot, "Cardamom")

    def test_empty_cart(self):
        with self.assertRaises(EmptyCartError):
            OrderService.place_order(self.user, ADDRESS, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY)
        self.assertFalse(Order.objects.exists())

    def test_invalid_address_names_fields(self):
        self._cart((self.product, 1))
        with self.assertRaises(InvalidAddressError) as ctx:
            OrderService.place_order(
                self.user, {"full_name": "Asha"}, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY
            )
        self.assertIn("zip_code", ctx.exception.details["missing"])
        self.assertEqual(CartService.get_cart(self.user).item_count, 1)

    def test_stock_gone_leaves_everything_untouched(self):
        self._cart((self.product, 2))
        Product.objects.filter(pk=self.product.pk).update(stock_quantity=0)

        with self.assertRaises(StockConflictError) as ctx:
            OrderService.place_order(self.user, ADDRESS, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY)

        self.assertEqual(ctx.exception.details["requested"], 2)
        self.assertEqual(ctx.exception.details["available"], 0)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 0)
        self.assertFalse(Order.objects.exists())
        self.assertEqual(CartService.get_cart(self.user).item_count, 2)

    def test_deactivated_product_conflicts(self):
        self._cart((self.product, 1))
        Product.objects.filter(pk=self.product.pk).update(is_active=False)
        with self.assertRaises(StockConflictError):
            OrderService.place_order(self.user, ADDRESS, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY)

    def test_failure_midway_rolls_back_earlier_decrements(self):
        second = make_product(name="Pepper", price="150.00", stock=5)
        self._cart((self.product, 2), (second, 1))

        real_decrement = StockService.decrement
        calls = []

        def fail_on_second(product, quantity, reference, user=None):
            calls.append(product.pk)
            if len(calls) == 2:
                raise StockConflictError("Stock changed underneath us.")
            return real_decrement(product, quantity, reference, user=user)

        with patch.object(StockService, "decrement", side_effect=fail_on_second):
            with self.assertRaises(StockConflictError):
                OrderService.place_order(self.user, ADDRESS, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY)

        self.assertEqual(len(calls), 2)
        self.product.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 10)
        self.assertEqual(second.stock_quantity, 5)
        self.assertFalse(Order.objects.exists())
        self.assertFalse(StockMovement.objects.exists())
        self.assertEqual(CartService.get_cart(self.user).item_count, 3)

    def test_sequential_race_for_last_unit(self):
        self.product.stock_quantity = 1
        self.product.save()
        rival = User.objects.create_user(email="rival@example.com", password=PASSWORD)
        CartService.add_item(self.user, self.product.pk, 1)
        CartService.add_item(rival, self.product.pk, 1)

        OrderService.place_order(self.user, ADDRESS, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY)
        with self.assertRaises(StockConflictError):
            OrderService.place_order(rival, ADDRESS, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 0)
        self.assertEqual(Order.objects.count(), 1)

    @override_settings(LOW_STOCK_ALERT_EMAILS=[])
    def test_confirmation_email_after_commit(self):
        self._cart((self.product, 1))
        with self.captureOnCommitCallbacks(execute=True):
            order = OrderService.place_order(
                self.user, ADDRESS, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY
            )

        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(order.order_number, mail.outbox[0].subject)
        self.assertEqual(mail.outbox[0].to, ["asha@example.com"])

    def test_no_email_when_checkout_fails(self):
        self._cart((self.product, 2))
        Product.objects.filter(pk=self.product.pk).update(stock_quantity=1)
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            with self.assertRaises(StockConflictError):
                OrderService.place_order(self.user, ADDRESS, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY)
        self.assertEqual(len(callbacks), 0)


@override_settings(STRIPE_SECRET_KEY="sk_test_123")
class PlaceOrderPaymentTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="asha@example.com", password=PASSWORD)
        self.product = make_product(price="500.00", stock=10)
        CartService.add_item(self.user, self.product.pk, 2)

    def _intent(self, **overrides):
        intent = {"id": "pi_123", "status": "succeeded", "amount_received": 127900, "currency": "inr"}
        intent.update(overrides)
        return intent

    @patch("apps.payments.services.stripe.PaymentIntent.retrieve")
    def test_verified_token_marks_paid(self, retrieve):
        retrieve.return_value = self._intent()
        order = OrderService.place_order(
            self.user, ADDRESS, payment_method=Order.PaymentMethod.STRIPE, payment_token="pi_123"
        )
        self.assertEqual(order.payment_status, Order.PaymentStatus.PAID)
        self.assertEqual(order.payment_reference, "pi_123")
        self.assertIsNotNone(order.paid_at)

    @patch("apps.payments.services.stripe.PaymentIntent.retrieve")
    def test_stripe_lookup_runs_before_rows_are_locked(self, retrieve):
        seen = {}

        def fetch(token):
            seen["depth"] = len(connection.atomic_blocks)
            return self._intent()

        retrieve.side_effect = fetch
        baseline = len(connection.atomic_blocks)
        OrderService.place_order(
            self.user, ADDRESS, payment_method=Order.PaymentMethod.STRIPE, payment_token="pi_123"
        )

        retrieve.assert_called_once_with("pi_123")
        self.assertEqual(seen["depth"], baseline)

    @patch("apps.payments.services.stripe.PaymentIntent.retrieve")
    def test_amount_mismatch_rolls_back(self, retrieve):
        retrieve.return_value = self._intent(amount_received=100)
        with self.assertRaises(PaymentVerificationError):
            OrderService.place_order(
                self.user, ADDRESS, payment_method=Order.PaymentMethod.STRIPE, payment_token="pi_123"
            )

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 10)
        self.assertFalse(Order.objects.exists())
        self.assertEqual(CartService.get_cart(self.user).item_count, 2)

    @patch("apps.payments.services.stripe.PaymentIntent.retrieve")
    def test_unsucceeded_intent_rejected(self, retrieve):
        retrieve.return_value = self._intent(status="requires_payment_method")
        with self.assertRaises(PaymentVerificationError):
            OrderService.place_order(
                self.user, ADDRESS, payment_method=Order.PaymentMethod.STRIPE, payment_token="pi_123"
            )

    @patch("apps.payments.services.stripe.PaymentIntent.retrieve")
    def test_token_cannot_pay_twice(self, retrieve):
        retrieve.return_value = self._intent()
        OrderService.place_order(self.user, ADDRESS, payment_method=Order.PaymentMethod.STRIPE, payment_token="pi_123")

        CartService.add_item(self.user, self.product.pk, 2)
        with self.assertRaises(PaymentVerificationError):
            OrderService.place_order(
                self.user, ADDRESS, payment_method=Order.PaymentMethod.STRIPE, payment_token="pi_123"
            )
        self.assertEqual(Order.objects.count(), 1)


class OrderTransitionTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="asha@example.com", password=PASSWORD)
        self.admin = User.objects.create_user(email="ops@example.com", password=PASSWORD, role=Role.ADMIN)
        self.product = make_product(stock=10)
        CartService.add_item(self.user, self.product.pk, 3)
        self.order = OrderService.place_order(
            self.user, ADDRESS, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY
        )

    def test_forward_path_stamps_times(self):
        OrderService.update_order_status(self.order.pk, Order.Status.PROCESSING, user=self.admin)
        order = OrderService.update_order_status(
            self.order.pk, Order.Status.SHIPPED, user=self.admin, tracking_number="TRK-1"
        )
        self.assertIsNotNone(order.shipped_at)
        self.assertEqual(order.tracking_number, "TRK-1")

        order = OrderService.update_order_status(self.order.order_number, Order.Status.DELIVERED, user=self.admin)
        self.assertIsNotNone(order.delivered_at)
        self.assertEqual(order.timeline.count(), 4)

    def test_same_status_is_noop(self):
        order = OrderService.update_order_status(self.order.pk, Order.Status.PENDING)
        self.assertEqual(order.order_status, Order.Status.PENDING)
        self.assertEqual(order.timeline.count(), 1)

    def test_same_status_note_goes_to_timeline(self):
        order = OrderService.update_order_status(self.order.pk, Order.Status.PENDING, notes="Call before delivery")
        self.assertEqual(order.order_status, Order.Status.PENDING)
        self.assertEqual(order.notes, "")
        self.assertTrue(order.timeline.filter(note="Call before delivery").exists())

    def test_admin_note_keeps_customer_notes(self):
        CartService.add_item(self.user, self.product.pk, 1)
        order = OrderService.place_order(
            self.user, ADDRESS, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY, notes="Leave at the gate"
        )
        order = OrderService.update_order_status(
            order.pk, Order.Status.PROCESSING, user=self.admin, notes="Packed by warehouse"
        )

        order.refresh_from_db()
        self.assertEqual(order.notes, "Leave at the gate")
        self.assertTrue(order.timeline.filter(note="Packed by warehouse").exists())

    def test_cannot_skip_or_leave_terminal(self):
        with self.assertRaises(InvalidTransitionError):
            OrderService.update_order_status(self.order.pk, Order.Status.DELIVERED)

        for status_ in (Order.Status.PROCESSING, Order.Status.SHIPPED, Order.Status.DELIVERED):
            OrderService.update_order_status(self.order.pk, status_)

        with self.assertRaises(InvalidTransitionError):
            OrderService.update_order_status(self.order.pk, Order.Status.CANCELLED)

        self.order.refresh_from_db()
        self.assertEqual(self.order.order_status, Order.Status.DELIVERED)
        self.assertIsNone(self.order.cancelled_at)

    def test_cannot_cancel_after_shipping(self):
        OrderService.update_order_status(self.order.pk, Order.Status.PROCESSING)
        OrderService.update_order_status(self.order.pk, Order.Status.SHIPPED)
        with self.assertRaises(InvalidTransitionError):
            OrderService.update_order_status(self.order.pk, Order.Status.CANCELLED)

    def test_cancel_restocks_and_flags_refund(self):
        OrderService.update_payment_status(self.order.pk, Order.PaymentStatus.PAID, user=self.admin)
        order = OrderService.update_order_status(self.order.pk, Order.Status.CANCELLED, user=self.admin)

        self.assertEqual(order.payment_status, Order.PaymentStatus.REFUND_PENDING)
        self.assertIsNotNone(order.cancelled_at)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 10)
        self.assertTrue(
            StockMovement.objects.filter(
                product=self.product, movement_type=StockMovement.MovementType.CANCEL_RESTOCK
            ).exists()
        )

    def test_payment_axis(self):
        with self.assertRaises(InvalidTransitionError):
            OrderService.update_payment_status(self.order.pk, Order.PaymentStatus.REFUNDED)

        OrderService.update_payment_status(self.order.pk, Order.PaymentStatus.PAID)
        OrderService.update_payment_status(self.order.pk, Order.PaymentStatus.REFUND_PENDING)
        order = OrderService.update_payment_status(self.order.pk, Order.PaymentStatus.REFUNDED)
        self.assertEqual(order.payment_status, Order.PaymentStatus.REFUNDED)

        with self.assertRaises(InvalidTransitionError):
            OrderService.update_payment_status(self.order.pk, Order.PaymentStatus.PAID)

    def test_unknown_order(self):
        with self.assertRaises(NotFoundError):
            OrderService.update_order_status("ORD-000000-XXXXXX", Order.Status.PROCESSING)


class OrderRefundTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="asha@example.com", password=PASSWORD)
        self.admin = User.objects.create_user(email="ops@example.com", password=PASSWORD, role=Role.ADMIN)
        CartService.add_item(self.user, make_product(stock=10).pk, 2)
        self.order = OrderService.place_order(
            self.user, ADDRESS, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY
        )

    def _deliver_paid(self):
        OrderService.update_payment_status(self.order.pk, Order.PaymentStatus.PAID)
        for status_ in (Order.Status.PROCESSING, Order.Status.SHIPPED, Order.Status.DELIVERED):
            OrderService.update_order_status(self.order.pk, status_)

    def test_refund_records_reason_and_flags_payment(self):
        self._deliver_paid()

        refund = OrderService.refund_order(self.order.pk, Decimal("200.00"), "Damaged jar", user=self.admin)

        self.assertEqual(refund.amount, Decimal("200.00"))
        self.assertEqual(refund.processed_by, self.admin)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.REFUND_PENDING)
        self.assertEqual(self.order.order_status, Order.Status.DELIVERED)
        self.assertTrue(self.order.timeline.filter(note__contains="Damaged jar").exists())

    def test_refunds_are_capped_by_order_total(self):
        self._deliver_paid()
        OrderService.refund_order(self.order.pk, self.order.total - Decimal("1.00"), "Most of it")

        with self.assertRaises(ValidationError):
            OrderService.refund_order(self.order.pk, Decimal("1.01"), "Too much")

        OrderService.refund_order(self.order.pk, Decimal("1.00"), "The rest")
        self.assertEqual(OrderRefund.objects.filter(order=self.order).count(), 2)

    def test_amount_over_total_rejected(self):
        self._deliver_paid()
        with self.assertRaises(ValidationError):
            OrderService.refund_order(self.order.pk, self.order.total + Decimal("0.01"), "Overcharge")
        self.assertFalse(OrderRefund.objects.exists())

    def test_open_order_cannot_be_refunded(self):
        OrderService.update_payment_status(self.order.pk, Order.PaymentStatus.PAID)
        with self.assertRaises(InvalidTransitionError):
            OrderService.refund_order(self.order.pk, Decimal("10.00"), "Changed mind")

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.PAID)
        self.assertFalse(OrderRefund.objects.exists())

    def test_unpaid_order_cannot_be_refunded(self):
        OrderService.update_order_status(self.order.pk, Order.Status.CANCELLED)
        with self.assertRaises(InvalidTransitionError):
            OrderService.refund_order(self.order.pk, Decimal("10.00"), "Never paid")

    def test_cancelled_paid_order_stays_refund_pending(self):
        OrderService.update_payment_status(self.order.pk, Order.PaymentStatus.PAID)
        OrderService.update_order_status(self.order.pk, Order.Status.CANCELLED)

        OrderService.refund_order(self.order.pk, self.order.total, "Cancelled by customer")

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.REFUND_PENDING)


class CartAPITests(APITestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(email="asha@example.com", password=PASSWORD)
        self.client.force_authenticate(self.user)
        self.product = make_product(stock=3)

    def test_requires_auth(self):
        self.client.force_authenticate(None)
        self.assertEqual(self.client.get("/api/cart/").status_code, status.HTTP_401_UNAUTHORIZED)

    def test_add_get_update_delete(self):
        resp = self.client.post("/api/cart/", {"productId": str(self.product.pk), "quantity": 2}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["itemCount"], 2)
        self.assertEqual(Decimal(resp.data["subtotal"]), Decimal("1000.00"))
        self.assertEqual(str(resp.data["items"][0]["productId"]), str(self.product.pk))

        resp = self.client.put("/api/cart/", {"productId": str(self.product.pk), "quantity": 1}, format="json")
        self.assertEqual(resp.data["itemCount"], 1)

        resp = self.client.delete(f"/api/cart/?productId={self.product.pk}")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["items"], [])

    def test_error_statuses(self):
        resp = self.client.post("/api/cart/", {"productId": str(self.product.pk), "quantity": 0}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

        resp = self.client.post("/api/cart/", {"productId": str(self.product.pk), "quantity": 4}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data["code"], "insufficient_stock")

        resp = self.client.post(
            "/api/cart/", {"productId": "00000000-0000-0000-0000-000000000000", "quantity": 1}, format="json"
        )
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)

        resp = self.client.put("/api/cart/", {"productId": str(self.product.pk), "quantity": 1}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(resp.data["error"], "Item not found in cart")

    def test_clear(self):
        self.client.post("/api/cart/", {"productId": str(self.product.pk), "quantity": 1}, format="json")
        resp = self.client.delete("/api/cart/clear/")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["itemCount"], 0)


class OrderAPITests(APITestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.user = User.objects.create_user(email="asha@example.com", password=PASSWORD)
        self.other = User.objects.create_user(email="other@example.com", password=PASSWORD)
        self.admin = User.objects.create_user(email="ops@example.com", password=PASSWORD, role=Role.ADMIN)
        self.product = make_product(stock=10)
        CartService.add_item(self.user, self.product.pk, 2)

    def _checkout(self, **headers):
        return self.client.post(
            "/api/orders/",
            {"shippingAddress": WIRE_ADDRESS, "paymentMethod": "cash_on_delivery", "notes": "Ring twice"},
            format="json",
            **headers,
        )

    def test_quote_then_place(self):
        self.client.force_authenticate(self.user)
        quote = self.client.get("/api/orders/quote/")
        self.assertEqual(quote.status_code, status.HTTP_200_OK)
        self.assertEqual(Decimal(quote.data["total"]), Decimal("1279.00"))
        self.assertEqual(quote.data["itemCount"], 2)

        resp = self._checkout()
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Decimal(resp.data["total"]), Decimal("1279.00"))
        self.assertEqual(resp.data["orderStatus"], "pending")
        self.assertEqual(resp.data["shippingAddress"]["zipCode"], "560001")
        self.assertEqual(resp.data["items"][0]["quantity"], 2)

        cart = self.client.get("/api/cart/")
        self.assertEqual(cart.data["itemCount"], 0)

    def test_empty_cart_and_bad_address(self):
        self.client.force_authenticate(self.other)
        resp = self._checkout()
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["code"], "empty_cart")

        self.client.force_authenticate(self.user)
        resp = self.client.post(
            "/api/orders/",
            {"shippingAddress": {"fullName": "Asha"}, "paymentMethod": "cash_on_delivery"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["code"], "invalid_address")

    def test_missing_or_malformed_shipping_address(self):
        self.client.force_authenticate(self.user)
        for payload in (
            {"paymentMethod": "cash_on_delivery"},
            {"shippingAddress": None, "paymentMethod": "cash_on_delivery"},
            {"shippingAddress": "12 MG Road", "paymentMethod": "cash_on_delivery"},
        ):
            resp = self.client.post("/api/orders/", payload, format="json")
            self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
            self.assertEqual(resp.data["code"], "invalid_address")
        self.assertFalse(Order.objects.exists())

    def test_stock_conflict_is_409(self):
        Product.objects.filter(pk=self.product.pk).update(stock_quantity=1)
        self.client.force_authenticate(self.user)
        resp = self._checkout()
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data["details"]["available"], 1)

    def test_idempotency_key_blocks_duplicate(self):
        self.client.force_authenticate(self.user)
        first = self._checkout(HTTP_IDEMPOTENCY_KEY="abc-123")
        self.assertEqual(first.status_code, status.HTTP_201_CREATED)

        CartService.add_item(self.user, self.product.pk, 1)
        second = self._checkout(HTTP_IDEMPOTENCY_KEY="abc-123")
        self.assertEqual(second.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(Order.objects.count(), 1)

    def test_failed_checkout_releases_idempotency_key(self):
        Product.objects.filter(pk=self.product.pk).update(stock_quantity=1)
        self.client.force_authenticate(self.user)
        self.assertEqual(self._checkout(HTTP_IDEMPOTENCY_KEY="k1").status_code, status.HTTP_409_CONFLICT)

        Product.objects.filter(pk=self.product.pk).update(stock_quantity=10)
        self.assertEqual(self._checkout(HTTP_IDEMPOTENCY_KEY="k1").status_code, status.HTTP_201_CREATED)

    def test_orders_are_scoped_to_owner(self):
        self.client.force_authenticate(self.user)
        order_id = self._checkout().data["id"]
        order_number = Order.objects.get().order_number

        self.assertEqual(self.client.get(f"/api/orders/{order_number}/").status_code, status.HTTP_200_OK)

        self.client.force_authenticate(self.other)
        self.assertEqual(self.client.get(f"/api/orders/{order_id}/").status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(self.client.get("/api/orders/").data["count"], 0)

        self.client.force_authenticate(self.admin)
        self.assertEqual(self.client.get(f"/api/orders/{order_id}/").status_code, status.HTTP_200_OK)


class AdminOrderAPITests(APITestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(email="asha@example.com", password=PASSWORD)
        self.admin = User.objects.create_user(email="ops@example.com", password=PASSWORD, role=Role.ADMIN)
        self.product = make_product(stock=10)
        CartService.add_item(self.user, self.product.pk, 2)
        self.order = OrderService.place_order(
            self.user, ADDRESS, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY
        )

    def _status_url(self, suffix="status"):
        return f"/api/admin/orders/{self.order.pk}/{suffix}/"

    def test_customer_forbidden(self):
        self.client.force_authenticate(self.user)
        resp = self.client.put(self._status_url(), {"orderStatus": "processing"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)

    def test_status_updates(self):
        self.client.force_authenticate(self.admin)
        resp = self.client.put(self._status_url(), {"orderStatus": "processing"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["orderStatus"], "processing")

        resp = self.client.put(self._status_url(), {"orderStatus": "delivered"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data["code"], "invalid_transition")

        resp = self.client.put(self._status_url(), {"orderStatus": "teleported"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

        resp = self.client.put(self._status_url("payment-status"), {"paymentStatus": "paid"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["paymentStatus"], "paid")

    def test_list_filters_and_stats(self):
        OrderService.update_order_status(self.order.pk, Order.Status.PROCESSING)
        self.client.force_authenticate(self.admin)

        resp = self.client.get("/api/admin/orders/", {"status": "processing"})
        self.assertEqual(resp.data["count"], 1)
        resp = self.client.get("/api/admin/orders/", {"status": "pending"})
        self.assertEqual(resp.data["count"], 0)
        resp = self.client.get("/api/admin/orders/", {"search": "asha@"})
        self.assertEqual(resp.data["count"], 1)

        detail = self.client.get(f"/api/admin/orders/{self.order.order_number}/")
        self.assertEqual(detail.data["customerEmail"], "asha@example.com")
        self.assertEqual(len(detail.data["timeline"]), 2)

        stats = self.client.get("/api/admin/orders/stats/summary/", {"period": "7d"})
        self.assertEqual(stats.status_code, status.HTTP_200_OK)
        self.assertEqual(stats.data["totalOrders"], 1)
        self.assertEqual(stats.data["byStatus"]["processing"], 1)
        self.assertEqual(Decimal(stats.data["revenue"]), Decimal("1279.00"))
        self.assertEqual(stats.data["topProducts"][0]["quantity"], 2)

    def _deliver_paid(self):
        OrderService.update_payment_status(self.order.pk, Order.PaymentStatus.PAID)
        for status_ in (Order.Status.PROCESSING, Order.Status.SHIPPED, Order.Status.DELIVERED):
            OrderService.update_order_status(self.order.pk, status_)

    def test_refund_action(self):
        self._deliver_paid()
        self.client.force_authenticate(self.admin)

        resp = self.client.post(
            self._status_url("refund"), {"amount": "100.00", "reason": "Broken seal"}, format="json"
        )

        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.data["paymentStatus"], "refund_pending")
        self.assertEqual(resp.data["refunds"][0]["amount"], "100.00")
        self.assertEqual(resp.data["refunds"][0]["reason"], "Broken seal")
        self.assertTrue(any("Broken seal" in row["note"] for row in resp.data["timeline"]))

    def test_refund_rules_over_http(self):
        self.client.force_authenticate(self.admin)
        url = self._status_url("refund")

        resp = self.client.post(url, {"amount": "100.00", "reason": "Too early"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data["code"], "invalid_transition")

        self._deliver_paid()
        resp = self.client.post(url, {"amount": "5000.00", "reason": "Too much"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

        resp = self.client.post(url, {"amount": "100.00"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

        resp = self.client.post(url, {"amount": "-5", "reason": "Negative"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(OrderRefund.objects.exists())

    def test_customer_cannot_refund(self):
        self._deliver_paid()
        self.client.force_authenticate(self.user)
        resp = self.client.post(
            self._status_url("refund"), {"amount": "100.00", "reason": "Self service"}, format="json"
        )
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(OrderRefund.objects.exists())


@unittest.skipUnless(
    connection.vendor == "postgresql",
    "Row locks need PostgreSQL; set TEST_DATABASE_URL=postgres://... to run",
)
class CheckoutConcurrencyTests(TransactionTestCase):
    # Use TransactionTestCase to allow real DB transactions for concurrency testing

    def setUp(self):
        self.product = make_product(stock=1)
        self.users = []
        for i in range(2):
            user = User.objects.create_user(email=f"buyer{i}@example.com", password=PASSWORD)
            CartService.add_item(user, self.product.pk, 1)
            self.users.append(user)

    def test_only_one_checkout_gets_the_last_unit(self):
        def place(user_id):
            user = User.objects.get(pk=user_id)
            try:
                OrderService.place_order(user, ADDRESS, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY)
                return "SUCCESS"
            except StockConflictError:
                return "CONFLICT"
            finally:
                connection.close()

        with concurrent.futures.ThreadPoolExecutor(max_workers=2) as executor:
            results = list(executor.map(place, [u.pk for u in self.users]))

        self.assertEqual(sorted(results), ["CONFLICT", "SUCCESS"])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 0)
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(Cart.objects.get(user=self.users[0]).items.count()
                         + Cart.objects.get(user=self.users[1]).items.count(), 1)
