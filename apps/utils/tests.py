# apps/utils/tests.py
import json
import logging
from decimal import Decimal
from unittest.mock import patch, MagicMock

from django.test import SimpleTestCase, TestCase
from rest_framework import status
from rest_framework.exceptions import ValidationError

from .exceptions import (
    ERROR_STATUS,
    ErrorKind,
    EmptyCartError,
    InvalidAddressError,
    StockConflictError,
    TransactionAbortError,
    custom_exception_handler,
)
from .logging import JSONFormatter
from .resilience import retry_on_transaction_abort
from .utils import generate_order_number, quantize_money, to_minor_units
from .validators import validate_address, validate_phone


class ValidatorTests(SimpleTestCase):
    def test_phone_validator(self):
        self.assertEqual(validate_phone("+919876543210"), "+919876543210")
        with self.assertRaises(ValidationError):
            validate_phone("123")  # Invalid

    def test_address_defaults_country_and_strips(self):
        address = validate_address({
            "full_name": " Asha Rao ",
            "street": "12 MG Road",
            "city": "Bengaluru",
            "state": "Karnataka",
            "zip_code": "560001",
        })
        self.assertEqual(address["full_name"], "Asha Rao")
        self.assertEqual(address["country"], "India")
        self.assertNotIn("phone", address)

    def test_address_reports_all_missing_fields(self):
        with self.assertRaises(InvalidAddressError) as ctx:
            validate_address({"full_name": "Asha", "city": "  "}, label="billing")
        self.assertEqual(ctx.exception.details["address"], "billing")
        self.assertEqual(ctx.exception.details["missing"], ["street", "city", "state", "zip_code"])

    def test_address_rejects_non_dict(self):
        with self.assertRaises(InvalidAddressError):
            validate_address(None)

    def test_address_rejects_bad_phone(self):
        with self.assertRaises(InvalidAddressError):
            validate_address({
                "full_name": "A", "street": "B", "city": "C",
                "state": "D", "zip_code": "1", "phone": "12",
            })


class MoneyHelperTests(SimpleTestCase):
    def test_quantize_rounds_half_up(self):
        self.assertEqual(quantize_money(Decimal("10.005")), Decimal("10.01"))
        self.assertEqual(quantize_money("7"), Decimal("7.00"))

    def test_minor_units(self):
        self.assertEqual(to_minor_units(Decimal("1279.00")), 127900)
        self.assertEqual(to_minor_units(Decimal("0.10")), 10)

    def test_order_number_shape(self):
        number = generate_order_number()
        self.assertTrue(number.startswith("ORD-"))
        self.assertEqual(len(number), len("ORD-250101-ABCDEF"))
        self.assertNotEqual(number, generate_order_number())


class ExceptionHandlerTests(SimpleTestCase):
    def test_every_kind_has_a_status(self):
        self.assertEqual(set(ERROR_STATUS), set(ErrorKind))

    def test_business_error_rendered_with_code_and_details(self):
        exc = StockConflictError("Out of stock", details={"product_id": "p1"})
        response = custom_exception_handler(exc, {})
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "stock_conflict")
        self.assertEqual(response.data["details"], {"product_id": "p1"})

    def test_client_error_without_details(self):
        response = custom_exception_handler(EmptyCartError("Cart is empty."), {})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertNotIn("details", response.data)

    def test_transaction_abort_is_generic_and_retryable(self):
        response = custom_exception_handler(TransactionAbortError("deadlock detected"), {})
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertTrue(response.data["retryable"])
        self.assertNotIn("deadlock", response.data["error"])

    def test_unknown_exception_becomes_500(self):
        response = custom_exception_handler(RuntimeError("boom"), {})
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data["code"], "server_error")


class JSONFormatterTests(SimpleTestCase):
    def _record(self, msg, **extra):
        record = logging.LogRecord("apps.orders", logging.INFO, __file__, 10, msg, None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_redacts_nested_secrets(self):
        record = self._record({"event": "checkout", "payment": {"payment_token": "pi_123", "amount": 10}})
        line = json.loads(JSONFormatter().format(record))
        self.assertIn("***REDACTED***", line["msg"])
        self.assertNotIn("pi_123", line["msg"])

    def test_lifts_context_fields(self):
        record = self._record("Order placed", order_number="ORD-1", user_id=7)
        line = json.loads(JSONFormatter().format(record))
        self.assertEqual(line["order_number"], "ORD-1")
        self.assertEqual(line["user_id"], "7")
        self.assertEqual(line["level"], "INFO")
        self.assertNotIn("product_id", line)


class RetryOnTransactionAbortTests(SimpleTestCase):
    def _no_outer_tx(self):
        conn = MagicMock(in_atomic_block=False)
        return patch("apps.utils.resilience.transaction.get_connection", return_value=conn)

    def test_retries_then_succeeds(self):
        calls = []

        @retry_on_transaction_abort(max_attempts=3, backoff=0)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise TransactionAbortError("write conflict")
            return "ok"

        with self._no_outer_tx():
            self.assertEqual(flaky(), "ok")
        self.assertEqual(len(calls), 3)

    def test_gives_up_after_bound(self):
        calls = []

        @retry_on_transaction_abort(max_attempts=2, backoff=0)
        def always_aborts():
            calls.append(1)
            raise TransactionAbortError("write conflict")

        with self._no_outer_tx(), self.assertRaises(TransactionAbortError):
            always_aborts()
        self.assertEqual(len(calls), 2)

    def test_domain_errors_are_never_retried(self):
        calls = []

        @retry_on_transaction_abort(max_attempts=5, backoff=0)
        def conflict():
            calls.append(1)
            raise StockConflictError("sold out")

        with self._no_outer_tx(), self.assertRaises(StockConflictError):
            conflict()
        self.assertEqual(len(calls), 1)


class HealthAndConfigTests(TestCase):
    def test_health_ok(self):
        resp = self.client.get("/api/utils/health/")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["components"]["db"], "ok")

    def test_public_config_exposes_pricing(self):
        resp = self.client.get("/api/utils/config/")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(Decimal(body["taxRate"]), Decimal("0.18"))
        self.assertEqual(Decimal(body["freeShippingThreshold"]), Decimal("2000.00"))
