# apps/catalog/tests.py
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core import mail
from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from apps.accounts.models import Role
from apps.utils.exceptions import DuplicateError, InsufficientStockError, StockConflictError
from .models import Category, Product, StockMovement
from .services import ProductService, StockService
from .tasks import notify_low_stock

User = get_user_model()
PASSWORD = "Str0ng-Passw0rd!"


def make_product(category, name="Cardamom 100g", price="500.00", stock=10, **extra):
    return Product.objects.create(
        name=name,
        slug=name.lower().replace(" ", "-"),
        category=category,
        price=Decimal(price),
        stock_quantity=stock,
        **extra,
    )


class CategoryModelTests(TestCase):
    def test_category_slug_auto_generated_and_unique(self):
        c1 = Category.objects.create(name="Whole Spices")
        c2 = Category.objects.create(name="Whole Spices", parent=c1)

        self.assertEqual(c1.slug, "whole-spices")
        self.assertEqual(c2.slug, "whole-spices-1")


class ProductModelTests(TestCase):
    def setUp(self):
        self.cat = Category.objects.create(name="Spices")

    def test_derived_flags(self):
        product = make_product(self.cat, stock=5, original_price=Decimal("625.00"))
        self.assertTrue(product.in_stock)
        self.assertTrue(product.is_low_stock)
        self.assertEqual(product.discount_percentage, 20)

        product.stock_quantity = 0
        self.assertFalse(product.in_stock)
        self.assertFalse(product.is_low_stock)


class StockServiceTests(TestCase):
    def setUp(self):
        self.cat = Category.objects.create(name="Spices")
        self.product = make_product(self.cat, stock=10)
        self.admin = User.objects.create_user(email="ops@example.com", password=PASSWORD, role=Role.ADMIN)

    def test_decrement_writes_ledger_and_sales(self):
        StockService.decrement(self.product, 3, reference="ORD-TEST")
        self.product.refresh_from_db()

        self.assertEqual(self.product.stock_quantity, 7)
        self.assertEqual(self.product.sales_count, 3)
        movement = StockMovement.objects.get(product=self.product)
        self.assertEqual(movement.quantity_change, -3)
        self.assertEqual(movement.balance_after, 7)
        self.assertEqual(movement.movement_type, StockMovement.MovementType.ORDER)

    def test_decrement_never_goes_negative(self):
        # Simulate a stale read: the in-memory object still believes 10 are left
        Product.objects.filter(pk=self.product.pk).update(stock_quantity=1)

        with self.assertRaises(StockConflictError) as ctx:
            StockService.decrement(self.product, 2, reference="ORD-TEST")

        self.assertEqual(ctx.exception.details["available"], 1)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 1)
        self.assertFalse(StockMovement.objects.exists())

    def test_decrement_into_low_stock_schedules_alert(self):
        with patch("apps.catalog.tasks.notify_low_stock.delay") as delay:
            with self.captureOnCommitCallbacks(execute=True):
                StockService.decrement(self.product, 2, reference="ORD-TEST")
        delay.assert_called_once_with(str(self.product.pk))

    def test_restock(self):
        StockService.decrement(self.product, 4, reference="ORD-TEST")
        StockService.restock([{"product_id": self.product.pk, "quantity": 4}], reference="ORD-TEST")
        self.product.refresh_from_db()

        self.assertEqual(self.product.stock_quantity, 10)
        self.assertEqual(self.product.sales_count, 0)
        self.assertEqual(
            StockMovement.objects.filter(movement_type=StockMovement.MovementType.CANCEL_RESTOCK).count(), 1
        )

    def test_manual_adjustment_cannot_go_negative(self):
        with self.assertRaises(InsufficientStockError):
            StockService.manual_adjustment(self.product.pk, -11, self.admin, "Damaged")

        product = StockService.manual_adjustment(self.product.pk, -2, self.admin, "Damaged")
        self.assertEqual(product.stock_quantity, 8)
        movement = StockMovement.objects.get(product=self.product)
        self.assertEqual(movement.reference, "MANUAL: Damaged")
        self.assertEqual(movement.created_by, self.admin)


class ProductServiceTests(TestCase):
    def setUp(self):
        self.cat = Category.objects.create(name="Spices")

    def test_create_trims_name_and_slugifies(self):
        product = ProductService.create_product(
            name="  Black Pepper  ", category=self.cat, price=Decimal("250.00"), stock_quantity=4,
        )
        self.assertEqual(product.name, "Black Pepper")
        self.assertEqual(product.slug, "black-pepper")
        self.assertEqual(StockMovement.objects.get(product=product).balance_after, 4)

    def test_duplicate_name_rejected_case_insensitively(self):
        ProductService.create_product(name="Black Pepper", category=self.cat, price=Decimal("250.00"))
        with self.assertRaises(DuplicateError):
            ProductService.create_product(name="black pepper", category=self.cat, price=Decimal("260.00"))
        self.assertEqual(Product.objects.count(), 1)

    def test_update_keeps_stock(self):
        product = make_product(self.cat, stock=10)
        ProductService.update_product(product, price=Decimal("450.00"), stock_quantity=999)
        product.refresh_from_db()
        self.assertEqual(product.price, Decimal("450.00"))
        self.assertEqual(product.stock_quantity, 10)


class PublicCatalogAPITests(APITestCase):
    def setUp(self):
        self.client = APIClient()
        self.spices = Category.objects.create(name="Spices")
        self.whole = Category.objects.create(name="Whole", parent=self.spices)
        self.tea = Category.objects.create(name="Tea")

        self.cardamom = make_product(self.whole, name="Cardamom", price="500.00", is_featured=True)
        self.pepper = make_product(self.spices, name="Pepper", price="150.00")
        self.assam = make_product(self.tea, name="Assam Tea", price="300.00")
        self.hidden = make_product(self.tea, name="Old Tea", price="100.00", is_active=False)

    def _names(self, resp):
        return {p["name"] for p in resp.data["results"]}

    def test_list_only_active(self):
        resp = self.client.get(reverse("product-list"))
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(self._names(resp), {"Cardamom", "Pepper", "Assam Tea"})

    def test_filter_by_category_includes_subcategories(self):
        resp = self.client.get(reverse("product-list"), {"category": "spices"})
        self.assertEqual(self._names(resp), {"Cardamom", "Pepper"})

    def test_filter_price_range_and_featured(self):
        resp = self.client.get(reverse("product-list"), {"min_price": "200", "max_price": "400"})
        self.assertEqual(self._names(resp), {"Assam Tea"})

        resp = self.client.get(reverse("product-list"), {"featured": "true"})
        self.assertEqual(self._names(resp), {"Cardamom"})

    def test_search(self):
        resp = self.client.get(reverse("product-list"), {"search": "tea"})
        self.assertEqual(self._names(resp), {"Assam Tea"})

    def test_detail_by_slug(self):
        resp = self.client.get(reverse("product-detail", kwargs={"slug": self.cardamom.slug}))
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["category"], "whole")
        self.assertTrue(resp.data["inStock"])

        resp = self.client.get(reverse("product-detail", kwargs={"slug": self.hidden.slug}))
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)

    def test_categories_by_slug(self):
        resp = self.client.get(reverse("category-detail", kwargs={"slug": "spices"}))
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual([c["name"] for c in resp.data["subcategories"]], ["Whole"])


class AdminCatalogAPITests(APITestCase):
    def setUp(self):
        self.client = APIClient()
        self.admin = User.objects.create_user(email="ops@example.com", password=PASSWORD, role=Role.ADMIN)
        self.customer = User.objects.create_user(email="c@example.com", password=PASSWORD)
        self.cat = Category.objects.create(name="Spices")

    def _payload(self, **overrides):
        data = {
            "name": "Saffron 1g",
            "category": str(self.cat.pk),
            "price": "399.00",
            "stockQuantity": 20,
        }
        data.update(overrides)
        return data

    def test_customer_forbidden(self):
        self.client.force_authenticate(self.customer)
        resp = self.client.post("/api/admin/products/", self._payload(), format="json")
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)

    def test_create_and_duplicate(self):
        self.client.force_authenticate(self.admin)
        resp = self.client.post("/api/admin/products/", self._payload(), format="json")
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.data["slug"], "saffron-1g")
        self.assertEqual(resp.data["stockQuantity"], 20)

        resp = self.client.post("/api/admin/products/", self._payload(name="SAFFRON 1G"), format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["code"], "duplicate")

    def test_blank_name_rejected_before_slug(self):
        self.client.force_authenticate(self.admin)
        resp = self.client.post("/api/admin/products/", self._payload(name="   "), format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Product.objects.exists())

    def test_delete_deactivates(self):
        product = make_product(self.cat)
        self.client.force_authenticate(self.admin)
        resp = self.client.delete(f"/api/admin/products/{product.pk}/")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        product.refresh_from_db()
        self.assertFalse(product.is_active)

    def test_adjust_stock(self):
        product = make_product(self.cat, stock=5)
        self.client.force_authenticate(self.admin)

        resp = self.client.post(
            f"/api/admin/products/{product.pk}/adjust-stock/", {"delta": 7, "reason": "Recount"}, format="json"
        )
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["stockQuantity"], 12)

        resp = self.client.post(
            f"/api/admin/products/{product.pk}/adjust-stock/", {"delta": -20, "reason": "Recount"}, format="json"
        )
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        product.refresh_from_db()
        self.assertEqual(product.stock_quantity, 12)

        resp = self.client.get(f"/api/admin/products/{product.pk}/stock-movements/")
        self.assertEqual(resp.data["count"], 1)


class LowStockTaskTests(TestCase):
    def setUp(self):
        cat = Category.objects.create(name="Spices")
        self.product = make_product(cat, stock=2)

    @override_settings(LOW_STOCK_ALERT_EMAILS=["ops@example.com"])
    def test_sends_email(self):
        self.assertEqual(notify_low_stock(str(self.product.pk)), "Sent")
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("Cardamom 100g", mail.outbox[0].subject)

    @override_settings(LOW_STOCK_ALERT_EMAILS=[])
    def test_skips_without_recipients(self):
        self.assertEqual(notify_low_stock(str(self.product.pk)), "Skipped (No Recipients)")
        self.assertEqual(len(mail.outbox), 0)
