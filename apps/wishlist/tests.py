import uuid
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from apps.catalog.models import Category, Product
from apps.orders.models import CartItem
from apps.utils.exceptions import DuplicateError, InsufficientStockError, NotFoundError
from .models import WishlistItem
from .services import WishlistService

User = get_user_model()
PASSWORD = "Str0ng-Passw0rd!"


def make_product(name="Saffron", stock=5, is_active=True):
    category, _ = Category.objects.get_or_create(name="Spices")
    return Product.objects.create(
        name=name,
        slug=name.lower(),
        category=category,
        price=Decimal("250.00"),
        stock_quantity=stock,
        is_active=is_active,
    )


class WishlistServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="asha@example.com", password=PASSWORD)
        self.product = make_product()

    def test_add_and_reject_duplicate(self):
        WishlistService.add_item(self.user, self.product.pk)
        with self.assertRaises(DuplicateError):
            WishlistService.add_item(self.user, self.product.pk)
        self.assertEqual(WishlistItem.objects.count(), 1)

    def test_inactive_product_not_found(self):
        hidden = make_product(name="Hidden", is_active=False)
        with self.assertRaises(NotFoundError):
            WishlistService.add_item(self.user, hidden.pk)

    def test_remove_is_idempotent(self):
        WishlistService.add_item(self.user, self.product.pk)
        WishlistService.remove_item(self.user, self.product.pk)
        wishlist = WishlistService.remove_item(self.user, self.product.pk)
        self.assertEqual(wishlist.items.count(), 0)

    def test_move_to_cart(self):
        WishlistService.add_item(self.user, self.product.pk)
        cart = WishlistService.move_to_cart(self.user, self.product.pk)

        self.assertEqual(cart.items.get(product=self.product).quantity, 1)
        self.assertFalse(WishlistItem.objects.exists())

    def test_move_to_cart_out_of_stock_keeps_wishlist_line(self):
        sold_out = make_product(name="Vanilla", stock=0)
        WishlistService.add_item(self.user, sold_out.pk)

        with self.assertRaises(InsufficientStockError):
            WishlistService.move_to_cart(self.user, sold_out.pk)

        self.assertTrue(WishlistItem.objects.filter(product=sold_out).exists())
        self.assertFalse(CartItem.objects.exists())

    def test_move_missing_line(self):
        with self.assertRaises(NotFoundError):
            WishlistService.move_to_cart(self.user, self.product.pk)


class WishlistAPITests(APITestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(email="asha@example.com", password=PASSWORD)
        self.client.force_authenticate(self.user)
        self.product = make_product()
        self.url = reverse("wishlist")

    def test_requires_auth(self):
        self.client.force_authenticate(None)
        resp = self.client.get(self.url)
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_add_returns_201(self):
        resp = self.client.post(self.url, {"productId": str(self.product.pk)}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertEqual(resp.data["itemCount"], 1)
        self.assertEqual(str(resp.data["items"][0]["productId"]), str(self.product.pk))
        self.assertTrue(resp.data["items"][0]["inStock"])

    def test_add_duplicate(self):
        self.client.post(self.url, {"productId": str(self.product.pk)}, format="json")
        resp = self.client.post(self.url, {"productId": str(self.product.pk)}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data["code"], "duplicate")

    def test_add_unknown_product(self):
        resp = self.client.post(self.url, {"productId": str(uuid.uuid4())}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(resp.data["code"], "not_found")

    def test_delete_line_and_clear(self):
        other = make_product(name="Clove")
        WishlistService.add_item(self.user, self.product.pk)
        WishlistService.add_item(self.user, other.pk)

        resp = self.client.delete(reverse("wishlist-item", args=[self.product.pk]))
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["itemCount"], 1)

        resp = self.client.delete(reverse("wishlist-item", args=[self.product.pk]))
        self.assertEqual(resp.status_code, status.HTTP_200_OK)

        resp = self.client.delete(self.url)
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["items"], [])

    def test_move_to_cart(self):
        WishlistService.add_item(self.user, self.product.pk)
        resp = self.client.post(reverse("wishlist-move-to-cart", args=[self.product.pk]))

        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["cart"]["itemCount"], 1)
        self.assertEqual(resp.data["wishlist"]["itemCount"], 0)
