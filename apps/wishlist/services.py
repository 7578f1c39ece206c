import logging

from django.db import IntegrityError, transaction

from apps.catalog.models import Product
from apps.orders.services import CartService
from apps.utils.exceptions import DuplicateError, NotFoundError
from .models import Wishlist, WishlistItem

logger = logging.getLogger(__name__)


class WishlistService:

    @staticmethod
    def get_wishlist(user) -> Wishlist:
        wishlist, _ = Wishlist.objects.get_or_create(user=user)
        return wishlist

    @staticmethod
    def add_item(user, product_id) -> Wishlist:
        product = Product.objects.filter(pk=product_id, is_active=True).first()
        if product is None:
            raise NotFoundError("Product not found.", details={"product_id": str(product_id)})

        wishlist = WishlistService.get_wishlist(user)
        if wishlist.items.filter(product=product).exists():
            raise DuplicateError("Product is already in your wishlist.", details={"product_id": str(product.pk)})

        try:
            with transaction.atomic():
                WishlistItem.objects.create(wishlist=wishlist, product=product)
        except IntegrityError:
            # Lost a race with a concurrent add of the same product
            raise DuplicateError("Product is already in your wishlist.", details={"product_id": str(product.pk)})

        wishlist.save(update_fields=["updated_at"])
        return wishlist

    @staticmethod
    def remove_item(user, product_id) -> Wishlist:
        wishlist = WishlistService.get_wishlist(user)
        wishlist.items.filter(product_id=product_id).delete()
        return wishlist

    @staticmethod
    def clear(user) -> Wishlist:
        wishlist = WishlistService.get_wishlist(user)
        wishlist.items.all().delete()
        return wishlist

    @staticmethod
    @transaction.atomic
    def move_to_cart(user, product_id):
        """
        Adds one unit to the cart under the usual cart rules, then drops the
        wishlist line. A stock or availability failure leaves both untouched.
        """
        wishlist = WishlistService.get_wishlist(user)
        line = wishlist.items.select_for_update().filter(product_id=product_id).first()
        if line is None:
            raise NotFoundError("Item not found in wishlist", details={"product_id": str(product_id)})

        cart = CartService.add_item(user, product_id, 1)
        line.delete()
        logger.info(f"User {user.pk} moved product {product_id} from wishlist to cart")
        return cart
