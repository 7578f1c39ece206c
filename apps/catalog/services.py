import logging
from typing import List

from django.db import transaction
from django.db.models import F
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from apps.utils.exceptions import (
    DuplicateError,
    InsufficientStockError,
    NotFoundError,
    StockConflictError,
)
from .models import Product, StockMovement, unique_slug

logger = logging.getLogger(__name__)

PRODUCT_NAME_MAX_LENGTH = 200


class StockService:
    """
    ALL stock changes must pass through here.
    Callers own the surrounding transaction; every method also runs atomically
    on its own.
    """

    @staticmethod
    def lock_products(product_ids) -> dict:
        """
        Locks product rows in deterministic order to prevent deadlocks.
        """
        ids = sorted(set(product_ids), key=str)
        products = (
            Product.objects
            .select_for_update()
            .filter(pk__in=ids)
            .order_by("pk")
        )
        return {p.pk: p for p in products}

    @staticmethod
    @transaction.atomic
    def decrement(product: Product, quantity: int, reference: str, user=None) -> Product:
        """
        Conditional decrement: never drives stock below zero, even if the
        caller's earlier read is stale.
        """
        updated = Product.objects.filter(
            pk=product.pk,
            stock_quantity__gte=quantity,
        ).update(
            stock_quantity=F("stock_quantity") - quantity,
            sales_count=F("sales_count") + quantity,
            updated_at=timezone.now(),
        )
        if not updated:
            product.refresh_from_db(fields=["stock_quantity"])
            raise StockConflictError(
                f"Only {product.stock_quantity} unit(s) of {product.name} left.",
                details={
                    "product_id": str(product.pk),
                    "requested": quantity,
                    "available": product.stock_quantity,
                },
            )

        product.refresh_from_db(fields=["stock_quantity", "sales_count", "updated_at"])
        StockMovement.objects.create(
            product=product,
            quantity_change=-quantity,
            movement_type=StockMovement.MovementType.ORDER,
            reference=reference,
            balance_after=product.stock_quantity,
            created_by=user,
        )

        if product.is_low_stock or product.stock_quantity == 0:
            from .tasks import notify_low_stock
            transaction.on_commit(lambda: notify_low_stock.delay(str(product.pk)))

        return product

    @staticmethod
    @transaction.atomic
    def restock(items: List[dict], reference: str, user=None):
        """
        Returns ordered quantities to stock (e.g. order cancellation).
        items: [{"product_id": ..., "quantity": ...}]
        """
        products = StockService.lock_products(i["product_id"] for i in items)
        movements = []

        for item in sorted(items, key=lambda i: str(i["product_id"])):
            product = products.get(item["product_id"])
            if product is None:
                logger.warning(f"Restock skipped, product {item['product_id']} missing ({reference})")
                continue

            qty = item["quantity"]
            Product.objects.filter(pk=product.pk).update(
                stock_quantity=F("stock_quantity") + qty,
                sales_count=F("sales_count") - qty if product.sales_count >= qty else 0,
                updated_at=timezone.now(),
            )
            product.refresh_from_db(fields=["stock_quantity", "sales_count", "updated_at"])

            movements.append(StockMovement(
                product=product,
                quantity_change=qty,
                movement_type=StockMovement.MovementType.CANCEL_RESTOCK,
                reference=reference,
                balance_after=product.stock_quantity,
                created_by=user,
            ))

        StockMovement.objects.bulk_create(movements)

    @staticmethod
    @transaction.atomic
    def manual_adjustment(product_id, delta_qty: int, user, reason: str) -> Product:
        """
        For stock counts / audits. Cannot take stock below zero.
        """
        product = next(iter(StockService.lock_products([product_id]).values()), None)
        if product is None:
            raise NotFoundError("Product not found.", details={"product_id": str(product_id)})

        if product.stock_quantity + delta_qty < 0:
            raise InsufficientStockError(
                f"Cannot remove {-delta_qty} unit(s); only {product.stock_quantity} in stock.",
                details={"product_id": str(product.pk), "available": product.stock_quantity},
            )

        Product.objects.filter(pk=product.pk).update(
            stock_quantity=F("stock_quantity") + delta_qty,
            updated_at=timezone.now(),
        )
        product.refresh_from_db()

        StockMovement.objects.create(
            product=product,
            quantity_change=delta_qty,
            movement_type=StockMovement.MovementType.ADJUSTMENT,
            reference=f"MANUAL: {reason}",
            balance_after=product.stock_quantity,
            created_by=user,
        )
        logger.info(f"Stock adjusted for {product.pk}: {delta_qty:+d} by {user.pk} ({reason})")
        return product


class ProductService:

    @staticmethod
    def validate_name(name, exclude_pk=None) -> str:
        """
        Name is validated before any slug is generated from it.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError({"name": "Product name is required."})
        if len(name) > PRODUCT_NAME_MAX_LENGTH:
            raise ValidationError({"name": f"Product name cannot exceed {PRODUCT_NAME_MAX_LENGTH} characters."})

        clash = Product.objects.filter(name__iexact=name).exclude(pk=exclude_pk)
        if clash.exists():
            raise DuplicateError(
                f'Product with name "{name}" already exists',
                details={"name": name},
            )
        return name

    @staticmethod
    @transaction.atomic
    def create_product(user=None, **data) -> Product:
        name = ProductService.validate_name(data.pop("name", None))
        slug = unique_slug(Product, name)

        product = Product.objects.create(name=name, slug=slug, **data)
        if product.stock_quantity:
            StockMovement.objects.create(
                product=product,
                quantity_change=product.stock_quantity,
                movement_type=StockMovement.MovementType.ADJUSTMENT,
                reference="MANUAL: initial stock",
                balance_after=product.stock_quantity,
                created_by=user,
            )
        logger.info(f"Product created: {product.pk} ({product.slug})")
        return product

    @staticmethod
    @transaction.atomic
    def update_product(product: Product, **data) -> Product:
        """
        Price edits never touch placed orders: order items carry snapshots.
        Stock is not editable here; use StockService.manual_adjustment.
        """
        data.pop("stock_quantity", None)
        if "name" in data:
            data["name"] = ProductService.validate_name(data["name"], exclude_pk=product.pk)

        for field, value in data.items():
            setattr(product, field, value)
        product.save()
        return product

    @staticmethod
    def deactivate(product: Product) -> Product:
        product.is_active = False
        product.save(update_fields=["is_active", "updated_at"])
        logger.info(f"Product deactivated: {product.pk}")
        return product
