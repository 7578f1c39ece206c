import logging
import uuid
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import IntegrityError, OperationalError, transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from apps.catalog.models import Product
from apps.catalog.services import StockService
from apps.utils.exceptions import (
    EmptyCartError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    PaymentVerificationError,
    StockConflictError,
    TransactionAbortError,
)
from apps.utils.resilience import retry_on_transaction_abort
from apps.utils.utils import generate_order_number, quantize_money
from apps.utils.validators import validate_address
from .models import Cart, CartItem, Order, OrderItem, OrderRefund, OrderTimeline

logger = logging.getLogger(__name__)

# Allowed forward moves per axis. A move to the current value is a no-op.
ORDER_TRANSITIONS = {
    Order.Status.PENDING: {Order.Status.PROCESSING, Order.Status.CANCELLED},
    Order.Status.PROCESSING: {Order.Status.SHIPPED, Order.Status.CANCELLED},
    Order.Status.SHIPPED: {Order.Status.DELIVERED},
    Order.Status.DELIVERED: set(),
    Order.Status.CANCELLED: set(),
}

PAYMENT_TRANSITIONS = {
    Order.PaymentStatus.UNPAID: {Order.PaymentStatus.PAID},
    Order.PaymentStatus.PAID: {Order.PaymentStatus.REFUND_PENDING},
    Order.PaymentStatus.REFUND_PENDING: {Order.PaymentStatus.REFUNDED},
    Order.PaymentStatus.REFUNDED: set(),
}

REVENUE_STATUSES = [Order.Status.PROCESSING, Order.Status.SHIPPED, Order.Status.DELIVERED]
REFUNDABLE_ORDER_STATUSES = (Order.Status.DELIVERED, Order.Status.CANCELLED)
STATS_PERIODS = {"7d": 7, "30d": 30, "90d": 90}


def calculate_pricing(subtotal) -> dict:
    """
    Server-side pricing. Client-supplied amounts are never read.
    """
    subtotal = quantize_money(subtotal)
    tax = quantize_money(subtotal * Decimal(str(settings.ORDER_TAX_RATE)))
    if subtotal >= Decimal(str(settings.FREE_SHIPPING_THRESHOLD)):
        shipping_cost = Decimal("0.00")
    else:
        shipping_cost = quantize_money(Decimal(str(settings.FLAT_SHIPPING_FEE)))

    return {
        "subtotal": subtotal,
        "tax": tax,
        "shipping_cost": shipping_cost,
        "total": quantize_money(subtotal + tax + shipping_cost),
        "currency": settings.ORDER_CURRENCY,
    }


def order_lookup(identifier) -> Q:
    """
    Orders are addressable by UUID or by their human-readable number.
    """
    try:
        return Q(pk=uuid.UUID(str(identifier)))
    except ValueError:
        return Q(order_number=str(identifier))


class CartService:
    """
    Every operation is scoped to request.user; there is no cross-user access.
    """

    @staticmethod
    def get_cart(user) -> Cart:
        cart, _ = Cart.objects.get_or_create(user=user)
        return cart

    @staticmethod
    def _get_sellable_product(product_id) -> Product:
        product = Product.objects.filter(pk=product_id, is_active=True).first()
        if product is None:
            raise NotFoundError("Product not found.", details={"product_id": str(product_id)})
        return product

    @staticmethod
    def _check_stock(product: Product, quantity: int):
        if quantity > product.stock_quantity:
            raise InsufficientStockError(
                f"Only {product.stock_quantity} unit(s) of {product.name} available.",
                details={
                    "product_id": str(product.pk),
                    "requested": quantity,
                    "available": product.stock_quantity,
                },
            )

    @staticmethod
    @transaction.atomic
    def add_item(user, product_id, quantity: int) -> Cart:
        """
        Adds to an existing line. The resulting line quantity must fit in stock.
        """
        product = CartService._get_sellable_product(product_id)
        cart = CartService.get_cart(user)

        line = cart.items.select_for_update().filter(product=product).first()
        new_quantity = (line.quantity if line else 0) + quantity
        CartService._check_stock(product, new_quantity)

        if line:
            line.quantity = new_quantity
            line.save(update_fields=["quantity", "updated_at"])
        else:
            CartItem.objects.create(cart=cart, product=product, quantity=new_quantity)

        cart.save(update_fields=["updated_at"])
        return cart

    @staticmethod
    @transaction.atomic
    def update_item(user, product_id, quantity: int) -> Cart:
        """
        Sets (not adds) the line quantity. quantity <= 0 removes the line.
        """
        cart = CartService.get_cart(user)
        line = cart.items.select_for_update().filter(product_id=product_id).first()

        if quantity <= 0:
            if line:
                line.delete()
                cart.save(update_fields=["updated_at"])
            return cart

        if line is None:
            raise NotFoundError("Item not found in cart", details={"product_id": str(product_id)})

        product = CartService._get_sellable_product(product_id)
        CartService._check_stock(product, quantity)

        line.quantity = quantity
        line.save(update_fields=["quantity", "updated_at"])
        cart.save(update_fields=["updated_at"])
        return cart

    @staticmethod
    def remove_item(user, product_id) -> Cart:
        cart = CartService.get_cart(user)
        cart.items.filter(product_id=product_id).delete()
        return cart

    @staticmethod
    def clear(user) -> Cart:
        cart = CartService.get_cart(user)
        cart.items.all().delete()
        return cart


class OrderService:

    @staticmethod
    def quote_cart(user) -> dict:
        """
        Same pricing place_order would apply to the current cart, without side effects.
        """
        cart = CartService.get_cart(user)
        lines = list(cart.lines())
        if not lines:
            raise EmptyCartError("Cart is empty.")

        pricing = calculate_pricing(sum((line.line_total for line in lines), Decimal("0.00")))
        pricing["item_count"] = sum(line.quantity for line in lines)
        return pricing

    @staticmethod
    @retry_on_transaction_abort()
    def place_order(user, shipping_address, billing_address=None, payment_method=Order.PaymentMethod.CASH_ON_DELIVERY,
                    payment_token=None, notes="") -> Order:
        """
        Fetches the Stripe intent (if any), then converts the cart into an order
        in one transaction: lock cart -> lock products (pk order) -> snapshot &
        price -> conditional stock decrement -> match payment amount -> insert
        order -> clear cart.
        Any failure leaves no trace. Datastore aborts are retried.
        """
        shipping = validate_address(shipping_address, label="shipping")
        billing = validate_address(billing_address, label="billing") if billing_address else dict(shipping)

        # The Stripe round trip happens before any row is locked
        intent = None
        if payment_token:
            from apps.payments.services import PaymentService
            intent = PaymentService.fetch_succeeded_intent(payment_token)

        try:
            with transaction.atomic():
                order = OrderService._create_order_from_cart(
                    user, shipping, billing, payment_method, intent, notes or ""
                )
        except (OperationalError, IntegrityError) as e:
            logger.warning(f"Checkout for user {user.pk} aborted by the database: {e}")
            raise TransactionAbortError(str(e)) from e

        logger.info(f"Order placed: {order.order_number} ({order.total} {order.currency}) by {user.pk}")
        return order

    @staticmethod
    def _create_order_from_cart(user, shipping, billing, payment_method, intent, notes) -> Order:
        # 1. Lock the cart row, then re-read its lines under the lock
        cart = Cart.objects.select_for_update().filter(user=user).first()
        lines = list(cart.items.all()) if cart else []
        if not lines:
            raise EmptyCartError("Cart is empty.")

        # 2. Lock products in deterministic order and validate
        products = StockService.lock_products(line.product_id for line in lines)
        lines.sort(key=lambda line: str(line.product_id))

        for line in lines:
            product = products.get(line.product_id)
            if product is None or not product.is_active:
                raise StockConflictError(
                    "A product in your cart is no longer available.",
                    details={"product_id": str(line.product_id), "requested": line.quantity, "available": 0},
                )
            if product.stock_quantity < line.quantity:
                raise StockConflictError(
                    f"Only {product.stock_quantity} unit(s) of {product.name} left.",
                    details={
                        "product_id": str(product.pk),
                        "requested": line.quantity,
                        "available": product.stock_quantity,
                    },
                )

        # 3. Snapshot trusted names and prices
        snapshots = []
        for line in lines:
            product = products[line.product_id]
            snapshots.append({
                "product": product,
                "name_snapshot": product.name,
                "price_snapshot": product.price,
                "quantity": line.quantity,
                "line_total": quantize_money(product.price * line.quantity),
            })

        # 4. Price
        pricing = calculate_pricing(sum((s["line_total"] for s in snapshots), Decimal("0.00")))
        order_number = generate_order_number()

        # 5. Conditional decrements (ledgered)
        for s in snapshots:
            StockService.decrement(s["product"], s["quantity"], reference=order_number, user=user)

        # 6. Payment
        payment_fields = {"payment_status": Order.PaymentStatus.UNPAID}
        if intent is not None:
            from apps.payments.services import PaymentService
            reference = PaymentService.match_intent_amount(
                intent, amount=pricing["total"], currency=pricing["currency"]
            )
            if Order.objects.filter(payment_reference=reference).exists():
                raise PaymentVerificationError(
                    "This payment has already been used for another order.",
                    details={"payment_token": reference},
                )
            payment_fields = {
                "payment_status": Order.PaymentStatus.PAID,
                "payment_reference": reference,
                "paid_at": timezone.now(),
            }

        order = Order.objects.create(
            user=user,
            order_number=order_number,
            shipping_address=shipping,
            billing_address=billing,
            payment_method=payment_method,
            order_status=Order.Status.PENDING,
            subtotal=pricing["subtotal"],
            tax=pricing["tax"],
            shipping_cost=pricing["shipping_cost"],
            total=pricing["total"],
            currency=pricing["currency"],
            notes=notes,
            **payment_fields,
        )
        OrderItem.objects.bulk_create([
            OrderItem(
                order=order,
                product=s["product"],
                name_snapshot=s["name_snapshot"],
                price_snapshot=s["price_snapshot"],
                quantity=s["quantity"],
                line_total=s["line_total"],
            ) for s in snapshots
        ])
        OrderTimeline.objects.create(
            order=order,
            order_status=order.order_status,
            payment_status=order.payment_status,
            note="Order placed.",
            created_by=user,
        )

        # 7. Consume exactly the lines that were ordered
        CartItem.objects.filter(pk__in=[line.pk for line in lines]).delete()

        # 8. Side effects only after commit
        from .tasks import send_order_confirmation_email
        transaction.on_commit(lambda: send_order_confirmation_email.delay(str(order.pk)))

        return order

    @staticmethod
    def _lock_order(order_id) -> Order:
        order = Order.objects.select_for_update().filter(order_lookup(order_id)).first()
        if order is None:
            raise NotFoundError("Order not found.", details={"order_id": str(order_id)})
        return order

    @staticmethod
    @transaction.atomic
    def update_order_status(order_id, new_status, user=None, tracking_number=None, notes=None) -> Order:
        """
        pending -> processing -> shipped -> delivered; cancelled from pending/processing.
        Cancelling returns stock and moves a paid order to refund_pending.
        """
        order = OrderService._lock_order(order_id)
        current = order.order_status
        update_fields = ["updated_at"]

        if tracking_number is not None:
            order.tracking_number = tracking_number
            update_fields.append("tracking_number")
        if new_status == current:
            order.save(update_fields=update_fields)
            if notes:
                # order.notes belongs to the customer; admin remarks live on the timeline
                OrderService.add_note(order.pk, notes, user=user)
            return order

        if new_status not in ORDER_TRANSITIONS.get(current, set()):
            raise InvalidTransitionError(
                f"Cannot change order status from {current} to {new_status}.",
                details={"from": current, "to": new_status},
            )

        now = timezone.now()
        order.order_status = new_status
        update_fields.append("order_status")

        if new_status == Order.Status.SHIPPED:
            order.shipped_at = now
            update_fields.append("shipped_at")
        elif new_status == Order.Status.DELIVERED:
            order.delivered_at = now
            update_fields.append("delivered_at")
        elif new_status == Order.Status.CANCELLED:
            order.cancelled_at = now
            update_fields.append("cancelled_at")

            StockService.restock(
                [{"product_id": i.product_id, "quantity": i.quantity} for i in order.items.all()],
                reference=f"CANCEL-{order.order_number}",
                user=user,
            )
            if order.payment_status == Order.PaymentStatus.PAID:
                order.payment_status = Order.PaymentStatus.REFUND_PENDING
                update_fields.append("payment_status")

        order.save(update_fields=update_fields)
        OrderTimeline.objects.create(
            order=order,
            order_status=order.order_status,
            payment_status=order.payment_status,
            note=notes or f"Order {new_status}.",
            created_by=user,
        )
        logger.info(f"Order {order.order_number}: {current} -> {new_status}")
        return order

    @staticmethod
    @transaction.atomic
    def update_payment_status(order_id, new_status, user=None, notes=None, payment_reference=None) -> Order:
        """
        unpaid -> paid; paid -> refund_pending -> refunded.
        """
        order = OrderService._lock_order(order_id)
        current = order.payment_status

        if new_status == current:
            return order

        if new_status not in PAYMENT_TRANSITIONS.get(current, set()):
            raise InvalidTransitionError(
                f"Cannot change payment status from {current} to {new_status}.",
                details={"from": current, "to": new_status},
            )

        order.payment_status = new_status
        update_fields = ["payment_status", "updated_at"]
        if new_status == Order.PaymentStatus.PAID:
            order.paid_at = timezone.now()
            update_fields.append("paid_at")
            if payment_reference:
                order.payment_reference = payment_reference
                update_fields.append("payment_reference")

        order.save(update_fields=update_fields)
        OrderTimeline.objects.create(
            order=order,
            order_status=order.order_status,
            payment_status=order.payment_status,
            note=notes or f"Payment {new_status}.",
            created_by=user,
        )
        logger.info(f"Order {order.order_number}: payment {current} -> {new_status}")
        return order

    @staticmethod
    @transaction.atomic
    def refund_order(order_id, amount, reason, user=None) -> OrderRefund:
        """
        Records a refund against a delivered or cancelled, paid order.
        Refunds are cumulative up to the order total; the first one moves
        payment to refund_pending, and the gateway's refund event completes it.
        """
        order = OrderService._lock_order(order_id)

        if order.order_status not in REFUNDABLE_ORDER_STATUSES:
            raise InvalidTransitionError(
                "Only delivered or cancelled orders can be refunded.",
                details={"order_status": order.order_status},
            )
        if order.payment_status not in (Order.PaymentStatus.PAID, Order.PaymentStatus.REFUND_PENDING):
            raise InvalidTransitionError(
                f"Cannot refund an order whose payment is {order.payment_status}.",
                details={"payment_status": order.payment_status},
            )

        amount = quantize_money(amount)
        refunded = order.refunds.aggregate(total=Sum("amount"))["total"] or Decimal("0.00")
        remaining = order.total - refunded
        if amount <= 0:
            raise ValidationError({"amount": "Refund amount must be greater than zero."})
        if amount > remaining:
            raise ValidationError({"amount": f"Refund amount cannot exceed {remaining}."})

        refund = OrderRefund.objects.create(order=order, amount=amount, reason=reason, processed_by=user)

        if order.payment_status == Order.PaymentStatus.PAID:
            order.payment_status = Order.PaymentStatus.REFUND_PENDING
            order.save(update_fields=["payment_status", "updated_at"])

        OrderTimeline.objects.create(
            order=order,
            order_status=order.order_status,
            payment_status=order.payment_status,
            note=f"Refund of {amount} {order.currency}: {reason}",
            created_by=user,
        )
        logger.info(
            f"Order {order.order_number}: refund {amount} recorded",
            extra={"order_number": order.order_number},
        )
        return refund

    @staticmethod
    def add_note(order_id, note, user=None) -> OrderTimeline:
        order = Order.objects.filter(order_lookup(order_id)).first()
        if order is None:
            raise NotFoundError("Order not found.", details={"order_id": str(order_id)})
        return OrderTimeline.objects.create(
            order=order,
            order_status=order.order_status,
            payment_status=order.payment_status,
            note=note,
            created_by=user,
        )

    @staticmethod
    def stats_summary(period="30d") -> dict:
        days = STATS_PERIODS.get(period, STATS_PERIODS["30d"])
        since = timezone.now() - timedelta(days=days)
        orders = Order.objects.filter(created_at__gte=since)

        by_status = {s: 0 for s in Order.Status.values}
        for row in orders.values("order_status").annotate(count=Count("id")):
            by_status[row["order_status"]] = row["count"]

        revenue = orders.filter(order_status__in=REVENUE_STATUSES).aggregate(total=Sum("total"))["total"]

        top_products = (
            OrderItem.objects
            .filter(order__in=orders.exclude(order_status=Order.Status.CANCELLED))
            .values("product_id", "product__name")
            .annotate(quantity=Sum("quantity"), revenue=Sum("line_total"))
            .order_by("-quantity")[:5]
        )

        return {
            "period": period if period in STATS_PERIODS else "30d",
            "total_orders": sum(by_status.values()),
            "by_status": by_status,
            "revenue": quantize_money(revenue or 0),
            "top_products": [
                {
                    "product_id": str(p["product_id"]),
                    "name": p["product__name"],
                    "quantity": p["quantity"],
                    "revenue": quantize_money(p["revenue"] or 0),
                }
                for p in top_products
            ],
        }
