import logging
from smtplib import SMTPException

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail

from .models import Order

logger = logging.getLogger("django")


@shared_task(bind=True, max_retries=3, default_retry_delay=5)
def send_order_confirmation_email(self, order_id: str):
    """
    Sent once the checkout transaction has committed.
    Retries on mail server failure.
    """
    order = Order.objects.select_related("user").prefetch_related("items").filter(pk=order_id).first()
    if order is None:
        logger.warning(f"Confirmation skipped: order {order_id} not found")
        return "Skipped (Missing Order)"

    lines = "\n".join(
        f"  {item.quantity} x {item.name_snapshot} @ {item.price_snapshot} = {item.line_total}"
        for item in order.items.all()
    )
    body = (
        f"Hi {order.user.full_name or order.user.email},\n\n"
        f"Thank you for your order {order.order_number}.\n\n"
        f"{lines}\n\n"
        f"Subtotal: {order.subtotal}\n"
        f"Tax: {order.tax}\n"
        f"Shipping: {order.shipping_cost}\n"
        f"Total: {order.total} {order.currency}\n"
    )

    try:
        send_mail(
            subject=f"[{settings.PROJECT_NAME}] Order {order.order_number} confirmed",
            message=body,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[order.user.email],
        )
    except SMTPException as e:
        logger.error(f"Confirmation email failed for {order.order_number}: {e}")
        raise self.retry(exc=e)

    logger.info(f"Confirmation email sent for {order.order_number}")
    return "Sent"
