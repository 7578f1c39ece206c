import logging
from smtplib import SMTPException

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail

from .models import Product

logger = logging.getLogger("django")


@shared_task(bind=True, max_retries=3, default_retry_delay=5)
def notify_low_stock(self, product_id: str):
    """
    Emails the ops list when a product runs low or sells out.
    Enqueued only after the decrementing transaction commits.
    """
    product = Product.objects.filter(pk=product_id).first()
    if product is None:
        logger.warning(f"Low stock alert skipped: product {product_id} not found")
        return "Skipped (Missing Product)"

    recipients = settings.LOW_STOCK_ALERT_EMAILS
    if not recipients:
        logger.info(f"Low stock: {product.name} has {product.stock_quantity} left (no recipients configured)")
        return "Skipped (No Recipients)"

    state = "is out of stock" if product.stock_quantity == 0 else f"has {product.stock_quantity} unit(s) left"
    try:
        send_mail(
            subject=f"[{settings.PROJECT_NAME}] Low stock: {product.name}",
            message=f"{product.name} ({product.slug}) {state}. Threshold: {product.low_stock_threshold}.",
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=recipients,
        )
    except SMTPException as e:
        logger.error(f"Low stock email failed for {product_id}: {e}")
        raise self.retry(exc=e)

    logger.info(f"Low stock alert sent for {product.pk}")
    return "Sent"
