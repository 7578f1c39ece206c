import time
import logging
import functools

from django.conf import settings
from django.db import transaction

from apps.utils.exceptions import TransactionAbortError

logger = logging.getLogger(__name__)


def retry_on_transaction_abort(max_attempts=None, backoff=None):
    """
    Re-runs the wrapped operation when it raises TransactionAbortError.

    Only transient datastore aborts are retried. Stock conflicts and
    validation errors reflect real state and propagate on the first attempt.
    Inside an outer atomic block a retry would reuse a broken transaction,
    so the error propagates immediately there too.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            attempts = max_attempts or getattr(settings, "TRANSACTION_RETRY_ATTEMPTS", 3)
            delay = backoff if backoff is not None else getattr(settings, "TRANSACTION_RETRY_BACKOFF", 0.05)

            attempt = 0
            while True:
                attempt += 1
                try:
                    return func(*args, **kwargs)
                except TransactionAbortError as e:
                    in_outer_tx = transaction.get_connection().in_atomic_block
                    if attempt >= attempts or in_outer_tx:
                        logger.error(
                            f"{func.__qualname__} aborted after {attempt} attempt(s): {e.message}"
                        )
                        raise
                    logger.warning(
                        f"{func.__qualname__} aborted (attempt {attempt}/{attempts}), retrying"
                    )
                    time.sleep(delay * attempt)

        return wrapper

    return decorator
