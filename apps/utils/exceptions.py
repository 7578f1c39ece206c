import enum
import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    INSUFFICIENT_STOCK = "insufficient_stock"
    EMPTY_CART = "empty_cart"
    STOCK_CONFLICT = "stock_conflict"
    INVALID_ADDRESS = "invalid_address"
    INVALID_TRANSITION = "invalid_transition"
    DUPLICATE = "duplicate"
    PAYMENT_VERIFICATION = "payment_verification"
    TRANSACTION_ABORT = "transaction_abort"


# The only place where a domain error becomes an HTTP status.
ERROR_STATUS = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INSUFFICIENT_STOCK: status.HTTP_409_CONFLICT,
    ErrorKind.EMPTY_CART: status.HTTP_400_BAD_REQUEST,
    ErrorKind.STOCK_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_ADDRESS: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorKind.DUPLICATE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.PAYMENT_VERIFICATION: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorKind.TRANSACTION_ABORT: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class BusinessLogicException(Exception):
    """
    Raised when a domain rule is violated (e.g. 'Stock not available').
    Subclasses pin the ErrorKind; `details` carries ids the client needs
    to refresh its state.
    """
    kind = None
    retryable = False

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def code(self):
        return self.kind.value

    @property
    def status_code(self):
        return ERROR_STATUS[self.kind]


class NotFoundError(BusinessLogicException):
    kind = ErrorKind.NOT_FOUND


class InsufficientStockError(BusinessLogicException):
    kind = ErrorKind.INSUFFICIENT_STOCK


class EmptyCartError(BusinessLogicException):
    kind = ErrorKind.EMPTY_CART


class StockConflictError(BusinessLogicException):
    """
    Live inventory can no longer satisfy a cart line.
    Client should refresh the cart and retry the user action.
    """
    kind = ErrorKind.STOCK_CONFLICT


class InvalidAddressError(BusinessLogicException):
    kind = ErrorKind.INVALID_ADDRESS


class InvalidTransitionError(BusinessLogicException):
    kind = ErrorKind.INVALID_TRANSITION


class DuplicateError(BusinessLogicException):
    kind = ErrorKind.DUPLICATE


class PaymentVerificationError(BusinessLogicException):
    kind = ErrorKind.PAYMENT_VERIFICATION


class TransactionAbortError(BusinessLogicException):
    """
    Datastore aborted the transaction (write conflict, deadlock, serialization).
    The whole operation may be retried.
    """
    kind = ErrorKind.TRANSACTION_ABORT
    retryable = True


def custom_exception_handler(exc, context):
    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    if isinstance(exc, TransactionAbortError):
        logger.error(f"Transaction aborted: {exc.message}", exc_info=True)
        return Response(
            {
                "error": "The request could not be completed. Please try again.",
                "code": exc.code,
                "retryable": True,
            },
            status=exc.status_code,
        )

    if isinstance(exc, BusinessLogicException):
        body = {"error": exc.message, "code": exc.code}
        if exc.details:
            body["details"] = exc.details
        return Response(body, status=exc.status_code)

    # If response is None, it's an unhandled server error (500)
    if response is None:
        logger.error(f"Unhandled Exception: {exc}", exc_info=True)
        return Response(
            {"error": "Internal Server Error", "code": "server_error"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    return response
