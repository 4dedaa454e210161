"""Mapping from domain errors to HTTP errors."""
import logging

from fastapi import HTTPException, status

from addresses import InvalidAddressError, AddressAllocationError
from invoices import AlreadyPaidError, AmountMismatchError, InvalidInvoiceError
from ledger.exceptions import (
    LedgerError,
    NotFoundError,
    InvalidAmountError,
    InsufficientFundsError,
    InvalidTransitionError,
    PermissionDeniedError
)
from withdrawals import AmountOutOfRangeError, NonPositiveNetError

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (InsufficientFundsError, status.HTTP_402_PAYMENT_REQUIRED),
    (AlreadyPaidError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (InvalidAddressError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidAmountError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (AmountOutOfRangeError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NonPositiveNetError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (AmountMismatchError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidInvoiceError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ValueError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (AddressAllocationError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (LedgerError, status.HTTP_400_BAD_REQUEST),
)

def http_error(error: Exception) -> HTTPException:
    """Build the HTTPException for a domain error."""
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))

    logger.error(f"Unhandled error: {error}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error"
    )
