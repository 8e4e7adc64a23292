from rest_framework import status

from common.exceptions import DomainError


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "The requested record does not exist."
    default_code = "not_found"


class InvalidStateError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "This operation is not allowed in the document's current status."
    default_code = "invalid_state"


class InsufficientStockError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Insufficient stock."
    default_code = "insufficient_stock"


class AlreadyAppliedError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "This document has already been validated."
    default_code = "already_applied"


class LedgerImmutableError(Exception):
    """Raised on any attempt to change or remove a written ledger row."""
