from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from rest_framework import status
from rest_framework.exceptions import (
    APIException,
    AuthenticationFailed,
    MethodNotAllowed,
    NotAuthenticated,
    NotFound,
    NotAcceptable,
    ParseError,
    PermissionDenied,
    Throttled,
    UnsupportedMediaType,
    ValidationError,
)
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR_MESSAGE = "An unexpected error occurred."

EXCEPTION_CODE_MAP: dict[type[Exception], str] = {
    ValidationError: "validation_error",
    NotAuthenticated: "not_authenticated",
    AuthenticationFailed: "authentication_failed",
    PermissionDenied: "permission_denied",
    NotFound: "not_found",
    MethodNotAllowed: "method_not_allowed",
    NotAcceptable: "not_acceptable",
    UnsupportedMediaType: "unsupported_media_type",
    ParseError: "parse_error",
    Throttled: "throttled",
}


class StockError(APIException):
    """Base class for stock-workflow failures.

    ``errors`` carries structured context (offending product ids, the
    existing draft, committed items) and is surfaced verbatim in the
    ``errors`` field of the error envelope.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Stock operation failed."
    default_code = "stock_error"

    def __init__(self, detail: Any = None, *, errors: Any = None):
        super().__init__(detail)
        self.errors = errors


class ProductNotFound(StockError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Product not found."
    default_code = "not_found"


class StoreNotFound(StockError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Store not found."
    default_code = "not_found"


class CountNotFound(StockError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Stock count not found."
    default_code = "not_found"


class ReportNotFound(StockError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Weekly report not found."
    default_code = "not_found"


class InvalidQuantity(StockError):
    default_detail = "Quantity is invalid."
    default_code = "invalid_quantity"


class MissingStore(StockError):
    default_detail = "A destination store is required."
    default_code = "missing_store"


class UnknownProduct(StockError):
    default_detail = "Product is not part of this stock count."
    default_code = "unknown_product"


class IllegalTransition(StockError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "This transition is not allowed from the current status."
    default_code = "illegal_transition"


class DraftCountExists(StockError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "A draft count already exists for this store in the current period."
    default_code = "draft_count_exists"


class CannotDeleteApproved(StockError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Approved stock counts cannot be deleted."
    default_code = "cannot_delete_approved"


class ProductInUse(StockError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Product is referenced by stock history and cannot be deleted."
    default_code = "product_in_use"


class InvalidPeriod(StockError):
    default_detail = "Report period is invalid."
    default_code = "invalid_period"


class PeriodOverlap(StockError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Report period overlaps an already closed report."
    default_code = "period_overlap"


class EntryRecordingFailed(StockError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Stock entry could not be recorded."
    default_code = "entry_recording_failed"


class PersistenceFailure(StockError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Storage operation failed."
    default_code = "persistence_failure"


def build_error_envelope(
    *,
    code: str,
    message: str,
    errors: Any,
    status_code: int,
) -> dict[str, Any]:
    return {
        "code": code,
        "message": message,
        "errors": errors,
        "status": status_code,
    }


def error_response(
    *,
    code: str,
    message: str,
    errors: Any = None,
    status_code: int = status.HTTP_400_BAD_REQUEST,
) -> Response:
    return Response(
        build_error_envelope(
            code=code,
            message=message,
            errors=errors,
            status_code=status_code,
        ),
        status=status_code,
    )


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    response = drf_exception_handler(exc, context)

    if response is None:
        view_name = context.get("view").__class__.__name__ if context.get("view") else "unknown"
        logger.exception("Unhandled API exception in %s", view_name)
        return error_response(
            code="internal_server_error",
            message=GENERIC_SERVER_ERROR_MESSAGE,
            errors=None,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    status_code = response.status_code
    if isinstance(exc, StockError):
        errors = exc.errors
    else:
        errors = _normalize_errors(response.data)
    message = _build_message(exc, response.data)
    code = _build_code(exc)

    response.data = build_error_envelope(
        code=code,
        message=message,
        errors=errors,
        status_code=status_code,
    )
    return response


def _build_code(exc: Exception) -> str:
    for exception_type, stable_code in EXCEPTION_CODE_MAP.items():
        if isinstance(exc, exception_type):
            return stable_code

    if isinstance(exc, APIException):
        return str(getattr(exc, "default_code", "api_error"))

    return "internal_server_error"


def _build_message(exc: Exception, data: Any) -> str:
    if isinstance(exc, ValidationError):
        return "Validation failed."

    detail = None
    if isinstance(data, Mapping):
        detail = data.get("detail")
    elif isinstance(data, str):
        detail = data

    if detail:
        return str(detail)

    if isinstance(exc, Throttled):
        return "Request was throttled."

    if isinstance(exc, APIException):
        return str(getattr(exc, "detail", "Request failed."))

    return GENERIC_SERVER_ERROR_MESSAGE


def _normalize_errors(data: Any) -> Any:
    if isinstance(data, Mapping):
        if set(data.keys()) == {"detail"}:
            return None
        return data

    if isinstance(data, Sequence) and not isinstance(data, str):
        return data

    return None
