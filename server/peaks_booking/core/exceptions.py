"""Custom exceptions following RFC 9457 Problem Details for HTTP APIs."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging
import uuid

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = extensions or {}

        self.problem_details = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
        }

        if self.detail:
            self.problem_details["detail"] = self.detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )


class ValidationError(ProblemDetailsException):
    """Malformed or out-of-range input, rejected before any storage access."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        errors: Optional[Dict[str, Any]] = None,
        violations: Optional[list[dict[str, str]]] = None,
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"code": "VALIDATION_FAILED", "retryable": False}
        if errors:
            extensions["errors"] = errors
        if violations:
            extensions["violations"] = violations

        super().__init__(
            status_code=400,
            title="Validation Error",
            detail=detail,
            type_uri="https://peaksandpixels.example/problems/validation-error",
            instance=instance,
            extensions=extensions,
        )


class AuthenticationError(ProblemDetailsException):
    """Exception for authentication errors."""

    def __init__(
        self,
        detail: str = "Authentication credentials are required",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=401,
            title="Authentication Required",
            detail=detail,
            type_uri="https://peaksandpixels.example/problems/authentication-required",
            instance=instance,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(ProblemDetailsException):
    """Exception for authorization errors."""

    def __init__(
        self,
        detail: str = "Insufficient permissions to access this resource",
        required_permissions: Optional[list] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if required_permissions:
            extensions["required_permissions"] = required_permissions

        super().__init__(
            status_code=403,
            title="Access Forbidden",
            detail=detail,
            type_uri="https://peaksandpixels.example/problems/access-forbidden",
            instance=instance,
            extensions=extensions,
        )


class NotFoundError(ProblemDetailsException):
    """Referenced tour, instance, or booking does not exist."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions = {
            "code": "NOT_FOUND",
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri="https://peaksandpixels.example/problems/resource-not-found",
            instance=instance,
            extensions=extensions,
        )


class ConflictError(ProblemDetailsException):
    """Exception for resource conflict errors."""

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
        title: str = "Resource Conflict",
        type_uri: str = "https://peaksandpixels.example/problems/resource-conflict",
    ):
        extensions = {}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource

        super().__init__(
            status_code=409,
            title=title,
            detail=detail,
            type_uri=type_uri,
            instance=instance,
            extensions=extensions,
        )


class InternalServerError(ProblemDetailsException):
    """Exception for internal server errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred while processing the request",
        error_id: Optional[str] = None,
        instance: Optional[str] = None,
        title: str = "Internal Server Error",
        type_uri: str = "https://peaksandpixels.example/problems/internal-server-error",
    ):
        if not error_id:
            error_id = str(uuid.uuid4())

        extensions = {
            "error_id": error_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        super().__init__(
            status_code=500,
            title=title,
            detail=detail,
            type_uri=type_uri,
            instance=instance,
            extensions=extensions,
        )


# Business logic exceptions

class CapacityError(ConflictError):
    """Not enough room left on a tour instance. Permanent for this request."""

    def __init__(self, instance_id: str, requested: int, available: int):
        if available <= 0:
            detail = "This tour is sold out"
            code = "SOLD_OUT"
        else:
            detail = f"Only {available} spots available"
            code = "INSUFFICIENT_CAPACITY"

        super().__init__(
            detail=detail,
            title="Insufficient Capacity",
            type_uri="https://peaksandpixels.example/problems/insufficient-capacity",
            conflicting_resource={
                "tour_instance_id": instance_id,
                "requested": requested,
                "available": max(available, 0),
            },
        )
        self.instance_id = instance_id
        self.requested = requested
        self.available = max(available, 0)
        self.problem_details.update({
            "code": code,
            "retryable": False,
            "available": self.available,
        })


class ContentionError(ConflictError):
    """Concurrent writers kept winning the counter; safe to retry from the top."""

    def __init__(self, instance_id: str, attempts: int):
        super().__init__(
            detail="Could not reserve spots. Another booking may have just been made. Please try again.",
            title="Capacity Contention",
            type_uri="https://peaksandpixels.example/problems/capacity-contention",
            conflicting_resource={"tour_instance_id": instance_id},
        )
        self.instance_id = instance_id
        self.attempts = attempts
        self.problem_details.update({
            "code": "CAPACITY_CONTENTION",
            "retryable": True,
            "attempts": attempts,
        })


class CapacityResizeError(ConflictError):
    """Capacity edit would leave fewer spots than are already booked."""

    def __init__(self, instance_id: str, requested_max: int, capacity_booked: int):
        super().__init__(
            detail=f"Cannot reduce capacity to {requested_max}; {capacity_booked} spots are already booked",
            title="Capacity Below Bookings",
            type_uri="https://peaksandpixels.example/problems/capacity-below-bookings",
            conflicting_resource={
                "tour_instance_id": instance_id,
                "capacity_booked": capacity_booked,
            },
        )
        self.problem_details.update({
            "code": "CAPACITY_BELOW_BOOKED",
            "retryable": False,
        })


class TourInstanceUnavailableError(ProblemDetailsException):
    """Tour instance exists but is not open for booking."""

    def __init__(self, instance_id: str, status: str):
        super().__init__(
            status_code=400,
            title="Tour Instance Unavailable",
            detail="This tour instance is not available for booking",
            type_uri="https://peaksandpixels.example/problems/tour-instance-unavailable",
            extensions={
                "code": "INSTANCE_UNAVAILABLE",
                "retryable": False,
                "tour_instance_id": instance_id,
                "instance_status": status,
            },
        )
        self.instance_id = instance_id
        self.status = status


class InvalidBookingTransitionError(ConflictError):
    """Requested booking or payment status change is not allowed from the current state."""

    def __init__(self, booking_id: str, current: str, target: str, field: str = "booking_status"):
        super().__init__(
            detail=f"Cannot change {field} from '{current}' to '{target}'",
            title="Invalid Status Transition",
            type_uri="https://peaksandpixels.example/problems/invalid-transition",
            conflicting_resource={"booking_id": booking_id, field: current},
        )
        self.current = current
        self.target = target
        self.problem_details.update({
            "code": "INVALID_TRANSITION",
            "retryable": False,
        })


class BookingExpiredError(ConflictError):
    """Unpaid booking passed its payment window."""

    def __init__(self, booking_id: str):
        super().__init__(
            detail=f"Booking {booking_id} has expired and can no longer be paid",
            title="Booking Expired",
            type_uri="https://peaksandpixels.example/problems/booking-expired",
        )
        self.problem_details.update({
            "code": "BOOKING_EXPIRED",
            "retryable": False,
            "booking_id": booking_id,
        })


class StorageError(InternalServerError):
    """
    The data store was unreachable or rejected an operation.

    The caller must not assume the business operation succeeded or failed.
    The driver error stays in ``cause`` and the logs; clients only see a
    generic message.
    """

    def __init__(self, operation: str, cause: Optional[BaseException] = None, detail: Optional[str] = None):
        super().__init__(
            detail=detail or "Something went wrong on our side. Please try again.",
            title="Storage Error",
            type_uri="https://peaksandpixels.example/problems/storage-error",
        )
        self.operation = operation
        self.cause = cause
        self.problem_details.update({
            "code": "STORAGE_ERROR",
            "retryable": True,
        })


class ReferenceGenerationError(InternalServerError):
    """Every candidate booking reference collided; the random source is suspect."""

    def __init__(self, attempts: int):
        super().__init__(
            detail="Could not allocate a booking reference. Please try again.",
            title="Reference Generation Failed",
            type_uri="https://peaksandpixels.example/problems/reference-generation-failed",
        )
        self.attempts = attempts
        self.problem_details.update({"code": "REFERENCE_EXHAUSTED"})


class ReconciliationAlert(Exception):
    """
    Operational signal that a compensating capacity release did not happen.

    Never returned to clients. The lifecycle manager logs and counts it so
    the stuck grant can be corrected out of band.
    """

    def __init__(
        self,
        kind: str,
        instance_id: str,
        granted_count: int,
        booking_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            f"{kind}: {granted_count} seat(s) on tour instance {instance_id} need reconciliation"
        )
        self.kind = kind
        self.instance_id = instance_id
        self.granted_count = granted_count
        self.booking_id = booking_id
        self.cause = cause

    def as_log_context(self) -> Dict[str, Any]:
        return {
            "alert": "capacity_reconciliation",
            "kind": self.kind,
            "tour_instance_id": self.instance_id,
            "granted_count": self.granted_count,
            "booking_id": self.booking_id,
            "cause": repr(self.cause) if self.cause else None,
        }


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    content = dict(exc.problem_details)
    content.setdefault("instance", request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=exc.headers,
        media_type="application/problem+json",
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Convert FastAPI request validation failures into a 400 Problem Details body.

    Args:
        request: FastAPI request object
        exc: Validation exception raised while parsing the request

    Returns:
        JSONResponse: Problem Details formatted response with violations
    """
    violations = [
        {
            "path": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    problem = ValidationError(violations=violations, instance=request.url.path)
    return await problem_details_handler(request, problem)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    error_id = str(uuid.uuid4())

    logger.error(
        "Unhandled exception",
        extra={"error_id": error_id, "path": request.url.path, "error": repr(exc)},
        exc_info=exc,
    )

    problem_details = {
        "type": "https://peaksandpixels.example/problems/internal-server-error",
        "title": "Internal Server Error",
        "status": 500,
        "detail": "An unexpected error occurred while processing the request",
        "instance": request.url.path,
        "error_id": error_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    return JSONResponse(
        status_code=500,
        content=problem_details,
        media_type="application/problem+json",
    )
