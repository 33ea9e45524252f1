"""Typed errors following RFC 9457 Problem Details for HTTP APIs.

Every failure the booking core can report has its own class with a stable
``code`` and a ``retryable`` flag, so callers branch on the kind instead of
parsing messages.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    code: str = "PROBLEM"
    retryable: bool = False

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
            "code": self.code,
            "retryable": self.retryable,
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

    def __str__(self) -> str:
        return f"{self.code}: {self.detail or self.title}"


class ValidationError(ProblemDetailsException):
    """Malformed input. Not retryable."""

    code = "VALIDATION_ERROR"

    def __init__(
        self,
        detail: str = "The request data failed validation",
        errors: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if errors:
            extensions["errors"] = errors

        super().__init__(
            status_code=400,
            title="Validation Error",
            detail=detail,
            type_uri="https://fleetdesk.dev/problems/validation-error",
            instance=instance,
            extensions=extensions,
        )


class AuthenticationError(ProblemDetailsException):
    """Exception for missing or invalid bearer credentials."""

    code = "AUTHENTICATION_REQUIRED"

    def __init__(
        self,
        detail: str = "Authentication credentials are required",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=401,
            title="Authentication Required",
            detail=detail,
            type_uri="https://fleetdesk.dev/problems/authentication-required",
            instance=instance,
            headers={"WWW-Authenticate": "Bearer"},
        )


class NotAuthorizedError(ProblemDetailsException):
    """The acting tenant may not perform this operation on the resource."""

    code = "NOT_AUTHORIZED"

    def __init__(
        self,
        detail: str = "The acting tenant is not allowed to perform this operation",
        acting_tenant_id: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if acting_tenant_id:
            extensions["acting_tenant_id"] = acting_tenant_id

        super().__init__(
            status_code=403,
            title="Not Authorized",
            detail=detail,
            type_uri="https://fleetdesk.dev/problems/not-authorized",
            instance=instance,
            extensions=extensions,
        )


class NotFoundError(ProblemDetailsException):
    """Exception for resource not found errors."""

    code = "NOT_FOUND"

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
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri="https://fleetdesk.dev/problems/resource-not-found",
            instance=instance,
            extensions=extensions,
        )


class ResourceConflictError(ProblemDetailsException):
    """
    A car or driver is already committed for an overlapping interval, or a
    concurrent writer changed the record first.

    Callers should re-fetch and retry only with user confirmation.
    """

    code = "RESOURCE_CONFLICT"
    retryable = True

    def __init__(
        self,
        detail: str = "The resource is not available for the requested interval",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource

        super().__init__(
            status_code=409,
            title="Resource Conflict",
            detail=detail,
            type_uri="https://fleetdesk.dev/problems/resource-conflict",
            instance=instance,
            extensions=extensions,
        )


class BlacklistedCustomerError(ProblemDetailsException):
    """The customer appears in the blacklist registry. Never bypassed."""

    code = "BLACKLISTED_CUSTOMER"

    def __init__(self, customer_id: str, reason: str, instance: Optional[str] = None):
        super().__init__(
            status_code=403,
            title="Blacklisted Customer",
            detail=f"Customer {customer_id} is blacklisted: {reason}",
            type_uri="https://fleetdesk.dev/problems/blacklisted-customer",
            instance=instance,
            extensions={"customer_id": customer_id, "reason": reason},
        )


class IllegalTransitionError(ProblemDetailsException):
    """The requested status is not reachable from the current one."""

    code = "ILLEGAL_TRANSITION"

    def __init__(self, booking_id: str, current_status: str, requested_status: str):
        super().__init__(
            status_code=409,
            title="Illegal Transition",
            detail=f"Booking {booking_id} cannot move from {current_status} to {requested_status}",
            type_uri="https://fleetdesk.dev/problems/illegal-transition",
            extensions={
                "booking_id": booking_id,
                "current_status": current_status,
                "requested_status": requested_status,
            },
        )


class ChecklistRequiredError(ProblemDetailsException):
    """The pickup or return checklist needed by a transition is missing or invalid."""

    code = "CHECKLIST_REQUIRED"

    def __init__(self, booking_id: str, checklist: str, detail: str):
        super().__init__(
            status_code=422,
            title="Checklist Required",
            detail=detail,
            type_uri="https://fleetdesk.dev/problems/checklist-required",
            extensions={"booking_id": booking_id, "checklist": checklist},
        )


class AlreadyResolvedError(ProblemDetailsException):
    """A marketplace request is no longer pending, or was already converted."""

    code = "ALREADY_RESOLVED"

    def __init__(self, request_id: str, status: str, detail: Optional[str] = None):
        status = getattr(status, "value", status)
        super().__init__(
            status_code=409,
            title="Already Resolved",
            detail=detail or f"Marketplace request {request_id} is already {status}",
            type_uri="https://fleetdesk.dev/problems/already-resolved",
            extensions={"request_id": request_id, "request_status": status},
        )


class SelfDealingNotAllowedError(ProblemDetailsException):
    """A tenant tried to source a vehicle from its own fleet through the marketplace."""

    code = "SELF_DEALING_NOT_ALLOWED"

    def __init__(self, tenant_id: str):
        super().__init__(
            status_code=422,
            title="Self Dealing Not Allowed",
            detail="A marketplace request cannot target the requester's own fleet",
            type_uri="https://fleetdesk.dev/problems/self-dealing-not-allowed",
            extensions={"tenant_id": tenant_id},
        )


class StorageError(ProblemDetailsException):
    """
    Infrastructure failure talking to the database.

    Reads are safe to retry; writes only when the operation is idempotent.
    """

    code = "STORAGE_ERROR"
    retryable = True

    def __init__(
        self,
        operation: str,
        detail: str = "The storage backend failed while processing the request",
        error_id: Optional[str] = None,
    ):
        super().__init__(
            status_code=503,
            title="Storage Error",
            detail=detail,
            type_uri="https://fleetdesk.dev/problems/storage-error",
            extensions={
                "operation": operation,
                "error_id": error_id or str(uuid.uuid4()),
            },
        )


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.problem_details,
        headers=exc.headers,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    problem_details = {
        "type": "https://fleetdesk.dev/problems/internal-server-error",
        "title": "Internal Server Error",
        "status": 500,
        "code": "INTERNAL_ERROR",
        "retryable": False,
        "detail": "An unexpected error occurred while processing the request",
        "instance": str(request.url),
        "error_id": str(uuid.uuid4()),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    return JSONResponse(
        status_code=500,
        content=problem_details,
    )
