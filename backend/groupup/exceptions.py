"""
GroupUp Backend - Custom Exception Hierarchy
============================================

What:  Application-specific exceptions, one per failure class the API reports.
How:   Each exception carries a user-facing message and a context dict.
       Global handlers in main.py map them to HTTP status codes and a single
       JSON error shape; routes and services never build error responses.

Exception Hierarchy:
    GroupUpError (base)
    ├── ValidationError                → 400 Bad Request
    ├── AuthenticationError            → 401 Unauthorized
    ├── PermissionDeniedError          → 403 Forbidden
    │   ├── GroupExpiredError
    │   └── OutOfRangeError            (carries the measured distance)
    ├── NotFoundError                  → 404 Not Found
    ├── RateLimitExceededError         → 429 Too Many Requests
    ├── DatabaseError                  → 500
    ├── FileStorageError               → 500
    └── SpatialStoreError              → 500
        └── SpatialStoreUnavailableError  (store could not be initialised)

The 500-class errors keep a generic `message` and put the underlying error's
text in `context["error"]`, which the handlers return as `details.error`.
"""

from typing import Any, Dict, Optional


class GroupUpError(Exception):
    """
    Base exception for all GroupUp application errors.

    Attributes:
        message:  User-facing error description
        context:  Extra diagnostic fields
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(GroupUpError):
    """
    Client input is missing or malformed.

    When: latitude/longitude absent, an unknown PATCH action, an empty upload,
          a group already at its extension limit.
    HTTP: 400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(GroupUpError):
    """No valid session on a route that needs a signed-in user. HTTP 401."""

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PermissionDeniedError(GroupUpError):
    """The caller is known but not allowed to do this. HTTP 403."""

    def __init__(
        self,
        message: str = "You are not allowed to perform this action",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class GroupExpiredError(PermissionDeniedError):
    """The group's lifetime is over (or it was archived)."""

    def __init__(self, group_id: str, message: str = "Group has expired"):
        super().__init__(message=message, context={"group_id": group_id})
        self.group_id = group_id


class OutOfRangeError(PermissionDeniedError):
    """
    The caller stands outside the group's join radius.

    The rounded distance is returned to the client so the UI can show how far
    they need to move.
    """

    def __init__(self, radius: int, distance: float):
        rounded = round(distance)
        super().__init__(
            message=f"You must be within {radius}m of the group location to join",
            context={"radius": radius, "distance": rounded},
        )
        self.radius = radius
        self.distance = rounded


class NotFoundError(GroupUpError):
    """
    A requested resource does not exist. HTTP 404.

    SQLAlchemy returns None for missing rows; services turn that None into
    this exception so routes stay free of status-code logic.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            message = f"The requested {resource} was not found"
            if resource_id:
                message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class RateLimitExceededError(GroupUpError):
    """Per-IP write limit reached. HTTP 429 with Retry-After."""

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class DatabaseError(GroupUpError):
    """A relational database operation failed. HTTP 500."""

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class FileStorageError(GroupUpError):
    """Writing or reading a group file on disk failed. HTTP 500."""

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class SpatialStoreError(GroupUpError):
    """A DuckDB query against the buildings table failed. HTTP 500."""

    def __init__(
        self,
        message: str = "Spatial store query failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class SpatialStoreUnavailableError(SpatialStoreError):
    """
    The spatial store could not be opened, the spatial extension could not be
    loaded, or the building data could not be read.

    The nearest-building lookup catches this one and answers "no building"
    instead of failing the request.
    """

    def __init__(
        self,
        message: str = "Spatial store is not available",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
