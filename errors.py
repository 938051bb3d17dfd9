"""Error kinds raised by the broken cars API.

Every failure that leaves a handler is one of these; ``main`` renders them into
the ``{"success": false, "error": ...}`` envelope using ``status_code``.
"""

from typing import Any, Optional


class BrokenCarsError(Exception):
    """Base exception for all broken cars API errors."""

    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class PermissionDenied(BrokenCarsError):
    status_code = 403

    def __init__(self, required: int, roles: int):
        self.required = required
        self.roles = roles
        super().__init__(f"Not enough permissions (requires bit {required})")


class MissingRequiredField(BrokenCarsError):
    status_code = 422

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"{field} is required")


class InvalidFieldValue(BrokenCarsError):
    status_code = 422

    def __init__(self, field: str, reason: str):
        self.field = field
        super().__init__(f"{field} {reason}")


class InvalidIdentifier(BrokenCarsError):
    status_code = 422

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"id must be a positive integer, got {value!r}")


class InvalidSortColumn(BrokenCarsError):
    status_code = 422

    def __init__(self, column: str):
        self.column = column
        super().__init__(f"Cannot sort by unknown column {column!r}")


class InvalidSortDirection(BrokenCarsError):
    status_code = 422

    def __init__(self, direction: str):
        self.direction = direction
        super().__init__(f"Sort direction must be asc or desc, got {direction!r}")


class InvalidPagination(BrokenCarsError):
    status_code = 422

    def __init__(self, name: str, value: Any):
        self.name = name
        self.value = value
        super().__init__(f"{name} must be a non-negative 64-bit integer, got {value!r}")


class EmptyUpdate(BrokenCarsError):
    status_code = 422

    def __init__(self):
        super().__init__("No fields to update")


class RecordNotFound(BrokenCarsError):
    status_code = 404

    def __init__(self, record_id: int):
        self.record_id = record_id
        super().__init__(f"Broken car {record_id} not found")


class DatabaseError(BrokenCarsError):
    """Wraps a failure of the data store, keeping the driver's error code."""

    status_code = 500

    def __init__(self, code: str, detail: Optional[str] = None):
        self.code = code
        self.detail = detail
        super().__init__(f"DB error. Code: {code}")

    @classmethod
    def from_exception(cls, exc: Exception) -> "DatabaseError":
        orig = getattr(exc, "orig", None)
        code = (
            getattr(orig, "pgcode", None)
            or getattr(exc, "code", None)
            or type(orig if orig is not None else exc).__name__
        )
        return cls(str(code), str(exc))
