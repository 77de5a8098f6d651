# backend/homeserve/errors.py
"""
Domain error taxonomy.

Services raise these; main.py maps them onto HTTP responses.

    ValidationError    → 422  (fix your input)
    NotFoundError      → 404
    ConflictError      → 409  (try another slot / state changed)
    AuthorizationError → 403
    DependencyError    → 502  (payment gateway etc.)
"""


class BookingError(Exception):
    """Base class for all booking-engine errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    status_code = 422


class NotFoundError(BookingError):
    status_code = 404


class ConflictError(BookingError):
    status_code = 409


class CapacityExceededError(ConflictError):
    def __init__(self, message: str = "This time slot is no longer available, please choose another"):
        super().__init__(message)


class InvalidTransitionError(ConflictError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot change booking status from {current} to {target}")
        self.current = current
        self.target = target


class ConcurrentUpdateError(ConflictError):
    def __init__(self, message: str = "This booking was changed by another request, please reload and retry"):
        super().__init__(message)


class AuthorizationError(BookingError):
    status_code = 403


class DependencyError(BookingError):
    status_code = 502
