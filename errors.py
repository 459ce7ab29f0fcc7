"""
Domain errors raised by the rental services.

The HTTP layer maps each class to a status code; services never raise
HTTPException themselves.
"""


class RentalError(Exception):
    """Base class for errors surfaced to API callers"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RentalError):
    """Missing required field, empty item list or out-of-range value"""
    status_code = 400


class NotFoundError(RentalError):
    """Referenced document does not exist"""
    status_code = 404


class ConflictError(RentalError):
    """Unique identifier already taken"""
    status_code = 409


class InvalidTransitionError(RentalError):
    """Status change not allowed from the current state"""
    status_code = 409


class AuthError(RentalError):
    """Missing, invalid or expired credentials"""
    status_code = 401


class PermissionDeniedError(AuthError):
    """Authenticated, but the role lacks the capability"""
    status_code = 403
