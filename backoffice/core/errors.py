class ServiceError(Exception):
    """Base class for business errors raised by the service layer."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ServiceError):
    """Raised when a referenced order, item or user does not exist"""
    status_code = 404


class ConflictError(ServiceError):
    """Raised when a business rule is violated (stock, state, references)"""
    status_code = 409


class ForbiddenError(ServiceError):
    """Raised when the acting user's role may not perform the action"""
    status_code = 403


class ValidationFailure(ServiceError):
    status_code = 422
