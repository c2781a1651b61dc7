"""Exceptions raised by the marketplace API."""


class MarketplaceError(Exception):
    """Base exception for all marketplace errors."""

    pass


class ValidationError(MarketplaceError):
    """Raised when input is missing, malformed or violates a constraint."""

    pass


class AuthenticationError(MarketplaceError):
    """Raised when the caller could not be identified."""

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(message)


class AuthorizationError(MarketplaceError):
    """Raised when the caller is not allowed to touch a resource."""

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class NotFoundError(MarketplaceError):
    """Raised when a document doesn't exist."""

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"{resource} not found")


class UnexpectedError(MarketplaceError):
    """Raised when the store fails or a request breaks in an unforeseen way."""

    pass


ERROR_STATUS_CODES: dict[type, int] = {
    ValidationError: 400,
    AuthenticationError: 401,
    AuthorizationError: 403,
    NotFoundError: 404,
    UnexpectedError: 500,
}
