"""
Error taxonomy shared by the services and rendered by main.py as
{"message": ..., "error": ...} JSON bodies.
"""


class MarketplaceError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(MarketplaceError):
    """Malformed or missing input."""
    status_code = 422


class AuthenticationError(MarketplaceError):
    status_code = 401


class AuthorizationError(MarketplaceError):
    """Role or ownership mismatch, and review eligibility failures."""
    status_code = 403


class NotFoundError(MarketplaceError):
    status_code = 404


class ConflictError(MarketplaceError):
    """Duplicate submission, uniqueness violation or illegal state transition."""
    status_code = 409
