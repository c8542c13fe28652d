"""
Commissary exception taxonomy.

Services raise these; routers map them onto HTTP status codes and batch jobs
fold them into their summaries.
"""


class CommissaryError(Exception):
    """Base exception for the commissary service"""


class ValidationError(CommissaryError):
    """Raised when an input record is malformed or missing required fields"""


class DuplicateKeyError(CommissaryError):
    """Raised when an insert targets an item code that already exists"""


class NotFoundError(CommissaryError):
    """Raised when a lookup by id or code finds nothing"""


class InsufficientStockError(CommissaryError):
    """Raised when a location does not hold enough stock for a decrement"""

    def __init__(self, code: str, available, required) -> None:
        super().__init__(f'Insufficient stock for {code}. Available: {available}, Required: {required}')
        self.code = code
        self.available = available
        self.required = required


class InvalidTransitionError(CommissaryError):
    """Raised when a transfer order is mutated from a terminal state"""


class UpstreamError(CommissaryError):
    """Raised when the external catalog provider cannot be read"""


class UpstreamAuthError(UpstreamError):
    """Raised when the external catalog provider rejects the access token"""
