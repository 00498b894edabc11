"""
Exception classes for the AutoSSL ACME system.

All exceptions inherit from AutoSSLError and provide structured
error information with codes, messages, and optional details.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from autossl_acme.models import ACMEProblem


class AutoSSLError(Exception):
    """Base exception for all AutoSSL errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(AutoSSLError):
    """Raised when input fails validation (malformed domain, bad RFC 3339 date)."""

    pass


class IntegrityError(AutoSSLError):
    """Raised on invariant violations that indicate a programming defect."""

    pass


class ACMEError(AutoSSLError):
    """Base class for failures reported by the ACME client."""

    pass


class ACMEProtocolError(ACMEError):
    """Raised when the ACME server answers with a problem document."""

    def __init__(self, problem: "ACMEProblem", details: Optional[dict] = None) -> None:
        self.problem = problem
        super().__init__(
            code="acme_protocol_error",
            message=str(problem),
            details={"type": problem.type, "detail": problem.detail, **(details or {})},
        )


class ACMETransportError(ACMEError):
    """Raised when the ACME server could not be reached or answered garbage."""

    pass


class RateLimitError(ACMEError):
    """Raised when order creation hits an ACME rate limit.

    Carries the raw problem so callers can tell the account-wide order
    quota apart from other limits.
    """

    def __init__(self, problem: "ACMEProblem") -> None:
        self.problem = problem
        super().__init__(
            code="rate_limited",
            message=str(problem),
            details={"type": problem.type, "detail": problem.detail},
        )


class DeferFurtherWork(AutoSSLError):
    """Raised when the whole check cycle must stop until the next scheduled run."""

    def __init__(self, account_id: Optional[str], reason: str) -> None:
        self.account_id = account_id
        super().__init__(
            code="defer_further_work",
            message=reason,
            details={"account_id": account_id},
        )


class PersistenceError(AutoSSLError):
    """Raised when persistence operations fail (SQLite, cache files)."""

    pass


class DCVStateConflictError(PersistenceError):
    """Raised when a DCV success and a DCV error would coexist for one domain."""

    pass


class OrderFinalizationError(ACMEError):
    """Raised when an order leaves the pending states without becoming valid."""

    pass
