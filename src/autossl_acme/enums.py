"""
Enumeration types for the AutoSSL ACME system.

These enums provide type-safe constants for DCV methods, ACME statuses,
rate-limit classification and logging throughout the system.
"""

from enum import Enum


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    SUCCESS = "success"
    WARN = "warn"
    ERROR = "error"


class DCVMethod(Enum):
    """Domain control validation method requested for a domain."""

    HTTP = "http"
    DNS = "dns"


class ChallengeType(Enum):
    """ACME challenge types used for DCV."""

    HTTP_01 = "http-01"
    DNS_01 = "dns-01"

    @classmethod
    def for_method(cls, method: DCVMethod) -> "ChallengeType":
        return cls.HTTP_01 if method is DCVMethod.HTTP else cls.DNS_01


class AuthzStatus(Enum):
    """ACME authorization status (RFC 8555 section 7.1.6)."""

    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


class OrderStatus(Enum):
    """ACME order status (RFC 8555 section 7.1.6)."""

    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class RateLimitKind(Enum):
    """Classification of an ACME rate-limit response."""

    ORDER_QUOTA_EXCEEDED = "order_quota_exceeded"
    OTHER = "other"
