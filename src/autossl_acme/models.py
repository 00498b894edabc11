"""
Data models for the AutoSSL ACME system.

This module defines the data structures passed between the grouping,
bucketing, DCV, rate-limit and issuance layers.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

from .enums import RateLimitKind

T = TypeVar("T")


@dataclass(frozen=True)
class ACMEProblem:
    """An RFC 7807 problem document returned by the ACME server."""

    type: str  # e.g. 'urn:ietf:params:acme:error:rateLimited'
    detail: str = ""
    status: Optional[int] = None

    def __str__(self) -> str:
        if self.detail:
            return f"{self.type} ({self.detail})"
        return self.type


@dataclass
class VhostMaps:
    """Associations between domains, vhosts and registered domains."""

    domain_to_vhost: dict[str, str]
    vhost_to_domains: dict[str, list[str]]
    registered_domain_to_vhosts: dict[str, set[str]] = field(default_factory=dict)
    vhost_to_registered_domains: dict[str, set[str]] = field(default_factory=dict)


@dataclass
class DCVRecord:
    """Persisted DCV information for one domain."""

    domain: str
    success_expiry: Optional[str] = None  # RFC 3339
    http_error: Optional[str] = None
    dns_error: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.success_expiry is None and self.http_error is None and self.dns_error is None


@dataclass
class GuardedResult(Generic[T]):
    """Outcome of a call made under the rate-limit guard."""

    value: Optional[T] = None
    rate_limit: Optional[RateLimitKind] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.rate_limit is None


@dataclass
class IssuedCertificate:
    """A certificate obtained for one bucket."""

    domains: list[str]
    domain_set_names: list[str]
    certificate_pem: str
    key_pem: str
    cab_pem: str


@dataclass
class RenewalResult:
    """Summary of one renew_ssl call."""

    username: str
    issued: list[IssuedCertificate] = field(default_factory=list)
    failed_buckets: list[dict[str, Any]] = field(default_factory=list)
    skipped_buckets: int = 0
