"""
Per-user DCV bookkeeping.

DCVTracker records, for one user's renewal, which DCV method each domain
asked for and what happened to it. HttpDCVReporter and DnsDCVReporter
route outcomes to the right tracker and cache entries for a given
validation method.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

from autossl_acme.domain_names import normalize_domain
from autossl_acme.enums import DCVMethod
from autossl_acme.exceptions import IntegrityError
from autossl_acme.saved_state import SavedState


GENERAL = "general"


@dataclass
class DomainDCVStatus:
    """What is known about one domain's DCV in the current run."""

    requested_method: DCVMethod
    success_method: Optional[str] = None  # 'http', 'dns' or 'general'
    http_warnings: list[str] = field(default_factory=list)
    dns_failures: list[str] = field(default_factory=list)
    general_failures: list[str] = field(default_factory=list)

    @property
    def failures(self) -> list[str]:
        return self.http_warnings + self.dns_failures + self.general_failures


class DCVTracker:
    """
    DCV results for one user.

    HTTP failures are recorded as warnings since DNS DCV may still
    follow; DNS and general failures are final. Domains are kept and
    looked up in normalized form (lowercase, IDNA).

    Args:
        username: The system user whose domains are validated
        domain_methods: Each domain mapped to its requested DCV method
    """

    def __init__(
        self,
        username: str,
        domain_methods: dict[str, Union[DCVMethod, str]],
    ) -> None:
        self._username = username
        self._domains: dict[str, DomainDCVStatus] = {}
        for domain, method in domain_methods.items():
            self._domains[normalize_domain(domain)] = DomainDCVStatus(requested_method=_coerce_method(domain, method))
        self._failure_order: dict[str, list[str]] = {}

    def get_username(self) -> str:
        return self._username

    def get_sorted_domains(self) -> list[str]:
        return sorted(self._domains)

    def get_dcv_method_or_die(self, domain: str) -> DCVMethod:
        return self._status(domain).requested_method

    def add_http_success(self, domain: str) -> None:
        self._status(domain).success_method = DCVMethod.HTTP.value

    def add_dns_success(self, domain: str) -> None:
        self._status(domain).success_method = DCVMethod.DNS.value

    def add_general_success(self, domain: str) -> None:
        self._status(domain).success_method = GENERAL

    def add_http_warning(self, domain: str, reason: str) -> None:
        self._status(domain).http_warnings.append(reason)
        self._failure_order.setdefault(normalize_domain(domain), []).append(reason)

    def add_dns_failure(self, domain: str, reason: str) -> None:
        self._status(domain).dns_failures.append(reason)
        self._failure_order.setdefault(normalize_domain(domain), []).append(reason)

    def add_general_failure(self, domain: str, reason: str) -> None:
        self._status(domain).general_failures.append(reason)
        self._failure_order.setdefault(normalize_domain(domain), []).append(reason)

    def get_domain_success_method(self, domain: str) -> Optional[str]:
        return self._status(domain).success_method

    def get_domain_failures(self, domain: str) -> list[str]:
        """Failure reasons for the domain, oldest first."""
        self._status(domain)
        return list(self._failure_order.get(normalize_domain(domain), []))

    def get_status(self, domain: str) -> DomainDCVStatus:
        return self._status(domain)

    def validated_domains(self) -> list[str]:
        return [d for d in self.get_sorted_domains() if self._domains[d].success_method]

    def failed_domains(self) -> list[str]:
        """Domains with no success and at least one final failure."""
        return [
            d for d in self.get_sorted_domains()
            if not self._domains[d].success_method
            and (self._domains[d].dns_failures or self._domains[d].general_failures)
        ]

    def _status(self, domain: str) -> DomainDCVStatus:
        try:
            return self._domains[normalize_domain(domain)]
        except KeyError:
            raise IntegrityError(
                code="unknown_domain",
                message=f"No DCV method recorded for “{domain}”",
                details={"domain": domain},
            )


def _coerce_method(domain: str, method: Union[DCVMethod, str]) -> DCVMethod:
    if isinstance(method, DCVMethod):
        return method
    try:
        return DCVMethod(method)
    except ValueError:
        raise IntegrityError(
            code="bad_dcv_method",
            message=f"Bad DCV method ({domain}): “{method}”",
            details={"domain": domain, "method": method},
        )


class HttpDCVReporter:
    """Routes HTTP DCV outcomes to the tracker and the DCV cache."""

    method = DCVMethod.HTTP

    def __init__(self, tracker: DCVTracker) -> None:
        self._tracker = tracker

    def report_success(self, domain: str) -> None:
        self._tracker.add_http_success(domain)

    def report_failure(self, domain: str, reason: str) -> None:
        self._tracker.add_http_warning(domain, reason)

    def save_failure(self, state: SavedState, domain: str, reason: str) -> None:
        state.set_http_error(domain, reason)


class DnsDCVReporter:
    """Routes DNS DCV outcomes to the tracker and the DCV cache."""

    method = DCVMethod.DNS

    def __init__(self, tracker: DCVTracker) -> None:
        self._tracker = tracker

    def report_success(self, domain: str) -> None:
        self._tracker.add_dns_success(domain)

    def report_failure(self, domain: str, reason: str) -> None:
        self._tracker.add_dns_failure(domain, reason)

    def save_failure(self, state: SavedState, domain: str, reason: str) -> None:
        state.set_dns_error(domain, reason)


DCVReporter = Union[HttpDCVReporter, DnsDCVReporter]

_REPORTERS = {
    DCVMethod.HTTP: HttpDCVReporter,
    DCVMethod.DNS: DnsDCVReporter,
}


def get_reporter(method: DCVMethod, tracker: DCVTracker) -> DCVReporter:
    return _REPORTERS[method](tracker)
