"""
Rate-limit handling around ACME order creation.

The CA reports every rate limit with the same problem type. Only the
account-wide limit on new orders is a hard stop for the whole check
cycle; it can be told apart from the others only by its detail text.
"""

from typing import Callable, Iterable, Optional, TypeVar

from autossl_acme.audit_logger import AuditLogger
from autossl_acme.constants import ORDERS_RATE_LIMIT_DETAIL, ORDERS_RATE_LIMIT_ERROR_TYPE
from autossl_acme.enums import LogLevel, RateLimitKind
from autossl_acme.exceptions import ACMEProtocolError, DeferFurtherWork, RateLimitError
from autossl_acme.interfaces import ACMEClient, ACMEOrder
from autossl_acme.models import ACMEProblem, GuardedResult

T = TypeVar("T")


def error_is_rate_limit(problem: Optional[ACMEProblem]) -> bool:
    return problem is not None and problem.type == ORDERS_RATE_LIMIT_ERROR_TYPE


def error_is_orders_rate_limit(problem: Optional[ACMEProblem]) -> bool:
    """True if the problem is the account's limit on new certificate orders."""
    if not error_is_rate_limit(problem):
        return False
    return ORDERS_RATE_LIMIT_DETAIL in (problem.detail or "")


def classify_rate_limit(problem: Optional[ACMEProblem]) -> RateLimitKind:
    if error_is_orders_rate_limit(problem):
        return RateLimitKind.ORDER_QUOTA_EXCEEDED
    return RateLimitKind.OTHER


def create_order_for_domains(acme: ACMEClient, domains: Iterable[str]) -> ACMEOrder:
    """
    Create an ACME order for ``domains``.

    Raises:
        RateLimitError: If the server answers with a rateLimited problem
        ACMEError: Any other ACME failure, unchanged
    """
    identifiers = [{"type": "dns", "value": domain} for domain in domains]
    try:
        return acme.create_order(identifiers=identifiers)
    except ACMEProtocolError as e:
        if error_is_rate_limit(e.problem):
            raise RateLimitError(e.problem) from e
        raise


class RateLimitGuard:
    """
    Runs ACME calls, tolerating every rate limit except the order quota.

    Args:
        account_id: Callable returning the ACME account key id, for messages
        logger: Optional audit logger
    """

    def __init__(
        self,
        account_id: Callable[[], Optional[str]],
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._account_id = account_id
        self._logger = logger

    def run_tolerating_rate_limits(self, thunk: Callable[[], T]) -> GuardedResult[T]:
        """
        Call ``thunk`` and classify any rate limit it hits.

        Returns:
            GuardedResult with the value, or with ``rate_limit`` set to
            RateLimitKind.OTHER when a tolerable limit was hit

        Raises:
            DeferFurtherWork: If the account's order quota is exhausted
        """
        try:
            return GuardedResult(value=thunk())
        except RateLimitError as e:
            kind = classify_rate_limit(e.problem)
            key_id = self._account_id()

            if kind is RateLimitKind.ORDER_QUOTA_EXCEEDED:
                raise DeferFurtherWork(
                    account_id=key_id,
                    reason=(
                        "AutoSSL failed to create a new certificate order because the "
                        f"server’s Let’s Encrypt account ({key_id}) has reached its rate "
                        "limit on certificate orders. AutoSSL will defer further action "
                        "until its next run."
                    ),
                ) from e

            detail = str(e.problem) if e.problem else "unknown"
            if self._logger:
                self._logger.log(
                    LogLevel.WARN,
                    "rate_limit",
                    "AutoSSL failed to create a new certificate order because the server’s "
                    f"Let’s Encrypt account ({key_id}) has reached a rate limit. ({detail})",
                    {"account_id": key_id, "problem_type": e.problem.type},
                )
            return GuardedResult(rate_limit=kind, detail=detail)
