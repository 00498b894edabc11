"""
One AutoSSL check cycle over a set of users.

The cycle brackets the per-user work with the provider's start and
finish hooks. When the account's order quota runs out the cycle stops
at once and the finish hook is skipped, which keeps the DCV cache for
the next run.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from .audit_logger import AuditLogger
from .dcv_tracker import DCVTracker
from .enums import DCVMethod, LogLevel
from .exceptions import DeferFurtherWork
from .models import RenewalResult
from .provider import LetsEncryptProvider


@dataclass
class UserRenewal:
    """Work for one user in a check cycle."""

    username: str
    domain_methods: dict[str, Union[DCVMethod, str]]
    vhost_domains: dict[str, list[str]]
    main_domain: Optional[str] = None


@dataclass
class CycleResult:
    """Outcome of run_check_cycle()."""

    renewals: list[RenewalResult] = field(default_factory=list)
    trackers: dict[str, DCVTracker] = field(default_factory=dict)
    deferred: bool = False
    deferred_reason: Optional[str] = None


def get_validated_vhost_domains(
    tracker: DCVTracker,
    vhost_domains: dict[str, list[str]],
) -> dict[str, list[str]]:
    """Reduce each vhost to its domains that passed DCV, dropping empty vhosts."""
    validated = set(tracker.validated_domains())
    result: dict[str, list[str]] = {}
    for vhost, domains in vhost_domains.items():
        passed = [d for d in domains if d in validated]
        if passed:
            result[vhost] = passed
    return result


def run_check_cycle(
    provider: LetsEncryptProvider,
    users: Iterable[UserRenewal],
    logger: Optional[AuditLogger] = None,
) -> CycleResult:
    """
    Validate and renew certificates for each user in turn.

    Args:
        provider: The provider for this cycle
        users: Users to process, in order
        logger: Optional audit logger

    Returns:
        CycleResult; ``deferred`` is set if the cycle stopped on the
        account's order quota
    """
    result = CycleResult()

    provider.on_start_check()

    try:
        for user in users:
            tracker = DCVTracker(user.username, user.domain_methods)
            result.trackers[user.username] = tracker

            provider.get_vhost_dcv_errors(tracker)

            vhost_domains = get_validated_vhost_domains(tracker, user.vhost_domains)
            if not vhost_domains:
                if logger:
                    logger.log(
                        LogLevel.INFO,
                        "check_cycle",
                        f"No domains of “{user.username}” passed DCV",
                        {"username": user.username},
                    )
                continue

            result.renewals.append(
                provider.renew_ssl(user.username, vhost_domains, main_domain=user.main_domain)
            )
    except DeferFurtherWork as e:
        result.deferred = True
        result.deferred_reason = e.message
        if logger:
            logger.log_error("check_cycle", e.message, e)
        return result

    provider.on_finish_check()
    return result
