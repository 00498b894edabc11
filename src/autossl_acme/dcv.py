"""
Domain control validation through ACME orders.

Each DCV batch creates one ACME order for its domains. HTTP-01 and DNS-01
challenges are set up for the requested subsets, accepted, and then
polled until every authorization is resolved or the method's timeout
expires. Per-domain outcomes go to a callback; a failing domain never
aborts its siblings.

The CA does not allow switching the challenge method on an order, so a
retry with another method needs a new batch.
"""

import base64
import hashlib
import os
import sqlite3
import time
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from autossl_acme.audit_logger import AuditLogger
from autossl_acme.config import DCVConfig
from autossl_acme.constants import DISPLAY_NAME, DNS_CHALLENGE_RECORD_PREFIX, URI_DCV_RELATIVE_PATH
from autossl_acme.dcv_tracker import DCVTracker, get_reporter
from autossl_acme.domain_names import is_wildcard, strip_wildcard
from autossl_acme.enums import AuthzStatus, ChallengeType, DCVMethod, LogLevel
from autossl_acme.exceptions import AutoSSLError, IntegrityError
from autossl_acme.interfaces import (
    ACMEAuthorization,
    ACMEChallenge,
    ACMEClient,
    ACMEOrder,
    DNSPublisher,
    DocrootResolver,
)
from autossl_acme.privileges import reduced_privileges
from autossl_acme.rate_limit import create_order_for_domains
from autossl_acme.saved_state import SavedState

# (domain, failure reason or None, method to credit instead of the batch's own)
DCVCallback = Callable[..., None]

MethodResolver = Callable[[str], Union[DCVMethod, str]]


def split_domains_by_method(
    domains: Iterable[str],
    method_resolver: MethodResolver,
    logger: Optional[AuditLogger] = None,
) -> tuple[list[str], list[str]]:
    """
    Split domains into HTTP and DNS DCV lists.

    Wildcards always go to DNS because the CA refuses HTTP DCV for them.

    Args:
        domains: Domains to classify
        method_resolver: Returns the declared DCV method of a domain
        logger: Optional audit logger

    Returns:
        (http_domains, dns_domains)

    Raises:
        IntegrityError: If a declared method is neither HTTP nor DNS
    """
    http_domains: list[str] = []
    dns_domains: list[str] = []

    for domain in domains:
        declared = method_resolver(domain)
        try:
            method = declared if isinstance(declared, DCVMethod) else DCVMethod(declared)
        except ValueError:
            raise IntegrityError(
                code="bad_dcv_method",
                message=f"Bad DCV method ({domain}): “{declared}”",
                details={"domain": domain, "method": declared},
            )

        if method is DCVMethod.HTTP and is_wildcard(domain):
            if logger:
                logger.log(
                    LogLevel.INFO,
                    "dcv",
                    f"Per “{DISPLAY_NAME}” policy, switching to DNS DCV for “{domain}” …",
                    {"domain": domain},
                )
            method = DCVMethod.DNS

        if method is DCVMethod.HTTP:
            http_domains.append(domain)
        else:
            dns_domains.append(domain)

    return http_domains, dns_domains


def dns_record_name(domain: str) -> str:
    return f"{DNS_CHALLENGE_RECORD_PREFIX}.{strip_wildcard(domain)}"


def dns_record_value(key_authorization: str) -> str:
    """TXT value for a DNS-01 challenge (RFC 8555 section 8.4)."""
    digest = hashlib.sha256(key_authorization.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def http_challenge_path(docroot: Union[str, Path], token: str) -> Path:
    return Path(docroot) / URI_DCV_RELATIVE_PATH / token


class DCVBatch:
    """
    One DCV attempt over a set of domains, backed by one ACME order.

    Creating the batch creates the order, so it raises RateLimitError
    when the CA refuses new orders.

    Args:
        acme: ACME client
        domains: Every domain of the batch
        docroot_resolver: Finds the document root for HTTP DCV files
        dns_publisher: Publishes DNS-01 TXT records
        config: Timeouts and poll interval
        logger: Optional audit logger
        clock: Returns wall-clock seconds
        sleep: Sleeps between polls
        privilege_context: Factory for the scoped privilege drop used
            around HTTP DCV file writes and removals
    """

    def __init__(
        self,
        acme: ACMEClient,
        domains: list[str],
        docroot_resolver: Optional[DocrootResolver] = None,
        dns_publisher: Optional[DNSPublisher] = None,
        config: Optional[DCVConfig] = None,
        logger: Optional[AuditLogger] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        privilege_context: Callable[[str], AbstractContextManager] = reduced_privileges,
    ) -> None:
        self._acme = acme
        self._domains = list(domains)
        self._docroot_resolver = docroot_resolver
        self._dns_publisher = dns_publisher
        self._config = config or DCVConfig()
        self._logger = logger
        self._clock = clock
        self._sleep = sleep
        self._privilege_context = privilege_context
        self._domain_authz: Optional[dict[str, ACMEAuthorization]] = None

        self._order = create_order_for_domains(acme, self._domains)

    @property
    def domains(self) -> list[str]:
        return list(self._domains)

    @property
    def order(self) -> ACMEOrder:
        return self._order

    def attempt_http(self, username: str, callback: DCVCallback, domains: Iterable[str]) -> None:
        """
        Run HTTP-01 DCV for ``domains`` (all part of this batch).

        Challenge files are written into each domain's document root as
        ``username`` and removed once polling is over.
        """
        if self._docroot_resolver is None:
            raise IntegrityError(
                code="missing_collaborator",
                message="HTTP DCV needs a document root resolver",
            )

        pending: dict[str, ACMEChallenge] = {}
        written: list[Path] = []

        try:
            for domain in domains:
                challenge = self._get_domain_challenge(domain, ChallengeType.HTTP_01)
                if challenge is None:
                    callback(domain, "No “http-01” challenge given!")
                    continue

                docroot = self._docroot_resolver.get_docroot_for_domain(domain)
                if not docroot:
                    callback(domain, "No HTTP document root found!")
                    continue

                path = http_challenge_path(docroot, challenge.token)
                try:
                    with self._privilege_context(username):
                        _write_challenge_file(path, self._acme.make_key_authorization(challenge))
                except OSError as e:
                    callback(domain, f"Failed to create HTTP DCV file “{path}”: {e.strerror or e}")
                    continue
                written.append(path)

                self._acme.accept_challenge(challenge)
                pending[domain] = challenge

            self._poll_domain_authzs(pending, callback, DCVMethod.HTTP)
        finally:
            if written:
                with self._privilege_context(username):
                    for path in written:
                        self._remove_challenge_file(path)

    def attempt_dns(self, callback: DCVCallback, domains: Iterable[str]) -> None:
        """
        Run DNS-01 DCV for ``domains`` (all part of this batch).

        All TXT records are published in one call and must resolve before
        the challenges are accepted. A domain whose authorization already
        became valid through a timed-out HTTP attempt is credited to HTTP.
        """
        pending: dict[str, ACMEChallenge] = {}
        txt_records: list[tuple[str, str]] = []

        for domain in domains:
            challenge = self._get_domain_challenge(domain, ChallengeType.DNS_01)
            if challenge is None:
                # The CA may have kept validating after an HTTP timeout and
                # made the authorization valid, in which case it offers no
                # DNS challenge.
                authz = self._get_domain_authz(domain)
                if authz.status == AuthzStatus.VALID.value:
                    challenge_types = " ".join(c.type for c in authz.challenges)
                    if self._logger:
                        self._logger.log(
                            LogLevel.INFO,
                            "dcv",
                            f"“{domain}” passed DCV (challenge: {challenge_types}) "
                            "after initial HTTP failure/timeout.",
                            {"domain": domain},
                        )
                    callback(domain, None, DCVMethod.HTTP)
                else:
                    callback(domain, "No “dns-01” challenge given!")
                continue

            pending[domain] = challenge
            value = dns_record_value(self._acme.make_key_authorization(challenge))
            txt_records.append((dns_record_name(domain), value))

        if not txt_records:
            return

        if self._dns_publisher is None:
            raise IntegrityError(
                code="missing_collaborator",
                message="DNS DCV needs a DNS publisher",
            )

        self._dns_publisher.publish_txt_records(txt_records)
        self._dns_publisher.wait_until_resolvable(
            {name: ["TXT", value] for name, value in txt_records}
        )

        for challenge in pending.values():
            self._acme.accept_challenge(challenge)

        self._poll_domain_authzs(pending, callback, DCVMethod.DNS)

    def get_domain_validity_expirations(self, domains: Iterable[str]) -> dict[str, str]:
        """
        Expiry (RFC 3339) of every given domain whose authorization is valid.

        Domains still pending are omitted silently; other statuses are
        omitted with a warning.
        """
        valid_expiry: dict[str, str] = {}
        for domain in domains:
            authz = self._get_domain_authz(domain)
            if authz.status == AuthzStatus.PENDING.value:
                continue
            if authz.status == AuthzStatus.VALID.value:
                if authz.expires:
                    valid_expiry[domain] = authz.expires
            elif self._logger:
                self._logger.log(
                    LogLevel.WARN,
                    "dcv",
                    f"{domain}’s ACME authorization has an unexpected status ({authz.status})!",
                    {"domain": domain, "status": authz.status},
                )
        return valid_expiry

    def get_authz_expiry(self, domain: str) -> Optional[str]:
        return self._get_domain_authz(domain).expires

    def get_order_if_no_failures(self) -> ACMEOrder:
        """
        Return the order, which is only useful if it can be finalized.

        Raises:
            IntegrityError: If any domain's authorization is neither valid
                nor pending
        """
        for domain in self._domains:
            status = self._get_domain_authz(domain).status
            if status in (AuthzStatus.VALID.value, AuthzStatus.PENDING.value):
                continue
            raise IntegrityError(
                code="order_has_failures",
                message=f"Call to fetch order object, but domain “{domain}” has status “{status}”!",
                details={"domain": domain, "status": status},
            )
        return self._order

    def _poll_domain_authzs(
        self,
        pending: dict[str, ACMEChallenge],
        callback: DCVCallback,
        method: DCVMethod,
    ) -> None:
        timeout = self._config.timeout_for(method)
        timeout_at = self._clock() + timeout
        challenge_type = ChallengeType.for_method(method)

        while pending:
            if self._clock() < timeout_at:
                # Sleep even before the first poll so the CA can do its checks.
                self._sleep(self._config.poll_interval_seconds)

                for domain in list(pending):
                    authz = self._get_domain_authz(domain)
                    status = self._acme.poll_authorization(authz)
                    if status == AuthzStatus.PENDING.value:
                        continue

                    del pending[domain]

                    failure_reason = None
                    if status == AuthzStatus.INVALID.value:
                        challenge = self._get_domain_challenge(domain, challenge_type)
                        error = challenge.error if challenge is not None else None
                        failure_reason = str(error) if error else "unknown"
                    elif status != AuthzStatus.VALID.value:
                        failure_reason = f"Unknown authz status: {status}"

                    callback(domain, failure_reason)
            else:
                for domain in list(pending):
                    callback(domain, f"Timeout after {timeout:g} seconds!")
                pending.clear()

    def _get_domain_challenge(
        self,
        domain: str,
        challenge_type: ChallengeType,
    ) -> Optional[ACMEChallenge]:
        authz = self._get_domain_authz(domain)
        for challenge in authz.challenges:
            if challenge.type == challenge_type.value:
                return challenge
        return None

    def _get_domain_authz(self, domain: str) -> ACMEAuthorization:
        # Assumes one authorization per identifier, which the CA guarantees.
        if self._domain_authz is None:
            self._domain_authz = self._build_domain_authz_cache()
        try:
            return self._domain_authz[domain]
        except KeyError:
            raise IntegrityError(
                code="missing_authz",
                message=f"No authz given for domain “{domain}”!",
                details={"domain": domain},
            )

    def _build_domain_authz_cache(self) -> dict[str, ACMEAuthorization]:
        cache: dict[str, ACMEAuthorization] = {}
        for url in self._order.authorizations:
            authz = self._acme.get_authorization(url)
            real_domain = ("*." if authz.wildcard else "") + authz.identifier
            cache[real_domain] = authz
        return cache

    def _remove_challenge_file(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            if self._logger:
                self._logger.log(
                    LogLevel.WARN,
                    "dcv",
                    f"Failed to remove HTTP DCV file “{path}”: {e.strerror or e}",
                    {"path": str(path)},
                )


def _write_challenge_file(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="ascii") as f:
        f.write(content)
    os.chmod(path, 0o644)


class DCVOutcomeRecorder:
    """
    Callback handed to DCVBatch that reports each outcome to the tracker.

    Outcomes are credited to the batch's method unless the batch names
    another one. Failed domains are collected in order.
    """

    def __init__(self, tracker: DCVTracker, method: DCVMethod) -> None:
        self._tracker = tracker
        self._method = method
        self.failed: list[str] = []

    @property
    def method(self) -> DCVMethod:
        return self._method

    def __call__(
        self,
        domain: str,
        reason: Optional[str] = None,
        method: Optional[DCVMethod] = None,
    ) -> None:
        reporter = get_reporter(method or self._method, self._tracker)
        if reason:
            self.failed.append(domain)
            reporter.report_failure(domain, reason)
        else:
            reporter.report_success(domain)


def save_state(
    state: SavedState,
    batch: DCVBatch,
    tracker: DCVTracker,
    domains: Iterable[str],
    method: DCVMethod,
    logger: Optional[AuditLogger] = None,
) -> None:
    """
    Persist the outcome of a DCV run for each domain.

    Successes store the authorization's expiry; failures store the most
    recent failure reason under the run's method. Errors while saving are
    logged, never raised.
    """
    reporter = get_reporter(method, tracker)

    for domain in domains:
        try:
            if tracker.get_domain_success_method(domain):
                expiry = batch.get_authz_expiry(domain)
                if expiry:
                    state.set_success_expiry(domain, expiry)
            else:
                failures = tracker.get_domain_failures(domain)
                if failures:
                    reporter.save_failure(state, domain, failures[-1])
        except (AutoSSLError, sqlite3.Error) as e:
            if logger:
                logger.log(
                    LogLevel.WARN,
                    "dcv",
                    f"Failed to cache DCV result for “{domain}”: {e}",
                    {"domain": domain, "error_type": type(e).__name__},
                )


def do_http_dcv(
    batch: DCVBatch,
    tracker: DCVTracker,
    domains: list[str],
    state: Optional[SavedState] = None,
    logger: Optional[AuditLogger] = None,
) -> list[str]:
    """Run HTTP DCV, record the outcomes, and return the failed domains."""
    recorder = DCVOutcomeRecorder(tracker, DCVMethod.HTTP)
    batch.attempt_http(tracker.get_username(), recorder, domains)
    if state is not None:
        save_state(state, batch, tracker, domains, DCVMethod.HTTP, logger)
    return recorder.failed


def do_dns_dcv(
    batch: DCVBatch,
    tracker: DCVTracker,
    domains: list[str],
    state: Optional[SavedState] = None,
    logger: Optional[AuditLogger] = None,
) -> list[str]:
    """Like do_http_dcv() but for DNS DCV."""
    recorder = DCVOutcomeRecorder(tracker, DCVMethod.DNS)
    batch.attempt_dns(recorder, domains)
    if state is not None:
        save_state(state, batch, tracker, domains, DCVMethod.DNS, logger)
    return recorder.failed
