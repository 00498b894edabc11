"""
Let's Encrypt provider for AutoSSL.

This module provides the layer that ties the ACME pieces together for
one AutoSSL check cycle:
- Account properties and terms-of-service acceptance
- Batched domain control validation, reusing cached results
- Certificate buckets grouped by registered domain
- Order finalization and hand-off to the certificate installer

One provider instance serves the whole cycle. Orders that passed DCV
are cached until the end of the following renew_ssl() call.
"""

import re
import time
from contextlib import AbstractContextManager
from typing import Callable, Iterable, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .audit_logger import AuditLogger
from .buckets import SingleDomainBucket, VhostBucketCollection
from .config import SystemConfig
from .constants import DISPLAY_NAME, MAX_DOMAINS_PER_CERTIFICATE, PROVIDER_CONSTANTS, SPECS
from .dcv import DCVBatch, do_dns_dcv, do_http_dcv, split_domains_by_method
from .dcv_tracker import DCVTracker
from .domain_names import normalize_domain, remove_wildcard_redundancies, sort_by_length
from .enums import LogLevel, OrderStatus
from .exceptions import (
    AutoSSLError,
    DeferFurtherWork,
    IntegrityError,
    OrderFinalizationError,
    ValidationError,
)
from .interfaces import ACMEClient, ACMEOrder, CertificateInstaller, DNSPublisher, DocrootResolver
from .models import IssuedCertificate, RenewalResult
from .order_cache import OrderCache
from .privileges import reduced_privileges
from .public_suffix import load_public_suffix_list
from .rate_limit import RateLimitGuard, create_order_for_domains
from .registered_domains import (
    RegisteredDomainGrouper,
    get_certificate_buckets_grouped_by_registered_domain,
)
from .registration import Registration
from .saved_state import SavedState
from .timeutil import get_epoch_seconds_if_is_acceptable_expiry_time
from .tos_cache import get_terms_of_service


LETS_ENCRYPT_ISSUER_REGEX = re.compile(r"Let(?:'|’)?s Encrypt")

_PEM_CERTIFICATE_PATTERN = re.compile(
    r"-----BEGIN CERTIFICATE-----.+?-----END CERTIFICATE-----",
    re.DOTALL,
)

RATE_LIMIT_DCV_FAILURE = "A rate limit prevents DCV."

_FINALIZE_WAIT_STATUSES = (
    OrderStatus.PENDING.value,
    OrderStatus.READY.value,
    OrderStatus.PROCESSING.value,
)

StateFactory = Callable[[str], SavedState]


def create_rsa_key(key_size: int = 2048) -> str:
    """Generate a PEM-encoded RSA private key for a certificate."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def create_csr(key_pem: str, domains: Iterable[str]) -> bytes:
    """
    Build a DER-encoded CSR listing ``domains`` as subjectAltNames.

    The CA ignores the subject and applies its own SAN order, so neither
    is set here.
    """
    key = serialization.load_pem_private_key(key_pem.encode("ascii"), password=None)
    san = x509.SubjectAlternativeName([x509.DNSName(d) for d in domains])
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([]))
        .add_extension(san, critical=False)
        .sign(key, hashes.SHA256())
    )
    return csr.public_bytes(serialization.Encoding.DER)


def split_pem_chain(chain: str) -> list[str]:
    return _PEM_CERTIFICATE_PATTERN.findall(chain)


def describe_certificate_domains(domains: list[str]) -> str:
    """Short human description of a certificate's domains."""
    shortest = sort_by_length(domains)[0]
    if len(domains) > 2:
        others = len(domains) - 1
        noun = "other domain" if others == 1 else "other domains"
        return f"“{shortest}” and {others} {noun}"
    if len(domains) == 2:
        return f"“{domains[0]}” and “{domains[1]}”"
    return f"“{shortest}” only"


class LetsEncryptProvider:
    """
    AutoSSL provider backed by the Let's Encrypt ACME service.

    Args:
        acme: ACME client for the server's account
        config: System configuration
        logger: Optional audit logger
        grouper: Registered-domain grouper (built from the public suffix
            list on first use otherwise)
        registration: Registration store used to save and forget the key id
        docroot_resolver: Finds document roots for HTTP DCV
        dns_publisher: Publishes DNS-01 TXT records
        installer: Receives each new certificate
        is_all_users: Whether this run covers every user; the DCV cache
            is only used for such runs
        clock: Returns wall-clock seconds
        sleep: Sleeps between polls
        privilege_context: Scoped privilege drop for HTTP DCV files
        state_factory: Opens the DCV cache for an account key id
    """

    def __init__(
        self,
        acme: ACMEClient,
        config: Optional[SystemConfig] = None,
        logger: Optional[AuditLogger] = None,
        grouper: Optional[RegisteredDomainGrouper] = None,
        registration: Optional[Registration] = None,
        docroot_resolver: Optional[DocrootResolver] = None,
        dns_publisher: Optional[DNSPublisher] = None,
        installer: Optional[CertificateInstaller] = None,
        is_all_users: bool = False,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        privilege_context: Callable[[str], AbstractContextManager] = reduced_privileges,
        state_factory: Optional[StateFactory] = None,
    ) -> None:
        self._acme = acme
        self._config = config or SystemConfig()
        self._logger = logger
        self._grouper = grouper
        self._registration = registration
        self._docroot_resolver = docroot_resolver
        self._dns_publisher = dns_publisher
        self._installer = installer
        self._is_all_users = is_all_users
        self._clock = clock
        self._sleep = sleep
        self._privilege_context = privilege_context
        self._state_factory = state_factory or self._open_saved_state

        self._saved_state: Optional[SavedState] = None
        self._order_cache: Optional[OrderCache] = None
        self._rate_limit_guard = RateLimitGuard(lambda: self._acme.key_id, logger)

    @property
    def acme(self) -> ACMEClient:
        return self._acme

    @property
    def is_all_users(self) -> bool:
        return self._is_all_users

    @property
    def max_domains_per_certificate(self) -> int:
        return self._config.buckets.max_bucket_size or MAX_DOMAINS_PER_CERTIFICATE

    def specs(self) -> dict:
        return dict(SPECS)

    def constants(self) -> dict:
        return dict(PROVIDER_CONSTANTS)

    # ------------------------------------------------------------------
    # Account properties
    # ------------------------------------------------------------------

    def properties(self) -> dict:
        """Account id and terms of service, as shown to administrators."""
        terms = get_terms_of_service(
            self._acme,
            self._config.persistence.tos_cache_path,
            timeout=self._config.acme.terms_of_service_timeout_seconds,
            logger=self._logger,
        )
        key_id = self._acme.key_id
        return {
            "account_id": key_id,
            "terms_of_service": terms,
            "terms_of_service_accepted": bool(key_id),
        }

    def export_properties(self, **props) -> None:
        """
        Accept the terms of service, creating the ACME account if needed.

        Raises:
            ValidationError: If ``terms_of_service_accepted`` is missing or
                any other property is given
        """
        if "terms_of_service_accepted" not in props:
            raise ValidationError(
                code="missing_property",
                message="Must submit “terms_of_service_accepted”!",
            )
        unknown = sorted(k for k in props if k != "terms_of_service_accepted")
        if unknown:
            raise ValidationError(
                code="unknown_property",
                message=f"Unrecognized properties: {' '.join(unknown)}",
                details={"properties": unknown},
            )

        if self._acme.key_id:
            return

        key_id = self._acme.create_account(terms_of_service_agreed=True)
        if self._registration is not None:
            self._registration.save_key_id(key_id)
        self._log(LogLevel.SUCCESS, "account", f"Created {DISPLAY_NAME} account", {"account_id": key_id})

    def reset(self) -> bool:
        """Forget the saved registration. Returns whether one existed."""
        if self._registration is None:
            raise IntegrityError(
                code="missing_collaborator",
                message="Cannot reset without a registration store",
            )
        self._saved_state = None
        return self._registration.forget()

    def certificate_is_from_here(self, cert_pem: str) -> bool:
        """True if the PEM certificate was issued by Let's Encrypt."""
        cert = x509.load_pem_x509_certificate(cert_pem.encode("ascii"))
        return self._issuer_matches(attr.value for attr in cert.issuer)

    def certificate_parse_is_from_here(self, parse: dict) -> bool:
        """
        Like certificate_is_from_here() but for an already-parsed certificate.

        ``parse['issuer_list']`` holds (attribute, value) pairs.
        """
        return self._issuer_matches(value for _, value in parse.get("issuer_list", ()))

    @staticmethod
    def _issuer_matches(values: Iterable) -> bool:
        return any(LETS_ENCRYPT_ISSUER_REGEX.search(str(v)) for v in values)

    # ------------------------------------------------------------------
    # Check cycle hooks
    # ------------------------------------------------------------------

    def on_start_check(self) -> None:
        state = self._get_saved_state_if_should_use()
        if state is not None:
            count = state.count_domains()
            self._log(
                LogLevel.INFO,
                "provider",
                f"Cached {DISPLAY_NAME} DCV values: {count}",
                {"count": count},
            )

    def on_finish_check(self) -> None:
        state = self._get_saved_state_if_should_use()
        if state is not None:
            self._log(LogLevel.INFO, "provider", f"Clearing {DISPLAY_NAME}’s cached DCV errors …")
            state.purge_errors()

    def _get_saved_state_if_should_use(self) -> Optional[SavedState]:
        if not self._is_all_users:
            return None

        if self._saved_state is None:
            key_id = self._acme.key_id
            if not key_id:
                raise IntegrityError(
                    code="missing_key_id",
                    message="Attempt to load saved state without key ID in ACME object!",
                )
            self._saved_state = self._state_factory(key_id)
        return self._saved_state

    def _open_saved_state(self, key_id: str) -> SavedState:
        return SavedState(key_id, self._config.persistence.state_db_path, self._logger)

    # ------------------------------------------------------------------
    # DCV
    # ------------------------------------------------------------------

    def get_vhost_dcv_errors(self, tracker: DCVTracker) -> None:
        """
        Run DCV for every domain in ``tracker``, recording the outcomes there.

        Domains are validated in batches that fit on one certificate. Each
        batch's failures are retried in smaller batches until either the
        domains run out or a certificate's worth of domains has passed.

        Raises:
            DeferFurtherWork: If the account's order quota is exhausted
        """
        domains_to_dcv = self._filter_dcv_cached_domains(tracker)
        domains_left = self.max_domains_per_certificate
        state = self._get_saved_state_if_should_use()

        while domains_to_dcv and domains_left > 0:
            domains = domains_to_dcv[:domains_left]
            del domains_to_dcv[:domains_left]

            batch = self._create_dcv_batch(domains, tracker)
            if batch is None:
                continue

            domains_left -= self._filter_domains_with_valid_dcv(domains, batch, tracker)

            http_domains, dns_domains = split_domains_by_method(
                domains, tracker.get_dcv_method_or_die, self._logger
            )

            if http_domains:
                failed = do_http_dcv(batch, tracker, http_domains, state, self._logger)
                domains_left -= len(http_domains) - len(failed)

                if failed:
                    dns_domains.extend(failed)

                    # The CA needs a new order to switch DCV methods.
                    batch = self._create_dcv_batch(domains, tracker)
                    if batch is None:
                        continue

            dns_failures: list[str] = []
            if dns_domains:
                dns_failures = do_dns_dcv(batch, tracker, dns_domains, state, self._logger)
                domains_left -= len(dns_domains) - len(dns_failures)

            if not dns_failures:
                self._set_cached_order(batch.get_order_if_no_failures())

    def _filter_dcv_cached_domains(self, tracker: DCVTracker) -> list[str]:
        """
        Apply cached DCV results to ``tracker``; return the domains left to check.

        An HTTP-only cached error is not reused because the domain would
        still need an order for its DNS DCV.
        """
        domains_to_dcv: list[str] = []
        state = self._get_saved_state_if_should_use()

        for domain in tracker.get_sorted_domains():
            if state is None:
                domains_to_dcv.append(domain)
                continue

            expiry, http_error, dns_error = state.get_domain_info(domain)

            if expiry:
                epoch = self._acceptable_expiry(expiry)
                if epoch:
                    self._log(
                        LogLevel.SUCCESS,
                        "provider",
                        f"Reusing cached {DISPLAY_NAME} DCV success: {domain} (expiry: {expiry})",
                        {"domain": domain, "expiry": epoch},
                    )
                    tracker.add_general_success(domain)
                else:
                    domains_to_dcv.append(domain)
            elif dns_error:
                noun = "errors" if http_error else "error"
                self._log(
                    LogLevel.INFO,
                    "provider",
                    f"Reusing cached {DISPLAY_NAME} DCV {noun}: {domain}",
                    {"domain": domain},
                )
                if http_error:
                    tracker.add_http_warning(domain, http_error)
                tracker.add_dns_failure(domain, dns_error)
            else:
                domains_to_dcv.append(domain)

        return domains_to_dcv

    def _create_dcv_batch(self, domains: list[str], tracker: DCVTracker) -> Optional[DCVBatch]:
        result = self._rate_limit_guard.run_tolerating_rate_limits(
            lambda: DCVBatch(
                self._acme,
                domains,
                docroot_resolver=self._docroot_resolver,
                dns_publisher=self._dns_publisher,
                config=self._config.dcv,
                logger=self._logger,
                clock=self._clock,
                sleep=self._sleep,
                privilege_context=self._privilege_context,
            )
        )
        if not result.ok:
            # DCV cannot happen without an order; count it as final.
            for domain in domains:
                tracker.add_general_failure(domain, RATE_LIMIT_DCV_FAILURE)
            return None
        return result.value

    def _filter_domains_with_valid_dcv(
        self,
        domains: list[str],
        batch: DCVBatch,
        tracker: DCVTracker,
    ) -> int:
        """
        Remove from ``domains`` those already validated on the batch's order.

        Returns:
            How many domains were removed
        """
        expirations = batch.get_domain_validity_expirations(domains)
        count = 0

        for index in reversed(range(len(domains))):
            domain = domains[index]
            expiry = expirations.get(domain)
            if not expiry:
                continue

            epoch = self._acceptable_expiry(expiry)
            if not epoch:
                continue

            del domains[index]
            count += 1
            self._log(
                LogLevel.SUCCESS,
                "provider",
                f"{DISPLAY_NAME} DCV for “{domain}” is valid until {expiry}.",
                {"domain": domain, "expiry": epoch},
            )
            tracker.add_general_success(domain)

        return count

    def _acceptable_expiry(self, expiry: str) -> Optional[int]:
        return get_epoch_seconds_if_is_acceptable_expiry_time(
            expiry,
            margin_seconds=self._config.dcv.expiry_margin_seconds,
            now=self._clock(),
        )

    def _set_cached_order(self, order: ACMEOrder) -> None:
        if self._order_cache is None:
            self._order_cache = OrderCache()
        self._order_cache.add(order)

    def _get_cached_order(self, domains: list[str]) -> Optional[ACMEOrder]:
        if self._order_cache is None:
            return None
        return self._order_cache.get(domains)

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def renew_ssl(
        self,
        username: str,
        vhost_domains: dict[str, list[str]],
        main_domain: Optional[str] = None,
        single_domains: Iterable[str] = (),
    ) -> RenewalResult:
        """
        Obtain and install certificates for a user's validated domains.

        A bucket that fails is logged and skipped so later buckets still
        get their certificates. The order cache is discarded afterwards,
        as this runs once per user.

        Args:
            username: The user whose vhosts are secured
            vhost_domains: Each vhost mapped to its DCV-passed domains
            main_domain: The user's primary domain, if known
            single_domains: Domains that each get a certificate of their own

        Returns:
            RenewalResult describing issued, failed and skipped buckets

        Raises:
            DeferFurtherWork: If the account's order quota is exhausted
        """
        vhost_to_domains = {
            vhost: [normalize_domain(d) for d in domains]
            for vhost, domains in vhost_domains.items()
        }
        domain_to_vhost = {
            domain: vhost
            for vhost, domains in vhost_to_domains.items()
            for domain in domains
        }
        if main_domain is not None:
            main_domain = normalize_domain(main_domain)
        buckets = get_certificate_buckets_grouped_by_registered_domain(
            domain_to_vhost,
            vhost_to_domains,
            self._get_grouper(),
            main_domain=main_domain,
            collection=VhostBucketCollection(
                self._config.buckets.max_bucket_size,
                self._config.buckets.new_bucket_threshold,
            ),
            logger=self._logger,
        )
        all_buckets = list(buckets) + [SingleDomainBucket(normalize_domain(d)) for d in single_domains]

        result = RenewalResult(username=username)

        try:
            for index, bucket in enumerate(all_buckets):
                try:
                    issued = self._renew_bucket(username, index, bucket)
                except DeferFurtherWork:
                    raise
                except AutoSSLError as e:
                    self._log_error(
                        f"Certificate #{index + 1} failed: {e.message}",
                        e,
                        {"bucket_index": index},
                    )
                    result.failed_buckets.append(
                        {"bucket_index": index, "domains": bucket.domains(), "error": e.to_dict()}
                    )
                    continue

                if issued is None:
                    result.skipped_buckets += 1
                else:
                    result.issued.append(issued)
        finally:
            self._order_cache = None

        return result

    def _renew_bucket(self, username: str, index: int, bucket) -> Optional[IssuedCertificate]:
        domains = bucket.domains()
        self._log_about_cert_and_domains(index, domains)

        order = self._get_cached_order(domains)
        if order is not None:
            self._log(LogLevel.INFO, "provider", "Reusing certificate order from DCV …", {"bucket_index": index})
        else:
            self._log(LogLevel.INFO, "provider", "Creating certificate order …", {"bucket_index": index})

            # The CA forbids e.g. “foo.bar.com” and “*.bar.com” together.
            remove_wildcard_redundancies(domains)

            guarded = self._rate_limit_guard.run_tolerating_rate_limits(
                lambda: create_order_for_domains(self._acme, domains)
            )
            if not guarded.ok:
                return None
            order = guarded.value

        key_pem = create_rsa_key(self._config.acme.key_size)
        csr_der = create_csr(key_pem, domains)

        self._finalize_order_and_confirm(order, csr_der)

        chain = self._acme.get_certificate_chain(order)
        pems = split_pem_chain(chain)
        if not pems:
            raise OrderFinalizationError(
                code="empty_certificate_chain",
                message="The ACME server returned no certificate!",
                details={"order": order.url},
            )
        certificate_pem, cab = pems[0], pems[1:]
        cab_pem = "\n".join(cab)

        set_names = bucket.domain_set_names()
        if self._installer is not None:
            for set_name in set_names:
                self._installer.handle_new_certificate(
                    username=username,
                    domain_set_name=set_name,
                    certificate_pem=certificate_pem,
                    key_pem=key_pem,
                    cab_pem=cab_pem,
                )

        self._log(
            LogLevel.SUCCESS,
            "provider",
            f"Certificate #{index + 1} issued for {len(domains)} domain(s)",
            {"bucket_index": index, "domain_set_names": set_names},
        )

        return IssuedCertificate(
            domains=domains,
            domain_set_names=set_names,
            certificate_pem=certificate_pem,
            key_pem=key_pem,
            cab_pem=cab_pem,
        )

    def _finalize_order_and_confirm(self, order: ACMEOrder, csr_der: bytes) -> None:
        status = self._acme.finalize_order(order, csr_der)

        while status != OrderStatus.VALID.value:
            if status not in _FINALIZE_WAIT_STATUSES:
                # Every authorization passed DCV, so this is a server fault.
                raise OrderFinalizationError(
                    code="order_finalization_failed",
                    message=f"An ACME order failed finalization (status: {status})!",
                    details={"order": order.url, "status": status},
                )
            self._sleep(self._config.dcv.poll_interval_seconds)
            status = self._acme.poll_order(order)

    def _log_about_cert_and_domains(self, index: int, domains: list[str]) -> None:
        self._log(
            LogLevel.INFO,
            "provider",
            f"Certificate #{index + 1}: {describe_certificate_domains(domains)}",
            {"bucket_index": index, "domain_count": len(domains)},
        )

    def _get_grouper(self) -> RegisteredDomainGrouper:
        if self._grouper is None:
            psl = load_public_suffix_list(self._config.public_suffix, self._logger)
            self._grouper = RegisteredDomainGrouper(psl)
        return self._grouper

    def _log(self, level: LogLevel, component: str, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, component, message, data)

    def _log_error(self, message: str, error: Exception, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log_error("provider", message, error, data)
