"""
Registered-domain (eTLD+1) grouping of virtual hosts.

Vhosts that share a registered domain are pulled into the same
certificate bucket where capacity allows, so that e.g. ``example.com``
and ``shop.example.com`` end up on one certificate.
"""

from typing import Optional

from autossl_acme.audit_logger import AuditLogger
from autossl_acme.buckets import VhostBucket, VhostBucketCollection
from autossl_acme.domain_names import domain_labels
from autossl_acme.enums import LogLevel
from autossl_acme.exceptions import IntegrityError
from autossl_acme.interfaces import PublicSuffixOracle
from autossl_acme.models import VhostMaps


class TLDCache:
    """
    Memo of public-suffix answers for one run.

    Maps every candidate string ever tested to whether it is a public
    suffix, so repeated lookups never reach the oracle twice.
    """

    def __init__(self, oracle: PublicSuffixOracle) -> None:
        self._oracle = oracle
        self._answers: dict[str, bool] = {}

    def is_tld(self, candidate: str) -> bool:
        if candidate not in self._answers:
            self._answers[candidate] = bool(self._oracle.is_a_registered_tld(candidate))
        return self._answers[candidate]

    def __contains__(self, candidate: str) -> bool:
        return candidate in self._answers

    def __len__(self) -> int:
        return len(self._answers)


class RegisteredDomainGrouper:
    """
    Computes registered domains and groups vhosts by them.

    Args:
        oracle: Public suffix lookup
        cache: Optional TLDCache to share; a fresh one is created otherwise
    """

    def __init__(
        self,
        oracle: PublicSuffixOracle,
        cache: Optional[TLDCache] = None,
    ) -> None:
        self._cache = cache if cache is not None else TLDCache(oracle)

    @property
    def cache(self) -> TLDCache:
        return self._cache

    def get_registered_domain(self, domain: str) -> str:
        """
        Return the eTLD+1 of ``domain``.

        Suffixes are tested from longest to shortest; the registered domain
        is the label just left of the first suffix that is a public suffix.

        Raises:
            IntegrityError: If no public suffix matches, or the domain is
                itself a public suffix
        """
        if self._cache.is_tld(domain):
            raise IntegrityError(
                code="invalid_domain",
                message=f"Invalid Domain: {domain} is a public suffix",
                details={"domain": domain},
            )

        labels = domain_labels(domain)
        for index in range(1, len(labels)):
            suffix = ".".join(labels[index:])
            if self._cache.is_tld(suffix):
                return f"{labels[index - 1]}.{suffix}"

        raise IntegrityError(
            code="invalid_domain",
            message=f"Invalid Domain: no public suffix found for {domain}",
            details={"domain": domain},
        )

    def group(
        self,
        domain_to_vhost: dict[str, str],
        vhost_to_domains: dict[str, list[str]],
    ) -> VhostMaps:
        """
        Build the registered-domain associations for a set of vhosts.

        Args:
            domain_to_vhost: Each domain mapped to the vhost serving it
            vhost_to_domains: Each vhost mapped to its domains

        Returns:
            VhostMaps with both input maps plus
            registered_domain_to_vhosts and vhost_to_registered_domains
        """
        registered_domain_to_vhosts: dict[str, set[str]] = {}
        vhost_to_registered_domains: dict[str, set[str]] = {}

        for domain, vhost in domain_to_vhost.items():
            registered = self.get_registered_domain(domain)
            registered_domain_to_vhosts.setdefault(registered, set()).add(vhost)
            vhost_to_registered_domains.setdefault(vhost, set()).add(registered)

        return VhostMaps(
            domain_to_vhost=domain_to_vhost,
            vhost_to_domains=vhost_to_domains,
            registered_domain_to_vhosts=registered_domain_to_vhosts,
            vhost_to_registered_domains=vhost_to_registered_domains,
        )


def get_associated_vhosts(vhost: str, vhost_maps: VhostMaps) -> list[str]:
    """Other vhosts that share at least one registered domain with ``vhost``."""
    associated: set[str] = set()
    for registered in vhost_maps.vhost_to_registered_domains.get(vhost, ()):
        associated.update(vhost_maps.registered_domain_to_vhosts.get(registered, ()))
    associated.discard(vhost)
    return sorted(associated)


def get_certificate_buckets_grouped_by_registered_domain(
    domain_to_vhost: dict[str, str],
    vhost_to_domains: dict[str, list[str]],
    grouper: RegisteredDomainGrouper,
    main_domain: Optional[str] = None,
    collection: Optional[VhostBucketCollection] = None,
    logger: Optional[AuditLogger] = None,
) -> list[VhostBucket]:
    """
    Pack vhosts into certificate buckets, keeping registered domains together.

    The main domain's vhost is visited first when it is among the inputs,
    then every other vhost in name order. Each visited vhost pulls in the
    vhosts sharing a registered domain with it, after which the current
    buckets are closed.

    Args:
        domain_to_vhost: Each domain mapped to its vhost
        vhost_to_domains: Each vhost mapped to its domains
        grouper: Registered-domain grouper for this run
        main_domain: The account's primary domain, if known
        collection: Bucket collection to fill (a default one otherwise)
        logger: Optional audit logger

    Returns:
        The buckets in creation order
    """
    vhost_maps = grouper.group(domain_to_vhost, vhost_to_domains)
    if collection is None:
        collection = VhostBucketCollection()

    vhosts: list[str] = []
    if main_domain is not None and main_domain in vhost_maps.domain_to_vhost:
        vhosts.append(vhost_maps.domain_to_vhost[main_domain])
    vhosts.extend(sorted(vhost_maps.vhost_to_domains))

    for vhost in vhosts:
        if collection.contains_vhost(vhost):
            continue

        collection.add_vhost_to_bucket(vhost, vhost_maps.vhost_to_domains[vhost])

        for associated in get_associated_vhosts(vhost, vhost_maps):
            if collection.contains_vhost(associated):
                continue
            collection.add_vhost_to_bucket(associated, vhost_maps.vhost_to_domains[associated])

        collection.close_current_buckets()

    buckets = collection.get_all_buckets()
    if logger:
        logger.log(
            LogLevel.DEBUG,
            "registered_domains",
            "Grouped vhosts into certificate buckets",
            {"vhosts": len(vhost_maps.vhost_to_domains), "buckets": len(buckets)},
        )
    return buckets
