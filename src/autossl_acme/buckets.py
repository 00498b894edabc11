"""
Certificate buckets.

A bucket is a size-limited group of virtual hosts whose domains go onto
one certificate. Each virtual host lands in exactly one bucket; when a
vhost has more domains than its bucket can hold, only the shortest
domains are admitted and the rest are dropped rather than split across
another bucket.
"""

from typing import Optional

from autossl_acme.constants import (
    MAX_DOMAINS_PER_CERTIFICATE,
    SOFT_MAX_DOMAINS_PER_CERTIFICATE,
)
from autossl_acme.domain_names import sort_by_length
from autossl_acme.exceptions import IntegrityError


class VhostBucket:
    """
    Accumulates vhosts and their domains for one certificate.

    Args:
        max_bucket_size: Hard limit on the number of domains
        new_bucket_threshold: Soft limit used when choosing a bucket

    Raises:
        IntegrityError: If either sizing parameter is missing
    """

    def __init__(
        self,
        max_bucket_size: Optional[int] = None,
        new_bucket_threshold: Optional[int] = None,
    ) -> None:
        for name, value in (
            ("max_bucket_size", max_bucket_size),
            ("new_bucket_threshold", new_bucket_threshold),
        ):
            if value is None:
                raise IntegrityError(
                    code="missing_parameter",
                    message=f"Need the parameter '{name}'!",
                    details={"parameter": name},
                )

        self._bucket_size = max_bucket_size
        self._bucket_threshold = new_bucket_threshold
        # dicts keep insertion order, used as ordered sets
        self._domains: dict[str, None] = {}
        self._vhosts: dict[str, None] = {}

    def domain_count(self) -> int:
        return len(self._domains)

    def max_domains_left(self) -> int:
        return self._bucket_size - len(self._domains)

    def threshold_domains_left(self) -> int:
        return max(self._bucket_threshold - len(self._domains), 0)

    def contains_vhost(self, vhost: str) -> bool:
        return vhost in self._vhosts

    def domains(self) -> list[str]:
        return list(self._domains)

    def vhosts(self) -> list[str]:
        return list(self._vhosts)

    def domain_set_names(self) -> list[str]:
        """Names under which the issued certificate gets installed."""
        return self.vhosts()

    def add_vhost(self, vhost: str, domains: list[str]) -> int:
        """
        Add a vhost and as many of its domains as the hard limit allows.

        Domains are admitted shortest first. Domains already in the bucket
        are skipped and not counted. The vhost is recorded even when none
        of its domains fit.

        Returns:
            Number of domains actually added
        """
        domains_left = self.max_domains_left()
        domains_added = 0

        for domain in sort_by_length(domains):
            if domains_added == domains_left:
                break
            if domain not in self._domains:
                self._domains[domain] = None
                domains_added += 1

        self._vhosts[vhost] = None
        return domains_added

    def __repr__(self) -> str:
        return f"VhostBucket(vhosts={self.vhosts()!r}, domain_count={self.domain_count()})"


class SingleDomainBucket:
    """A bucket holding one domain that is installed under its own name."""

    def __init__(self, domain: str) -> None:
        self._domain = domain

    def domains(self) -> list[str]:
        return [self._domain]

    def domain_set_names(self) -> list[str]:
        return [self._domain]

    def domain_count(self) -> int:
        return 1

    def __repr__(self) -> str:
        return f"SingleDomainBucket({self._domain!r})"


class VhostBucketCollection:
    """
    Ordered list of VhostBuckets with a "closed" watermark.

    Buckets before the watermark no longer receive vhosts. The driver
    closes the current buckets after each group of related vhosts so an
    unrelated vhost does not end up on a certificate meant for that group.

    Args:
        max_bucket_size: Hard limit of domains per bucket (default 100)
        new_bucket_threshold: Soft limit of domains per bucket (default 24)
    """

    def __init__(
        self,
        max_bucket_size: Optional[int] = None,
        new_bucket_threshold: Optional[int] = None,
    ) -> None:
        self._bucket_size = max_bucket_size or MAX_DOMAINS_PER_CERTIFICATE
        self._bucket_threshold = new_bucket_threshold or SOFT_MAX_DOMAINS_PER_CERTIFICATE
        self._buckets: list[VhostBucket] = []
        self._contained_vhosts: dict[str, None] = {}
        self._start_bucket_index = 0

    @property
    def max_bucket_size(self) -> int:
        return self._bucket_size

    @property
    def bucket_threshold(self) -> int:
        return self._bucket_threshold

    def get_all_buckets(self) -> list[VhostBucket]:
        return list(self._buckets)

    def contains_vhost(self, vhost: str) -> bool:
        return vhost in self._contained_vhosts

    def get_contained_vhosts(self) -> list[str]:
        return list(self._contained_vhosts)

    def add_vhost_to_bucket(self, vhost: str, domains: list[str]) -> int:
        """
        Put a vhost into the best open bucket.

        If the vhost has more domains than the bucket can hold, only the
        shortest ones up to the maximum are added.

        Returns:
            Number of domains added
        """
        bucket = self.get_bucket_to_fit_domains(len(domains))
        domains_added = bucket.add_vhost(vhost, domains)
        self._contained_vhosts[vhost] = None
        return domains_added

    def get_bucket_to_fit_domains(self, vhost_size: int) -> VhostBucket:
        """
        Find an open bucket that is empty or whose soft capacity fits
        ``vhost_size`` more domains; create a new bucket if none does.
        """
        for bucket in self._buckets[self._start_bucket_index:]:
            # An empty bucket takes any vhost, so a bucket may exceed the soft
            # limit up to the hard one.
            if bucket.domain_count() == 0 or bucket.threshold_domains_left() >= vhost_size:
                return bucket

        bucket = VhostBucket(
            max_bucket_size=self._bucket_size,
            new_bucket_threshold=self._bucket_threshold,
        )
        self._buckets.append(bucket)
        return bucket

    def close_current_buckets(self) -> None:
        """Stop adding vhosts to any bucket that exists now."""
        self._start_bucket_index = len(self._buckets)
