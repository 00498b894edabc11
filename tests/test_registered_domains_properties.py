"""
Property-based tests for registered-domain grouping.

Uses Hypothesis for property-based testing to verify that vhosts sharing
a registered domain are packed together and that public suffix answers
are memoized.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from autossl_acme.audit_logger import AuditLogger
from autossl_acme.buckets import VhostBucketCollection
from autossl_acme.exceptions import IntegrityError
from autossl_acme.registered_domains import (
    RegisteredDomainGrouper,
    TLDCache,
    get_associated_vhosts,
    get_certificate_buckets_grouped_by_registered_domain,
)

from acme_fakes import FakeOracle


LABELS = st.text(alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz"), min_size=1, max_size=8)


@st.composite
def hosted_domain_strategy(draw) -> tuple[str, str]:
    """Generate (domain, expected registered domain) pairs."""
    sld = draw(LABELS)
    suffix = draw(st.sampled_from(["com", "net", "co.uk", "de"]))
    subdomains = draw(st.lists(LABELS, min_size=0, max_size=3))
    registered = f"{sld}.{suffix}"
    return ".".join(subdomains + [registered]), registered


def _domain_maps(vhost_to_domains: dict[str, list[str]]) -> dict[str, str]:
    return {d: vhost for vhost, domains in vhost_to_domains.items() for d in domains}


class TestRegisteredDomainProperty:
    """
    Property-based tests for registered domain computation.

    **Feature: autossl-acme, Property 4: The registered domain is one label below the public suffix**
    """

    @given(pair=hosted_domain_strategy())
    @settings(max_examples=100)
    def test_registered_domain_is_one_label_below_suffix(self, pair: tuple[str, str]) -> None:
        """
        Property 4: The registered domain is one label below the public suffix.

        *For any* domain under a known suffix, get_registered_domain() SHALL
        return the label just left of the longest matching suffix.
        """
        domain, expected = pair
        grouper = RegisteredDomainGrouper(FakeOracle())

        assert grouper.get_registered_domain(domain) == expected

    @given(pairs=st.lists(hosted_domain_strategy(), min_size=1, max_size=20))
    @settings(max_examples=100)
    def test_oracle_is_consulted_once_per_candidate(self, pairs: list[tuple[str, str]]) -> None:
        """
        Property 5: Public suffix answers are memoized.

        *For any* set of lookups, the oracle SHALL be asked about each
        candidate at most once.
        """
        oracle = FakeOracle()
        grouper = RegisteredDomainGrouper(oracle)

        for domain, _ in pairs:
            grouper.get_registered_domain(domain)
            grouper.get_registered_domain(domain)

        assert len(oracle.calls) == len(set(oracle.calls))
        assert len(grouper.cache) == len(set(oracle.calls))

    @given(pairs=st.lists(hosted_domain_strategy(), min_size=1, max_size=20, unique_by=lambda p: p[0]))
    @settings(max_examples=100)
    def test_related_vhosts_share_a_bucket(self, pairs: list[tuple[str, str]]) -> None:
        """
        Property 6: Vhosts sharing a registered domain share a bucket.

        *For any* set of vhosts under the soft limit where each vhost serves
        one registered domain, every pair of vhosts with a common registered
        domain SHALL land in the same bucket.
        """
        vhost_to_domains: dict[str, list[str]] = {}
        for index, (domain, registered) in enumerate(pairs):
            vhost_to_domains.setdefault(f"{registered}-{index % 2}", []).append(domain)

        grouper = RegisteredDomainGrouper(FakeOracle())
        buckets = get_certificate_buckets_grouped_by_registered_domain(
            _domain_maps(vhost_to_domains),
            vhost_to_domains,
            grouper,
        )

        bucket_of = {v: i for i, b in enumerate(buckets) for v in b.vhosts()}
        assert sorted(bucket_of) == sorted(vhost_to_domains)

        maps = grouper.group(_domain_maps(vhost_to_domains), vhost_to_domains)
        for vhost in vhost_to_domains:
            for associated in get_associated_vhosts(vhost, maps):
                assert bucket_of[associated] == bucket_of[vhost]


class TestRegisteredDomainScenarios:
    """Concrete grouping scenarios."""

    def test_subdomain_vhost_joins_parent_bucket(self) -> None:
        vhost_to_domains = {"a": ["a.com", "www.a.com"], "b": ["b.a.com"]}

        buckets = get_certificate_buckets_grouped_by_registered_domain(
            _domain_maps(vhost_to_domains),
            vhost_to_domains,
            RegisteredDomainGrouper(FakeOracle()),
        )

        assert len(buckets) == 1
        assert buckets[0].vhosts() == ["a", "b"]
        assert sorted(buckets[0].domains()) == ["a.com", "b.a.com", "www.a.com"]

    def test_unrelated_vhosts_get_separate_buckets(self) -> None:
        vhost_to_domains = {"a": ["a.com"], "b": ["b.net"]}

        buckets = get_certificate_buckets_grouped_by_registered_domain(
            _domain_maps(vhost_to_domains),
            vhost_to_domains,
            RegisteredDomainGrouper(FakeOracle()),
        )

        assert [b.vhosts() for b in buckets] == [["a"], ["b"]]

    def test_main_domain_vhost_comes_first(self) -> None:
        vhost_to_domains = {"alpha": ["alpha.com"], "zeta": ["zeta.com", "www.zeta.com"]}

        buckets = get_certificate_buckets_grouped_by_registered_domain(
            _domain_maps(vhost_to_domains),
            vhost_to_domains,
            RegisteredDomainGrouper(FakeOracle()),
            main_domain="www.zeta.com",
        )

        assert buckets[0].vhosts() == ["zeta"]
        assert buckets[1].vhosts() == ["alpha"]

    def test_wildcard_groups_with_its_base(self) -> None:
        vhost_to_domains = {"a": ["a.com"], "wild": ["*.a.com"]}

        buckets = get_certificate_buckets_grouped_by_registered_domain(
            _domain_maps(vhost_to_domains),
            vhost_to_domains,
            RegisteredDomainGrouper(FakeOracle()),
        )

        assert len(buckets) == 1

    def test_overflow_of_related_vhosts_spills_into_new_bucket(self) -> None:
        vhost_to_domains = {
            "a": [f"s{i}.a.com" for i in range(3)],
            "b": [f"t{i}.a.com" for i in range(3)],
            "c": ["c.net"],
        }

        buckets = get_certificate_buckets_grouped_by_registered_domain(
            _domain_maps(vhost_to_domains),
            vhost_to_domains,
            RegisteredDomainGrouper(FakeOracle()),
            collection=VhostBucketCollection(max_bucket_size=4, new_bucket_threshold=4),
        )

        assert [b.vhosts() for b in buckets] == [["a"], ["b"], ["c"]]

    def test_public_suffix_itself_is_rejected(self) -> None:
        grouper = RegisteredDomainGrouper(FakeOracle())

        with pytest.raises(IntegrityError) as exc_info:
            grouper.get_registered_domain("co.uk")
        assert exc_info.value.code == "invalid_domain"

    def test_unknown_suffix_is_rejected(self) -> None:
        grouper = RegisteredDomainGrouper(FakeOracle())

        with pytest.raises(IntegrityError):
            grouper.get_registered_domain("host.internal")

    def test_shared_cache(self) -> None:
        oracle = FakeOracle()
        cache = TLDCache(oracle)
        RegisteredDomainGrouper(oracle, cache).get_registered_domain("www.example.com")
        RegisteredDomainGrouper(oracle, cache).get_registered_domain("www.example.com")

        assert "com" in cache
        assert oracle.calls.count("com") == 1

    def test_grouping_is_logged(self) -> None:
        logger = AuditLogger(output_format="json")
        vhost_to_domains = {"a": ["a.com"]}

        get_certificate_buckets_grouped_by_registered_domain(
            _domain_maps(vhost_to_domains),
            vhost_to_domains,
            RegisteredDomainGrouper(FakeOracle()),
            logger=logger,
        )

        assert logger.entries[-1].data == {"vhosts": 1, "buckets": 1}
