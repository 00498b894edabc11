"""
Property-based tests for certificate buckets.

Uses Hypothesis for property-based testing to verify the packing rules of
VhostBucket and VhostBucketCollection.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from autossl_acme.buckets import SingleDomainBucket, VhostBucket, VhostBucketCollection
from autossl_acme.exceptions import IntegrityError


# Strategies for generating valid test data

@st.composite
def domain_strategy(draw) -> str:
    """Generate simple lowercase domain names."""
    label = draw(st.text(
        alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789"),
        min_size=1,
        max_size=15,
    ))
    tld = draw(st.sampled_from(["com", "net", "org", "de"]))
    return f"{label}.{tld}"


@st.composite
def vhost_map_strategy(draw) -> dict[str, list[str]]:
    """Generate vhosts with disjoint domain lists."""
    domains = draw(st.lists(domain_strategy(), min_size=1, max_size=60, unique=True))
    vhost_count = draw(st.integers(min_value=1, max_value=min(10, len(domains))))
    vhosts: dict[str, list[str]] = {f"vhost{i}": [] for i in range(vhost_count)}
    for index, domain in enumerate(domains):
        vhosts[f"vhost{index % vhost_count}"].append(domain)
    return vhosts


class TestBucketCapacityProperty:
    """
    Property-based tests for bucket capacity.

    **Feature: autossl-acme, Property 1: A bucket never exceeds its hard limit**
    """

    @given(
        vhosts=vhost_map_strategy(),
        max_size=st.integers(min_value=1, max_value=30),
        threshold=st.integers(min_value=1, max_value=30),
    )
    @settings(max_examples=100)
    def test_bucket_never_exceeds_hard_limit(
        self,
        vhosts: dict[str, list[str]],
        max_size: int,
        threshold: int,
    ) -> None:
        """
        Property 1: A bucket never exceeds its hard limit.

        *For any* sequence of vhosts added to a collection, every bucket SHALL
        hold at most ``max_bucket_size`` domains, and every vhost SHALL be
        marked as contained.
        """
        collection = VhostBucketCollection(max_bucket_size=max_size, new_bucket_threshold=threshold)

        for vhost, domains in vhosts.items():
            collection.add_vhost_to_bucket(vhost, domains)

        for bucket in collection.get_all_buckets():
            assert bucket.domain_count() <= max_size
            assert len(set(bucket.domains())) == bucket.domain_count()

        assert sorted(collection.get_contained_vhosts()) == sorted(vhosts)

    @given(
        domains=st.lists(domain_strategy(), min_size=1, max_size=40, unique=True),
        max_size=st.integers(min_value=1, max_value=20),
    )
    @settings(max_examples=100)
    def test_shortest_domains_are_kept(self, domains: list[str], max_size: int) -> None:
        """
        Property 2: An oversized vhost keeps its shortest domains.

        *For any* vhost with more domains than fit, the admitted domains SHALL
        be the shortest ones, and the added count SHALL equal the bucket size.
        """
        bucket = VhostBucket(max_bucket_size=max_size, new_bucket_threshold=max_size)
        added = bucket.add_vhost("v", domains)

        assert added == min(len(domains), max_size)
        assert bucket.domain_count() == added
        assert bucket.contains_vhost("v")

        if len(domains) > max_size:
            longest_kept = max(len(d) for d in bucket.domains())
            dropped = [d for d in domains if d not in bucket.domains()]
            assert all(len(d) >= longest_kept for d in dropped)

    @given(vhosts=vhost_map_strategy())
    @settings(max_examples=100)
    def test_closed_buckets_receive_nothing(self, vhosts: dict[str, list[str]]) -> None:
        """
        Property 3: Closed buckets receive no further vhosts.

        *For any* collection, after close_current_buckets() every vhost SHALL
        go into a bucket created after the close.
        """
        names = list(vhosts)
        first, rest = names[0], names[1:]

        collection = VhostBucketCollection()
        collection.add_vhost_to_bucket(first, vhosts[first])
        closed_count = len(collection.get_all_buckets())
        collection.close_current_buckets()

        for vhost in rest:
            collection.add_vhost_to_bucket(vhost, vhosts[vhost])

        for bucket in collection.get_all_buckets()[:closed_count]:
            assert bucket.vhosts() == [first]


class TestBucketScenarios:
    """Concrete packing scenarios."""

    def test_only_shortest_domain_fits_last_slot(self) -> None:
        bucket = VhostBucket(max_bucket_size=2, new_bucket_threshold=2)
        bucket.add_vhost("first", ["first.com"])

        added = bucket.add_vhost("second", ["muchlongername.com", "short.com"])

        assert added == 1
        assert bucket.domains() == ["first.com", "short.com"]
        assert bucket.vhosts() == ["first", "second"]
        assert bucket.max_domains_left() == 0

    def test_duplicate_domains_are_not_counted(self) -> None:
        bucket = VhostBucket(max_bucket_size=5, new_bucket_threshold=5)
        bucket.add_vhost("a", ["a.com", "www.a.com"])

        assert bucket.add_vhost("b", ["a.com", "b.com"]) == 1
        assert bucket.domain_count() == 3

    def test_vhost_is_marked_even_if_nothing_fits(self) -> None:
        bucket = VhostBucket(max_bucket_size=1, new_bucket_threshold=1)
        bucket.add_vhost("a", ["a.com"])

        assert bucket.add_vhost("b", ["b.com"]) == 0
        assert bucket.contains_vhost("b")
        assert bucket.domain_set_names() == ["a", "b"]

    def test_threshold_left_is_floored_at_zero(self) -> None:
        bucket = VhostBucket(max_bucket_size=10, new_bucket_threshold=2)
        bucket.add_vhost("a", ["a.com", "b.com", "c.com", "d.com"])

        assert bucket.threshold_domains_left() == 0
        assert bucket.max_domains_left() == 6

    def test_empty_bucket_takes_a_large_vhost(self) -> None:
        collection = VhostBucketCollection(max_bucket_size=100, new_bucket_threshold=24)
        domains = [f"d{i}.com" for i in range(30)]

        collection.add_vhost_to_bucket("big", domains)
        collection.add_vhost_to_bucket("small", ["x.com"])

        buckets = collection.get_all_buckets()
        assert len(buckets) == 2
        assert buckets[0].domain_count() == 30
        assert buckets[1].vhosts() == ["small"]

    def test_vhost_joins_bucket_with_soft_room(self) -> None:
        collection = VhostBucketCollection(max_bucket_size=100, new_bucket_threshold=24)
        collection.add_vhost_to_bucket("a", [f"a{i}.com" for i in range(20)])
        collection.add_vhost_to_bucket("b", [f"b{i}.com" for i in range(4)])

        buckets = collection.get_all_buckets()
        assert len(buckets) == 1
        assert buckets[0].vhosts() == ["a", "b"]

    def test_missing_parameter_is_rejected(self) -> None:
        with pytest.raises(IntegrityError) as exc_info:
            VhostBucket(new_bucket_threshold=24)
        assert "max_bucket_size" in exc_info.value.message

        with pytest.raises(IntegrityError):
            VhostBucket(max_bucket_size=100)

    def test_single_domain_bucket(self) -> None:
        bucket = SingleDomainBucket("mail.example.com")

        assert bucket.domains() == ["mail.example.com"]
        assert bucket.domain_set_names() == ["mail.example.com"]
        assert bucket.domain_count() == 1

    def test_collection_defaults(self) -> None:
        collection = VhostBucketCollection()

        assert collection.max_bucket_size == 100
        assert collection.bucket_threshold == 24
        assert collection.get_contained_vhosts() == []
