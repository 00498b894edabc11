"""
Property-based tests for domain name helpers.

Uses Hypothesis for property-based testing to verify normalization and
wildcard redundancy removal.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from autossl_acme.domain_names import (
    is_wildcard,
    normalize_domain,
    remove_wildcard_redundancies,
    sort_by_length,
    strip_wildcard,
    substitute_wildcard_for_domains,
)
from autossl_acme.exceptions import ValidationError


LABELS = st.text(alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789"), min_size=1, max_size=10)


@st.composite
def domain_strategy(draw) -> str:
    labels = draw(st.lists(LABELS, min_size=1, max_size=3))
    tld = draw(st.sampled_from(["com", "net", "de"]))
    return ".".join(labels + [tld])


class TestNormalizationProperty:
    """
    Property-based tests for domain normalization.

    **Feature: autossl-acme, Property 7: Normalization is idempotent**
    """

    @given(domain=domain_strategy(), wildcard=st.booleans())
    @settings(max_examples=100)
    def test_normalization_is_idempotent(self, domain: str, wildcard: bool) -> None:
        """
        Property 7: Normalization is idempotent.

        *For any* domain, normalizing twice SHALL equal normalizing once, and a
        leading wildcard SHALL survive.
        """
        raw = ("*." if wildcard else "") + domain.upper() + "."
        once = normalize_domain(raw)

        assert normalize_domain(once) == once
        assert is_wildcard(once) == wildcard
        assert strip_wildcard(once) == domain

    def test_idn_is_encoded(self) -> None:
        assert normalize_domain("Bücher.de") == "xn--bcher-kva.de"

    @pytest.mark.parametrize("raw,code", [
        ("", "empty_input"),
        ("   ", "empty_input"),
        ("foo bar.com", "forbidden_chars"),
        ("a.*.com", "forbidden_chars"),
    ])
    def test_invalid_input_is_rejected(self, raw: str, code: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            normalize_domain(raw)
        assert exc_info.value.code == code


class TestWildcardRedundancyProperty:
    """
    Property-based tests for wildcard redundancy removal.

    **Feature: autossl-acme, Property 8: No domain is covered by a wildcard on the same list**
    """

    @given(domains=st.lists(domain_strategy(), min_size=1, max_size=15, unique=True), base=domain_strategy())
    @settings(max_examples=100)
    def test_no_covered_domain_remains(self, domains: list[str], base: str) -> None:
        """
        Property 8: No domain is covered by a wildcard on the same list.

        *For any* list holding ``*.base``, no name exactly one label below
        ``base`` SHALL remain, and every other name SHALL be kept in order.
        """
        wildcard = f"*.{base}"
        covered = [f"www.{base}", f"mail.{base}"]
        original = [wildcard] + domains + covered
        work = list(original)

        removed = remove_wildcard_redundancies(work)

        for domain in work:
            if not is_wildcard(domain):
                assert domain.partition(".")[2] != base
        assert set(covered) <= set(removed)
        assert [d for d in original if d not in removed] == work

    def test_deeper_names_and_base_are_kept(self) -> None:
        domains = ["bar.com", "*.bar.com", "foo.bar.com", "a.foo.bar.com"]

        removed = substitute_wildcard_for_domains("*.bar.com", domains)

        assert removed == ["foo.bar.com"]
        assert domains == ["bar.com", "*.bar.com", "a.foo.bar.com"]


class TestSortByLength:
    def test_stable_for_equal_lengths(self) -> None:
        assert sort_by_length(["bbb.com", "aaa.com", "c.com"]) == ["c.com", "bbb.com", "aaa.com"]
