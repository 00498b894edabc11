"""
Domain name helpers.

Provides normalization to canonical form (lowercase, IDNA-encoded),
wildcard handling, and removal of names a wildcard already covers.
"""

import re
from typing import Iterable

import idna

from autossl_acme.exceptions import ValidationError


WILDCARD_PREFIX = "*."

# Valid domain characters: a-z, 0-9, hyphen, dot, a leading '*.', and non-ASCII for IDN
FORBIDDEN_CHARS_PATTERN = re.compile(
    r'[\x00-\x1f\x7f'
    r'\s'
    r'!@#$%^&()+=\[\]{}|\\:;"\'<>,?/`~]'
)


def normalize_domain(domain: str) -> str:
    """
    Convert a domain to canonical form (lowercase, IDNA if needed).

    A leading wildcard label is preserved.

    Args:
        domain: Domain string to normalize

    Returns:
        Canonical form of the domain

    Raises:
        ValidationError: If the domain is empty, contains forbidden
            characters, or IDNA encoding fails
    """
    raw = domain
    domain = domain.strip().rstrip(".").lower()
    if not domain:
        raise ValidationError(
            code="empty_input",
            message="Domain input is empty",
            details={"raw_input": raw},
        )

    wildcard = is_wildcard(domain)
    base = strip_wildcard(domain)

    if "*" in base or FORBIDDEN_CHARS_PATTERN.search(base):
        raise ValidationError(
            code="forbidden_chars",
            message="Domain contains forbidden characters",
            details={"raw_input": raw},
        )

    if any(ord(c) > 127 for c in base):
        try:
            base = idna.encode(base, uts46=True).decode("ascii")
        except idna.IDNAError as e:
            raise ValidationError(
                code="idna_error",
                message=f"IDNA encoding failed: {e}",
                details={"domain": raw, "idna_error": str(e)},
            )

    return WILDCARD_PREFIX + base if wildcard else base


def is_wildcard(domain: str) -> bool:
    return domain.startswith(WILDCARD_PREFIX)


def strip_wildcard(domain: str) -> str:
    """Return the domain without its '*.' prefix, if any."""
    if is_wildcard(domain):
        return domain[len(WILDCARD_PREFIX):]
    return domain


def domain_labels(domain: str) -> list[str]:
    return domain.split(".")


def substitute_wildcard_for_domains(wildcard: str, domains: list[str]) -> list[str]:
    """
    Remove from ``domains`` (in place) every name the wildcard covers.

    A wildcard covers names exactly one label below its base, so
    ``*.example.com`` covers ``www.example.com`` but neither
    ``example.com`` nor ``a.b.example.com``. The wildcard itself stays.

    Args:
        wildcard: A '*.'-prefixed domain
        domains: List of domains, modified in place

    Returns:
        The domains that were removed
    """
    if not is_wildcard(wildcard):
        raise ValidationError(
            code="not_a_wildcard",
            message=f"Not a wildcard domain: {wildcard}",
            details={"domain": wildcard},
        )

    base = strip_wildcard(wildcard)
    removed = [d for d in domains if _is_covered_by(d, base)]
    domains[:] = [d for d in domains if not _is_covered_by(d, base)]
    return removed


def remove_wildcard_redundancies(domains: list[str]) -> list[str]:
    """Apply substitute_wildcard_for_domains for every wildcard in the list."""
    removed: list[str] = []
    for wildcard in [d for d in domains if is_wildcard(d)]:
        removed.extend(substitute_wildcard_for_domains(wildcard, domains))
    return removed


def _is_covered_by(domain: str, base: str) -> bool:
    if is_wildcard(domain):
        return False
    head, sep, tail = domain.partition(".")
    return bool(sep) and bool(head) and tail == base


def sort_by_length(domains: Iterable[str]) -> list[str]:
    """Sort shortest first, keeping the given order among equal lengths."""
    return sorted(domains, key=len)
