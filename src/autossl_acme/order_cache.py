"""
Run-scoped cache of ACME certificate orders.

DCV requires an order, and the CA limits how many orders an account may
create. Orders used for DCV are kept here so issuance can finalize them
instead of creating new ones.
"""

from typing import Iterable, Optional

from autossl_acme.interfaces import ACMEOrder


def get_domains_lookup(domains: Iterable[str]) -> str:
    """Canonical key for a domain set: case-sensitive sort, comma join."""
    return ",".join(sorted(domains))


class OrderCache:
    """
    Maps a canonicalized domain set to the order created for it.

    The key of a stored order comes from the order's own identifiers,
    not from the list that was requested.
    """

    def __init__(self) -> None:
        self._orders: dict[str, ACMEOrder] = {}

    def add(self, order: ACMEOrder) -> "OrderCache":
        domains = [identifier["value"] for identifier in order.identifiers]
        self._orders[get_domains_lookup(domains)] = order
        return self

    def get(self, domains: Iterable[str]) -> Optional[ACMEOrder]:
        return self._orders.get(get_domains_lookup(domains))

    def clear(self) -> None:
        self._orders.clear()

    def __len__(self) -> int:
        return len(self._orders)
