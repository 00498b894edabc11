"""
Protocols for the collaborators the AutoSSL core talks to.

The ACME wire client, DNS publication, document-root lookup, public
suffix lookup and certificate installation live outside this package;
these protocols describe the surface the core relies on.
"""

from typing import Optional, Protocol, Sequence

from .models import ACMEProblem


class ACMEChallenge(Protocol):
    """One validation method offered for an authorization."""

    type: str  # 'http-01', 'dns-01', ...
    token: str
    url: str
    status: str
    error: Optional[ACMEProblem]


class ACMEAuthorization(Protocol):
    """The server's DCV record for one identifier within an order."""

    url: str
    identifier: str  # DNS name without any '*.' prefix
    wildcard: bool
    status: str
    expires: Optional[str]  # RFC 3339
    challenges: Sequence[ACMEChallenge]


class ACMEOrder(Protocol):
    """A certificate order tied to a set of identifiers."""

    url: str
    status: str
    identifiers: Sequence[dict]  # [{'type': 'dns', 'value': 'example.com'}, ...]
    authorizations: Sequence[str]  # authorization URLs


class ACMEClient(Protocol):
    """
    Synchronous ACME client.

    Failures surface as ACMEProtocolError (carrying the problem document)
    or ACMETransportError.
    """

    key_id: Optional[str]

    def create_account(self, terms_of_service_agreed: bool) -> str:
        """Create (or look up) the account and return its key id."""
        ...

    def get_terms_of_service(self) -> str: ...

    def create_order(self, identifiers: list[dict]) -> ACMEOrder: ...

    def get_authorization(self, url: str) -> ACMEAuthorization: ...

    def make_key_authorization(self, challenge: ACMEChallenge) -> str: ...

    def accept_challenge(self, challenge: ACMEChallenge) -> None: ...

    def poll_authorization(self, authz: ACMEAuthorization) -> str:
        """Refresh the authorization in place and return its status."""
        ...

    def finalize_order(self, order: ACMEOrder, csr_der: bytes) -> str: ...

    def poll_order(self, order: ACMEOrder) -> str: ...

    def get_certificate_chain(self, order: ACMEOrder) -> str: ...


class PublicSuffixOracle(Protocol):
    def is_a_registered_tld(self, candidate: str) -> bool: ...


class DocrootResolver(Protocol):
    def get_docroot_for_domain(self, domain: str) -> Optional[str]: ...


class DNSPublisher(Protocol):
    """Publishes DNS-01 TXT records in batches."""

    def publish_txt_records(self, records: list[tuple[str, str]]) -> None: ...

    def wait_until_resolvable(self, expected: dict[str, list[str]]) -> None:
        """Block until every name resolves to [record_type, value]."""
        ...


class CertificateInstaller(Protocol):
    def handle_new_certificate(
        self,
        username: str,
        domain_set_name: str,
        certificate_pem: str,
        key_pem: str,
        cab_pem: str,
    ) -> None: ...
