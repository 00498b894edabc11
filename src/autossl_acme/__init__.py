"""
AutoSSL ACME - Let's Encrypt certificate provider for AutoSSL.

This package groups a user's vhosts into certificate buckets by registered
domain, performs HTTP-01 and DNS-01 domain control validation in batches,
caches DCV results between runs, and stops the check cycle when the ACME
account's order quota is exhausted.
"""

__version__ = "0.1.0"
__author__ = "AutoSSL ACME Team"

from autossl_acme.exceptions import (
    AutoSSLError,
    ValidationError,
    IntegrityError,
    ACMEError,
    ACMEProtocolError,
    ACMETransportError,
    RateLimitError,
    DeferFurtherWork,
    PersistenceError,
    DCVStateConflictError,
    OrderFinalizationError,
)
from autossl_acme.enums import (
    LogLevel,
    DCVMethod,
    ChallengeType,
    AuthzStatus,
    OrderStatus,
    RateLimitKind,
)
from autossl_acme.config import (
    BucketConfig,
    DCVConfig,
    ACMEConfig,
    PersistenceConfig,
    PublicSuffixConfig,
    LoggingConfig,
    SystemConfig,
)
from autossl_acme.models import (
    ACMEProblem,
    VhostMaps,
    DCVRecord,
    GuardedResult,
    IssuedCertificate,
    RenewalResult,
)
from autossl_acme.domain_names import (
    normalize_domain,
    is_wildcard,
    strip_wildcard,
    substitute_wildcard_for_domains,
    remove_wildcard_redundancies,
)
from autossl_acme.buckets import (
    VhostBucket,
    SingleDomainBucket,
    VhostBucketCollection,
)
from autossl_acme.registered_domains import (
    TLDCache,
    RegisteredDomainGrouper,
    get_certificate_buckets_grouped_by_registered_domain,
)
from autossl_acme.public_suffix import (
    PublicSuffixList,
    load_public_suffix_list,
)
from autossl_acme.order_cache import (
    OrderCache,
    get_domains_lookup,
)
from autossl_acme.saved_state import (
    SavedState,
)
from autossl_acme.rate_limit import (
    RateLimitGuard,
    classify_rate_limit,
    create_order_for_domains,
    error_is_orders_rate_limit,
    error_is_rate_limit,
)
from autossl_acme.dcv_tracker import (
    DCVTracker,
    DomainDCVStatus,
)
from autossl_acme.dcv import (
    DCVBatch,
    DCVOutcomeRecorder,
    do_dns_dcv,
    do_http_dcv,
    split_domains_by_method,
)
from autossl_acme.registration import (
    Registration,
    create_account_key,
)
from autossl_acme.tos_cache import (
    get_terms_of_service,
)
from autossl_acme.audit_logger import (
    AuditLogger,
    LogEntry,
)
from autossl_acme.provider import (
    LetsEncryptProvider,
)
from autossl_acme.check_cycle import (
    CycleResult,
    UserRenewal,
    run_check_cycle,
)
from autossl_acme.cli import (
    main as cli_main,
    create_parser,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
)

__all__ = [
    # Exceptions
    "AutoSSLError",
    "ValidationError",
    "IntegrityError",
    "ACMEError",
    "ACMEProtocolError",
    "ACMETransportError",
    "RateLimitError",
    "DeferFurtherWork",
    "PersistenceError",
    "DCVStateConflictError",
    "OrderFinalizationError",
    # Enums
    "LogLevel",
    "DCVMethod",
    "ChallengeType",
    "AuthzStatus",
    "OrderStatus",
    "RateLimitKind",
    # Configuration
    "BucketConfig",
    "DCVConfig",
    "ACMEConfig",
    "PersistenceConfig",
    "PublicSuffixConfig",
    "LoggingConfig",
    "SystemConfig",
    # Models
    "ACMEProblem",
    "VhostMaps",
    "DCVRecord",
    "GuardedResult",
    "IssuedCertificate",
    "RenewalResult",
    # Domain names
    "normalize_domain",
    "is_wildcard",
    "strip_wildcard",
    "substitute_wildcard_for_domains",
    "remove_wildcard_redundancies",
    # Buckets
    "VhostBucket",
    "SingleDomainBucket",
    "VhostBucketCollection",
    # Registered domains
    "TLDCache",
    "RegisteredDomainGrouper",
    "get_certificate_buckets_grouped_by_registered_domain",
    # Public suffix list
    "PublicSuffixList",
    "load_public_suffix_list",
    # Order cache
    "OrderCache",
    "get_domains_lookup",
    # Saved state
    "SavedState",
    # Rate limits
    "RateLimitGuard",
    "classify_rate_limit",
    "create_order_for_domains",
    "error_is_orders_rate_limit",
    "error_is_rate_limit",
    # DCV
    "DCVTracker",
    "DomainDCVStatus",
    "DCVBatch",
    "DCVOutcomeRecorder",
    "do_dns_dcv",
    "do_http_dcv",
    "split_domains_by_method",
    # Registration
    "Registration",
    "create_account_key",
    "get_terms_of_service",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # Provider
    "LetsEncryptProvider",
    "CycleResult",
    "UserRenewal",
    "run_check_cycle",
    # CLI
    "cli_main",
    "create_parser",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
]
