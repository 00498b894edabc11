"""
Configuration dataclasses for the AutoSSL ACME system.

This module defines all configuration structures used throughout the system,
including certificate bucket sizing, DCV polling, ACME account settings,
persistence paths, the public suffix list source, and logging.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from autossl_acme.constants import (
    DNS_DCV_TIMEOUT_SECONDS,
    EXPIRY_SAFETY_MARGIN_SECONDS,
    HTTP_DCV_TIMEOUT_SECONDS,
    MAX_DOMAINS_PER_CERTIFICATE,
    SOFT_MAX_DOMAINS_PER_CERTIFICATE,
)
from autossl_acme.enums import DCVMethod


@dataclass
class BucketConfig:
    """Sizing of certificate buckets."""

    max_bucket_size: int = MAX_DOMAINS_PER_CERTIFICATE
    new_bucket_threshold: int = SOFT_MAX_DOMAINS_PER_CERTIFICATE


@dataclass
class DCVConfig:
    """Polling behavior for domain control validation."""

    http_timeout_seconds: float = HTTP_DCV_TIMEOUT_SECONDS
    dns_timeout_seconds: float = DNS_DCV_TIMEOUT_SECONDS
    poll_interval_seconds: float = 1.0
    expiry_margin_seconds: int = EXPIRY_SAFETY_MARGIN_SECONDS

    def timeout_for(self, method: DCVMethod) -> float:
        if method is DCVMethod.HTTP:
            return self.http_timeout_seconds
        return self.dns_timeout_seconds


@dataclass
class ACMEConfig:
    """ACME account and directory settings."""

    environment: str = "production"  # 'production' or 'staging'
    terms_of_service_timeout_seconds: float = 30.0
    key_size: int = 2048


@dataclass
class PersistenceConfig:
    """Locations of the files the provider keeps between runs."""

    state_db_path: Path = Path("/var/lib/autossl/letsencrypt-v2-dcvcache.sqlite")
    registration_path: Path = Path("/var/lib/autossl/letsencrypt-v2.json")
    tos_cache_path: Path = Path("/var/lib/autossl/letsencrypt_tos_cache")


@dataclass
class PublicSuffixConfig:
    """Where to fetch and cache the public suffix list."""

    url: str = "https://publicsuffix.org/list/public_suffix_list.dat"
    cache_path: Path = Path("/var/lib/autossl/public_suffix_list.dat")
    max_age_seconds: int = 86400
    timeout_seconds: float = 10.0


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    buckets: BucketConfig = field(default_factory=BucketConfig)
    dcv: DCVConfig = field(default_factory=DCVConfig)
    acme: ACMEConfig = field(default_factory=ACMEConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    public_suffix: PublicSuffixConfig = field(default_factory=PublicSuffixConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    main_domain: Optional[str] = None
