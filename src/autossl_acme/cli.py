"""
Command-line interface for the AutoSSL ACME provider.

This module provides the main CLI entry point with commands for:
- buckets: Show how a vhost map is packed into certificates
- dcv-cache: Inspect or purge the persistent DCV cache
- config: Configuration management

Settings can be overridden from the environment (or a .env file):
AUTOSSL_STATE_DB, AUTOSSL_LOG_LEVEL, AUTOSSL_ACME_ENVIRONMENT.
"""

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from . import __version__
from .audit_logger import AuditLogger
from .buckets import VhostBucketCollection
from .config import (
    ACMEConfig,
    BucketConfig,
    DCVConfig,
    LoggingConfig,
    PersistenceConfig,
    PublicSuffixConfig,
    SystemConfig,
)
from .enums import LogLevel
from .exceptions import AutoSSLError
from .public_suffix import PublicSuffixList, load_public_suffix_list
from .registered_domains import (
    RegisteredDomainGrouper,
    get_certificate_buckets_grouped_by_registered_domain,
)
from .registration import Registration
from .saved_state import SavedState


DEFAULT_CONFIG_PATH = Path("/etc/autossl/acme.json")

ENV_STATE_DB = "AUTOSSL_STATE_DB"
ENV_LOG_LEVEL = "AUTOSSL_LOG_LEVEL"
ENV_ACME_ENVIRONMENT = "AUTOSSL_ACME_ENVIRONMENT"

VALID_ENVIRONMENTS = ("production", "staging")
VALID_OUTPUT_FORMATS = ("json", "text", "both")


def create_default_config(
    environment: str = "production",
    state_dir: Optional[Path] = None,
) -> SystemConfig:
    """
    Create a default system configuration.

    Args:
        environment: ACME directory to use ('production' or 'staging')
        state_dir: Directory for the state files

    Returns:
        SystemConfig with default settings
    """
    if state_dir is None:
        state_dir = Path("/var/lib/autossl")

    return SystemConfig(
        buckets=BucketConfig(),
        dcv=DCVConfig(),
        acme=ACMEConfig(environment=environment),
        persistence=PersistenceConfig(
            state_db_path=state_dir / "letsencrypt-v2-dcvcache.sqlite",
            registration_path=state_dir / "letsencrypt-v2.json",
            tos_cache_path=state_dir / "letsencrypt_tos_cache",
        ),
        public_suffix=PublicSuffixConfig(
            cache_path=state_dir / "public_suffix_list.dat",
        ),
        logging=LoggingConfig(
            level="info",
            output_format="text",
        ),
    )


def load_config_from_file(config_path: Path) -> Optional[SystemConfig]:
    """
    Load configuration from a JSON file.

    Args:
        config_path: Path to the configuration file

    Returns:
        SystemConfig if successful, None otherwise
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        defaults = SystemConfig()

        buckets_data = data.get("buckets", {})
        buckets = BucketConfig(
            max_bucket_size=buckets_data.get("max_bucket_size", defaults.buckets.max_bucket_size),
            new_bucket_threshold=buckets_data.get(
                "new_bucket_threshold", defaults.buckets.new_bucket_threshold
            ),
        )

        dcv_data = data.get("dcv", {})
        dcv = DCVConfig(
            http_timeout_seconds=dcv_data.get("http_timeout_seconds", defaults.dcv.http_timeout_seconds),
            dns_timeout_seconds=dcv_data.get("dns_timeout_seconds", defaults.dcv.dns_timeout_seconds),
            poll_interval_seconds=dcv_data.get("poll_interval_seconds", defaults.dcv.poll_interval_seconds),
            expiry_margin_seconds=dcv_data.get("expiry_margin_seconds", defaults.dcv.expiry_margin_seconds),
        )

        acme_data = data.get("acme", {})
        acme = ACMEConfig(
            environment=acme_data.get("environment", defaults.acme.environment),
            terms_of_service_timeout_seconds=acme_data.get(
                "terms_of_service_timeout_seconds",
                defaults.acme.terms_of_service_timeout_seconds,
            ),
            key_size=acme_data.get("key_size", defaults.acme.key_size),
        )

        persistence_data = data.get("persistence", {})
        persistence = PersistenceConfig(
            state_db_path=Path(persistence_data.get("state_db_path", defaults.persistence.state_db_path)),
            registration_path=Path(
                persistence_data.get("registration_path", defaults.persistence.registration_path)
            ),
            tos_cache_path=Path(persistence_data.get("tos_cache_path", defaults.persistence.tos_cache_path)),
        )

        psl_data = data.get("public_suffix", {})
        public_suffix = PublicSuffixConfig(
            url=psl_data.get("url", defaults.public_suffix.url),
            cache_path=Path(psl_data.get("cache_path", defaults.public_suffix.cache_path)),
            max_age_seconds=psl_data.get("max_age_seconds", defaults.public_suffix.max_age_seconds),
            timeout_seconds=psl_data.get("timeout_seconds", defaults.public_suffix.timeout_seconds),
        )

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=logging_data.get("level", defaults.logging.level),
            output_format=logging_data.get("output_format", defaults.logging.output_format),
        )

        return SystemConfig(
            buckets=buckets,
            dcv=dcv,
            acme=acme,
            persistence=persistence,
            public_suffix=public_suffix,
            logging=logging_config,
            main_domain=data.get("main_domain"),
        )

    except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None
    except FileNotFoundError:
        return None


def save_config_to_file(config: SystemConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    Args:
        config: SystemConfig to save
        config_path: Path to save the configuration

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "buckets": {
                "max_bucket_size": config.buckets.max_bucket_size,
                "new_bucket_threshold": config.buckets.new_bucket_threshold,
            },
            "dcv": {
                "http_timeout_seconds": config.dcv.http_timeout_seconds,
                "dns_timeout_seconds": config.dcv.dns_timeout_seconds,
                "poll_interval_seconds": config.dcv.poll_interval_seconds,
                "expiry_margin_seconds": config.dcv.expiry_margin_seconds,
            },
            "acme": {
                "environment": config.acme.environment,
                "terms_of_service_timeout_seconds": config.acme.terms_of_service_timeout_seconds,
                "key_size": config.acme.key_size,
            },
            "persistence": {
                "state_db_path": str(config.persistence.state_db_path),
                "registration_path": str(config.persistence.registration_path),
                "tos_cache_path": str(config.persistence.tos_cache_path),
            },
            "public_suffix": {
                "url": config.public_suffix.url,
                "cache_path": str(config.public_suffix.cache_path),
                "max_age_seconds": config.public_suffix.max_age_seconds,
                "timeout_seconds": config.public_suffix.timeout_seconds,
            },
            "logging": {
                "level": config.logging.level,
                "output_format": config.logging.output_format,
            },
            "main_domain": config.main_domain,
        }

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        return True

    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def apply_env_overrides(config: SystemConfig, environ: Optional[dict] = None) -> SystemConfig:
    """Apply AUTOSSL_* environment overrides to ``config`` in place."""
    env = os.environ if environ is None else environ

    if env.get(ENV_STATE_DB):
        config.persistence.state_db_path = Path(env[ENV_STATE_DB])
    if env.get(ENV_LOG_LEVEL):
        config.logging.level = env[ENV_LOG_LEVEL].lower()
    if env.get(ENV_ACME_ENVIRONMENT):
        config.acme.environment = env[ENV_ACME_ENVIRONMENT].lower()

    return config


def validate_config(config: SystemConfig) -> list[str]:
    """Return a list of problems with ``config`` (empty when valid)."""
    problems = []

    if config.buckets.max_bucket_size < 1:
        problems.append("buckets.max_bucket_size must be positive")
    if not 0 < config.buckets.new_bucket_threshold <= config.buckets.max_bucket_size:
        problems.append("buckets.new_bucket_threshold must be between 1 and max_bucket_size")
    if config.dcv.http_timeout_seconds <= 0 or config.dcv.dns_timeout_seconds <= 0:
        problems.append("dcv timeouts must be positive")
    if config.dcv.poll_interval_seconds <= 0:
        problems.append("dcv.poll_interval_seconds must be positive")
    if config.acme.environment not in VALID_ENVIRONMENTS:
        problems.append(f"acme.environment must be one of: {', '.join(VALID_ENVIRONMENTS)}")
    if config.logging.level not in [level.value for level in LogLevel]:
        problems.append(f"logging.level is unknown: {config.logging.level}")
    if config.logging.output_format not in VALID_OUTPUT_FORMATS:
        problems.append(f"logging.output_format must be one of: {', '.join(VALID_OUTPUT_FORMATS)}")

    return problems


def create_logger(config: SystemConfig) -> AuditLogger:
    try:
        min_level = LogLevel(config.logging.level)
    except ValueError:
        min_level = LogLevel.INFO
    return AuditLogger(output_format=config.logging.output_format, min_level=min_level)


def _load_config(args: argparse.Namespace) -> Optional[SystemConfig]:
    config = None
    if getattr(args, "config", None):
        config = load_config_from_file(Path(args.config))
        if config is None:
            print(f"Error: Could not load config from {args.config}", file=sys.stderr)
            return None
    if config is None:
        config = create_default_config()
    return apply_env_overrides(config)


def cmd_buckets(args: argparse.Namespace) -> int:
    """Handle the 'buckets' command."""
    config = _load_config(args)
    if config is None:
        return 1
    logger = create_logger(config)

    try:
        with open(args.vhosts, "r", encoding="utf-8") as f:
            vhost_to_domains = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error reading vhost map: {e}", file=sys.stderr)
        return 1

    if not isinstance(vhost_to_domains, dict):
        print("Error: vhost map must be a JSON object of vhost -> [domains]", file=sys.stderr)
        return 1

    domain_to_vhost = {
        domain: vhost
        for vhost, domains in vhost_to_domains.items()
        for domain in domains
    }

    try:
        if args.psl:
            psl = PublicSuffixList.from_text(Path(args.psl).read_text(encoding="utf-8"))
        else:
            psl = load_public_suffix_list(config.public_suffix, logger)

        buckets = get_certificate_buckets_grouped_by_registered_domain(
            domain_to_vhost,
            vhost_to_domains,
            RegisteredDomainGrouper(psl),
            main_domain=args.main_domain or config.main_domain,
            collection=VhostBucketCollection(
                config.buckets.max_bucket_size,
                config.buckets.new_bucket_threshold,
            ),
            logger=logger,
        )
    except (AutoSSLError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(
            [{"vhosts": b.vhosts(), "domains": b.domains()} for b in buckets],
            indent=2,
            ensure_ascii=False,
        ))
        return 0

    for index, bucket in enumerate(buckets):
        print(f"Certificate #{index + 1} ({bucket.domain_count()} domains)")
        print(f"  vhosts: {', '.join(bucket.vhosts())}")
        for domain in bucket.domains():
            print(f"    {domain}")
    return 0


def cmd_dcv_cache(args: argparse.Namespace) -> int:
    """Handle the 'dcv-cache' command."""
    config = _load_config(args)
    if config is None:
        return 1
    logger = create_logger(config)

    try:
        account_id = args.account_id or Registration(
            config.persistence.registration_path,
            config.acme.environment,
        ).get_key_id()
        if not account_id:
            print("Error: No ACME account is registered; use --account-id.", file=sys.stderr)
            return 1

        with SavedState(account_id, config.persistence.state_db_path, logger) as state:
            if args.action == "count":
                print(state.count_domains())

            elif args.action == "list":
                for domain in state.get_domains():
                    print(domain)

            elif args.action == "show":
                if not args.domain:
                    print("Error: 'show' needs --domain", file=sys.stderr)
                    return 1
                record = state.get_record(args.domain)
                print(f"{record.domain}:")
                print(f"  success expiry: {record.success_expiry or '-'}")
                print(f"  HTTP error: {record.http_error or '-'}")
                print(f"  DNS error: {record.dns_error or '-'}")

            elif args.action == "purge":
                state.purge_all()
                print("DCV cache purged.")

    except AutoSSLError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_CONFIG_PATH

    if args.action == "show":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return 1
        apply_env_overrides(config)

        print(f"Configuration from: {config_path}")
        print(f"  ACME environment: {config.acme.environment}")
        print(f"  Bucket size: {config.buckets.new_bucket_threshold} (max {config.buckets.max_bucket_size})")
        print(f"  DCV timeouts: HTTP {config.dcv.http_timeout_seconds:g}s, DNS {config.dcv.dns_timeout_seconds:g}s")
        print(f"  DCV cache: {config.persistence.state_db_path}")
        print(f"  Registration: {config.persistence.registration_path}")
        print(f"  Log level: {config.logging.level}")
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1

        config = create_default_config(environment=args.environment)
        if save_config_to_file(config, config_path):
            print(f"Configuration created at: {config_path}")
            return 0
        return 1

    elif args.action == "validate":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return 1

        problems = validate_config(apply_env_overrides(config))
        if problems:
            for problem in problems:
                print(f"Invalid: {problem}", file=sys.stderr)
            return 1

        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="autossl-acme",
        description="Let's Encrypt provider tools for AutoSSL",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'buckets' command
    buckets_parser = subparsers.add_parser(
        "buckets",
        help="Show the certificate buckets for a vhost map",
    )
    buckets_parser.add_argument(
        "vhosts",
        help="JSON file mapping each vhost to its domains",
    )
    buckets_parser.add_argument(
        "--main-domain", "-m",
        help="The account's main domain (its vhost is packed first)",
    )
    buckets_parser.add_argument(
        "--psl",
        help="Local public suffix list file (skips the download)",
    )
    buckets_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the buckets as JSON",
    )
    buckets_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    buckets_parser.set_defaults(func=cmd_buckets)

    # 'dcv-cache' command
    dcv_parser = subparsers.add_parser(
        "dcv-cache",
        help="Inspect the persistent DCV cache",
    )
    dcv_parser.add_argument(
        "action",
        choices=["count", "list", "show", "purge"],
        help="Cache action",
    )
    dcv_parser.add_argument(
        "--domain", "-d",
        help="Domain for 'show'",
    )
    dcv_parser.add_argument(
        "--account-id",
        help="ACME account key id (read from the registration by default)",
    )
    dcv_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    dcv_parser.set_defaults(func=cmd_dcv_cache)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.add_argument(
        "--environment", "-e",
        choices=list(VALID_ENVIRONMENTS),
        default="production",
        help="ACME environment for new configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
