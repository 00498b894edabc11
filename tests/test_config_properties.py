"""
Property-based tests for configuration module.

Uses Hypothesis for property-based testing to verify that configuration
files round-trip without data loss and that environment overrides and
validation behave as documented.
"""

import json
import tempfile
from pathlib import Path

from hypothesis import given, settings
from hypothesis import strategies as st

from autossl_acme.cli import (
    ENV_ACME_ENVIRONMENT,
    ENV_LOG_LEVEL,
    ENV_STATE_DB,
    apply_env_overrides,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
    validate_config,
)
from autossl_acme.config import (
    ACMEConfig,
    BucketConfig,
    DCVConfig,
    LoggingConfig,
    PersistenceConfig,
    PublicSuffixConfig,
    SystemConfig,
)


# Strategies for generating valid configuration objects

PATHS = st.text(
    alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789_-"),
    min_size=1,
    max_size=20,
).map(lambda s: Path(f"/var/lib/autossl/{s}"))


@st.composite
def bucket_config_strategy(draw) -> BucketConfig:
    """Generate valid BucketConfig objects."""
    max_size = draw(st.integers(min_value=1, max_value=100))
    return BucketConfig(
        max_bucket_size=max_size,
        new_bucket_threshold=draw(st.integers(min_value=1, max_value=max_size)),
    )


@st.composite
def dcv_config_strategy(draw) -> DCVConfig:
    """Generate valid DCVConfig objects."""
    return DCVConfig(
        http_timeout_seconds=draw(st.floats(min_value=1.0, max_value=600.0)),
        dns_timeout_seconds=draw(st.floats(min_value=1.0, max_value=3600.0)),
        poll_interval_seconds=draw(st.floats(min_value=0.1, max_value=10.0)),
        expiry_margin_seconds=draw(st.integers(min_value=0, max_value=86400 * 7)),
    )


@st.composite
def system_config_strategy(draw) -> SystemConfig:
    """Generate valid SystemConfig objects."""
    return SystemConfig(
        buckets=draw(bucket_config_strategy()),
        dcv=draw(dcv_config_strategy()),
        acme=ACMEConfig(
            environment=draw(st.sampled_from(["production", "staging"])),
            terms_of_service_timeout_seconds=draw(st.floats(min_value=1.0, max_value=120.0)),
            key_size=draw(st.sampled_from([2048, 3072, 4096])),
        ),
        persistence=PersistenceConfig(
            state_db_path=draw(PATHS),
            registration_path=draw(PATHS),
            tos_cache_path=draw(PATHS),
        ),
        public_suffix=PublicSuffixConfig(
            url=draw(st.sampled_from([
                "https://publicsuffix.org/list/public_suffix_list.dat",
                "https://mirror.example/psl.dat",
            ])),
            cache_path=draw(PATHS),
            max_age_seconds=draw(st.integers(min_value=60, max_value=86400 * 30)),
            timeout_seconds=draw(st.floats(min_value=1.0, max_value=60.0)),
        ),
        logging=LoggingConfig(
            level=draw(st.sampled_from(["debug", "info", "warn", "error"])),
            output_format=draw(st.sampled_from(["json", "text", "both"])),
        ),
        main_domain=draw(st.one_of(st.none(), st.just("host.example.com"))),
    )


class TestConfigurationRoundTripProperty:
    """
    Property-based tests for configuration file round-trip.

    **Feature: autossl-acme, Property 20: Configuration round-trips without data loss**
    """

    @given(config=system_config_strategy())
    @settings(max_examples=100, deadline=None)
    def test_config_round_trip_preserves_data(self, config: SystemConfig) -> None:
        """
        Property 20: Configuration round-trips without data loss.

        *For any* valid SystemConfig object, saving it to a file and loading
        it back SHALL produce an equal SystemConfig object.
        """
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "acme.json"

            assert save_config_to_file(config, path)
            loaded = load_config_from_file(path)

        assert loaded == config

    @given(config=system_config_strategy())
    @settings(max_examples=100, deadline=None)
    def test_saved_config_is_valid_json(self, config: SystemConfig) -> None:
        """
        Property 20b: Saved configuration is valid JSON.

        *For any* valid SystemConfig, the saved file SHALL parse as a JSON
        object holding every configuration section.
        """
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "acme.json"
            save_config_to_file(config, path)
            parsed = json.loads(path.read_text(encoding="utf-8"))

        assert set(parsed) == {
            "buckets", "dcv", "acme", "persistence", "public_suffix", "logging", "main_domain",
        }

    @given(config=system_config_strategy())
    @settings(max_examples=100)
    def test_generated_configs_validate(self, config: SystemConfig) -> None:
        """
        Property 20c: Generated configurations pass validation.

        *For any* SystemConfig built from valid settings, validate_config()
        SHALL report no problems.
        """
        assert validate_config(config) == []


class TestConfigLoading:
    def test_missing_sections_use_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "acme.json"
        path.write_text(json.dumps({"buckets": {"new_bucket_threshold": 10}}), encoding="utf-8")

        config = load_config_from_file(path)

        assert config.buckets.new_bucket_threshold == 10
        assert config.buckets.max_bucket_size == 100
        assert config.dcv == DCVConfig()
        assert config.main_domain is None

    def test_missing_file_returns_none(self, tmp_path: Path) -> None:
        assert load_config_from_file(tmp_path / "absent.json") is None

    def test_invalid_json_returns_none(self, tmp_path: Path) -> None:
        path = tmp_path / "acme.json"
        path.write_text("{not json", encoding="utf-8")

        assert load_config_from_file(path) is None

    def test_default_config_uses_state_dir(self, tmp_path: Path) -> None:
        config = create_default_config("staging", state_dir=tmp_path)

        assert config.acme.environment == "staging"
        assert config.persistence.state_db_path.parent == tmp_path
        assert config.public_suffix.cache_path.parent == tmp_path


class TestEnvOverrides:
    def test_overrides_apply(self, tmp_path: Path) -> None:
        config = create_default_config()
        env = {
            ENV_STATE_DB: str(tmp_path / "cache.sqlite"),
            ENV_LOG_LEVEL: "DEBUG",
            ENV_ACME_ENVIRONMENT: "Staging",
        }

        apply_env_overrides(config, env)

        assert config.persistence.state_db_path == tmp_path / "cache.sqlite"
        assert config.logging.level == "debug"
        assert config.acme.environment == "staging"

    def test_empty_values_are_ignored(self) -> None:
        config = create_default_config()

        apply_env_overrides(config, {ENV_LOG_LEVEL: ""})

        assert config.logging.level == "info"


class TestValidation:
    def test_threshold_above_max_is_reported(self) -> None:
        config = SystemConfig(buckets=BucketConfig(max_bucket_size=10, new_bucket_threshold=20))

        assert validate_config(config) == [
            "buckets.new_bucket_threshold must be between 1 and max_bucket_size",
        ]

    def test_unknown_values_are_reported(self) -> None:
        config = SystemConfig(
            acme=ACMEConfig(environment="testing"),
            logging=LoggingConfig(level="loud", output_format="xml"),
            dcv=DCVConfig(poll_interval_seconds=0),
        )

        problems = validate_config(config)

        assert len(problems) == 4
        assert any("acme.environment" in p for p in problems)
        assert any("logging.level" in p for p in problems)
        assert any("logging.output_format" in p for p in problems)
        assert any("poll_interval" in p for p in problems)
