"""
Tests for the account registration file and the terms-of-service cache.
"""

import json
import signal
import stat
import threading
import time
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from hypothesis import given, settings
from hypothesis import strategies as st

from autossl_acme.audit_logger import AuditLogger
from autossl_acme.enums import LogLevel
from autossl_acme.exceptions import ACMEProtocolError, PersistenceError, ValidationError
from autossl_acme.models import ACMEProblem
from autossl_acme.registration import Registration
from autossl_acme.tos_cache import get_terms_of_service

from acme_fakes import FakeACMEClient


class _Factory:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def __call__(self, key_pem, key_id, environment):
        self.calls.append((key_pem, key_id, environment))
        return FakeACMEClient(key_id=key_id)


class TestKeyIdProperty:
    """
    Property-based tests for the saved key id.

    **Feature: autossl-acme, Property 22: A saved key id is handed to every later client**
    """

    @given(key_id=st.text(
        alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789/:."),
        min_size=1,
        max_size=60,
    ))
    @settings(max_examples=25, deadline=None)
    def test_key_id_round_trip(self, tmp_path_factory, key_id: str) -> None:
        """
        Property 22: A saved key id is handed to every later client.

        *For any* key id saved after registration, later clients SHALL be
        built with the same account key and that key id.
        """
        path = tmp_path_factory.mktemp("reg") / "registration.json"
        factory = _Factory()
        registration = Registration(path, environment="staging")

        registration.get_acme(factory)
        registration.save_key_id(key_id)
        Registration(path, environment="staging").get_acme(factory)

        (first_key, first_id, _), (second_key, second_id, environment) = factory.calls
        assert first_id is None
        assert second_key == first_key
        assert second_id == key_id
        assert environment == "staging"
        assert registration.get_key_id() == key_id


class TestRegistration:
    def test_new_key_is_private_p384(self, tmp_path: Path) -> None:
        path = tmp_path / "registration.json"
        factory = _Factory()

        Registration(path).get_acme(factory)

        key = serialization.load_pem_private_key(factory.calls[0][0].encode("ascii"), password=None)
        assert isinstance(key, ec.EllipticCurvePrivateKey)
        assert key.curve.name == "secp384r1"
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert set(json.loads(path.read_text(encoding="utf-8"))) == {"private_key_pem"}

    def test_save_key_id_needs_registration(self, tmp_path: Path) -> None:
        with pytest.raises(PersistenceError) as exc_info:
            Registration(tmp_path / "registration.json").save_key_id("https://acme.test/acct/1")
        assert exc_info.value.code == "registration_missing"

    def test_empty_key_id_is_rejected(self, tmp_path: Path) -> None:
        registration = Registration(tmp_path / "registration.json")
        registration.get_acme(_Factory())

        with pytest.raises(ValidationError):
            registration.save_key_id("")

    def test_corrupt_file(self, tmp_path: Path) -> None:
        path = tmp_path / "registration.json"
        path.write_text("{", encoding="utf-8")

        with pytest.raises(PersistenceError) as exc_info:
            Registration(path).get_key_id()
        assert exc_info.value.code == "registration_corrupt"

    def test_forget(self, tmp_path: Path) -> None:
        registration = Registration(tmp_path / "registration.json")
        registration.get_acme(_Factory())

        assert registration.forget()
        assert not registration.forget()
        assert registration.get_key_id() is None


class TestTermsOfServiceCache:
    def test_server_answer_is_cached(self, tmp_path: Path) -> None:
        acme = FakeACMEClient()
        cache = tmp_path / "tos_cache"

        assert get_terms_of_service(acme, cache) == acme.terms_of_service
        assert cache.read_text(encoding="utf-8") == acme.terms_of_service

    def test_server_is_preferred_over_cache(self, tmp_path: Path) -> None:
        acme = FakeACMEClient()
        cache = tmp_path / "tos_cache"
        cache.write_text("https://acme.test/terms-v0.pdf", encoding="utf-8")

        assert get_terms_of_service(acme, cache) == acme.terms_of_service

    def test_failure_falls_back_to_cache(self, tmp_path: Path) -> None:
        acme = FakeACMEClient()
        acme.terms_error = ACMEProtocolError(ACMEProblem(type="urn:ietf:params:acme:error:serverInternal"))
        cache = tmp_path / "tos_cache"
        cache.write_text(" https://acme.test/terms-v0.pdf\n", encoding="utf-8")
        logger = AuditLogger(output_format="json")

        assert get_terms_of_service(acme, cache, logger=logger) == "https://acme.test/terms-v0.pdf"
        assert logger.entries[0].level == LogLevel.WARN
        assert "Reading terms of service cache" in logger.entries[0].message

    def test_timeout_falls_back_to_cache(self, tmp_path: Path) -> None:
        class _HungClient(FakeACMEClient):
            def get_terms_of_service(self) -> str:
                time.sleep(5)
                return "https://acme.test/too-late.pdf"

        cache = tmp_path / "tos_cache"
        cache.write_text("https://acme.test/terms-v0.pdf", encoding="utf-8")
        logger = AuditLogger(output_format="json")
        threads_before = threading.active_count()
        started = time.monotonic()

        url = get_terms_of_service(_HungClient(), cache, timeout=0.05, logger=logger)

        assert url == "https://acme.test/terms-v0.pdf"
        assert time.monotonic() - started < 2
        assert threading.active_count() == threads_before
        assert "Timed out" in logger.entries[0].message

    def test_alarm_handler_is_restored(self, tmp_path: Path) -> None:
        acme = FakeACMEClient()
        before = signal.getsignal(signal.SIGALRM)

        get_terms_of_service(acme, tmp_path / "tos_cache", timeout=1)

        assert signal.getsignal(signal.SIGALRM) == before
        assert signal.getitimer(signal.ITIMER_REAL) == (0.0, 0.0)

    def test_failure_without_cache_raises(self, tmp_path: Path) -> None:
        acme = FakeACMEClient()
        acme.terms_error = OSError("connection reset")

        with pytest.raises(PersistenceError) as exc_info:
            get_terms_of_service(acme, tmp_path / "tos_cache")
        assert exc_info.value.code == "tos_cache_unavailable"
