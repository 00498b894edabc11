"""
Server-wide ACME account registration.

The account key and key id are kept in one JSON file
(``{"private_key_pem": ..., "uri": ...}``) readable only by its owner.
"""

import json
from pathlib import Path
from typing import Callable, Optional, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from autossl_acme.exceptions import PersistenceError, ValidationError
from autossl_acme.fileutil import write_text_atomic
from autossl_acme.interfaces import ACMEClient


DEFAULT_REGISTRATION_PATH = Path("/var/lib/autossl/letsencrypt-v2.json")

# (key_pem, key_id, environment) -> client
ACMEClientFactory = Callable[[str, Optional[str], str], ACMEClient]


def create_account_key() -> str:
    """Generate a PEM-encoded secp384r1 account key."""
    key = ec.generate_private_key(ec.SECP384R1())
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


class Registration:
    """
    Loads and stores the account registration.

    Args:
        path: Location of the registration file
        environment: 'production' or 'staging'
    """

    def __init__(
        self,
        path: Union[str, Path] = DEFAULT_REGISTRATION_PATH,
        environment: str = "production",
    ) -> None:
        self._path = Path(path)
        self._environment = environment

    @property
    def path(self) -> Path:
        return self._path

    def get_acme(self, factory: ACMEClientFactory) -> ACMEClient:
        """
        Build an ACME client from the saved key and key id.

        A new account key is created and saved if no registration exists.
        """
        cache = self._get_cache()
        if cache is not None:
            key_pem = cache["private_key_pem"]
            key_id = cache.get("uri")
        else:
            key_pem = create_account_key()
            key_id = None
            self._set_cache({"private_key_pem": key_pem})

        return factory(key_pem, key_id, self._environment)

    def get_key_id(self) -> Optional[str]:
        cache = self._get_cache()
        return cache.get("uri") if cache else None

    def save_key_id(self, key_id: str) -> None:
        """
        Store the key id in the existing registration.

        Raises:
            PersistenceError: If no registration exists
            ValidationError: If ``key_id`` is empty
        """
        cache = self._get_cache()
        if cache is None:
            raise PersistenceError(
                code="registration_missing",
                message="ACME registration cache is missing!",
                details={"path": str(self._path)},
            )
        if not key_id:
            raise ValidationError(code="empty_key_id", message="No key ID given!")

        cache["uri"] = key_id
        self._set_cache(cache)

    def forget(self) -> bool:
        """Delete the registration; False if there was none."""
        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        return True

    def _get_cache(self) -> Optional[dict]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="registration_corrupt",
                message=f"Invalid registration file {self._path}: {e}",
                details={"path": str(self._path)},
            )

    def _set_cache(self, cache: dict) -> None:
        write_text_atomic(self._path, json.dumps(cache), mode=0o600)
