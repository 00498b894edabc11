"""
Public suffix list.

Parses the publicsuffix.org list format (plain, wildcard and exception
rules) and answers whether a name is itself a public suffix. The list
is downloaded over HTTPS and cached on disk; a failed download falls
back to the cached copy.
"""

import time
from pathlib import Path
from typing import Iterable, Optional

import httpx
import idna

from autossl_acme.audit_logger import AuditLogger
from autossl_acme.config import PublicSuffixConfig
from autossl_acme.enums import LogLevel
from autossl_acme.exceptions import PersistenceError
from autossl_acme.fileutil import write_text_atomic


class PublicSuffixList:
    """
    In-memory public suffix rules.

    Rules are stored in their IDNA (ASCII) form.
    """

    def __init__(
        self,
        rules: Iterable[str] = (),
        wildcards: Iterable[str] = (),
        exceptions: Iterable[str] = (),
    ) -> None:
        self._rules = set(rules)
        self._wildcards = set(wildcards)  # bases of '*.' rules
        self._exceptions = set(exceptions)

    @classmethod
    def from_text(cls, text: str) -> "PublicSuffixList":
        """Parse the contents of public_suffix_list.dat."""
        rules: set[str] = set()
        wildcards: set[str] = set()
        exceptions: set[str] = set()

        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("//"):
                continue

            entry = _to_ascii(line.split()[0])
            if entry is None:
                continue

            if entry.startswith("!"):
                exceptions.add(entry[1:])
            elif entry.startswith("*."):
                wildcards.add(entry[2:])
            else:
                rules.add(entry)

        return cls(rules=rules, wildcards=wildcards, exceptions=exceptions)

    def __len__(self) -> int:
        return len(self._rules) + len(self._wildcards) + len(self._exceptions)

    def is_a_registered_tld(self, candidate: str) -> bool:
        """True if ``candidate`` is a public suffix (e.g. 'com', 'co.uk')."""
        name = _to_ascii(candidate.strip().rstrip("."))
        if not name:
            return False

        if name in self._exceptions:
            return False
        if name in self._rules:
            return True

        _, sep, parent = name.partition(".")
        if sep and parent in self._wildcards:
            return True

        # Default rule "*": an unlisted single label is a TLD.
        return "." not in name


def _to_ascii(entry: str) -> Optional[str]:
    entry = entry.lower()
    if all(ord(c) < 128 for c in entry):
        return entry

    prefix = ""
    for marker in ("!", "*."):
        if entry.startswith(marker):
            prefix, entry = marker, entry[len(marker):]
            break
    try:
        return prefix + idna.encode(entry, uts46=True).decode("ascii")
    except idna.IDNAError:
        return None


def load_public_suffix_list(
    config: Optional[PublicSuffixConfig] = None,
    logger: Optional[AuditLogger] = None,
    client: Optional[httpx.Client] = None,
) -> PublicSuffixList:
    """
    Load the public suffix list, refreshing the on-disk cache when stale.

    Args:
        config: Source URL, cache location and maximum cache age
        logger: Optional audit logger
        client: Optional httpx client (a short-lived one otherwise)

    Raises:
        PersistenceError: If neither a download nor a cached copy is available
    """
    config = config or PublicSuffixConfig()
    cache_path = Path(config.cache_path)

    if not _is_fresh(cache_path, config.max_age_seconds):
        text = _download(config, logger, client)
        if text is not None:
            try:
                write_text_atomic(cache_path, text)
            except OSError as e:
                _log(logger, LogLevel.WARN, f"Unable to write public suffix list to {cache_path}: {e}")
            return PublicSuffixList.from_text(text)
    else:
        _log(logger, LogLevel.DEBUG, "Cached public suffix list is recent")

    try:
        text = cache_path.read_text(encoding="utf-8")
    except OSError as e:
        raise PersistenceError(
            code="public_suffix_list_unavailable",
            message=f"Unable to load public suffix list: {e}",
            details={"cache_path": str(cache_path), "url": config.url},
        )

    psl = PublicSuffixList.from_text(text)
    if not len(psl):
        raise PersistenceError(
            code="public_suffix_list_empty",
            message=f"Public suffix list at {cache_path} has no rules",
            details={"cache_path": str(cache_path)},
        )
    return psl


def _is_fresh(path: Path, max_age_seconds: int) -> bool:
    try:
        return time.time() - path.stat().st_mtime < max_age_seconds
    except OSError:
        return False


def _download(
    config: PublicSuffixConfig,
    logger: Optional[AuditLogger],
    client: Optional[httpx.Client],
) -> Optional[str]:
    _log(logger, LogLevel.INFO, f"Fetching public suffix list from {config.url}")
    try:
        if client is not None:
            response = client.get(config.url, timeout=config.timeout_seconds)
        else:
            with httpx.Client(verify=True, follow_redirects=True) as own_client:
                response = own_client.get(config.url, timeout=config.timeout_seconds)
        response.raise_for_status()
    except httpx.HTTPError as e:
        _log(logger, LogLevel.WARN, f"Unable to retrieve public suffix list from {config.url}: {e}")
        return None
    return response.text


def _log(logger: Optional[AuditLogger], level: LogLevel, message: str) -> None:
    if logger:
        logger.log(level, "public_suffix", message)
