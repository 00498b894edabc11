"""
Cache of the ACME server's terms-of-service URL.

The server is always asked first; the cached URL is only used when that
request fails or takes too long, so an outage at the CA does not block
callers that just want to show the terms.
"""

import signal
from pathlib import Path
from typing import Optional, Union

from autossl_acme.audit_logger import AuditLogger
from autossl_acme.enums import LogLevel
from autossl_acme.exceptions import AutoSSLError, PersistenceError
from autossl_acme.fileutil import write_text_atomic
from autossl_acme.interfaces import ACMEClient


DEFAULT_TIMEOUT_SECONDS = 30.0


def get_terms_of_service(
    acme: ACMEClient,
    cache_path: Union[str, Path],
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    logger: Optional[AuditLogger] = None,
) -> str:
    """
    Return the terms-of-service URL, best effort.

    Args:
        acme: ACME client
        cache_path: File holding the last URL fetched
        timeout: Seconds to wait for the server
        logger: Optional audit logger

    Returns:
        The URL from the server, or the cached one if the server failed

    Raises:
        PersistenceError: If the server failed and there is no cache
    """
    cache_path = Path(cache_path)
    url = _fetch_with_timeout(acme, timeout, logger)

    if url:
        try:
            write_text_atomic(cache_path, url)
        except OSError as e:
            _warn(logger, f"Failed to write terms of service cache {cache_path}: {e}")
        return url

    try:
        return "".join(cache_path.read_text(encoding="utf-8").split())
    except OSError as e:
        raise PersistenceError(
            code="tos_cache_unavailable",
            message=f"Failed to read terms of service cache {cache_path}: {e}",
            details={"cache_path": str(cache_path)},
        )


def _fetch_with_timeout(
    acme: ACMEClient,
    timeout: float,
    logger: Optional[AuditLogger],
) -> Optional[str]:
    """
    Ask the server for the URL, giving up after ``timeout`` seconds.

    The deadline is a SIGALRM timer, so this must run in the main thread.
    """
    name = type(acme).__name__
    previous_handler = signal.signal(signal.SIGALRM, _raise_timeout)
    try:
        signal.setitimer(signal.ITIMER_REAL, timeout)
        try:
            return acme.get_terms_of_service()
        finally:
            signal.setitimer(signal.ITIMER_REAL, 0)
    except _TermsOfServiceTimeout:
        _warn(logger, f"{name}.get_terms_of_service(): Timed out! Reading terms of service cache …")
    except (AutoSSLError, OSError) as e:
        _warn(logger, f"{name}.get_terms_of_service(): {e}\nReading terms of service cache …")
    finally:
        if previous_handler is None:
            previous_handler = signal.SIG_DFL
        signal.signal(signal.SIGALRM, previous_handler)
    return None


class _TermsOfServiceTimeout(Exception):
    pass


def _raise_timeout(signum, frame) -> None:
    raise _TermsOfServiceTimeout()


def _warn(logger: Optional[AuditLogger], message: str) -> None:
    if logger:
        logger.log(LogLevel.WARN, "tos_cache", message)
