"""
Persistent DCV cache.

Keeps, per domain, either the expiry of a successful DCV or the text of
the last HTTP and/or DNS DCV failure, so that an AutoSSL run interrupted
by the CA's order rate limit can resume without redoing DCV.

The store is a SQLite file bound to one ACME account: opening it with a
different account id purges everything recorded so far.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from autossl_acme.audit_logger import AuditLogger
from autossl_acme.enums import LogLevel
from autossl_acme.exceptions import DCVStateConflictError, PersistenceError
from autossl_acme.models import DCVRecord
from autossl_acme.timeutil import parse_rfc3339


DEFAULT_DB_PATH = Path("/var/lib/autossl/letsencrypt-v2-dcvcache.sqlite")

SCHEMA_VERSION = 1

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS metadata (key text primary key, value text)",
    """
    CREATE TABLE IF NOT EXISTS successes (
        domain text not null primary key,
        expiry text not null
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS http_errors (
        domain text not null primary key,
        error text not null
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dns_errors (
        domain text not null primary key,
        error text not null
    )
    """,
)

_ALL_DOMAINS_QUERY = (
    "SELECT domain FROM successes"
    " UNION SELECT domain FROM http_errors"
    " UNION SELECT domain FROM dns_errors"
)

_ERROR_TABLES = ("http_errors", "dns_errors")


class SavedState:
    """
    SQLite-backed DCV cache bound to one ACME account.

    Every logical operation runs inside its own savepoint, rolled back if
    any statement fails. A domain never holds a success and an error at
    the same time.

    Args:
        account_id: The ACME account's key id
        db_path: Location of the SQLite file
        logger: Optional audit logger

    Raises:
        PersistenceError: If the database cannot be opened for writing
    """

    def __init__(
        self,
        account_id: str,
        db_path: Union[str, Path] = DEFAULT_DB_PATH,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._db_path = Path(db_path)
        self._logger = logger
        self._conn = self._connect()
        self._ensure_schema(account_id)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            # Autocommit; transactions are managed with explicit savepoints.
            conn = sqlite3.connect(str(self._db_path), isolation_level=None, timeout=30.0)
        except (OSError, sqlite3.Error) as e:
            raise PersistenceError(
                code="state_open_failed",
                message=f"SQLite open({self._db_path}): {e}",
                details={"db_path": str(self._db_path)},
            )

        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._conn
        conn.execute("SAVEPOINT __general")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK TO SAVEPOINT __general")
            raise
        finally:
            conn.execute("RELEASE SAVEPOINT __general")

    def _ensure_schema(self, account_id: str) -> None:
        try:
            with self._transaction() as conn:
                for statement in _SCHEMA:
                    conn.execute(statement)

                conn.execute(
                    "REPLACE INTO metadata (key, value) VALUES (?, ?)",
                    ("schema_version", str(SCHEMA_VERSION)),
                )

                row = conn.execute(
                    "SELECT value FROM metadata WHERE key=?", ("acme_account_id",)
                ).fetchone()
                saved_account_id = row[0] if row else None

                if saved_account_id and saved_account_id != account_id:
                    if self._logger:
                        self._logger.log(
                            LogLevel.WARN,
                            "saved_state",
                            "The current ACME account ID differs from the one in the DCV cache. "
                            "Purging cached DCV data …",
                            {"account_id": account_id, "saved_account_id": saved_account_id},
                        )
                    self.purge_all()

                if saved_account_id != account_id:
                    conn.execute(
                        "REPLACE INTO metadata (key, value) VALUES (?, ?)",
                        ("acme_account_id", account_id),
                    )
        except sqlite3.Error as e:
            raise PersistenceError(
                code="state_schema_failed",
                message=f"Failed to initialize DCV cache {self._db_path}: {e}",
                details={"db_path": str(self._db_path)},
            )

    def get_account_id(self) -> Optional[str]:
        row = self._conn.execute(
            "SELECT value FROM metadata WHERE key=?", ("acme_account_id",)
        ).fetchone()
        return row[0] if row else None

    def count_domains(self) -> int:
        """Number of domains with any recorded DCV information."""
        return self._conn.execute(f"SELECT COUNT(*) FROM ({_ALL_DOMAINS_QUERY})").fetchone()[0]

    def get_domains(self) -> list[str]:
        return [row[0] for row in self._conn.execute(_ALL_DOMAINS_QUERY + " ORDER BY domain")]

    def get_domain_info(self, domain: str) -> tuple[Optional[str], Optional[str], Optional[str]]:
        """
        Return ``(success_expiry, http_error, dns_error)`` for a domain.

        The expiry may already be in the past or very close; callers
        decide whether it is still usable.
        """
        conn = self._conn
        expiry = conn.execute("SELECT expiry FROM successes WHERE domain=?", (domain,)).fetchone()
        http = conn.execute("SELECT error FROM http_errors WHERE domain=?", (domain,)).fetchone()
        dns = conn.execute("SELECT error FROM dns_errors WHERE domain=?", (domain,)).fetchone()
        return (
            expiry[0] if expiry else None,
            http[0] if http else None,
            dns[0] if dns else None,
        )

    def get_record(self, domain: str) -> DCVRecord:
        expiry, http_error, dns_error = self.get_domain_info(domain)
        return DCVRecord(
            domain=domain,
            success_expiry=expiry,
            http_error=http_error,
            dns_error=dns_error,
        )

    def set_success_expiry(self, domain: str, expiry: str) -> "SavedState":
        """
        Record a DCV success valid until ``expiry`` (RFC 3339).

        Raises:
            ValidationError: If ``expiry`` is not RFC 3339
            DCVStateConflictError: If the domain already has an error
        """
        parse_rfc3339(expiry)

        with self._transaction() as conn:
            for table, label in zip(_ERROR_TABLES, ("an HTTP", "a DNS")):
                row = conn.execute(f"SELECT error FROM {table} WHERE domain=?", (domain,)).fetchone()
                if row is not None:
                    raise DCVStateConflictError(
                        code="dcv_state_conflict",
                        message=f"“{domain}” already has {label} error!",
                        details={"domain": domain, "table": table},
                    )
            conn.execute(
                "INSERT OR REPLACE INTO successes (domain, expiry) VALUES (?, ?)",
                (domain, expiry),
            )
        return self

    def set_http_error(self, domain: str, error: str) -> "SavedState":
        """Record the text of an HTTP DCV failure."""
        return self._set_error(domain, "http_errors", error)

    def set_dns_error(self, domain: str, error: str) -> "SavedState":
        """Record the text of a DNS DCV failure."""
        return self._set_error(domain, "dns_errors", error)

    def _set_error(self, domain: str, table: str, error: str) -> "SavedState":
        with self._transaction() as conn:
            row = conn.execute("SELECT expiry FROM successes WHERE domain=?", (domain,)).fetchone()
            if row is not None:
                raise DCVStateConflictError(
                    code="dcv_state_conflict",
                    message=f"“{domain}” already has a success!",
                    details={"domain": domain, "table": table},
                )
            conn.execute(f"REPLACE INTO {table} (domain, error) VALUES (?, ?)", (domain, error))
        return self

    def purge_all(self) -> "SavedState":
        """Remove all domain information."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM successes")
            conn.execute("DELETE FROM http_errors")
            conn.execute("DELETE FROM dns_errors")
        return self

    def purge_errors(self) -> "SavedState":
        """
        Remove recorded DCV failures.

        Successes stay until their expiry so the next check can reuse them.
        """
        with self._transaction() as conn:
            conn.execute("DELETE FROM http_errors")
            conn.execute("DELETE FROM dns_errors")
        return self

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SavedState":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
