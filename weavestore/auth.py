"""Authentication providers.

The sync handler only needs ``authenticate(username, password)`` and the
optional per-user alert message. Providers are selected by configuration
through :func:`get_authenticator`.
"""

import contextlib
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

import bcrypt

from .config import WeaveConfig
from .errors import BadRequestError, ConfigurationError, StorageUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a credential check."""

    ok: bool
    alert: str = ""


@runtime_checkable
class Authenticator(Protocol):
    def authenticate(self, username: str, password: str) -> AuthResult: ...

    def user_alert(self, username: str) -> str: ...


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode(), hashed.encode())
    except ValueError:
        return False


class NoAuthentication:
    """Accepts every credential. For deployments that authenticate upstream."""

    def authenticate(self, username: str, password: str) -> AuthResult:
        return AuthResult(ok=True, alert=self.user_alert(username))

    def user_alert(self, username: str) -> str:
        return ""


USERS_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    username TEXT PRIMARY KEY,
    password_hash TEXT NOT NULL,
    email TEXT,
    alert TEXT
)
"""


class SQLiteAuthentication:
    """Username/password store in a SQLite ``users`` table."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    @contextlib.contextmanager
    def _connect(self):
        """Connection that commits on success, rolls back on error and always closes."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path)
            conn.execute(USERS_SCHEMA)
        except (OSError, sqlite3.Error) as e:
            logger.error(f"open_connection: {e}")
            raise StorageUnavailableError() from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Authentication database error: {e}")
            raise StorageUnavailableError() from e
        finally:
            conn.close()

    def create_user(
        self, username: str, password: str, email: str = "", alert: Optional[str] = None
    ) -> None:
        if not username:
            raise BadRequestError("3")
        if not password:
            raise BadRequestError("7")
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO users (username, password_hash, email, alert) "
                "VALUES (?, ?, ?, ?)",
                (username.lower(), hash_password(password), email, alert),
            )

    def set_alert(self, username: str, alert: Optional[str]) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET alert = ? WHERE username = ?", (alert, username.lower())
            )

    def authenticate(self, username: str, password: str) -> AuthResult:
        if not username or not password:
            return AuthResult(ok=False)
        with self._connect() as conn:
            row = conn.execute(
                "SELECT password_hash, alert FROM users WHERE username = ?",
                (username.lower(),),
            ).fetchone()
        if row is None or not verify_password(password, row[0]):
            return AuthResult(ok=False)
        return AuthResult(ok=True, alert=row[1] or "")

    def user_alert(self, username: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT alert FROM users WHERE username = ?", (username.lower(),)
            ).fetchone()
        return (row[0] or "") if row else ""


AUTH_ENGINES = ("none", "sqlite")


def get_authenticator(config: WeaveConfig) -> Authenticator:
    """Return the authentication provider for the configured engine."""
    if config.auth_engine == "none":
        return NoAuthentication()
    if config.auth_engine == "sqlite":
        return SQLiteAuthentication(config.auth_sqlite_path)
    raise ConfigurationError(f"Unknown authentication engine: {config.auth_engine}")
