"""Immutable runtime configuration for the storage core."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_PAYLOAD_MAX_SIZE = 262144  # 256K
DEFAULT_QUOTA_KB = 5000


@dataclass(frozen=True)
class WeaveConfig:
    """Engine selection, connection parameters and limits.

    Built once at process start and handed to every component that needs it.
    """

    storage_engine: str = "sqlite"
    sqlite_path: Path = Path("weave.db")
    postgres_dsn: Optional[str] = None
    auth_engine: str = "none"
    auth_sqlite_path: Path = Path("weave_users.db")
    payload_max_size: int = DEFAULT_PAYLOAD_MAX_SIZE  # bytes, 0 for unlimited
    quota_kb: Optional[int] = DEFAULT_QUOTA_KB  # None for unbounded
