"""Credential store: read-only view of the dashboard's sftp_users table.

The dashboard API owns this table (create/update/toggle users); the bridge
only ever looks users up by name.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol, Tuple, runtime_checkable

import asyncpg

logger = logging.getLogger(__name__)

LOOKUP_SQL = """
SELECT
    username,
    password,
    role,
    enabled,
    allowed_models
FROM sftp_users
WHERE username = $1
"""


@dataclass(frozen=True)
class CredentialRecord:
    username: str
    password_hash: str
    role: str
    enabled: bool
    allowed_models: Tuple[str, ...] = field(default_factory=tuple)


@runtime_checkable
class CredentialStore(Protocol):
    async def get_user(self, username: str) -> Optional[CredentialRecord]:
        """Return the record for ``username`` or None if it does not exist."""
        ...


class PostgresCredentialStore:
    """Looks users up in PostgreSQL through a shared asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def get_user(self, username: str) -> Optional[CredentialRecord]:
        row = await self._pool.fetchrow(LOOKUP_SQL, username)
        if row is None:
            return None
        return CredentialRecord(
            username=row["username"],
            password_hash=row["password"] or "",
            role=row["role"] or "",
            enabled=bool(row["enabled"]),
            allowed_models=tuple(row["allowed_models"] or ()),
        )
