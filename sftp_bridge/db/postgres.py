"""asyncpg pool for the sftp_users lookups. The bridge never writes."""

import asyncio
import logging
import ssl
from typing import Optional

import asyncpg

logger = logging.getLogger(__name__)

CONNECT_ATTEMPTS = 10
CONNECT_BACKOFF_SEC = 3.0
POOL_MIN_SIZE = 1
POOL_MAX_SIZE = 5
QUERY_TIMEOUT_SEC = 10

_RETRYABLE = (OSError, asyncpg.PostgresError, asyncpg.InterfaceError)


def build_ssl_context(enabled: bool) -> Optional[ssl.SSLContext]:
    if not enabled:
        return None
    # Encrypted, certificate not verified (managed Postgres with a private CA).
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


async def init_pg_pool(
    dsn: str,
    use_ssl: bool = False,
    attempts: int = CONNECT_ATTEMPTS,
    backoff: float = CONNECT_BACKOFF_SEC,
) -> asyncpg.Pool:
    """Open the credential pool, waiting for the database to come up."""
    ssl_ctx = build_ssl_context(use_ssl)
    attempt = 0
    while True:
        attempt += 1
        try:
            pool = await asyncpg.create_pool(
                dsn=dsn,
                min_size=POOL_MIN_SIZE,
                max_size=POOL_MAX_SIZE,
                command_timeout=QUERY_TIMEOUT_SEC,
                ssl=ssl_ctx,
            )
        except _RETRYABLE as exc:
            if attempt >= attempts:
                logger.error(f"Credential database unreachable after {attempts} attempts: {exc}")
                raise
            logger.warning(
                f"Credential database not ready ({attempt}/{attempts}): {exc}; "
                f"retrying in {backoff}s"
            )
            await asyncio.sleep(backoff)
            continue
        logger.info(f"Credential pool ready (ssl={'on' if ssl_ctx else 'off'})")
        return pool


async def close_pg_pool(pool: Optional[asyncpg.Pool]) -> None:
    if pool is None:
        return
    await pool.close()
    logger.info("Credential pool closed")
