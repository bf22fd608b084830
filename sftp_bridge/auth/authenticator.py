import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from sftp_bridge.auth.context import UserContext
from sftp_bridge.auth.credentials import CredentialStore
from sftp_bridge.auth.security import dummy_verify, verify_password
from sftp_bridge.common.audit import log_auth_attempt
from sftp_bridge.common.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

HASH_WORKERS = 4


class Authenticator:
    """Checks username/password against the credential store.

    Every outcome is audited with its real reason, but callers only learn
    success (a UserContext) or failure (AuthenticationError).
    """

    def __init__(self, store: CredentialStore, max_workers: int = HASH_WORKERS):
        self._store = store
        # Hashing threads, separate from the loop default executor and the store pool
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="bcrypt")

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    async def authenticate(
        self, username: str, password: str, remote: Optional[str] = None
    ) -> UserContext:
        loop = asyncio.get_running_loop()
        try:
            record = await self._store.get_user(username)
        except Exception as exc:
            logger.error(f"Credential lookup failed for {username}: {exc}")
            log_auth_attempt(username, "failure", reason="error", remote=remote)
            raise AuthenticationError("error") from exc

        if record is None:
            await loop.run_in_executor(self._executor, dummy_verify)
            log_auth_attempt(username, "failure", reason="unknown_user", remote=remote)
            raise AuthenticationError("unknown_user")

        password_ok = await loop.run_in_executor(
            self._executor, verify_password, password, record.password_hash
        )

        if not record.enabled:
            log_auth_attempt(username, "failure", reason="disabled", remote=remote)
            raise AuthenticationError("disabled")

        if not password_ok:
            log_auth_attempt(username, "failure", reason="bad_password", remote=remote)
            raise AuthenticationError("bad_password")

        user = UserContext.build(record.username, record.role, record.allowed_models)
        log_auth_attempt(username, "success", remote=remote)
        logger.info(
            f"Authentication successful for {user.username} ({user.role}) - "
            f"{user.describe_scope()} allowed"
        )
        return user
