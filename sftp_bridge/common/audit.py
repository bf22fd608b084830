import logging
from datetime import datetime, timezone
from typing import Optional

audit_logger = logging.getLogger("sftp_bridge.audit")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_auth_attempt(
    username: str,
    outcome: str,
    reason: Optional[str] = None,
    remote: Optional[str] = None,
) -> None:
    """Record an authentication attempt.

    The reason (unknown_user, disabled, bad_password, ...) is kept server-side;
    clients only ever receive a generic rejection.
    """
    level = logging.INFO if outcome == "success" else logging.WARNING
    audit_logger.log(
        level,
        "AUTH | time=%s | user=%s | remote=%s | outcome=%s | reason=%s",
        _now(), username, remote, outcome, reason,
    )


def log_operation_failure(
    operation: str,
    username: str,
    key: Optional[str],
    cause: str,
    status: Optional[int] = None,
) -> None:
    audit_logger.warning(
        "SFTP_FAILURE | time=%s | user=%s | op=%s | path=%s | status=%s | cause=%s",
        _now(), username, operation, key, status, cause,
    )


def log_housekeeping(action: str, prefix: str, count: int) -> None:
    audit_logger.warning(
        "HOUSEKEEPING | time=%s | action=%s | prefix=%s | objects=%s",
        _now(), action, prefix, count,
    )
