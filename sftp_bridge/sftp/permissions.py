"""
Permission engine: role check + model-scope check, evaluated on every request.

Both checks fail closed. Unknown roles get no operations; a scoped user
touching a path whose model segment cannot be determined is denied. The one
exception is navigating the namespace root itself (opendir/stat/realpath),
whose listing is filtered by omission instead.
"""

import logging
from typing import Dict, FrozenSet

from sftp_bridge.auth.context import Operation, Role, UserContext
from sftp_bridge.common.exceptions import PermissionDeniedError
from sftp_bridge.sftp.paths import ResolvedPath

logger = logging.getLogger(__name__)

ROLE_PERMISSIONS: Dict[str, FrozenSet[Operation]] = {
    Role.ADMIN.value: frozenset({Operation.READ, Operation.WRITE, Operation.DELETE}),
    Role.DOWNLOADER.value: frozenset({Operation.READ}),
}


def role_allows(user: UserContext, operation: Operation) -> bool:
    return operation in ROLE_PERMISSIONS.get(user.role, frozenset())


def model_allowed(user: UserContext, resolved: ResolvedPath, navigation: bool = False) -> bool:
    if user.all_models:
        return True
    if resolved.model is None:
        return navigation and resolved.is_root
    return resolved.model in user.allowed_models


def check(
    user: UserContext,
    operation: Operation,
    resolved: ResolvedPath,
    navigation: bool = False,
) -> None:
    """Raise PermissionDeniedError unless both checks pass."""
    if not role_allows(user, operation):
        logger.warning(
            f"Role '{user.role}' of {user.username} does not allow {operation.value}"
        )
        raise PermissionDeniedError(f"role '{user.role}' may not {operation.value}")

    if not model_allowed(user, resolved, navigation=navigation):
        logger.warning(
            f"User {user.username} denied access to model {resolved.model!r} ({resolved.key})"
        )
        raise PermissionDeniedError(f"model {resolved.model!r} not permitted")
