from fastapi import HTTPException, status

from sftp_bridge.sftp.status import SFTPStatus


class BridgeError(Exception):
    """Base class for failures that surface to the client as an SFTP status."""

    status = SFTPStatus.FAILURE

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class AuthenticationError(BridgeError):
    """Unknown user, disabled account or bad password.

    ``reason`` is for the audit log only; the client never sees it.
    """

    def __init__(self, reason: str):
        super().__init__(f"authentication failed: {reason}")
        self.reason = reason


class PermissionDeniedError(BridgeError):
    status = SFTPStatus.PERMISSION_DENIED


class NotFoundError(BridgeError):
    status = SFTPStatus.NO_SUCH_FILE


class BackendError(BridgeError):
    status = SFTPStatus.FAILURE


class ProtocolError(BridgeError):
    status = SFTPStatus.FAILURE


class FileTooLargeError(BridgeError):
    """Object or upload exceeds the in-memory buffering cap."""

    status = SFTPStatus.FAILURE


class UnauthorizedError(HTTPException):
    def __init__(self, detail: str = "Invalid or missing internal API key"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)
