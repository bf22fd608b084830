"""
paramiko glue: SSH auth and SFTP verbs, bridged onto the asyncio loop.

paramiko runs every connection (and every SFTP subsystem) on its own thread
and calls these interfaces synchronously. Each call is turned into a typed
request and submitted to the event loop with run_coroutine_threadsafe; the
paramiko thread blocks on the result, which only stalls that one session.
"""

import asyncio
import concurrent.futures
import logging
import os
import time
from typing import Callable, List, Optional, Union

import paramiko

from sftp_bridge.auth.authenticator import Authenticator
from sftp_bridge.auth.context import UserContext
from sftp_bridge.common.audit import log_auth_attempt
from sftp_bridge.common.exceptions import (
    AuthenticationError,
    BackendError,
    PermissionDeniedError,
)
from sftp_bridge.sftp.listing import DirectoryEntry
from sftp_bridge.sftp.requests import (
    AttrsResponse,
    CloseRequest,
    DataResponse,
    FStatRequest,
    HandleResponse,
    MkdirRequest,
    NameResponse,
    OpenDirRequest,
    OpenRequest,
    ReadDirRequest,
    ReadRequest,
    RealPathRequest,
    RemoveRequest,
    Request,
    Response,
    StatRequest,
    StatusResponse,
    WriteRequest,
)
from sftp_bridge.sftp.session import ProtocolSession
from sftp_bridge.sftp.status import OpenFlags, SFTPStatus

logger = logging.getLogger(__name__)

SessionFactory = Callable[[UserContext], ProtocolSession]

FILE_UID = 1000
FILE_GID = 1000


def to_attributes(entry: DirectoryEntry) -> paramiko.SFTPAttributes:
    attr = paramiko.SFTPAttributes()
    attr.filename = entry.name
    attr.st_size = entry.size
    attr.st_mode = entry.mode
    attr.st_uid = FILE_UID
    attr.st_gid = FILE_GID
    attr.st_mtime = int(entry.modified_time)
    attr.st_atime = int(time.time())
    return attr


def open_flags_from_os(flags: int) -> OpenFlags:
    """paramiko hands us os.O_* flags; map them back to SFTP pflags."""
    access = flags & (os.O_RDONLY | os.O_WRONLY | os.O_RDWR)
    if access == os.O_RDWR:
        result = OpenFlags.READ | OpenFlags.WRITE
    elif access == os.O_WRONLY:
        result = OpenFlags.WRITE
    else:
        result = OpenFlags.READ
    if flags & os.O_APPEND:
        result |= OpenFlags.APPEND
    if flags & os.O_CREAT:
        result |= OpenFlags.CREATE
    if flags & os.O_TRUNC:
        result |= OpenFlags.TRUNCATE
    if flags & os.O_EXCL:
        result |= OpenFlags.EXCLUSIVE
    return result


class BridgeServerInterface(paramiko.ServerInterface):
    """Per-connection SSH policy: password auth only, session channels only."""

    def __init__(
        self,
        authenticator: Authenticator,
        session_factory: SessionFactory,
        loop: asyncio.AbstractEventLoop,
        remote: Optional[str] = None,
        auth_timeout: float = 15.0,
        request_timeout: float = 90.0,
    ):
        self.authenticator = authenticator
        self.session_factory = session_factory
        self.loop = loop
        self.remote = remote
        self.auth_timeout = auth_timeout
        self.request_timeout = request_timeout
        self.user: Optional[UserContext] = None

    def get_allowed_auths(self, username: str) -> str:
        return "password"

    def check_auth_none(self, username: str) -> int:
        log_auth_attempt(username, "failure", reason="method_rejected", remote=self.remote)
        return paramiko.AUTH_FAILED

    def check_auth_publickey(self, username, key) -> int:
        log_auth_attempt(username, "failure", reason="method_rejected", remote=self.remote)
        return paramiko.AUTH_FAILED

    def check_auth_password(self, username: str, password: str) -> int:
        future = asyncio.run_coroutine_threadsafe(
            self.authenticator.authenticate(username, password, remote=self.remote),
            self.loop,
        )
        try:
            user = future.result(timeout=self.auth_timeout)
        except AuthenticationError:
            return paramiko.AUTH_FAILED
        except concurrent.futures.TimeoutError:
            future.cancel()
            log_auth_attempt(username, "failure", reason="timeout", remote=self.remote)
            return paramiko.AUTH_FAILED
        # Bound before paramiko marks the transport authenticated.
        self.user = user
        return paramiko.AUTH_SUCCESSFUL

    def check_channel_request(self, kind: str, chanid: int) -> int:
        if kind == "session" and self.user is not None:
            return paramiko.OPEN_SUCCEEDED
        return paramiko.OPEN_FAILED_ADMINISTRATIVELY_PROHIBITED


class BridgeFileHandle(paramiko.SFTPHandle):
    def __init__(self, sftp: "BridgeSFTPInterface", handle_id: str, flags: int = 0):
        super().__init__(flags)
        self._sftp = sftp
        self.handle_id = handle_id
        self._closed = False

    def read(self, offset: int, length: int) -> Union[bytes, int]:
        resp = self._sftp.call(ReadRequest(self.handle_id, offset, length))
        if isinstance(resp, DataResponse):
            return resp.data
        if isinstance(resp, StatusResponse) and resp.status == SFTPStatus.EOF:
            return b""
        return self._sftp.status_of(resp)

    def write(self, offset: int, data: bytes) -> int:
        return self._sftp.status_of(self._sftp.call(WriteRequest(self.handle_id, offset, data)))

    def stat(self):
        resp = self._sftp.call(FStatRequest(self.handle_id))
        if isinstance(resp, AttrsResponse):
            return to_attributes(resp.entry)
        return self._sftp.status_of(resp)

    def close(self) -> None:
        # paramiko closes leftover handles itself once the subsystem ends;
        # by then the session has dropped them without committing.
        if self._closed or self._sftp.ended:
            self._closed = True
            return
        self._closed = True
        resp = self._sftp.call(CloseRequest(self.handle_id))
        if not (isinstance(resp, StatusResponse) and resp.ok):
            # paramiko answers SSH_FX_FAILURE for exceptions raised here
            raise BackendError(getattr(resp, "message", "") or "close failed")


class BridgeSFTPInterface(paramiko.SFTPServerInterface):
    """One ProtocolSession per SFTP subsystem."""

    def __init__(self, server: BridgeServerInterface, *args, **kwargs):
        super().__init__(server, *args, **kwargs)
        self.loop = server.loop
        self.request_timeout = server.request_timeout
        self.session = server.session_factory(server.user)
        self.ended = False

    # -- plumbing -------------------------------------------------------

    def call(self, request: Request) -> Response:
        future = asyncio.run_coroutine_threadsafe(self.session.dispatch(request), self.loop)
        try:
            return future.result(timeout=self.request_timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.error(f"{request.op} by {self.session.user.username} timed out")
            return StatusResponse(SFTPStatus.FAILURE, "request timed out")
        except concurrent.futures.CancelledError:
            return StatusResponse(SFTPStatus.FAILURE, "request cancelled")

    @staticmethod
    def status_of(resp: Response) -> int:
        if isinstance(resp, StatusResponse):
            return int(resp.status)
        return int(SFTPStatus.FAILURE)

    # -- lifecycle ------------------------------------------------------

    def session_started(self) -> None:
        user = self.session.user
        logger.info(f"Starting SFTP session for {user.username} ({user.describe_scope()})")

    def session_ended(self) -> None:
        self.ended = True
        if self.loop.is_closed():
            self.session.close()
            return
        try:
            asyncio.run_coroutine_threadsafe(self.session.shutdown(), self.loop)
        except RuntimeError:
            self.session.close()

    # -- verbs ----------------------------------------------------------

    def open(self, path: str, flags: int, attr):
        resp = self.call(OpenRequest(path, open_flags_from_os(flags)))
        if isinstance(resp, HandleResponse):
            return BridgeFileHandle(self, resp.handle, flags)
        return self.status_of(resp)

    def list_folder(self, path: str):
        resp = self.call(OpenDirRequest(path))
        if not isinstance(resp, HandleResponse):
            return self.status_of(resp)
        entries: List[paramiko.SFTPAttributes] = []
        try:
            while True:
                page = self.call(ReadDirRequest(resp.handle))
                if not isinstance(page, NameResponse):
                    break
                entries.extend(to_attributes(e) for e in page.entries)
        finally:
            self.call(CloseRequest(resp.handle))
        if isinstance(page, StatusResponse) and page.status != SFTPStatus.EOF:
            return int(page.status)
        return entries

    def stat(self, path: str):
        return self._stat(StatRequest(path, follow_links=True))

    def lstat(self, path: str):
        return self._stat(StatRequest(path, follow_links=False))

    def _stat(self, request: StatRequest):
        resp = self.call(request)
        if isinstance(resp, AttrsResponse):
            return to_attributes(resp.entry)
        return self.status_of(resp)

    def remove(self, path: str) -> int:
        return self.status_of(self.call(RemoveRequest(path)))

    def mkdir(self, path: str, attr) -> int:
        return self.status_of(self.call(MkdirRequest(path)))

    def canonicalize(self, path: str) -> str:
        resp = self.call(RealPathRequest(path))
        if isinstance(resp, NameResponse) and resp.entries:
            return resp.entries[0].name
        # REALPATH can only answer with a name; paramiko turns this into a status.
        raise PermissionDeniedError(getattr(resp, "message", "") or "realpath failed")
