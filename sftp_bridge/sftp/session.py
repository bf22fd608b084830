"""
ProtocolSession: the per-connection SFTP state machine.

One session per SFTP subsystem. It owns the handle table and the
authenticated UserContext, and turns every typed request into a typed
response. Every failure is converted to an SFTP status here; nothing raised
by permissions or the backend reaches the transport.

Files are fully buffered in memory: reads snapshot the whole object at open,
writes accumulate until close and are committed with a single put, so other
readers only ever see the previous or the new object.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Optional

from sftp_bridge.auth.context import Operation, UserContext
from sftp_bridge.common.audit import log_operation_failure
from sftp_bridge.common.exceptions import (
    BridgeError,
    FileTooLargeError,
    NotFoundError,
    ProtocolError,
)
from sftp_bridge.sftp import permissions
from sftp_bridge.sftp.handles import FileHandle, HandleMode, HandleTable
from sftp_bridge.sftp.listing import DirectoryEntry, directory_entry, file_entry, translate_listing
from sftp_bridge.sftp.paths import DEFAULT_NAMESPACE, ResolvedPath, resolve
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
from sftp_bridge.sftp.status import SFTPStatus
from sftp_bridge.storage.base import ObjectStore, content_type_for

logger = logging.getLogger(__name__)

OK = StatusResponse(SFTPStatus.OK)
EOF = StatusResponse(SFTPStatus.EOF)


class SessionState(str, Enum):
    AUTHENTICATED = "authenticated"
    DISPATCHING = "dispatching"
    CLOSED = "closed"


class ProtocolSession:
    def __init__(
        self,
        user: UserContext,
        store: ObjectStore,
        namespace: str = DEFAULT_NAMESPACE,
        page_size: int = 10,
        max_file_size: int = 0,
    ):
        if user is None:
            raise ValueError("ProtocolSession requires an authenticated UserContext")
        self.user = user
        self.store = store
        self.namespace = namespace
        self.page_size = max(1, page_size)
        self.max_file_size = max_file_size
        self.handles = HandleTable()
        self.state = SessionState.AUTHENTICATED
        self._lock = asyncio.Lock()

    @property
    def namespace_root(self) -> str:
        return self.namespace + "/"

    @property
    def closed(self) -> bool:
        return self.state == SessionState.CLOSED

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, request: Request) -> Response:
        async with self._lock:
            if self.closed:
                return self._fail(request, None, ProtocolError("session closed"))
            self.state = SessionState.DISPATCHING
            resolved: Optional[ResolvedPath] = None
            try:
                path = getattr(request, "path", None)
                if path is not None:
                    resolved = resolve(path, self.namespace)
                return await self._handle(request, resolved)
            except BridgeError as exc:
                return self._fail(request, resolved, exc)
            except Exception as exc:
                logger.exception(f"Unexpected error handling {request.op}")
                return self._fail(request, resolved, exc)
            finally:
                if self.state == SessionState.DISPATCHING:
                    self.state = SessionState.AUTHENTICATED

    async def _handle(self, request: Request, resolved: Optional[ResolvedPath]) -> Response:
        if isinstance(request, OpenRequest):
            return await self._open(request, resolved)
        if isinstance(request, ReadRequest):
            return self._read(request)
        if isinstance(request, WriteRequest):
            return self._write(request)
        if isinstance(request, CloseRequest):
            return await self._close(request)
        if isinstance(request, FStatRequest):
            return self._fstat(request)
        if isinstance(request, OpenDirRequest):
            return await self._opendir(resolved)
        if isinstance(request, ReadDirRequest):
            return self._readdir(request)
        if isinstance(request, RemoveRequest):
            return await self._remove(resolved)
        if isinstance(request, StatRequest):
            return await self._stat(resolved)
        if isinstance(request, RealPathRequest):
            return self._realpath(request, resolved)
        if isinstance(request, MkdirRequest):
            return self._mkdir(resolved)
        raise ProtocolError(f"unsupported request {type(request).__name__}")

    def _fail(
        self, request: Request, resolved: Optional[ResolvedPath], exc: Exception
    ) -> StatusResponse:
        status = exc.status if isinstance(exc, BridgeError) else SFTPStatus.FAILURE
        key = resolved.key if resolved else getattr(request, "handle", None)
        cause = str(exc) or type(exc).__name__
        log_operation_failure(request.op, self.user.username, key, cause, int(status))
        return StatusResponse(status, str(exc))

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def _open(self, request: OpenRequest, resolved: ResolvedPath) -> Response:
        if request.flags.is_write:
            permissions.check(self.user, Operation.WRITE, resolved)
            if resolved.is_directory:
                raise ProtocolError(f"cannot write to directory {resolved.key}")
            handle = self.handles.create_file(resolved.key, HandleMode.WRITE)
            logger.info(f"OPEN (write) {resolved.key} by {self.user.username}")
            return HandleResponse(handle.id)

        permissions.check(self.user, Operation.READ, resolved)
        if resolved.is_directory:
            raise NotFoundError(f"{resolved.key} is a directory")
        data = await self.store.get_object(resolved.key, max_size=self.max_file_size or None)
        handle = self.handles.create_file(resolved.key, HandleMode.READ, data)
        logger.info(f"OPEN (read) {resolved.key} by {self.user.username} ({len(data)} bytes)")
        return HandleResponse(handle.id)

    def _fstat(self, request: FStatRequest) -> Response:
        handle = self.handles.get_file(request.handle)
        name = handle.storage_key.rsplit("/", 1)[-1]
        return AttrsResponse(DirectoryEntry(
            name=name, is_directory=False, size=handle.size, modified_time=time.time()
        ))

    def _read(self, request: ReadRequest) -> Response:
        handle = self.handles.get_file(request.handle)
        if handle.mode != HandleMode.READ:
            raise ProtocolError("handle not open for reading")
        if request.offset < 0 or request.length < 0:
            raise ProtocolError("negative offset or length")
        if request.offset >= handle.size:
            return EOF
        return DataResponse(bytes(handle.buffer[request.offset:request.offset + request.length]))

    def _write(self, request: WriteRequest) -> Response:
        handle = self.handles.get_file(request.handle)
        if handle.mode != HandleMode.WRITE:
            raise ProtocolError("handle not open for writing")
        if handle.aborted:
            raise FileTooLargeError(f"upload to {handle.storage_key} already aborted")
        if request.offset != handle.size:
            # Append-only: data is concatenated whatever the offset says.
            logger.warning(
                f"Non-sequential write to {handle.storage_key}: offset {request.offset}, "
                f"buffered {handle.size}; appending"
            )
        if self.max_file_size and handle.size + len(request.data) > self.max_file_size:
            handle.aborted = True
            handle.buffer = bytearray()
            raise FileTooLargeError(
                f"upload to {handle.storage_key} exceeds {self.max_file_size} bytes"
            )
        handle.buffer.extend(request.data)
        return OK

    async def _close(self, request: CloseRequest) -> Response:
        handle = self.handles.dispose(request.handle)
        if not isinstance(handle, FileHandle) or handle.mode != HandleMode.WRITE:
            return OK
        if handle.aborted:
            raise FileTooLargeError(f"upload to {handle.storage_key} discarded")
        if handle.size == 0:
            return OK

        await self.store.put_object(
            handle.storage_key, bytes(handle.buffer), content_type_for(handle.storage_key)
        )
        logger.info(
            f"CLOSE committed {handle.storage_key} ({handle.size} bytes) by {self.user.username}"
        )
        return OK

    async def _remove(self, resolved: ResolvedPath) -> Response:
        permissions.check(self.user, Operation.DELETE, resolved)
        if resolved.is_root or resolved.is_directory:
            raise ProtocolError(f"cannot remove directory {resolved.key}")
        await self.store.delete_object(resolved.key)
        logger.info(f"REMOVE {resolved.key} by {self.user.username}")
        return OK

    # ------------------------------------------------------------------
    # Directories & metadata
    # ------------------------------------------------------------------

    async def _opendir(self, resolved: ResolvedPath) -> Response:
        permissions.check(self.user, Operation.READ, resolved, navigation=True)
        prefix = resolved.listing_prefix
        listing = await self.store.list_prefix(prefix, delimiter="/")
        entries = translate_listing(listing, self.namespace_root, self.user.allowed_models)
        handle = self.handles.create_dir(prefix, entries)
        logger.info(f"OPENDIR {prefix} by {self.user.username}: {len(entries)} entries")
        return HandleResponse(handle.id)

    def _readdir(self, request: ReadDirRequest) -> Response:
        handle = self.handles.get_dir(request.handle)
        if handle.exhausted:
            return EOF
        page = handle.next_page(self.page_size)
        if not page:
            return EOF
        return NameResponse(page)

    async def _stat(self, resolved: ResolvedPath) -> Response:
        permissions.check(self.user, Operation.READ, resolved, navigation=True)
        name = resolved.key.rstrip("/").rsplit("/", 1)[-1]
        if resolved.is_directory:
            return AttrsResponse(directory_entry(name))
        try:
            info = await self.store.head_object(resolved.key)
        except NotFoundError:
            # No directory objects exist; anything that isn't an object is a directory.
            return AttrsResponse(directory_entry(name))
        return AttrsResponse(file_entry(name, info))

    def _realpath(self, request: RealPathRequest, resolved: ResolvedPath) -> Response:
        permissions.check(self.user, Operation.READ, resolved, navigation=True)
        return NameResponse([directory_entry(resolved.virtual_path, time.time())])

    def _mkdir(self, resolved: ResolvedPath) -> Response:
        # Directories are implicit; they appear once a file is stored below them.
        permissions.check(self.user, Operation.WRITE, resolved)
        logger.info(f"MKDIR {resolved.key} by {self.user.username} (implicit)")
        return OK

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def shutdown(self) -> int:
        """close(), but after any request already in flight has finished."""
        async with self._lock:
            return self.close()

    def close(self) -> int:
        """End the session. Open uploads are abandoned, never committed.

        Returns the number of handles that were still open.
        """
        if self.closed:
            return 0
        self.state = SessionState.CLOSED
        leftover = self.handles.clear()
        pending = [
            h for h in leftover
            if isinstance(h, FileHandle) and h.mode == HandleMode.WRITE and h.size
        ]
        if pending:
            logger.warning(
                f"Session for {self.user.username} ended with {len(pending)} unfinished "
                f"upload(s): {', '.join(h.storage_key for h in pending)}"
            )
        logger.info(f"Session closed for {self.user.username} ({len(leftover)} handles released)")
        return len(leftover)
