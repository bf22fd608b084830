"""Session-scoped handle table.

Handle ids are random 128-bit tokens looked up in a dict owned by exactly one
ProtocolSession, so an id from one connection means nothing on another.
"""

import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

from sftp_bridge.common.exceptions import ProtocolError
from sftp_bridge.sftp.listing import DirectoryEntry


class HandleMode(str, Enum):
    READ = "read"
    WRITE = "write"


@dataclass
class FileHandle:
    id: str
    storage_key: str
    mode: HandleMode
    buffer: bytearray = field(default_factory=bytearray)
    # Set when an upload overflowed the size cap; close() then discards it.
    aborted: bool = False

    @property
    def size(self) -> int:
        return len(self.buffer)


@dataclass
class DirHandle:
    id: str
    path: str
    entries: List[DirectoryEntry] = field(default_factory=list)
    cursor: int = 0
    exhausted: bool = False

    def next_page(self, page_size: int) -> List[DirectoryEntry]:
        page = self.entries[self.cursor:self.cursor + page_size]
        self.cursor += len(page)
        if not page:
            self.exhausted = True
            self.entries = []
        return page


Handle = Union[FileHandle, DirHandle]


def _new_id() -> str:
    return secrets.token_hex(16)


class HandleTable:
    def __init__(self) -> None:
        self._handles: Dict[str, Handle] = {}

    def _fresh_id(self) -> str:
        handle_id = _new_id()
        while handle_id in self._handles:
            handle_id = _new_id()
        return handle_id

    def create_file(
        self, storage_key: str, mode: HandleMode, data: Optional[bytes] = None
    ) -> FileHandle:
        handle = FileHandle(
            id=self._fresh_id(),
            storage_key=storage_key,
            mode=mode,
            buffer=bytearray(data or b""),
        )
        self._handles[handle.id] = handle
        return handle

    def create_dir(self, path: str, entries: List[DirectoryEntry]) -> DirHandle:
        handle = DirHandle(id=self._fresh_id(), path=path, entries=list(entries))
        self._handles[handle.id] = handle
        return handle

    def get(self, handle_id: str) -> Handle:
        handle = self._handles.get(handle_id)
        if handle is None:
            raise ProtocolError(f"unknown handle {handle_id!r}")
        return handle

    def get_file(self, handle_id: str) -> FileHandle:
        handle = self.get(handle_id)
        if not isinstance(handle, FileHandle):
            raise ProtocolError(f"handle {handle_id!r} is not a file")
        return handle

    def get_dir(self, handle_id: str) -> DirHandle:
        handle = self.get(handle_id)
        if not isinstance(handle, DirHandle):
            raise ProtocolError(f"handle {handle_id!r} is not a directory")
        return handle

    def dispose(self, handle_id: str) -> Handle:
        handle = self._handles.pop(handle_id, None)
        if handle is None:
            raise ProtocolError(f"unknown handle {handle_id!r}")
        return handle

    def clear(self) -> List[Handle]:
        handles = list(self._handles.values())
        self._handles.clear()
        return handles

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, handle_id: str) -> bool:
        return handle_id in self._handles
