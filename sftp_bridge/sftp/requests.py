"""Typed SFTP requests and responses handled by ProtocolSession.dispatch()."""

from dataclasses import dataclass, field
from typing import List, Union

from sftp_bridge.sftp.listing import DirectoryEntry
from sftp_bridge.sftp.status import OpenFlags, SFTPStatus


@dataclass(frozen=True)
class OpenRequest:
    path: str
    flags: OpenFlags = OpenFlags.READ
    op = "open"


@dataclass(frozen=True)
class ReadRequest:
    handle: str
    offset: int
    length: int
    op = "read"


@dataclass(frozen=True)
class WriteRequest:
    handle: str
    offset: int
    data: bytes
    op = "write"


@dataclass(frozen=True)
class CloseRequest:
    handle: str
    op = "close"


@dataclass(frozen=True)
class FStatRequest:
    handle: str
    op = "fstat"


@dataclass(frozen=True)
class OpenDirRequest:
    path: str
    op = "opendir"


@dataclass(frozen=True)
class ReadDirRequest:
    handle: str
    op = "readdir"


@dataclass(frozen=True)
class RemoveRequest:
    path: str
    op = "remove"


@dataclass(frozen=True)
class StatRequest:
    path: str
    follow_links: bool = True

    @property
    def op(self) -> str:
        return "stat" if self.follow_links else "lstat"


@dataclass(frozen=True)
class RealPathRequest:
    path: str
    op = "realpath"


@dataclass(frozen=True)
class MkdirRequest:
    path: str
    op = "mkdir"


Request = Union[
    OpenRequest,
    ReadRequest,
    WriteRequest,
    CloseRequest,
    FStatRequest,
    OpenDirRequest,
    ReadDirRequest,
    RemoveRequest,
    StatRequest,
    RealPathRequest,
    MkdirRequest,
]


@dataclass(frozen=True)
class StatusResponse:
    status: SFTPStatus
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == SFTPStatus.OK


@dataclass(frozen=True)
class HandleResponse:
    handle: str


@dataclass(frozen=True)
class DataResponse:
    data: bytes


@dataclass(frozen=True)
class NameResponse:
    entries: List[DirectoryEntry] = field(default_factory=list)


@dataclass(frozen=True)
class AttrsResponse:
    entry: DirectoryEntry


Response = Union[StatusResponse, HandleResponse, DataResponse, NameResponse, AttrsResponse]
