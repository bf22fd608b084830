"""
ObjectStore protocol: abstraction over the flat key/value backend.

S3ObjectStore is the production implementation; tests use an in-memory one.
Keys are full storage keys (namespace included); no directory semantics here.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol, runtime_checkable

DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES = {
    "bin": "application/octet-stream",
    "pdf": "application/pdf",
    "zip": "application/zip",
    "txt": "text/plain",
}


def content_type_for(path: str) -> str:
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return DEFAULT_CONTENT_TYPE
    ext = name.rsplit(".", 1)[-1].lower()
    return CONTENT_TYPES.get(ext, DEFAULT_CONTENT_TYPE)


@dataclass(frozen=True)
class ObjectInfo:
    key: str
    size: int
    last_modified: Optional[datetime] = None


@dataclass
class PrefixListing:
    """One-level listing: ``common_prefixes`` are full prefixes ending in the delimiter."""
    prefix: str
    common_prefixes: List[str] = field(default_factory=list)
    objects: List[ObjectInfo] = field(default_factory=list)


@runtime_checkable
class ObjectStore(Protocol):
    async def get_object(self, key: str, max_size: Optional[int] = None) -> bytes:
        """Return the whole object.

        Raises NotFoundError, BackendError, or FileTooLargeError when the
        object is bigger than ``max_size``.
        """
        ...

    async def head_object(self, key: str) -> ObjectInfo:
        """Return object metadata. Raises NotFoundError / BackendError."""
        ...

    async def put_object(
        self, key: str, body: bytes, content_type: str = DEFAULT_CONTENT_TYPE
    ) -> None:
        ...

    async def delete_object(self, key: str) -> None:
        ...

    async def list_prefix(self, prefix: str, delimiter: str = "/") -> PrefixListing:
        ...

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every object under ``prefix``. Returns the number deleted."""
        ...
