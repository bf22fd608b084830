"""
Directory synthesis over a flat key space.

S3 has no directories: a one-level ``list_objects_v2`` with ``Delimiter="/"``
returns common prefixes (shown as subdirectories) and direct objects (shown
as files). Nothing here talks to the backend, so it is tested on plain data.
"""

import stat
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AbstractSet, List, Optional

from sftp_bridge.storage.base import ObjectInfo, PrefixListing

DIR_MODE = stat.S_IFDIR | 0o755
FILE_MODE = stat.S_IFREG | 0o644


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    is_directory: bool
    size: int = 0
    modified_time: float = 0.0

    @property
    def mode(self) -> int:
        return DIR_MODE if self.is_directory else FILE_MODE

    @property
    def longname(self) -> str:
        perms = "drwxr-xr-x" if self.is_directory else "-rw-r--r--"
        day = datetime.fromtimestamp(self.modified_time, tz=timezone.utc).strftime("%Y-%m-%d")
        return f"{perms} 1 user group {self.size} {day} {self.name}"


def directory_entry(name: str, now: Optional[float] = None) -> DirectoryEntry:
    return DirectoryEntry(
        name=name,
        is_directory=True,
        size=0,
        modified_time=time.time() if now is None else now,
    )


def file_entry(name: str, obj: ObjectInfo, now: Optional[float] = None) -> DirectoryEntry:
    if obj.last_modified is not None:
        mtime = float(int(obj.last_modified.timestamp()))
    else:
        mtime = time.time() if now is None else now
    return DirectoryEntry(name=name, is_directory=False, size=obj.size, modified_time=mtime)


def translate_listing(
    listing: PrefixListing,
    namespace_root: str,
    allowed_models: AbstractSet[str] = frozenset(),
    now: Optional[float] = None,
) -> List[DirectoryEntry]:
    """Turn a one-level prefix listing into directory entries.

    At the namespace root a scoped user (non-empty ``allowed_models``) only
    sees the model directories they may access; the rest are left out.
    """
    now = time.time() if now is None else now
    prefix = listing.prefix
    filter_models = prefix == namespace_root and bool(allowed_models)
    entries: List[DirectoryEntry] = []

    for common_prefix in listing.common_prefixes:
        if not common_prefix.startswith(prefix):
            continue
        name = common_prefix[len(prefix):].split("/", 1)[0]
        if not name:
            continue
        if filter_models and name not in allowed_models:
            continue
        entries.append(directory_entry(name, now))

    for obj in listing.objects:
        if obj.key == prefix or not obj.key.startswith(prefix):
            continue
        name = obj.key[len(prefix):]
        if not name or "/" in name:
            continue
        entries.append(file_entry(name, obj, now))

    return entries
