"""
Virtual path -> storage key resolution.

Client paths are relative to an implicit namespace root. Every key produced
here starts with "<namespace>/" exactly once and cannot climb above it:

    /                                   -> firmwares/
    .                                   -> firmwares/
    /SS1416/2.4.1/fw.bin                -> firmwares/SS1416/2.4.1/fw.bin
    /firmwares/SS1416/                  -> firmwares/SS1416/
    /firmwares/../../etc/passwd         -> firmwares/etc/passwd

A trailing "/" on the input marks directory intent and is kept.
"""

from dataclasses import dataclass
from typing import List, Optional

DEFAULT_NAMESPACE = "firmwares"
SEP = "/"


def _segments(path: str) -> List[str]:
    parts: List[str] = []
    for segment in path.split(SEP):
        if segment in ("", "."):
            continue
        if segment == "..":
            if parts:
                parts.pop()
            continue
        parts.append(segment)
    return parts


def resolve_key(virtual_path: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    parts = _segments(virtual_path or "")
    if parts and parts[0] == namespace:
        parts = parts[1:]
    if not parts:
        return namespace + SEP
    key = namespace + SEP + SEP.join(parts)
    if virtual_path.endswith(SEP):
        key += SEP
    return key


def model_segment(key: str, namespace: str = DEFAULT_NAMESPACE) -> Optional[str]:
    root = namespace + SEP
    if not key.startswith(root):
        return None
    rest = key[len(root):]
    model = rest.split(SEP, 1)[0]
    return model or None


@dataclass(frozen=True)
class ResolvedPath:
    key: str
    namespace: str
    model: Optional[str]

    @property
    def is_root(self) -> bool:
        return self.key == self.namespace + SEP

    @property
    def is_directory(self) -> bool:
        return self.key.endswith(SEP)

    @property
    def listing_prefix(self) -> str:
        return self.key if self.key.endswith(SEP) else self.key + SEP

    @property
    def virtual_path(self) -> str:
        """Absolute client-facing path, e.g. /firmwares/SS1416."""
        return SEP + self.key.rstrip(SEP)


def resolve(virtual_path: str, namespace: str = DEFAULT_NAMESPACE) -> ResolvedPath:
    key = resolve_key(virtual_path, namespace)
    return ResolvedPath(key=key, namespace=namespace, model=model_segment(key, namespace))
