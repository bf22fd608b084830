"""UserContext: the authenticated identity bound to one SSH connection."""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Optional


class Role(str, Enum):
    ADMIN = "admin"
    DOWNLOADER = "downloader"


class Operation(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"


@dataclass(frozen=True)
class UserContext:
    """Immutable for the life of the connection.

    ``role`` keeps the raw value from the credential store so that unknown
    roles reach the permission engine and are denied there.
    An empty ``allowed_models`` means every model is permitted.
    """
    username: str
    role: str
    allowed_models: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls, username: str, role: str, allowed_models: Optional[Iterable[str]] = None
    ) -> "UserContext":
        models = frozenset(m for m in (allowed_models or ()) if m)
        return cls(username=username, role=role, allowed_models=models)

    @property
    def all_models(self) -> bool:
        return not self.allowed_models

    def describe_scope(self) -> str:
        if self.all_models:
            return "all models"
        return f"{len(self.allowed_models)} models"
