"""Shared fixtures: in-memory credential store and object store."""

import asyncio
import os
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from sftp_bridge.auth.context import UserContext
from sftp_bridge.auth.credentials import CredentialRecord
from sftp_bridge.auth.security import pwd_context
from sftp_bridge.common.exceptions import BackendError, FileTooLargeError, NotFoundError
from sftp_bridge.sftp.session import ProtocolSession
from sftp_bridge.storage.base import DEFAULT_CONTENT_TYPE, ObjectInfo, PrefixListing

# Cheap rounds; verification reads the cost from the hash itself.
_fast_bcrypt = pwd_context.handler("bcrypt").using(rounds=4)


def fast_hash(password: str) -> str:
    return _fast_bcrypt.hash(password)


class InMemoryObjectStore:
    def __init__(self):
        self.objects: Dict[str, Tuple[bytes, datetime]] = {}
        self.puts: List[Tuple[str, bytes, str]] = []
        self.deletes: List[str] = []
        self.fail_ops: set = set()

    def seed(self, key: str, body: bytes = b"") -> None:
        self.objects[key] = (body, datetime(2025, 1, 15, 9, 30, tzinfo=timezone.utc))

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail_ops:
            raise BackendError(f"{op}: simulated outage")

    async def get_object(self, key: str, max_size: Optional[int] = None) -> bytes:
        self._maybe_fail("get_object")
        if key not in self.objects:
            raise NotFoundError(f"No such object: {key}")
        body = self.objects[key][0]
        if max_size and len(body) > max_size:
            raise FileTooLargeError(f"{key} too large")
        return body

    async def head_object(self, key: str) -> ObjectInfo:
        self._maybe_fail("head_object")
        if key not in self.objects:
            raise NotFoundError(f"No such object: {key}")
        body, modified = self.objects[key]
        return ObjectInfo(key=key, size=len(body), last_modified=modified)

    async def put_object(self, key: str, body: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        self._maybe_fail("put_object")
        self.puts.append((key, body, content_type))
        self.objects[key] = (body, datetime.now(timezone.utc))

    async def delete_object(self, key: str) -> None:
        self._maybe_fail("delete_object")
        self.deletes.append(key)
        self.objects.pop(key, None)

    async def list_prefix(self, prefix: str, delimiter: str = "/") -> PrefixListing:
        self._maybe_fail("list_prefix")
        listing = PrefixListing(prefix=prefix)
        for key in sorted(self.objects):
            if not key.startswith(prefix):
                continue
            rest = key[len(prefix):]
            if delimiter and delimiter in rest:
                common = prefix + rest.split(delimiter, 1)[0] + delimiter
                if common not in listing.common_prefixes:
                    listing.common_prefixes.append(common)
                continue
            body, modified = self.objects[key]
            listing.objects.append(ObjectInfo(key=key, size=len(body), last_modified=modified))
        return listing

    async def delete_prefix(self, prefix: str) -> int:
        self._maybe_fail("delete_prefix")
        doomed = [k for k in self.objects if k.startswith(prefix)]
        for key in doomed:
            del self.objects[key]
        return len(doomed)


class InMemoryCredentialStore:
    def __init__(self, records: Optional[List[CredentialRecord]] = None):
        self.records = {r.username: r for r in records or []}
        self.lookups: List[str] = []
        self.broken = False

    async def get_user(self, username: str) -> Optional[CredentialRecord]:
        self.lookups.append(username)
        if self.broken:
            raise ConnectionError("database unavailable")
        return self.records.get(username)


@pytest.fixture
def store() -> InMemoryObjectStore:
    s = InMemoryObjectStore()
    for model in ("SS1406", "SS1416", "SSN3000"):
        s.seed(f"firmwares/{model}/1.0.0/{model}-firmware-v1.0.0.bin", f"{model}-fw".encode())
    s.seed("firmwares/SS1416/2.4.1/SS1416-firmware-v2.4.1.bin", b"\x00\x01\x02\x03" * 64)
    s.seed("firmwares/SS1416/2.4.1/release-notes.txt", b"fixes")
    return s


@pytest.fixture(scope="session")
def credential_records() -> List[CredentialRecord]:
    return [
        CredentialRecord("admin_all", fast_hash("admin-pass"), "admin", True, ()),
        CredentialRecord("admin1", fast_hash("admin001"), "admin", True, ("SS1416",)),
        CredentialRecord("dl1", fast_hash("dl001"), "downloader", True, ("SS1926",)),
        CredentialRecord("dl_all", fast_hash("dl-pass"), "downloader", True, ()),
        CredentialRecord("disabled_admin", fast_hash("secret"), "admin", False, ()),
        CredentialRecord("auditor", fast_hash("auditor-pass"), "auditor", True, ()),
    ]


@pytest.fixture
def credential_store(credential_records) -> InMemoryCredentialStore:
    return InMemoryCredentialStore(credential_records)


@pytest.fixture
def make_session(store):
    def _make(
        username: str = "admin_all",
        role: str = "admin",
        allowed_models=(),
        page_size: int = 10,
        max_file_size: int = 0,
    ) -> ProtocolSession:
        user = UserContext.build(username, role, allowed_models)
        return ProtocolSession(
            user, store, namespace="firmwares", page_size=page_size, max_file_size=max_file_size
        )

    return _make


@pytest_asyncio.fixture
async def busy_default_executor():
    """Occupy every worker of the loop's default executor for a while."""
    hold = 1.5
    workers = min(32, (os.cpu_count() or 1) + 4) + 2
    blockers = [asyncio.ensure_future(asyncio.to_thread(time.sleep, hold)) for _ in range(workers)]
    await asyncio.sleep(0.1)
    yield hold
    await asyncio.gather(*blockers)
