"""
End-to-end: a real paramiko SFTP client talking to SFTPBridgeServer on an
ephemeral port. Client calls block, so they run in worker threads while the
event loop serves the bridged requests.
"""

import asyncio
import errno
import io
import time

import paramiko
import pytest
import pytest_asyncio

from sftp_bridge.auth.authenticator import Authenticator
from sftp_bridge.auth.context import UserContext
from sftp_bridge.sftp.server import SFTPBridgeServer
from sftp_bridge.sftp.session import ProtocolSession


@pytest.fixture(scope="module")
def host_key():
    return paramiko.RSAKey.generate(1024)


@pytest.fixture
def sessions():
    return []


def _build_server(host_key, credential_store, store, sessions, **kwargs) -> SFTPBridgeServer:
    def factory(user: UserContext) -> ProtocolSession:
        session = ProtocolSession(user, store, namespace="firmwares", page_size=2)
        sessions.append(session)
        return session

    return SFTPBridgeServer(
        host_key=host_key,
        authenticator=Authenticator(credential_store),
        session_factory=factory,
        host="127.0.0.1",
        port=0,
        auth_timeout=10,
        request_timeout=10,
        **kwargs,
    )


@pytest_asyncio.fixture
async def sftp_server(host_key, credential_store, store, sessions):
    server = _build_server(host_key, credential_store, store, sessions)
    server.start(asyncio.get_running_loop())
    yield server
    await asyncio.to_thread(server.stop)


def _connect(port: int, username: str, password: str):
    transport = paramiko.Transport(("127.0.0.1", port))
    try:
        transport.connect(username=username, password=password)
    except paramiko.SSHException:
        transport.close()
        raise
    return transport, paramiko.SFTPClient.from_transport(transport)


def _with_client(port, username, password, fn):
    transport, sftp = _connect(port, username, password)
    try:
        return fn(sftp)
    finally:
        sftp.close()
        transport.close()


class TestSFTPServer:
    @pytest.mark.asyncio
    async def test_upload_then_download(self, sftp_server, store):
        def scenario(sftp):
            sftp.putfo(io.BytesIO(b"\x01\x02\x03"), "/firmwares/SS1416/2.4.1/file.bin")
            with sftp.open("/firmwares/SS1416/2.4.1/file.bin", "rb") as f:
                return f.read()

        data = await asyncio.to_thread(
            _with_client, sftp_server.port, "admin1", "admin001", scenario
        )
        assert data == b"\x01\x02\x03"
        assert [(k, b) for k, b, _ in store.puts] == [
            ("firmwares/SS1416/2.4.1/file.bin", b"\x01\x02\x03")
        ]

    @pytest.mark.asyncio
    async def test_listing_and_realpath(self, sftp_server):
        def scenario(sftp):
            return sftp.normalize("."), sorted(sftp.listdir("/")), sftp.listdir("/SS1416/2.4.1")

        cwd, root, version = await asyncio.to_thread(
            _with_client, sftp_server.port, "admin_all", "admin-pass", scenario
        )
        assert cwd == "/firmwares"
        assert root == ["SS1406", "SS1416", "SSN3000"]
        assert sorted(version) == ["SS1416-firmware-v2.4.1.bin", "release-notes.txt"]

    @pytest.mark.asyncio
    async def test_scoped_listing(self, sftp_server):
        root = await asyncio.to_thread(
            _with_client, sftp_server.port, "admin1", "admin001", lambda s: s.listdir("/")
        )
        assert root == ["SS1416"]

    @pytest.mark.asyncio
    async def test_downloader_denied_outside_scope(self, sftp_server):
        def scenario(sftp):
            with pytest.raises(OSError) as exc_info:
                sftp.open("/firmwares/SS1416/2.4.1/SS1416-firmware-v2.4.1.bin", "rb")
            return exc_info.value.errno

        code = await asyncio.to_thread(_with_client, sftp_server.port, "dl1", "dl001", scenario)
        assert code == errno.EACCES

    @pytest.mark.asyncio
    async def test_downloader_cannot_remove(self, sftp_server, store):
        def scenario(sftp):
            with pytest.raises(OSError) as exc_info:
                sftp.remove("/SS1416/2.4.1/release-notes.txt")
            return exc_info.value.errno

        code = await asyncio.to_thread(
            _with_client, sftp_server.port, "dl_all", "dl-pass", scenario
        )
        assert code == errno.EACCES
        assert store.deletes == []

    @pytest.mark.asyncio
    async def test_missing_file(self, sftp_server):
        def scenario(sftp):
            with pytest.raises(OSError) as exc_info:
                sftp.open("/SS1416/9.9.9/nope.bin", "rb")
            return exc_info.value.errno

        code = await asyncio.to_thread(
            _with_client, sftp_server.port, "admin_all", "admin-pass", scenario
        )
        assert code == errno.ENOENT

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "username, password",
        [("admin1", "wrong"), ("ghost", "whatever"), ("disabled_admin", "secret")],
    )
    async def test_rejected_logins(self, sftp_server, username, password):
        with pytest.raises(paramiko.AuthenticationException):
            await asyncio.to_thread(_connect, sftp_server.port, username, password)

    @pytest.mark.asyncio
    async def test_connections_are_counted(self, sftp_server):
        await asyncio.to_thread(
            _with_client, sftp_server.port, "dl_all", "dl-pass", lambda s: s.listdir("/")
        )
        assert sftp_server.is_listening
        assert sftp_server.connection_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["publickey", "none"])
    async def test_only_password_auth_is_offered(self, sftp_server, host_key, caplog, method):
        def attempt():
            transport = paramiko.Transport(("127.0.0.1", sftp_server.port))
            try:
                transport.start_client(timeout=10)
                with pytest.raises(paramiko.BadAuthenticationType) as exc_info:
                    if method == "publickey":
                        transport.auth_publickey("admin1", host_key)
                    else:
                        transport.auth_none("admin1")
                return exc_info.value.allowed_types
            finally:
                transport.close()

        with caplog.at_level("INFO", logger="sftp_bridge.audit"):
            allowed = await asyncio.to_thread(attempt)
        assert allowed == ["password"]
        audit = [r.getMessage() for r in caplog.records if r.name == "sftp_bridge.audit"]
        assert any("user=admin1" in m and "reason=method_rejected" in m for m in audit)

    @pytest.mark.asyncio
    async def test_dropped_connection_abandons_upload(self, sftp_server, store, sessions, caplog):
        def scenario():
            transport, sftp = _connect(sftp_server.port, "admin1", "admin001")
            f = sftp.open("/SS1416/2.4.1/partial.bin", "wb")
            f.write(b"half an upload")
            f.flush()
            transport.close()

        with caplog.at_level("WARNING", logger="sftp_bridge.sftp.session"):
            await asyncio.to_thread(scenario)
            deadline = time.monotonic() + 5
            while not (sessions and sessions[0].closed) and time.monotonic() < deadline:
                await asyncio.sleep(0.05)

        assert sessions[0].closed
        assert store.puts == []
        assert "firmwares/SS1416/2.4.1/partial.bin" not in store.objects
        assert any("unfinished upload" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_connections_over_the_limit_are_refused(
        self, host_key, credential_store, store, sessions
    ):
        server = _build_server(host_key, credential_store, store, sessions, max_connections=1)
        server.start(asyncio.get_running_loop())

        def scenario():
            transport, sftp = _connect(server.port, "dl_all", "dl-pass")
            try:
                with pytest.raises((paramiko.SSHException, EOFError, OSError)):
                    _connect(server.port, "dl_all", "dl-pass")
                return sorted(sftp.listdir("/"))
            finally:
                sftp.close()
                transport.close()

        try:
            names = await asyncio.to_thread(scenario)
        finally:
            await asyncio.to_thread(server.stop)
        assert names == ["SS1406", "SS1416", "SSN3000"]
        assert server.connection_count == 1
