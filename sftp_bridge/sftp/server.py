"""
SFTPBridgeServer: listening socket, accept thread, one paramiko Transport
per connection.

The accept loop never blocks on a handshake: each Transport negotiates,
authenticates and serves SFTP on its own thread, and every filesystem call
is bridged onto the asyncio loop given to start().
"""

import asyncio
import logging
import socket
import threading
from typing import Optional, Set

import paramiko

from sftp_bridge.auth.authenticator import Authenticator
from sftp_bridge.sftp.adapter import BridgeServerInterface, BridgeSFTPInterface, SessionFactory

logger = logging.getLogger(__name__)

ACCEPT_POLL_SEC = 0.5


class SFTPBridgeServer:
    def __init__(
        self,
        host_key: paramiko.PKey,
        authenticator: Authenticator,
        session_factory: SessionFactory,
        host: str = "0.0.0.0",
        port: int = 2222,
        auth_timeout: float = 15.0,
        request_timeout: float = 90.0,
        backlog: int = 100,
        max_connections: int = 64,
    ):
        self.host_key = host_key
        self.authenticator = authenticator
        self.session_factory = session_factory
        self.host = host
        self._port = port
        self.auth_timeout = auth_timeout
        self.request_timeout = request_timeout
        self.backlog = backlog
        self.max_connections = max_connections

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._sock: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._running = threading.Event()
        self._transports: Set[paramiko.Transport] = set()
        self._transports_lock = threading.Lock()
        self.connection_count = 0

    @property
    def port(self) -> int:
        if self._sock is not None:
            return self._sock.getsockname()[1]
        return self._port

    @property
    def is_listening(self) -> bool:
        return self._running.is_set()

    @property
    def active_connections(self) -> int:
        with self._transports_lock:
            self._prune()
            return len(self._transports)

    def _prune(self) -> None:
        self._transports = {t for t in self._transports if t.is_active()}

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._sock = socket.create_server((self.host, self._port), backlog=self.backlog)
        self._sock.settimeout(ACCEPT_POLL_SEC)
        self._running.set()
        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="sftp-accept", daemon=True
        )
        self._accept_thread.start()
        logger.info(f"SFTP server listening on {self.host}:{self.port}")

    def _accept_loop(self) -> None:
        while self._running.is_set():
            try:
                client, addr = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                if not self._running.is_set():
                    break
                logger.exception("Error accepting SFTP connection")
                continue
            try:
                self._handle_connection(client, addr)
            except Exception:
                logger.exception(f"Failed to start SSH transport for {addr}")
                client.close()

    def _handle_connection(self, client: socket.socket, addr) -> None:
        remote = f"{addr[0]}:{addr[1]}"
        if self.active_connections >= self.max_connections:
            logger.warning(
                f"Rejecting {remote}: {self.max_connections} connections already open"
            )
            client.close()
            return
        logger.info(f"Client connected from {remote}")
        client.settimeout(None)

        transport = paramiko.Transport(client)
        transport.add_server_key(self.host_key)
        transport.set_subsystem_handler("sftp", paramiko.SFTPServer, BridgeSFTPInterface)

        server = BridgeServerInterface(
            authenticator=self.authenticator,
            session_factory=self.session_factory,
            loop=self._loop,
            remote=remote,
            auth_timeout=self.auth_timeout,
            request_timeout=self.request_timeout,
        )
        # With an event, start_server returns at once; negotiation runs on the transport thread.
        transport.start_server(event=threading.Event(), server=server)

        with self._transports_lock:
            self._prune()
            self._transports.add(transport)
            self.connection_count += 1

    def stop(self) -> None:
        if not self._running.is_set():
            return
        self._running.clear()
        if self._sock is not None:
            self._sock.close()
        if self._accept_thread is not None:
            self._accept_thread.join(timeout=5)

        with self._transports_lock:
            transports = list(self._transports)
            self._transports.clear()
        for transport in transports:
            transport.close()
        logger.info(f"SFTP server stopped ({len(transports)} connections closed)")
        self._sock = None
