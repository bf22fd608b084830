import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from sftp_bridge.api.router import router
from sftp_bridge.auth.authenticator import Authenticator
from sftp_bridge.auth.context import UserContext
from sftp_bridge.auth.credentials import PostgresCredentialStore
from sftp_bridge.config import settings
from sftp_bridge.db.postgres import close_pg_pool, init_pg_pool
from sftp_bridge.sftp.host_key import load_or_create_host_key
from sftp_bridge.sftp.server import SFTPBridgeServer
from sftp_bridge.sftp.session import ProtocolSession
from sftp_bridge.storage.base import ObjectStore
from sftp_bridge.storage.s3_store import S3ObjectStore

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Store threads beyond one per SFTP connection, for the internal API.
HOUSEKEEPING_WORKERS = 2


def make_session_factory(store: ObjectStore):
    def factory(user: UserContext) -> ProtocolSession:
        return ProtocolSession(
            user=user,
            store=store,
            namespace=settings.SFTP_NAMESPACE,
            page_size=settings.SFTP_READDIR_PAGE_SIZE,
            max_file_size=settings.SFTP_MAX_FILE_SIZE,
        )

    return factory


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting SFTP bridge...")

    # PostgreSQL read pool (sftp_users lookups only)
    pg_pool = await init_pg_pool(settings.POSTGRES_DSN, use_ssl=settings.DB_SSL)
    authenticator = Authenticator(
        PostgresCredentialStore(pg_pool), max_workers=settings.SFTP_HASH_WORKERS
    )

    store = S3ObjectStore(
        bucket=settings.AWS_BUCKET_NAME,
        region=settings.AWS_REGION,
        access_key_id=settings.AWS_ACCESS_KEY_ID,
        secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        timeout=settings.SFTP_BACKEND_TIMEOUT_SEC,
        max_workers=settings.SFTP_MAX_CONNECTIONS + HOUSEKEEPING_WORKERS,
    )

    host_key = await asyncio.to_thread(
        load_or_create_host_key, settings.SFTP_HOST_KEY, settings.SFTP_HOST_KEY_BITS
    )

    sftp_server = SFTPBridgeServer(
        host_key=host_key,
        authenticator=authenticator,
        session_factory=make_session_factory(store),
        host=settings.SFTP_HOST,
        port=settings.SFTP_PORT,
        auth_timeout=settings.SFTP_AUTH_TIMEOUT_SEC,
        request_timeout=settings.SFTP_BACKEND_TIMEOUT_SEC + 30,
        max_connections=settings.SFTP_MAX_CONNECTIONS,
    )
    sftp_server.start(asyncio.get_running_loop())

    app.state.object_store = store
    app.state.sftp_server = sftp_server
    logger.info(
        f"SFTP bridge ready: port {sftp_server.port}, bucket {settings.AWS_BUCKET_NAME}, "
        f"namespace {settings.SFTP_NAMESPACE}/"
    )
    logger.info(f"Usage: sftp -P {sftp_server.port} <username>@<server-ip>")

    yield

    await asyncio.to_thread(sftp_server.stop)
    store.close()
    authenticator.close()
    await close_pg_pool(pg_pool)
    logger.info("SFTP bridge stopped")


app = FastAPI(title="CraneEyes SFTP Bridge", version=settings.SERVICE_VERSION, lifespan=lifespan)
app.include_router(router)


def run() -> None:
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
