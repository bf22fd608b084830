import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from sftp_bridge.api.dependencies import get_object_store, get_sftp_server, verify_internal_key
from sftp_bridge.common.audit import log_housekeeping
from sftp_bridge.common.exceptions import BridgeError
from sftp_bridge.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    sftp_listening: bool
    sftp_port: int
    active_connections: int
    total_connections: int


class WipeResponse(BaseModel):
    prefix: str
    deleted: int


@router.get("/")
async def root():
    return {
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "status": "running",
        "namespace": settings.SFTP_NAMESPACE,
    }


@router.get("/health", response_model=HealthResponse)
async def health(sftp_server=Depends(get_sftp_server)):
    listening = bool(sftp_server and sftp_server.is_listening)
    return HealthResponse(
        status="healthy" if listening else "degraded",
        sftp_listening=listening,
        sftp_port=sftp_server.port if sftp_server else settings.SFTP_PORT,
        active_connections=sftp_server.active_connections if sftp_server else 0,
        total_connections=sftp_server.connection_count if sftp_server else 0,
    )


@router.delete("/internal/objects", response_model=WipeResponse)
async def wipe_namespace(
    _: str = Depends(verify_internal_key),
    store=Depends(get_object_store),
):
    """Delete every object under the namespace (dashboard 'reset' housekeeping)."""
    prefix = settings.SFTP_NAMESPACE + "/"
    try:
        deleted = await store.delete_prefix(prefix)
    except BridgeError as exc:
        logger.error(f"Bulk delete of {prefix} failed: {exc}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Object store delete failed"
        )
    log_housekeeping("wipe", prefix, deleted)
    return WipeResponse(prefix=prefix, deleted=deleted)
