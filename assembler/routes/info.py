from fastapi import APIRouter
from datetime import datetime, timezone
import logging
import platform
import sys

from assembler.config import settings
from assembler.services.mime import MAGIC_AVAILABLE

logger = logging.getLogger(__name__)
router = APIRouter()

@router.get("/server/info")
async def server_info():
    """
    Server information endpoint
    Returns server details, upload configuration and system information
    """
    logger.info("Server info requested")
    return {
        "service": "chunk-assembler",
        "version": settings.app_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uploads": {
            "allowed_mime_types": settings.allowed_mime_types,
            "parameter_prefix": settings.parameter_prefix,
            "max_chunk_size_mb": settings.max_chunk_size_mb,
            "max_upload_size_gb": settings.max_upload_size_gb,
            "mime_sniffing": MAGIC_AVAILABLE
        },
        "system": {
            "platform": platform.platform(),
            "python_version": sys.version,
            "architecture": platform.architecture()[0]
        },
        "status": "running"
    }
