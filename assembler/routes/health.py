from fastapi import APIRouter
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
import logging
import os

from assembler.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()


def _root_writable(path: str) -> bool:
    return os.path.isdir(path) and os.access(path, os.W_OK | os.X_OK)


@router.get("/healthz")
async def health_check():
    """
    Readiness of the storage roots.
    Both the chunk root and the upload root must be writable directories,
    otherwise the service answers 503 with status DEGRADED.
    """
    checks = {
        "chunk_root_writable": _root_writable(settings.chunk_tmp_dir),
        "upload_root_writable": _root_writable(settings.upload_dir),
    }
    healthy = all(checks.values())
    if not healthy:
        failed = ", ".join(name for name, ok in checks.items() if not ok)
        logger.warning(f"Health check degraded: {failed}")

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "OK" if healthy else "DEGRADED",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": checks,
        },
    )
