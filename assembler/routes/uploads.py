"""
HTTP adapter for Resumable.js-style chunked uploads.

``GET /upload`` asks whether a chunk is already stored, ``POST /upload``
delivers one. Parameter names may carry a vendor prefix (``resumableIdentifier``);
the coordinator strips it.
"""

import logging
import tempfile
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from starlette.datastructures import UploadFile

from assembler.exceptions import UploadValidationError
from assembler.models.upload import ChunkRequest, UploadOutcome, UploadResult
from assembler.services.coordinator import UploadCoordinator, get_upload_coordinator

logger = logging.getLogger(__name__)
router = APIRouter()

FORM_CONTENT_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")
SPOOL_MAX_SIZE = 1024 * 1024


def get_coordinator() -> UploadCoordinator:
    return get_upload_coordinator()


def _to_response(result: UploadResult) -> Response:
    status_code = result.outcome.status_code
    if status_code == 204:
        return Response(status_code=204)
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json", exclude_none=True))


async def _handle(coordinator: UploadCoordinator, chunk_request: ChunkRequest) -> Response:
    try:
        result = await run_in_threadpool(coordinator.handle, chunk_request)
    except UploadValidationError as e:
        logger.warning(f"Rejected upload request: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    if result.outcome not in (UploadOutcome.PROBE_HIT, UploadOutcome.PROBE_MISS):
        logger.info(f"Upload {result.identifier} chunk {result.chunk_number}: {result.outcome.value}")
    return _to_response(result)


def _reject_oversized(coordinator: UploadCoordinator, size: int) -> None:
    limit = coordinator.max_chunk_size
    if limit is not None and size > limit:
        logger.warning(f"Rejected chunk body of {size} bytes, limit is {limit}")
        raise HTTPException(status_code=413, detail=f"Chunk body exceeds limit of {limit} bytes")


async def _read_raw_chunk(request: Request, coordinator: UploadCoordinator):
    """Spool a raw request body to a temporary file, enforcing the chunk size limit while reading."""
    spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE)
    received = 0
    try:
        async for data in request.stream():
            received += len(data)
            _reject_oversized(coordinator, received)
            spool.write(data)
    except BaseException:
        spool.close()
        raise
    if not received:
        spool.close()
        return None
    spool.seek(0)
    return spool


@router.get("/upload")
async def probe_chunk(request: Request, coordinator: UploadCoordinator = Depends(get_coordinator)):
    """
    Test whether a chunk exists.
    200 means the client may skip it, 204 means it must be sent.
    """
    return await _handle(coordinator, ChunkRequest(parameters=dict(request.query_params)))


@router.post("/upload")
async def upload_chunk(request: Request, coordinator: UploadCoordinator = Depends(get_coordinator)):
    """
    Receive one chunk.
    Multipart bodies carry the fields and the chunk as a file field; any other
    body is taken as the raw chunk with fields in the query string.
    """
    parameters: Dict[str, object] = dict(request.query_params)
    upload: Optional[UploadFile] = None
    payload = None

    content_type = request.headers.get("content-type", "")
    if content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        for name, value in form.multi_items():
            if isinstance(value, UploadFile):
                upload = value
            else:
                parameters[name] = value
        if upload is not None:
            payload = upload.file
            if upload.size is not None:
                try:
                    _reject_oversized(coordinator, upload.size)
                except HTTPException:
                    await upload.close()
                    raise
    else:
        payload = await _read_raw_chunk(request, coordinator)

    try:
        return await _handle(coordinator, ChunkRequest(parameters=parameters, payload=payload))
    finally:
        if upload is not None:
            await upload.close()
        elif payload is not None:
            payload.close()


@router.get("/uploads/{identifier}/status")
async def upload_status(identifier: str, filename: Optional[str] = None,
                        coordinator: UploadCoordinator = Depends(get_coordinator)):
    try:
        status = await run_in_threadpool(coordinator.status, identifier, filename)
    except UploadValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not status.exists:
        raise HTTPException(status_code=404, detail="Upload not found")
    return status.model_dump()


@router.delete("/uploads/{identifier}")
async def cancel_upload(identifier: str, coordinator: UploadCoordinator = Depends(get_coordinator)):
    try:
        removed = await run_in_threadpool(coordinator.cancel, identifier)
    except UploadValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not removed:
        raise HTTPException(status_code=404, detail="Upload not found")
    return {"status": "cancelled", "identifier": identifier}
