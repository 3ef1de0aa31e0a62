"""
API endpoints for a client's Consolidated Account Statement (CAS).

Each route runs one CAS operation for a client. The blocking parse runs after the
response, in-process or on the RQ cas_parsing queue.
"""
from typing import Optional

import structlog
from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    Query,
    Request,
    Response,
    UploadFile,
    status,
)
from fastapi.concurrency import run_in_threadpool
from redis.exceptions import RedisError

from app.api.dependencies import get_cas_service
from app.core.config import settings
from app.core.decorators import require_internal_caller
from app.core.exceptions import PersistenceError
from app.domain.schemas import CasDataResponse, CasFlowInfo, CasStatusResponse
from app.services.cas.ingestion import CasIngestionService
from app.services.jobs.tasks import enqueue_parse

logger = structlog.get_logger()

router = APIRouter(prefix="/clients", tags=["CAS"])

QUEUE_UNAVAILABLE_MESSAGE = "Could not queue the CAS parse. Please retry the parse."


@router.post("/{client_id}/cas/upload", response_model=CasStatusResponse)
async def upload_cas(
    client_id: str,
    cas_file: UploadFile = File(..., alias="casFile"),
    cas_password: Optional[str] = Form(None, alias="casPassword"),
    service: CasIngestionService = Depends(get_cas_service),
):
    """
    Upload (or replace) the client's CAS PDF.

    Form fields:
    - casFile: the PDF, at most 10MB
    - casPassword: optional document password, stored encrypted
    """
    # One byte over the cap is enough to reject an oversized upload
    data = await cas_file.read(service.stager.max_file_size + 1)
    return await run_in_threadpool(
        service.upload_cas,
        client_id,
        data,
        cas_file.filename or "",
        cas_password,
    )


@router.post(
    "/{client_id}/cas/parse",
    response_model=CasStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_cas_parse(
    client_id: str,
    response: Response,
    background_tasks: BackgroundTasks,
    wait: bool = Query(False, description="Parse inline and return the final status"),
    service: CasIngestionService = Depends(get_cas_service),
):
    """
    Start parsing the uploaded CAS.

    Returns 202 with status "parsing" once the parse is accepted. With
    wait=true the parse runs before responding: 200 with status "parsed",
    or the classified parse error.
    """
    accepted = await run_in_threadpool(service.request_parse, client_id)

    if wait:
        response.status_code = status.HTTP_200_OK
        return await run_in_threadpool(service.run_parse, client_id)

    if settings.cas_parse_backend == "rq":
        trace_id = structlog.contextvars.get_contextvars().get("trace_id")
        try:
            await run_in_threadpool(enqueue_parse, client_id, trace_id)
        except RedisError as e:
            logger.error("cas_parse_enqueue_failed", client_id=client_id, error=str(e))
            # Leave a retryable Error status instead of an orphaned Parsing lock
            await run_in_threadpool(
                service.reset_stuck_parse, client_id, QUEUE_UNAVAILABLE_MESSAGE
            )
            raise PersistenceError(QUEUE_UNAVAILABLE_MESSAGE) from e
    else:
        background_tasks.add_task(service.run_parse_detached, client_id)

    return accepted


@router.get("/{client_id}/cas/status", response_model=CasStatusResponse)
async def get_cas_status(
    client_id: str,
    service: CasIngestionService = Depends(get_cas_service),
):
    """Status, error and file metadata without the parsed holdings."""
    return await run_in_threadpool(service.get_cas_status, client_id)


@router.get("/{client_id}/cas", response_model=CasDataResponse)
async def get_cas_data(
    client_id: str,
    service: CasIngestionService = Depends(get_cas_service),
):
    """Full CAS record including parsed holdings and processing history."""
    return await run_in_threadpool(service.get_cas_data, client_id)


@router.delete("/{client_id}/cas", response_model=CasStatusResponse)
async def delete_cas(
    client_id: str,
    service: CasIngestionService = Depends(get_cas_service),
):
    return await run_in_threadpool(service.delete_cas, client_id)


@router.get("/{client_id}/cas/flow", response_model=CasFlowInfo)
async def get_cas_flow(
    client_id: str,
    service: CasIngestionService = Depends(get_cas_service),
):
    """Current flow state and the events it accepts."""
    return await run_in_threadpool(service.get_flow_info, client_id)


@router.post("/{client_id}/cas/reset", response_model=CasStatusResponse)
@require_internal_caller
async def reset_cas_parse(
    request: Request,
    client_id: str,
    service: CasIngestionService = Depends(get_cas_service),
):
    """
    Operator recovery: move a record stuck in parsing to error.

    Requires the X-Internal-Secret header.
    """
    return await run_in_threadpool(service.reset_stuck_parse, client_id)
