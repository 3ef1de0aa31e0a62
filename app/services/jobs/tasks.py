"""
RQ job functions for CAS parsing.

The API commits the Parsing status and enqueues parse_cas_task on the
cas_parsing queue. The job runs the blocking parse against the shared
client store and records the terminal outcome. Jobs are enqueued without an
RQ Retry: a failed parse is already persisted as an Error status and is
retried only by a new parse request.
"""
import uuid
from typing import Any, Dict, Optional

import structlog

from app.core.config import settings
from app.core.logging_config import configure_logging
from app.services.cas.factory import build_cas_service
from app.services.cas.ingestion import CasIngestionService

logger = structlog.get_logger()

_service: Optional[CasIngestionService] = None


def get_worker_service() -> CasIngestionService:
    """Build the worker's service once per process."""
    global _service
    if _service is None:
        configure_logging()
        _service = build_cas_service(settings)
    return _service


def set_worker_service(service: Optional[CasIngestionService]) -> None:
    global _service
    _service = service


# ---------------------------------------------------------------------------
# Job functions
# ---------------------------------------------------------------------------

def parse_cas_task(client_id: str, trace_id: Optional[str] = None) -> Dict[str, Any]:
    """Run the CAS parse for a client whose record is in Parsing."""
    trace_id = trace_id or str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(trace_id=trace_id, client_id=client_id)
    try:
        logger.info("parse_cas_task_started")
        result = get_worker_service().run_parse_detached(client_id)
        if result is None:
            return {"success": False, "client_id": client_id, "trace_id": trace_id}
        return {
            "success": True,
            "client_id": client_id,
            "status": result.status.value,
            "trace_id": trace_id,
        }
    finally:
        structlog.contextvars.unbind_contextvars("trace_id", "client_id")


def enqueue_parse(client_id: str, trace_id: Optional[str] = None) -> str:
    """Put a parse job on the cas_parsing queue and return its job id."""
    from app.core.rq_app import CAS_PARSE_JOB_TIMEOUT, cas_parsing_queue

    job = cas_parsing_queue.enqueue(
        parse_cas_task,
        client_id=client_id,
        trace_id=trace_id,
        job_timeout=CAS_PARSE_JOB_TIMEOUT,
    )
    logger.info("parse_cas_task_enqueued", client_id=client_id, job_id=job.id)
    return job.id
