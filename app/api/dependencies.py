import structlog
from fastapi import Request

from app.core.config import settings
from app.services.cas.factory import build_cas_service
from app.services.cas.ingestion import CasIngestionService

logger = structlog.get_logger()


def get_cas_service(request: Request) -> CasIngestionService:
    """
    Dependency returning the process-wide CAS ingestion service.

    Built during application startup; built on first use if the lifespan
    did not run.
    """
    service = getattr(request.app.state, "cas_service", None)
    if service is None:
        logger.info("cas_service_built_lazily")
        service = build_cas_service(settings)
        request.app.state.cas_service = service
    return service
