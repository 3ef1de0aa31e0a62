"""
Wiring of the CAS ingestion service from settings.

Collaborators are built once per process and passed in explicitly; nothing
below reaches for a module-level singleton at call time.
"""

from app.core.config import Settings
from app.infrastructure.client_repository import ClientRepository, InMemoryClientRepository
from app.services.cas.file_stager import FileStager
from app.services.cas.ingestion import CasIngestionService
from app.services.cas.record_merger import RecordMerger
from app.services.pdf.gateway import PyMuPDFParserGateway
from app.utils.encryption import CredentialVault


def build_repository(settings: Settings) -> ClientRepository:
    if settings.repository_backend == "supabase":
        from app.infrastructure.supabase_client import (
            SupabaseClientRepository,
            create_supabase_client,
        )

        client = create_supabase_client(settings.supabase_url, settings.supabase_service_key)
        return SupabaseClientRepository(client, table=settings.supabase_clients_table)
    return InMemoryClientRepository()


def build_cas_service(settings: Settings) -> CasIngestionService:
    return CasIngestionService(
        repository=build_repository(settings),
        vault=CredentialVault(settings.cas_encryption_key),
        stager=FileStager(settings.cas_upload_dir, max_file_size=settings.cas_max_upload_bytes),
        gateway=PyMuPDFParserGateway(),
        merger=RecordMerger(),
    )
