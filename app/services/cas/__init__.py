from app.services.cas.file_stager import FileStager, sanitize_file_name
from app.services.cas.ingestion import CasIngestionService
from app.services.cas.record_merger import RecordMerger

__all__ = [
    "FileStager",
    "sanitize_file_name",
    "CasIngestionService",
    "RecordMerger",
]
