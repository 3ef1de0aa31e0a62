"""
CAS ingestion orchestration.

Loads the client aggregate, drives the CAS flow machine, calls the vault,
stager and parser, and saves the aggregate back under a version check. The
Parsing status is committed before any decrypt or parse work starts and is
the only in-flight lock.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog

from app.core.exceptions import (
    ConfigError,
    ConflictError,
    DecryptionError,
    DomainException,
    StorageIOError,
    ValidationError,
    CasDataNotFoundError,
)
from app.domain.schemas import (
    CasDataResponse,
    CasFile,
    CasFileMeta,
    CasFlowInfo,
    CasStatus,
    CasStatusResponse,
    ClientRecord,
    PortfolioSnapshot,
)
from app.infrastructure.client_repository import ClientRepository
from app.services.cas.file_stager import FileStager
from app.services.cas.record_merger import RecordMerger
from app.services.pdf.exceptions import (
    ERROR_MESSAGES,
    CasParserError,
    UnknownParserError,
    WrongPasswordError,
)
from app.services.pdf.gateway import ParserGateway
from app.state_machines.cas_flow import CasFlowMachine
from app.utils.encryption import CredentialVault, EncryptedSecret, mask_identity_number

logger = structlog.get_logger()

NO_FILE_MESSAGE = "No CAS file uploaded. Please upload a CAS file first."
FILE_MISSING_MESSAGE = "CAS file not found. Please upload the file again."
DECRYPT_FAILED_MESSAGE = "Failed to decrypt CAS password. Please re-upload the CAS file."
PARSE_IN_PROGRESS_MESSAGE = "CAS parsing is already in progress for this client."
INTERRUPTED_MESSAGE = (
    "CAS parsing was interrupted. Please retry the parse or re-upload the CAS file."
)


class CasIngestionService:
    """Runs every CAS operation for a client against the client store."""

    def __init__(
        self,
        repository: ClientRepository,
        vault: CredentialVault,
        stager: FileStager,
        gateway: ParserGateway,
        merger: Optional[RecordMerger] = None,
    ):
        self.repository = repository
        self.vault = vault
        self.stager = stager
        self.gateway = gateway
        self.merger = merger or RecordMerger()

    def _machine(self, client: ClientRecord) -> CasFlowMachine:
        return CasFlowMachine(client.cas, client_id=client.id)

    # Commands
    def upload_cas(
        self,
        client_id: str,
        data: bytes,
        file_name: str,
        password: Optional[str] = None,
    ) -> CasStatusResponse:
        """
        Stage a new CAS document, replacing any previous one.

        Raises:
            ValidationError: empty, oversized or non-PDF upload
            ClientNotFoundError: unknown client
            ConflictError: a parse is in flight, or the record changed underneath
            ConfigError: a password was given but no encryption key is configured
        """
        log = logger.bind(client_id=client_id)
        log.info("cas_upload_received", file_name=file_name, size_bytes=len(data))

        # Rejected uploads never reach the vault or the disk
        self.stager.validate(data, file_name)

        client = self.repository.get(client_id)
        expected_version = client.version
        if client.cas.status == CasStatus.PARSING:
            raise ConflictError(
                "CAS parsing is in progress. Wait for it to finish before uploading a new file.",
                details={"client_id": client_id, "status": client.cas.status.value},
            )

        secret = self.vault.encrypt(password) if password else None

        # The new file gets a fresh name; the previous one goes only once the save has won
        previous_path = client.cas.file.storage_path if client.cas.file else None
        storage_path = self.stager.store(data, file_name, client_id)

        cas_file = CasFile(
            name=file_name,
            storage_path=storage_path,
            size=len(data),
            uploaded_at=datetime.now(timezone.utc),
            encrypted_password=secret.ciphertext_hex if secret else None,
            iv=secret.iv_hex if secret else None,
        )

        try:
            self._machine(client).fire("upload", cas_file=cas_file, details=file_name)
            saved = self.repository.save(client, expected_version)
        except ConflictError:
            self.stager.delete(storage_path)
            raise

        if previous_path and previous_path != storage_path:
            self._discard_file(client_id, previous_path, raise_on_error=False)

        log.info("cas_uploaded", password_protected=cas_file.has_password)
        return self._status_response(saved)

    def request_parse(self, client_id: str) -> CasStatusResponse:
        """
        Commit the Parsing status. The parse itself runs in run_parse.

        Raises:
            ValidationError: nothing uploaded, or the staged file is gone
            ConflictError: already parsing, already parsed, or a concurrent write won
        """
        log = logger.bind(client_id=client_id)
        client = self.repository.get(client_id)
        expected_version = client.version
        cas = client.cas

        if cas.status == CasStatus.PARSING:
            log.info("cas_parse_rejected_in_flight")
            raise ConflictError(PARSE_IN_PROGRESS_MESSAGE, details={"client_id": client_id})
        if cas.status == CasStatus.PARSED:
            raise ConflictError(
                "CAS file is already parsed. Upload a new file to parse again.",
                details={"client_id": client_id},
            )
        if cas.file is None:
            raise ValidationError(NO_FILE_MESSAGE, details={"client_id": client_id})
        if not self.stager.exists(cas.file.storage_path):
            log.warning("cas_staged_file_missing")
            raise ValidationError(FILE_MISSING_MESSAGE, details={"client_id": client_id})

        self._machine(client).fire("start_parse")
        saved = self.repository.save(client, expected_version)
        log.info("cas_parse_requested")
        return self._status_response(saved)

    def run_parse(self, client_id: str) -> CasStatusResponse:
        """
        Decrypt, parse and record exactly one terminal outcome.

        The classified failure is persisted as an Error status and then raised.
        """
        log = logger.bind(client_id=client_id)
        client = self.repository.get(client_id)
        expected_version = client.version
        cas_file = client.cas.file

        if client.cas.status != CasStatus.PARSING or cas_file is None:
            raise ConflictError(
                "No CAS parse is in progress for this client",
                details={"client_id": client_id, "status": client.cas.status.value},
            )

        started = datetime.now(timezone.utc)
        try:
            password = self._decrypt_password(cas_file)
            snapshot = self.gateway.parse(cas_file.storage_path, password)
        except Exception as e:
            failure = self._classify_failure(e)
            log.warning(
                "cas_parse_failed",
                error_code=failure.details.get("error_code", failure.error_code),
                error=failure.message,
            )
            self._record_failure(client, expected_version, failure)
            if failure is e:
                raise
            raise failure from e

        return self._record_success(client, expected_version, snapshot, started)

    def run_parse_detached(self, client_id: str) -> Optional[CasStatusResponse]:
        """run_parse for task runners: the outcome is already persisted, so only log it."""
        try:
            return self.run_parse(client_id)
        except DomainException as e:
            logger.info(
                "cas_parse_finished_with_error",
                client_id=client_id,
                error_code=e.error_code,
                error=e.message,
            )
            return None

    def delete_cas(self, client_id: str) -> CasStatusResponse:
        """Reset the CAS record to NotUploaded and remove the staged file."""
        client = self.repository.get(client_id)
        expected_version = client.version

        if client.cas.status == CasStatus.PARSING:
            raise ConflictError(
                "CAS parsing is in progress. Wait for it to finish before deleting.",
                details={"client_id": client_id},
            )
        if client.cas.status == CasStatus.NOT_UPLOADED:
            return self._status_response(client)

        storage_path = client.cas.file.storage_path if client.cas.file else None
        self._machine(client).fire("delete")
        saved = self.repository.save(client, expected_version)

        if storage_path:
            self._discard_file(client_id, storage_path, raise_on_error=True)
        logger.info("cas_deleted", client_id=client_id)
        return self._status_response(saved)

    def reset_stuck_parse(
        self, client_id: str, reason: str = INTERRUPTED_MESSAGE
    ) -> CasStatusResponse:
        """Operator recovery for a record left in Parsing by a crashed worker."""
        client = self.repository.get(client_id)
        expected_version = client.version
        self._machine(client).fire("interrupt", reason=reason, details="operator reset")
        saved = self.repository.save(client, expected_version)
        logger.warning("cas_parse_reset_by_operator", client_id=client_id)
        return self._status_response(saved)

    # Queries
    def get_cas_status(self, client_id: str) -> CasStatusResponse:
        return self._status_response(self.repository.get(client_id))

    def get_cas_data(self, client_id: str) -> CasDataResponse:
        client = self.repository.get(client_id)
        cas = client.cas
        if cas.status == CasStatus.NOT_UPLOADED:
            raise CasDataNotFoundError(client_id)

        parsed_data = cas.parsed_data
        if parsed_data is not None:
            parsed_data = parsed_data.model_copy(deep=True)
            parsed_data.investor.identity_number = mask_identity_number(
                parsed_data.investor.identity_number
            )

        status = self._status_response(client)
        return CasDataResponse(
            **status.model_dump(),
            parsed_data=parsed_data,
            history=cas.history,
        )

    def get_flow_info(self, client_id: str) -> CasFlowInfo:
        client = self.repository.get(client_id)
        info = self._machine(client).get_flow_info()
        return CasFlowInfo(client_id=client_id, **info)

    # Internals
    def _discard_file(self, client_id: str, storage_path: str, raise_on_error: bool) -> None:
        """Delete a file the saved record no longer references."""
        try:
            self.stager.delete(storage_path)
        except StorageIOError:
            # The record is already saved without this file; leave a trail for cleanup
            logger.error(
                "cas_orphaned_file", client_id=client_id, storage_path=storage_path
            )
            if raise_on_error:
                raise

    def _decrypt_password(self, cas_file: CasFile) -> Optional[str]:
        if not cas_file.has_password:
            return None
        try:
            password = self.vault.decrypt(
                EncryptedSecret(ciphertext_hex=cas_file.encrypted_password, iv_hex=cas_file.iv)
            )
        except DecryptionError as e:
            raise DecryptionError(DECRYPT_FAILED_MESSAGE) from e
        if not password.strip():
            raise DecryptionError(DECRYPT_FAILED_MESSAGE)
        return password

    @staticmethod
    def _classify_failure(exc: Exception) -> DomainException:
        if isinstance(exc, WrongPasswordError):
            return WrongPasswordError(ERROR_MESSAGES["WRONG_PASSWORD"]["message"])
        if isinstance(exc, (CasParserError, DecryptionError, ConfigError, StorageIOError)):
            return exc
        if isinstance(exc, OSError):
            return StorageIOError(
                "Failed to read the staged CAS file. Please upload the file again.",
                details={"error": str(exc)},
            )
        logger.error("cas_parse_unexpected_error", error=str(exc), exc_info=True)
        return UnknownParserError(f"CAS parsing failed: {exc}")

    def _record_failure(
        self, client: ClientRecord, expected_version: int, failure: DomainException
    ) -> None:
        self._machine(client).fire(
            "parse_failed",
            reason=failure.message,
            details=failure.details.get("error_code", failure.error_code),
        )
        try:
            self.repository.save(client, expected_version)
        except ConflictError:
            logger.error("cas_parse_outcome_not_saved", client_id=client.id)
            raise

    def _record_success(
        self,
        client: ClientRecord,
        expected_version: int,
        snapshot: PortfolioSnapshot,
        started: datetime,
    ) -> CasStatusResponse:
        self._machine(client).fire("parse_succeeded", snapshot=snapshot, details=snapshot.format)
        self.merger.merge(client, snapshot)
        saved = self.repository.save(client, expected_version)
        logger.info(
            "cas_parsed",
            client_id=client.id,
            cas_format=snapshot.format,
            total_value=snapshot.summary.total_value,
            duration_seconds=round((datetime.now(timezone.utc) - started).total_seconds(), 3),
        )
        return self._status_response(saved)

    @staticmethod
    def _status_response(client: ClientRecord) -> CasStatusResponse:
        cas = client.cas
        file_meta = None
        if cas.file is not None:
            file_meta = CasFileMeta(
                name=cas.file.name,
                size=cas.file.size,
                uploaded_at=cas.file.uploaded_at,
                password_protected=cas.file.has_password,
            )
        return CasStatusResponse(
            client_id=client.id,
            status=cas.status,
            parse_error=cas.parse_error,
            last_parsed_at=cas.last_parsed_at,
            file=file_meta,
        )
