"""
CAS Ingestion Flow State Machine.

States map to CasRecord.status. Event callbacks mutate the CasRecord the
machine was built around; persistence is left to the caller so the new
state can be saved under an optimistic-concurrency check.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from statemachine import State

from app.domain.schemas import (
    CasFile,
    CasProcessingEvent,
    CasRecord,
    CasStatus,
    PortfolioSnapshot,
)

from .base import FlowMachine


class CasFlowMachine(FlowMachine):
    """
    State machine for one client's CAS record.

    not_uploaded -> uploaded -> parsing -> parsed | error, with re-upload
    allowed from every state except parsing and delete returning to
    not_uploaded.
    """

    not_uploaded = State(initial=True, value="not_uploaded")
    uploaded = State(value="uploaded")
    parsing = State(value="parsing")
    parsed = State(value="parsed")
    error = State(value="error")

    upload = (
        not_uploaded.to(uploaded)
        | uploaded.to(uploaded)
        | parsed.to(uploaded)
        | error.to(uploaded)
    )
    start_parse = uploaded.to(parsing, cond="has_file") | error.to(parsing, cond="has_file")
    parse_succeeded = parsing.to(parsed)
    parse_failed = parsing.to(error)
    interrupt = parsing.to(error)
    delete = (
        not_uploaded.to(not_uploaded)
        | uploaded.to(not_uploaded)
        | parsed.to(not_uploaded)
        | error.to(not_uploaded)
    )

    def __init__(self, record: CasRecord, client_id: Optional[str] = None, **kwargs):
        super().__init__(
            record=record,
            subject_id=client_id,
            start_state=CasStatus(record.status).value,
            **kwargs
        )
        self.error_message = record.parse_error

    # Guards
    def has_file(self) -> bool:
        return self.record.file is not None

    # Actions
    def on_upload(self, cas_file: Optional[CasFile] = None):
        if cas_file is None:
            raise ValueError("upload requires a staged CAS file")
        self.record.file = cas_file
        self.record.parse_error = None
        self.record.parsed_data = None
        self.record.last_parsed_at = None

    def on_start_parse(self):
        self.record.parse_error = None

    def on_parse_succeeded(self, snapshot: Optional[PortfolioSnapshot] = None):
        if snapshot is None:
            raise ValueError("parse_succeeded requires a snapshot")
        self.record.parsed_data = snapshot
        self.record.parse_error = None
        self.record.last_parsed_at = datetime.now(timezone.utc)

    def on_parse_failed(self, reason: Optional[str] = None):
        # parsed_data from an earlier success is left as is; status governs validity
        self.record.parse_error = reason or "CAS parsing failed"

    def on_interrupt(self, reason: Optional[str] = None):
        self.record.parse_error = reason or "CAS parsing was interrupted"

    def on_delete(self):
        self.record.file = None
        self.record.parse_error = None
        self.record.parsed_data = None
        self.record.last_parsed_at = None

    def after_transition(self, event, source: State, target: State, details: Optional[str] = None):
        """Hook called after every transition."""
        action = str(event)
        status = CasStatus(target.value)
        self.record.status = status
        self.error_message = self.record.parse_error
        self.record.add_event(
            CasProcessingEvent(
                action=action,
                status=status,
                details=details,
                timestamp=datetime.now(timezone.utc),
                event_id=uuid.uuid4().hex,
            )
        )
        self.log_transition(action, source.id, target.id)
