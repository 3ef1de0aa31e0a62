from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Most recent processing events kept on a CAS record
MAX_HISTORY_EVENTS = 50


def to_camel(string: str) -> str:
    """Convert snake_case to camelCase"""
    components = string.split("_")
    return components[0] + "".join(x.title() for x in components[1:])


class CamelCaseModel(BaseModel):
    """Base model with camelCase alias configuration"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CasStatus(str, Enum):
    NOT_UPLOADED = "not_uploaded"
    UPLOADED = "uploaded"
    PARSING = "parsing"
    PARSED = "parsed"
    ERROR = "error"


# Parsed statement
class InvestorInfo(CamelCaseModel):
    name: Optional[str] = None
    identity_number: Optional[str] = None


class PortfolioSummary(CamelCaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    total_value: float = 0.0
    equity_value: float = 0.0
    mutual_fund_value: float = 0.0
    holdings_count: int = 0


class PortfolioSnapshot(CamelCaseModel):
    """Structured holdings extracted from one CAS document."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    investor: InvestorInfo = Field(default_factory=InvestorInfo)
    demat_accounts: List[Dict[str, Any]] = Field(default_factory=list)
    mutual_funds: List[Dict[str, Any]] = Field(default_factory=list)
    summary: PortfolioSummary = Field(default_factory=PortfolioSummary)
    format: str = ""


# CAS record embedded in the client aggregate
class CasFile(CamelCaseModel):
    name: str
    storage_path: str
    size: int
    uploaded_at: datetime
    encrypted_password: Optional[str] = None
    iv: Optional[str] = None

    @model_validator(mode="after")
    def password_and_iv_together(self):
        if (self.encrypted_password is None) != (self.iv is None):
            raise ValueError("encryptedPassword and iv must be both present or both absent")
        return self

    @property
    def has_password(self) -> bool:
        return self.encrypted_password is not None


class CasProcessingEvent(CamelCaseModel):
    action: str
    status: CasStatus
    details: Optional[str] = None
    timestamp: datetime
    event_id: str


class CasRecord(CamelCaseModel):
    status: CasStatus = CasStatus.NOT_UPLOADED
    file: Optional[CasFile] = None
    parse_error: Optional[str] = None
    last_parsed_at: Optional[datetime] = None
    parsed_data: Optional[PortfolioSnapshot] = None
    history: List[CasProcessingEvent] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_status_invariants(self):
        if self.status == CasStatus.NOT_UPLOADED and self.file is not None:
            raise ValueError("a not_uploaded CAS record cannot reference a file")
        if self.status in (CasStatus.UPLOADED, CasStatus.PARSING) and self.file is None:
            raise ValueError(f"a {self.status.value} CAS record must reference a file")
        if self.status == CasStatus.PARSED:
            if self.parsed_data is None or self.parse_error is not None:
                raise ValueError("a parsed CAS record needs parsedData and no parseError")
            if self.last_parsed_at is None:
                raise ValueError("a parsed CAS record needs lastParsedAt")
        if self.status == CasStatus.ERROR and not self.parse_error:
            raise ValueError("an errored CAS record needs a parseError")
        return self

    def add_event(self, event: CasProcessingEvent) -> None:
        self.history.append(event)
        if len(self.history) > MAX_HISTORY_EVENTS:
            self.history = self.history[-MAX_HISTORY_EVENTS:]


class ClientRecord(CamelCaseModel):
    """Client aggregate as far as CAS ingestion is concerned."""

    id: str
    advisor_id: Optional[str] = None
    pan_number: Optional[str] = None
    cas: CasRecord = Field(default_factory=CasRecord, alias="casData")
    version: int = 0


# API responses
class CasFileMeta(CamelCaseModel):
    name: str
    size: int
    uploaded_at: datetime
    password_protected: bool = False


class CasStatusResponse(CamelCaseModel):
    client_id: str
    status: CasStatus
    parse_error: Optional[str] = None
    last_parsed_at: Optional[datetime] = None
    file: Optional[CasFileMeta] = None


class CasDataResponse(CasStatusResponse):
    parsed_data: Optional[PortfolioSnapshot] = None
    history: List[CasProcessingEvent] = Field(default_factory=list)


class CasFlowInfo(CamelCaseModel):
    client_id: str
    state: CasStatus
    allowed_events: List[str]
    error_message: Optional[str] = None
