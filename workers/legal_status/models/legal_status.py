"""Legal status data models: unified codes, local records, and engine DTOs."""

from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC; aware ones are converted to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UnifiedStatusCode(str, Enum):
    """Jurisdiction-independent legal status of a patent."""
    FILED = "FILED"
    PUBLISHED = "PUBLISHED"
    UNDER_EXAMINATION = "UNDER_EXAMINATION"
    GRANTED = "GRANTED"
    LAPSED = "LAPSED"
    WITHDRAWN = "WITHDRAWN"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"
    UNDER_APPEAL = "UNDER_APPEAL"
    TRANSFERRED = "TRANSFERRED"
    LICENSE_RECORDED = "LICENSE_RECORDED"

    @property
    def is_terminal(self) -> bool:
        """No further prosecution activity is expected."""
        return self in TERMINAL_STATUS_CODES

    @property
    def is_active(self) -> bool:
        """Patent is in an active prosecution or maintenance state."""
        return self in ACTIVE_STATUS_CODES


TERMINAL_STATUS_CODES = frozenset({
    UnifiedStatusCode.LAPSED,
    UnifiedStatusCode.WITHDRAWN,
    UnifiedStatusCode.REJECTED,
    UnifiedStatusCode.EXPIRED,
    UnifiedStatusCode.REVOKED,
})

ACTIVE_STATUS_CODES = frozenset(set(UnifiedStatusCode) - TERMINAL_STATUS_CODES)


class AnomalyType(str, Enum):
    """Kind of irregularity found while scanning a portfolio."""
    UNEXPECTED_LAPSE = "UNEXPECTED_LAPSE"
    MISSED_DEADLINE = "MISSED_DEADLINE"
    STATUS_CONFLICT = "STATUS_CONFLICT"
    SYNC_FAILURE = "SYNC_FAILURE"


class SeverityLevel(str, Enum):
    """Urgency of an anomaly, most severe first."""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

    @property
    def rank(self) -> int:
        """Sort priority; lower is more severe."""
        return _SEVERITY_RANK[self]

    @property
    def weight(self) -> float:
        """Per-anomaly penalty used by the health score."""
        return _SEVERITY_WEIGHT.get(self, 0.0)


_SEVERITY_RANK = {
    SeverityLevel.CRITICAL: 0,
    SeverityLevel.HIGH: 1,
    SeverityLevel.MEDIUM: 2,
    SeverityLevel.LOW: 3,
    SeverityLevel.INFO: 4,
}

_SEVERITY_WEIGHT = {
    SeverityLevel.CRITICAL: 0.30,
    SeverityLevel.HIGH: 0.15,
    SeverityLevel.MEDIUM: 0.05,
}


class NotificationChannel(str, Enum):
    """Supported alert delivery channels."""
    EMAIL = "EMAIL"
    WECHAT_WORK = "WECHAT_WORK"
    DINGTALK = "DINGTALK"
    SMS = "SMS"
    IN_APP = "IN_APP"
    WEBHOOK = "WEBHOOK"


class LocalStatusRecord(BaseModel):
    """Locally stored legal status of one patent."""
    patent_id: str
    jurisdiction: str
    status: str
    previous_status: str = ""
    remote_status: str = ""
    effective_date: Optional[datetime] = None
    next_action: str = ""
    next_deadline: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    consecutive_sync_failures: int = 0
    raw_data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("effective_date", "next_deadline", "last_sync_at")
    @classmethod
    def _timestamps_in_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class RemoteStatus(BaseModel):
    """Authoritative status as reported by the patent office."""
    status: str
    jurisdiction: str = ""
    effective_date: Optional[datetime] = None
    next_action: str = ""
    source: str = ""

    @field_validator("effective_date")
    @classmethod
    def _effective_date_in_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class StatusHistoryEvent(BaseModel):
    """One recorded legal status transition."""
    model_config = ConfigDict(frozen=True)

    event_id: str
    patent_id: str
    from_status: str
    to_status: str
    event_date: datetime
    source: str = ""
    description: str = ""

    @field_validator("event_date")
    @classmethod
    def _event_date_in_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class Pagination(BaseModel):
    """Page selection for history queries."""
    page: int = 1
    page_size: int = 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class SyncResult(BaseModel):
    """Outcome of synchronising a single patent."""
    patent_id: str
    previous_status: str
    current_status: str
    changed: bool
    synced_at: datetime
    source: str = ""


class BatchSyncRequest(BaseModel):
    """Parameters for a bulk synchronisation job."""
    patent_ids: List[str]
    jurisdictions: Optional[List[str]] = None
    force: bool = False


class SyncError(BaseModel):
    """Per-patent synchronisation failure."""
    patent_id: str
    error: str


class BatchSyncResult(BaseModel):
    """Aggregated outcome of a batch synchronisation."""
    succeeded: int = 0
    failed: int = 0
    errors: List[SyncError] = Field(default_factory=list)
    duration_ms: float = 0.0


class LegalStatusDetail(BaseModel):
    """Current legal status of a patent as served to callers."""
    patent_id: str
    jurisdiction: str
    status: UnifiedStatusCode
    status_text: str
    effective_date: Optional[datetime] = None
    next_action: str = ""
    next_deadline: Optional[datetime] = None
    raw_data: Dict[str, Any] = Field(default_factory=dict)


class StatusAnomaly(BaseModel):
    """Detected irregularity in a patent's legal status."""
    patent_id: str
    anomaly_type: AnomalyType
    severity: SeverityLevel
    description: str
    detected_at: datetime
    suggested_action: str


class SubscriptionRequest(BaseModel):
    """Parameters for subscribing to status-change notifications."""
    patent_ids: List[str] = Field(default_factory=list)
    portfolio_id: str = ""
    status_filters: List[str] = Field(default_factory=list)
    channels: List[NotificationChannel] = Field(default_factory=list)
    recipient: str = ""


class Subscription(BaseModel):
    """Status-change notification subscription."""
    id: str
    active: bool
    created_at: datetime
    patent_ids: List[str] = Field(default_factory=list)
    portfolio_id: str = ""
    status_filters: List[str] = Field(default_factory=list)
    channels: List[NotificationChannel] = Field(default_factory=list)
    recipient: str = ""


class StatusSummary(BaseModel):
    """Portfolio-level aggregation of legal statuses."""
    portfolio_id: str
    total_patents: int
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_jurisdiction: Dict[str, int] = Field(default_factory=dict)
    anomaly_count: int = 0
    last_sync_at: Optional[datetime] = None
    health_score: float = 1.0


class Discrepancy(BaseModel):
    """Field-level mismatch between local and remote state."""
    field: str
    local_value: str
    remote_value: str
    resolution: str = ""


class ReconcileResult(BaseModel):
    """Outcome of reconciling local against remote legal status."""
    patent_id: str
    consistent: bool
    local_status: str
    remote_status: str
    discrepancies: List[Discrepancy] = Field(default_factory=list)
    reconciled_at: datetime
    auto_applied: bool = False
