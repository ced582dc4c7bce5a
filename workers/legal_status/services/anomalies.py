"""Rule-based anomaly detection over a portfolio's status records."""

from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

import structlog

from ..models.legal_status import (
    AnomalyType,
    LocalStatusRecord,
    SeverityLevel,
    StatusAnomaly,
    UnifiedStatusCode,
    utc_now,
)
from ..utils.errors import InternalError, ValidationError
from ..utils.normalizer import StatusCodeMapper, default_mapper
from .ports import MetricsPort, PatentListPort, RepositoryPort

logger = structlog.get_logger(__name__)

DEADLINE_WARNING_WINDOW = timedelta(days=7)
CONFLICT_TOLERANCE = timedelta(hours=24)


def sort_by_severity(anomalies: List[StatusAnomaly]) -> List[StatusAnomaly]:
    """Sort in place, most severe first, keeping detection order within a severity."""
    for i in range(1, len(anomalies)):
        key = anomalies[i]
        j = i - 1
        while j >= 0 and anomalies[j].severity.rank > key.severity.rank:
            anomalies[j + 1] = anomalies[j]
            j -= 1
        anomalies[j + 1] = key
    return anomalies


class AnomalyDetector:
    """Evaluates four independent rules against each status record."""

    def __init__(
        self,
        repository: RepositoryPort,
        patents: PatentListPort,
        metrics: MetricsPort,
        sync_failure_threshold: int = 3,
        mapper: Optional[StatusCodeMapper] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.patents = patents
        self.metrics = metrics
        self.sync_failure_threshold = sync_failure_threshold
        self.mapper = mapper or default_mapper
        self.clock = clock or utc_now

    async def load_records(self, portfolio_id: str) -> Tuple[int, List[LocalStatusRecord]]:
        """Return the portfolio size and the status records that exist for it."""
        try:
            patents = await self.patents.list_by_portfolio(portfolio_id)
        except Exception as e:
            logger.error("Failed to list portfolio patents", portfolio_id=portfolio_id, error=str(e))
            raise InternalError("detect_anomalies", f"list patents for portfolio {portfolio_id}", e) from e

        records = []
        for patent in patents:
            try:
                record = await self.repository.get_by_patent_id(patent.id)
            except Exception as e:
                logger.warning("Failed to get status for anomaly detection", patent_id=patent.id, error=str(e))
                continue
            if record is not None:
                records.append(record)
        return len(patents), records

    async def detect_anomalies(self, portfolio_id: str) -> List[StatusAnomaly]:
        """Scan a portfolio and return its anomalies, most severe first."""
        if not portfolio_id:
            raise ValidationError("detect_anomalies", "portfolio_id must not be empty")

        logger.debug("detect_anomalies started", portfolio_id=portfolio_id)
        _, records = await self.load_records(portfolio_id)
        anomalies = self.evaluate(records)

        logger.info("detect_anomalies completed", portfolio_id=portfolio_id, anomaly_count=len(anomalies))
        for anomaly in anomalies:
            self.metrics.inc_counter("legal_status_anomalies_detected_total", {
                "anomaly_type": anomaly.anomaly_type.value,
                "severity": anomaly.severity.value,
            })
        return anomalies

    def evaluate(self, records: Iterable[LocalStatusRecord], now: Optional[datetime] = None) -> List[StatusAnomaly]:
        """Apply every rule to every record and sort the findings."""
        now = now or self.clock()
        anomalies: List[StatusAnomaly] = []
        for record in records:
            for rule in (
                self._unexpected_lapse,
                self._missed_deadline,
                self._status_conflict,
                self._sync_failure,
            ):
                anomaly = rule(record, now)
                if anomaly is not None:
                    anomalies.append(anomaly)
        return sort_by_severity(anomalies)

    def _unexpected_lapse(self, record: LocalStatusRecord, now: datetime) -> Optional[StatusAnomaly]:
        if not record.previous_status:
            return None
        if self.mapper.map_code(record.jurisdiction, record.status) != UnifiedStatusCode.LAPSED:
            return None
        if self.mapper.map_code(record.jurisdiction, record.previous_status) != UnifiedStatusCode.GRANTED:
            return None
        return StatusAnomaly(
            patent_id=record.patent_id,
            anomaly_type=AnomalyType.UNEXPECTED_LAPSE,
            severity=SeverityLevel.CRITICAL,
            description=f"Patent {record.patent_id} lapsed unexpectedly from granted status",
            detected_at=now,
            suggested_action="Verify annuity payment status and contact patent office immediately",
        )

    def _missed_deadline(self, record: LocalStatusRecord, now: datetime) -> Optional[StatusAnomaly]:
        if record.next_deadline is None:
            return None

        remaining = record.next_deadline - now
        if remaining <= timedelta(0):
            return StatusAnomaly(
                patent_id=record.patent_id,
                anomaly_type=AnomalyType.MISSED_DEADLINE,
                severity=SeverityLevel.CRITICAL,
                description=f"Patent {record.patent_id} has a past-due deadline: {record.next_deadline.isoformat()}",
                detected_at=now,
                suggested_action="Immediately assess whether late action or petition for revival is possible",
            )
        if remaining <= DEADLINE_WARNING_WINDOW:
            days = remaining.total_seconds() / 86400
            return StatusAnomaly(
                patent_id=record.patent_id,
                anomaly_type=AnomalyType.MISSED_DEADLINE,
                severity=SeverityLevel.HIGH,
                description=(
                    f"Patent {record.patent_id} has a deadline in {days:.0f} days "
                    f"({record.next_action}) with no action recorded"
                ),
                detected_at=now,
                suggested_action=(
                    f"Take action on '{record.next_action}' before {record.next_deadline.isoformat()}"
                ),
            )
        return None

    def _status_conflict(self, record: LocalStatusRecord, now: datetime) -> Optional[StatusAnomaly]:
        if record.last_sync_at is None or not record.remote_status:
            return None
        if record.status == record.remote_status:
            return None
        if now - record.last_sync_at <= CONFLICT_TOLERANCE:
            return None
        return StatusAnomaly(
            patent_id=record.patent_id,
            anomaly_type=AnomalyType.STATUS_CONFLICT,
            severity=SeverityLevel.HIGH,
            description=(
                f"Patent {record.patent_id} local status '{record.status}' conflicts with "
                f"remote '{record.remote_status}' for over 24 hours"
            ),
            detected_at=now,
            suggested_action="Run reconciliation to resolve the conflict",
        )

    def _sync_failure(self, record: LocalStatusRecord, now: datetime) -> Optional[StatusAnomaly]:
        if record.consecutive_sync_failures < self.sync_failure_threshold:
            return None
        return StatusAnomaly(
            patent_id=record.patent_id,
            anomaly_type=AnomalyType.SYNC_FAILURE,
            severity=SeverityLevel.MEDIUM,
            description=(
                f"Patent {record.patent_id} has {record.consecutive_sync_failures} consecutive sync failures"
            ),
            detected_at=now,
            suggested_action="Check network connectivity and patent office API availability",
        )
