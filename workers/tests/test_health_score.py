import pytest

from legal_status.models.legal_status import AnomalyType, SeverityLevel, StatusAnomaly
from legal_status.services.health import compute_health_score

from factories import FIXED_NOW


def _anomaly(severity: SeverityLevel) -> StatusAnomaly:
    return StatusAnomaly(
        patent_id="P1",
        anomaly_type=AnomalyType.SYNC_FAILURE,
        severity=severity,
        description="test",
        detected_at=FIXED_NOW,
        suggested_action="none",
    )


class TestHealthScore:
    """Test portfolio health scoring."""

    def test_empty_portfolio_is_healthy(self):
        assert compute_health_score([_anomaly(SeverityLevel.CRITICAL)], 0) == 1.0

    def test_no_anomalies(self):
        assert compute_health_score([], 25) == 1.0

    def test_weighted_penalty(self):
        anomalies = [
            _anomaly(SeverityLevel.CRITICAL),
            _anomaly(SeverityLevel.HIGH),
            _anomaly(SeverityLevel.MEDIUM),
        ]

        assert compute_health_score(anomalies, 10) == pytest.approx(1.0 - 0.5 / 10)

    def test_penalty_scales_with_portfolio_size(self):
        anomalies = [_anomaly(SeverityLevel.CRITICAL)]

        assert compute_health_score(anomalies, 100) > compute_health_score(anomalies, 10)

    def test_low_and_info_carry_no_penalty(self):
        anomalies = [_anomaly(SeverityLevel.LOW), _anomaly(SeverityLevel.INFO)]

        assert compute_health_score(anomalies, 1) == 1.0

    def test_score_is_clamped(self):
        anomalies = [_anomaly(SeverityLevel.CRITICAL)] * 10

        assert compute_health_score(anomalies, 1) == 0.0

    def test_one_critical_per_patent(self):
        anomalies = [_anomaly(SeverityLevel.CRITICAL)] * 10

        assert compute_health_score(anomalies, 10) == pytest.approx(0.70, abs=0.01)
