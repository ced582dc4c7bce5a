"""Portfolio health score."""

from typing import Iterable

from ..models.legal_status import StatusAnomaly


def compute_health_score(anomalies: Iterable[StatusAnomaly], total_patents: int) -> float:
    """Score a portfolio in [0.0, 1.0] from its anomaly burden.

    ``1.0 - (critical*0.30 + high*0.15 + medium*0.05) / total_patents``,
    clamped. The penalty is per patent, so the same anomalies weigh less in a
    larger portfolio. Low and info anomalies carry no penalty, and an empty
    portfolio scores 1.0.
    """
    if total_patents <= 0:
        return 1.0

    penalty = sum(anomaly.severity.weight for anomaly in anomalies) / total_patents
    return max(0.0, min(1.0, 1.0 - penalty))
