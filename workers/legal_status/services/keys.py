"""Cache key and topic names shared with external processes.

These formats are stable: other services pre-warm and invalidate them.
"""

STATUS_CHANGED_TOPIC = "legal_status.changed"
NOTIFICATION_TOPIC = "legal_status.notification"


def status_cache_key(patent_id: str) -> str:
    return f"legal_status:current:{patent_id}"


def summary_cache_key(portfolio_id: str) -> str:
    return f"legal_status:summary:{portfolio_id}"


def notification_dedupe_key(patent_id: str, to_status: str) -> str:
    return f"legal_status:notify_dedupe:{patent_id}:{to_status}"
