"""
Prometheus metrics for holds, links and redemptions
"""

import time
from contextlib import asynccontextmanager
import logging

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

REQUEST_COUNT = Counter(
    "ticket_holds_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)
REQUEST_DURATION = Histogram(
    "ticket_holds_request_duration_seconds",
    "HTTP request duration",
    ["method", "endpoint"]
)
REDEMPTIONS = Counter(
    "hold_redemptions_total",
    "Redemption attempts by outcome",
    ["outcome"]
)
REDEEMED_TICKETS = Counter(
    "hold_redeemed_tickets_total",
    "Tickets committed through purchase links"
)
REDEMPTION_DURATION = Histogram(
    "hold_redemption_duration_seconds",
    "Time spent in a redemption attempt"
)
STATUS_TRANSITIONS = Counter(
    "hold_status_transitions_total",
    "Hold and link status transitions",
    ["entity", "to"]
)
SWEEPER_EXPIRED = Counter(
    "hold_sweeper_expired_total",
    "Rows moved to EXPIRED by the sweeper",
    ["entity"]
)


class MetricsCollector:
    """Thin wrapper so services never touch prometheus objects directly"""

    @asynccontextmanager
    async def track_redemption(self):
        """
        Time a redemption attempt and count its outcome.

        The outcome is "committed" on normal exit, otherwise the error code of
        the exception (or "error" when it has none).
        """
        start_time = time.perf_counter()
        outcome = "committed"
        try:
            yield
        except Exception as e:
            outcome = getattr(e, "code", "error")
            raise
        finally:
            REDEMPTION_DURATION.observe(time.perf_counter() - start_time)
            REDEMPTIONS.labels(outcome=outcome).inc()

    def record_tickets(self, quantity: int):
        REDEEMED_TICKETS.inc(quantity)

    def record_transition(self, entity: str, to_status: str):
        STATUS_TRANSITIONS.labels(entity=entity, to=to_status).inc()

    def record_expired(self, entity: str, count: int):
        if count:
            SWEEPER_EXPIRED.labels(entity=entity).inc(count)


# Global metrics collector
metrics_collector = MetricsCollector()
