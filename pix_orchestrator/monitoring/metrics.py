"""
Prometheus metrics for PIX orchestration.

Tracks:
- Charge requests by outcome and acquirer failovers
- Acquirer API calls, latency and circuit state
- Inbound webhook handling
- Settlements by source
- Outbound webhook deliveries
- Reconciliation runs
"""
from decimal import Decimal

from prometheus_client import Counter, Gauge, Histogram

# Charge metrics
charge_requests_total = Counter(
    "pix_charge_requests_total",
    "Total number of charge creation requests",
    ["outcome", "acquirer"],  # outcome: created, rejected, failed
)

charge_amount = Histogram(
    "pix_charge_amount",
    "Charge amounts in BRL",
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000, 5000, 50000),
)

charge_failovers_total = Counter(
    "pix_charge_failovers_total",
    "Acquirer attempts that failed and moved on to the next candidate",
    ["acquirer"],
)

# Acquirer API metrics
acquirer_api_requests_total = Counter(
    "pix_acquirer_api_requests_total",
    "Total acquirer API requests",
    ["acquirer", "operation", "outcome"],  # operation: create_charge, check_status
)

acquirer_api_duration_seconds = Histogram(
    "pix_acquirer_api_duration_seconds",
    "Acquirer API call duration in seconds",
    ["acquirer", "operation"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
)

acquirer_circuit_state = Gauge(
    "pix_acquirer_circuit_state",
    "Acquirer circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["acquirer"],
)

# Webhook metrics
webhook_events_received_total = Counter(
    "pix_webhook_events_received_total",
    "Total inbound acquirer webhooks received",
    ["acquirer"],
)

webhook_events_processed_total = Counter(
    "pix_webhook_events_processed_total",
    "Inbound webhook signals by outcome",
    ["acquirer", "outcome"],  # settled, already_paid, not_paid, unmatched, rejected
)

# Settlement metrics
settlements_total = Counter(
    "pix_settlements_total",
    "Transactions newly marked paid",
    ["acquirer", "source"],  # source: webhook, poller
)

# Outbound webhook metrics
outbound_webhook_deliveries_total = Counter(
    "pix_outbound_webhook_deliveries_total",
    "Outbound webhook deliveries by result",
    ["status"],
)

# Reconciliation metrics
reconciliation_duration_seconds = Histogram(
    "pix_reconciliation_duration_seconds",
    "Batch reconciliation duration in seconds",
    buckets=(0.5, 1, 5, 10, 30, 60, 120),
)

reconciliation_last_run_timestamp = Gauge(
    "pix_reconciliation_last_run_timestamp",
    "Timestamp of last reconciliation run",
)

CIRCUIT_STATE_VALUES = {"closed": 0, "open": 1, "half_open": 2}


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_charge(outcome: str, acquirer: str, amount: Decimal | None = None) -> None:
        """Record a charge creation outcome."""
        charge_requests_total.labels(outcome=outcome, acquirer=acquirer).inc()
        if amount is not None:
            charge_amount.observe(float(amount))

    @staticmethod
    def record_failover(acquirer: str) -> None:
        """Record a failed candidate during failover."""
        charge_failovers_total.labels(acquirer=acquirer).inc()

    @staticmethod
    def record_acquirer_call(
        acquirer: str, operation: str, outcome: str, duration_seconds: float
    ) -> None:
        """Record an acquirer API call."""
        acquirer_api_requests_total.labels(
            acquirer=acquirer, operation=operation, outcome=outcome
        ).inc()
        acquirer_api_duration_seconds.labels(acquirer=acquirer, operation=operation).observe(
            duration_seconds
        )

    @staticmethod
    def record_circuit_state(acquirer: str, state: str) -> None:
        """Record circuit breaker state change."""
        acquirer_circuit_state.labels(acquirer=acquirer).set(CIRCUIT_STATE_VALUES[state])

    @staticmethod
    def record_webhook_received(acquirer: str) -> None:
        """Record an inbound webhook."""
        webhook_events_received_total.labels(acquirer=acquirer).inc()

    @staticmethod
    def record_webhook_processed(acquirer: str, outcome: str) -> None:
        """Record the outcome of one webhook signal."""
        webhook_events_processed_total.labels(acquirer=acquirer, outcome=outcome).inc()

    @staticmethod
    def record_settlement(acquirer: str, source: str) -> None:
        """Record a transaction newly marked paid."""
        settlements_total.labels(acquirer=acquirer, source=source).inc()

    @staticmethod
    def record_outbound_delivery(status: str) -> None:
        """Record outbound webhook delivery result."""
        outbound_webhook_deliveries_total.labels(status=status).inc()

    @staticmethod
    def record_reconciliation_run(duration_seconds: float, timestamp: float) -> None:
        """Record batch reconciliation run."""
        reconciliation_duration_seconds.observe(duration_seconds)
        reconciliation_last_run_timestamp.set(timestamp)


# Global metrics collector instance
metrics = MetricsCollector()
