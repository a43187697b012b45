"""
Prometheus metrics for payment reconciliation monitoring.

Tracks:
- Reconciliation attempts by channel, outcome and status
- Reconciliation duration
- Unique-key conflicts and compare-and-set retries
- Settlement notifications
- Unparseable provider amounts
- Callback signature failures
- Checkouts started
- Landing redirects
"""
from prometheus_client import Counter, Histogram

# Reconciliation metrics
reconciliation_requests_total = Counter(
    "reconciliation_requests_total",
    "Total payment assertions reconciled",
    ["channel", "outcome", "status"],  # channel: callback, landing
)

reconciliation_errors_total = Counter(
    "reconciliation_errors_total",
    "Total reconciliation failures",
    ["channel", "error_code"],
)

reconciliation_duration_seconds = Histogram(
    "reconciliation_duration_seconds",
    "Reconciliation duration in seconds",
    ["channel"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

payment_amount_cents = Histogram(
    "payment_amount_cents",
    "Settled payment amounts in minor units",
    buckets=(1000, 5000, 10000, 50000, 100000, 500000, 1000000, 5000000),
)

# Concurrency metrics
payment_upsert_conflicts_total = Counter(
    "payment_upsert_conflicts_total",
    "Upserts that lost a race and were retried",
    ["kind"],  # insert, compare_and_set
)

# Side effects
notifications_created_total = Counter(
    "notifications_created_total",
    "Total settlement notifications created",
    ["recipient"],  # client, lawyer
)

# Provider input quality
upstream_format_errors_total = Counter(
    "upstream_format_errors_total",
    "Provider values that could not be parsed and were defaulted",
    ["field"],
)

callback_signature_failures_total = Counter(
    "callback_signature_failures_total",
    "Callbacks rejected for a bad or missing signature",
)

# Checkout and landing
checkouts_created_total = Counter(
    "checkouts_created_total",
    "Total checkout sessions started",
)

landing_redirects_total = Counter(
    "landing_redirects_total",
    "Landing flow redirects by target",
    ["target"],  # success, failed, cancelled, cases, processing
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_reconciliation(
        channel: str, outcome: str, status: str, duration_seconds: float
    ) -> None:
        """Record a completed reconciliation."""
        reconciliation_requests_total.labels(
            channel=channel, outcome=outcome, status=status
        ).inc()
        reconciliation_duration_seconds.labels(channel=channel).observe(duration_seconds)

    @staticmethod
    def record_reconciliation_error(channel: str, error_code: str) -> None:
        """Record a failed reconciliation."""
        reconciliation_errors_total.labels(channel=channel, error_code=error_code).inc()

    @staticmethod
    def record_settlement(amount_cents: int) -> None:
        """Record the amount of a newly completed payment."""
        payment_amount_cents.observe(amount_cents)

    @staticmethod
    def record_upsert_conflict(kind: str) -> None:
        """Record an upsert race lost to a concurrent request."""
        payment_upsert_conflicts_total.labels(kind=kind).inc()

    @staticmethod
    def record_notification(recipient: str) -> None:
        """Record a notification write."""
        notifications_created_total.labels(recipient=recipient).inc()

    @staticmethod
    def record_upstream_format_error(field: str) -> None:
        """Record a defaulted provider value."""
        upstream_format_errors_total.labels(field=field).inc()

    @staticmethod
    def record_signature_failure() -> None:
        """Record a rejected callback signature."""
        callback_signature_failures_total.inc()

    @staticmethod
    def record_checkout() -> None:
        """Record a checkout session."""
        checkouts_created_total.inc()

    @staticmethod
    def record_landing_redirect(target: str) -> None:
        """Record where the landing flow sent the browser."""
        landing_redirects_total.labels(target=target).inc()


# Export singleton instance
metrics = MetricsCollector()
