"""
Prometheus metrics for the burn service.

Organized into: burns, retries, supply, reconciliation, operational.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class BurnMetrics:
    """Counters and gauges for burn lifecycle observability."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()

        # === Burns ===
        self.burns_total = Counter(
            'burns_total',
            'Burn records written',
            labelnames=['burn_type'],
            registry=reg
        )
        self.burned_tokens = Counter(
            'burned_tokens_total',
            'Tokens destroyed',
            labelnames=['burn_type'],
            registry=reg
        )
        self.burn_failures = Counter(
            'burn_failures_total',
            'Terminal burn failures',
            labelnames=['path', 'error_kind'],
            registry=reg
        )
        self.burn_latency_sec = Histogram(
            'burn_latency_sec',
            'Time from intent to recorded burn (seconds)',
            labelnames=['path'],
            buckets=[1, 5, 10, 30, 60, 120, 300],
            registry=reg
        )

        # === Retries ===
        self.retries = Counter(
            'burn_retries_total',
            'Retries by error kind',
            labelnames=['error_kind'],
            registry=reg
        )
        self.context_refreshes = Counter(
            'submission_context_refreshes_total',
            'Submission contexts refreshed after expiry',
            registry=reg
        )

        # === Supply ===
        self.total_supply = Gauge(
            'total_supply',
            'Total supply from the latest snapshot',
            registry=reg
        )
        self.reserve_balance = Gauge(
            'reserve_balance',
            'Reserve pool balance from the latest snapshot',
            registry=reg
        )
        self.total_burned = Gauge(
            'total_burned',
            'Cumulative tokens burned',
            registry=reg
        )
        self.valuation = Gauge(
            'valuation_usd',
            'Last valuation served by the feed',
            registry=reg
        )
        self.milestones_completed = Gauge(
            'milestones_completed',
            'Milestones in COMPLETED state',
            registry=reg
        )

        # === Reconciliation ===
        self.recoveries = Counter(
            'recoveries_total',
            'Recovery burns written',
            labelnames=['path'],
            registry=reg
        )
        self.reserve_discrepancy = Gauge(
            'reserve_discrepancy',
            'Last reserve drift corrected (tokens)',
            registry=reg
        )
        self.orphaned_submissions = Counter(
            'orphaned_submissions_total',
            'Journaled submissions settled by reconciliation',
            registry=reg
        )

        # === Operational ===
        self.ticks = Counter(
            'scheduler_ticks_total',
            'Scheduler ticks executed',
            labelnames=['job'],
            registry=reg
        )
        self.tick_errors = Counter(
            'scheduler_tick_errors_total',
            'Scheduler ticks that raised',
            labelnames=['job'],
            registry=reg
        )

        self.registry = reg

    def get_registry(self):
        """Return the Prometheus registry for export."""
        return self.registry
