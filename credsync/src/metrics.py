from __future__ import annotations

from dataclasses import dataclass, field

from prometheus_client import Counter, Gauge, Info


@dataclass(frozen=True)
class SyncMetrics:
    """Prometheus metrics exported by the controller on ``/metrics``.

    Reconcile counters are labelled by ``action`` and ``outcome`` rather than
    by namespace so cardinality stays bounded as namespaces churn.
    """

    sweeps_total: Counter = field(
        default_factory=lambda: Counter(
            "ecr_sync_sweeps_total",
            "Total full reconciliation sweeps by outcome",
            ["outcome"],
        )
    )
    last_successful_sweep_timestamp: Gauge = field(
        default_factory=lambda: Gauge(
            "ecr_sync_last_successful_sweep_timestamp_seconds",
            "Unix time of the last sweep that reconciled every namespace",
        )
    )
    reconciles_total: Counter = field(
        default_factory=lambda: Counter(
            "ecr_sync_reconciles_total",
            "Total per-namespace secret reconciliations",
            ["action", "outcome"],
        )
    )
    token_fetches_total: Counter = field(
        default_factory=lambda: Counter(
            "ecr_sync_token_fetches_total",
            "Total authorization token lookups by source",
            ["source", "outcome"],
        )
    )
    watch_events_total: Counter = field(
        default_factory=lambda: Counter(
            "ecr_sync_watch_events_total",
            "Total namespace watch events received",
            ["type"],
        )
    )
    watch_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "ecr_sync_watch_errors_total",
            "Total namespace watch streams that ended with an error",
        )
    )
    watch_reconnects_total: Counter = field(
        default_factory=lambda: Counter(
            "ecr_sync_watch_reconnects_total",
            "Total watch stream reconnects after the initial connection",
        )
    )
    build_info: Info = field(
        default_factory=lambda: Info(
            "ecr_sync",
            "Build information for the controller",
        )
    )


METRICS = SyncMetrics()
