from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from croniter import croniter
from kubernetes.client import CoreV1Api

from credsync.src.kube import ApiError, list_target_namespaces
from credsync.src.metrics import METRICS
from credsync.src.reconciler import ReconcileResult, SecretReconciler
from credsync.src.token_cache import TokenCache, TokenFetchError

SWEEP_SUCCEEDED = "succeeded"
SWEEP_PARTIAL = "partial"
SWEEP_ABORTED = "aborted"


@dataclass(frozen=True)
class SweepResult:
    """Outcome of one full reconciliation pass.

    ``aborted`` means listing or token acquisition failed and no namespace
    was touched; ``partial`` means at least one namespace failed while the
    others were still reconciled.
    """

    outcome: str
    results: tuple[ReconcileResult, ...] = field(default_factory=tuple)
    error: str | None = None

    @property
    def failed_namespaces(self) -> list[str]:
        return [result.namespace for result in self.results if not result.ok]


def utc_now() -> datetime:
    return datetime.now(UTC)


class SweepScheduler:
    """Runs a full sweep at startup and then on every cron fire time.

    A sweep lists the target namespaces, force-refreshes the ECR token and
    reconciles each namespace independently. The token is always fetched
    from the provider here so the bulk update never uses a cached token that
    is close to expiry.
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        token_cache: TokenCache,
        reconciler: SecretReconciler,
        label_selector: str,
        cron_schedule: str,
        logger: logging.Logger | None = None,
        now_fn: Callable[[], datetime] = utc_now,
    ) -> None:
        self.core_api = core_api
        self.token_cache = token_cache
        self.reconciler = reconciler
        self.label_selector = label_selector
        self.cron_schedule = cron_schedule
        self.logger = logger or logging.getLogger(__name__)
        self.now_fn = now_fn
        self.ready = threading.Event()

    def next_run_after(self, now: datetime) -> datetime:
        return croniter(self.cron_schedule, now).get_next(datetime)

    def _abort(self, message: str) -> SweepResult:
        METRICS.sweeps_total.labels(outcome=SWEEP_ABORTED).inc()
        return SweepResult(outcome=SWEEP_ABORTED, error=message)

    def run_sweep(self) -> SweepResult:
        """Reconcile every matching namespace with a freshly fetched token."""
        try:
            namespaces = list_target_namespaces(self.core_api, self.label_selector)
        except ApiError as exc:
            self.logger.error(
                "Sweep aborted: failed to list namespaces (status=%s): %s",
                exc.status,
                exc.message,
            )
            return self._abort(str(exc))
        except Exception as exc:
            self.logger.exception("Sweep aborted: unexpected error listing namespaces")
            return self._abort(str(exc))

        try:
            docker_config = self.token_cache.get_token(use_cache=False)
        except TokenFetchError as exc:
            self.logger.exception("Sweep aborted: failed to obtain ECR token")
            return self._abort(str(exc))
        except Exception as exc:
            self.logger.exception("Sweep aborted: unexpected error obtaining ECR token")
            return self._abort(str(exc))

        if not namespaces:
            self.logger.info("No namespaces match selector %s", self.label_selector)

        results = tuple(
            self.reconciler.reconcile(namespace, docker_config) for namespace in namespaces
        )
        failed = [result.namespace for result in results if not result.ok]
        if failed:
            self.logger.warning(
                "Sweep finished with %d of %d namespace(s) failing: %s",
                len(failed),
                len(results),
                ", ".join(failed),
            )
            METRICS.sweeps_total.labels(outcome=SWEEP_PARTIAL).inc()
            return SweepResult(outcome=SWEEP_PARTIAL, results=results)

        self.logger.info("Sweep reconciled %d namespace(s)", len(results))
        METRICS.sweeps_total.labels(outcome=SWEEP_SUCCEEDED).inc()
        METRICS.last_successful_sweep_timestamp.set(time.time())
        return SweepResult(outcome=SWEEP_SUCCEEDED, results=results)

    def run_forever(self, shutdown_event: threading.Event | None = None) -> None:
        """Sweep once now, then sleep until each cron fire time until shutdown."""
        stop = shutdown_event or threading.Event()
        next_run: datetime | None = None

        while not stop.is_set():
            try:
                self.run_sweep()
            except Exception:
                self.logger.exception("Unexpected error during sweep")
            self.ready.set()

            now = self.now_fn()
            # A slot already swept never fires again, even if the wall clock
            # is behind it after waking.
            next_run = self.next_run_after(now if next_run is None else max(now, next_run))
            delay = max(0.0, (next_run - now).total_seconds())
            self.logger.info("Next sweep at %s", next_run.isoformat())
            stop.wait(timeout=delay)

        self.ready.clear()
        self.logger.info("Sweep scheduler stopped")
