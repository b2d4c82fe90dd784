from __future__ import annotations

import logging
import threading
from typing import Any

from kubernetes import watch
from kubernetes.client import ApiException, CoreV1Api

from credsync.src.metrics import METRICS
from credsync.src.reconciler import ReconcileResult, SecretReconciler
from credsync.src.token_cache import TokenCache, TokenFetchError


class WatchStreamError(RuntimeError):
    """The namespace watch stream ended abnormally."""


class NamespaceWatcher:
    """Watches labelled namespaces and provisions the pull secret on ``ADDED``.

    This is the fast path for new namespaces: they receive credentials as
    soon as they appear instead of waiting for the next sweep. ``MODIFIED``
    and ``DELETED`` events need no action; secrets go away with their
    namespace.

    The watch is never left down: whenever a stream ends, cleanly or with an
    error, a new one is opened immediately. ``restart_delay_seconds`` adds an
    optional fixed pause after error ends only; it is 0 unless configured.
    There is no restart limit and no exponential backoff. ``ready`` is set
    once a stream has delivered an event or ended cleanly, and cleared
    whenever a stream fails.

    The last seen ``resourceVersion`` is carried across restarts so the new
    stream resumes where the old one stopped; on ``410 Gone`` it is cleared and the next
    stream replays every matching namespace as ``ADDED``, which is harmless
    because reconciliation is idempotent.
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        token_cache: TokenCache,
        reconciler: SecretReconciler,
        label_selector: str,
        timeout_seconds: int = 300,
        restart_delay_seconds: float = 0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.core_api = core_api
        self.token_cache = token_cache
        self.reconciler = reconciler
        self.label_selector = label_selector
        self.timeout_seconds = timeout_seconds
        self.restart_delay_seconds = restart_delay_seconds
        self.logger = logger or logging.getLogger(__name__)

        self.ready = threading.Event()
        self.resource_version: str | None = None
        self._external_stop = threading.Event()
        self._active_watcher: watch.Watch | None = None
        self._watcher_lock = threading.Lock()

    def request_stop(self) -> None:
        """Request a cooperative stop and immediately interrupt any open watch stream."""
        self._external_stop.set()
        with self._watcher_lock:
            active_watcher = self._active_watcher
        if active_watcher is not None:
            active_watcher.stop()

    def _should_stop(self, stop_event: threading.Event) -> bool:
        return stop_event.is_set() or self._external_stop.is_set()

    def handle_namespace_event(self, event_type: str, namespace: Any) -> ReconcileResult | None:
        """Reconcile the namespace of an ``ADDED`` event; ignore everything else.

        Token and reconcile failures are logged and swallowed so the watch
        loop keeps running. Returns the reconcile result, or ``None`` when
        the event was ignored or no token could be obtained.
        """
        METRICS.watch_events_total.labels(type=event_type or "UNKNOWN").inc()
        if event_type != "ADDED":
            return None

        name = getattr(getattr(namespace, "metadata", None), "name", None)
        if not name:
            self.logger.warning("Ignoring ADDED event for namespace without a name")
            return None

        self.logger.info("Namespace %s added; provisioning pull secret", name)
        try:
            docker_config = self.token_cache.get_token(use_cache=True)
        except TokenFetchError:
            self.logger.exception("Failed to obtain ECR token for namespace %s", name)
            return None
        except Exception:
            self.logger.exception("Unexpected error obtaining ECR token for namespace %s", name)
            return None

        return self.reconciler.reconcile(name, docker_config)

    def _consume(self, stream: Any, stop: threading.Event) -> None:
        for event in stream:
            if self._should_stop(stop):
                return

            event_type = str(event.get("type", ""))
            if event_type == "ERROR":
                raw = event.get("raw_object") or {}
                code = raw.get("code") if isinstance(raw, dict) else None
                if code == 410:
                    raise ApiException(status=410, reason="Gone")
                raise WatchStreamError(f"watch returned ERROR event: {raw}")
            self.ready.set()

            obj = event.get("object")
            if obj is None:
                continue

            metadata = getattr(obj, "metadata", None)
            if metadata is not None and getattr(metadata, "resource_version", None):
                self.resource_version = metadata.resource_version

            self.handle_namespace_event(event_type, obj)

    def run_forever(self, shutdown_event: threading.Event | None = None) -> None:
        """Watch namespaces until shutdown, re-opening the stream whenever it ends."""
        stop = shutdown_event or threading.Event()
        self._external_stop.clear()
        stream_count = 0

        while not self._should_stop(stop):
            watcher = watch.Watch()
            with self._watcher_lock:
                self._active_watcher = watcher
            try:
                if stream_count > 0:
                    METRICS.watch_reconnects_total.inc()
                stream_count += 1
                self.logger.info(
                    "Starting namespace watch (selector=%s, resourceVersion=%s)",
                    self.label_selector,
                    self.resource_version,
                )
                stream = watcher.stream(
                    self.core_api.list_namespace,
                    label_selector=self.label_selector,
                    resource_version=self.resource_version,
                    timeout_seconds=self.timeout_seconds,
                )
                self._consume(stream, stop)
                self.ready.set()
                self.logger.debug("Namespace watch stream ended; restarting")
            except ApiException as exc:
                if exc.status == 410:
                    self.logger.warning("Watch resource version expired, restarting from scratch")
                    self.resource_version = None
                    continue
                if exc.status in {401, 403}:
                    self.logger.error(
                        "Kubernetes API watch denied (status=%s). "
                        "Check controller RBAC and service account permissions.",
                        exc.status,
                    )
                else:
                    self.logger.exception("Kubernetes API watch error")
                self._after_stream_error(stop)
            except Exception:
                self.logger.exception("Namespace watch stream failed")
                self._after_stream_error(stop)
            finally:
                watcher.stop()
                with self._watcher_lock:
                    if self._active_watcher is watcher:
                        self._active_watcher = None

        self.ready.clear()
        self.logger.info("Namespace watcher stopped")

    def _after_stream_error(self, stop: threading.Event) -> None:
        METRICS.watch_errors_total.inc()
        self.ready.clear()
        if self.restart_delay_seconds > 0:
            stop.wait(timeout=self.restart_delay_seconds)
