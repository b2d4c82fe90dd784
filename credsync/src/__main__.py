from __future__ import annotations

import json
import logging
import os
import re
import signal
import threading
from collections.abc import Callable

from credsync.src.config import load_config
from credsync.src.health import start_health_server
from credsync.src.kube import build_core_api, load_kube_configuration
from credsync.src.metrics import METRICS
from credsync.src.reconciler import SecretReconciler
from credsync.src.scheduler import SweepScheduler
from credsync.src.token_cache import TokenCache, build_ecr_client
from credsync.src.watcher import NamespaceWatcher

RUNTIME_VERSION = "0.1.0"
THREAD_STOP_TIMEOUT_SECONDS = 10
_REDACTION_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~+/=-]+)"),
        r"\1[REDACTED]",
    ),
    (
        re.compile(
            r"(?i)(\b(?:authorization|token|password|passwd|secret|api[_-]?key)\b\s*[:=]\s*)([^\s,;]+)"
        ),
        r"\1[REDACTED]",
    ),
    (
        re.compile(r'(?i)("(?:password|authorizationToken)"\s*:\s*")([^"]*)'),
        r"\1[REDACTED]",
    ),
    (
        re.compile(r"(?i)([?&](?:token|access_token|api_key|password)=)([^&\s]+)"),
        r"\1[REDACTED]",
    ),
)


def redact_sensitive_text(value: str) -> str:
    redacted = value
    for pattern, replacement in _REDACTION_RULES:
        redacted = pattern.sub(replacement, redacted)
    return redacted


class JSONFormatter(logging.Formatter):
    """Emit logs as single-line JSON objects for structured log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": redact_sensitive_text(record.getMessage()),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["error"] = redact_sensitive_text(self.formatException(record.exc_info))
        return json.dumps(log_entry)


def configure_logging() -> None:
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_handler = logging.StreamHandler()
    log_handler.setFormatter(JSONFormatter())
    logging.root.addHandler(log_handler)
    logging.root.setLevel(getattr(logging, log_level, logging.INFO))
    # botocore logs full request bodies at DEBUG.
    logging.getLogger("botocore").setLevel(max(logging.root.level, logging.INFO))


def _start_loop(
    name: str,
    target: Callable[[threading.Event], None],
    shutdown_event: threading.Event,
) -> threading.Thread:
    """Run *target* in a daemon thread; any exit before shutdown stops the process."""

    def _run() -> None:
        try:
            target(shutdown_event)
            if not shutdown_event.is_set():
                logging.getLogger(__name__).error(
                    "%s loop exited without a stop signal; terminating process", name
                )
        except Exception:
            logging.getLogger(__name__).exception("%s loop crashed", name)
        finally:
            shutdown_event.set()

    thread = threading.Thread(target=_run, name=name, daemon=True)
    thread.start()
    return thread


def main() -> None:
    """Controller entrypoint: configure logging, then run the watch and sweep loops."""
    configure_logging()
    METRICS.build_info.info(
        {
            "version": os.getenv("APP_VERSION", RUNTIME_VERSION),
            "revision": os.getenv("GIT_SHA", "unknown"),
        }
    )

    sync_config = load_config()
    load_kube_configuration()
    core_api = build_core_api()

    token_cache = TokenCache(
        ecr_client=build_ecr_client(),
        registry=sync_config.registry,
        ttl_seconds=sync_config.token_cache_ttl_seconds,
    )
    reconciler = SecretReconciler(core_api=core_api, secret_name=sync_config.secret_name)
    watcher = NamespaceWatcher(
        core_api=core_api,
        token_cache=token_cache,
        reconciler=reconciler,
        label_selector=sync_config.label_selector,
        timeout_seconds=sync_config.watch_timeout_seconds,
        restart_delay_seconds=sync_config.watch_restart_delay_seconds,
    )
    scheduler = SweepScheduler(
        core_api=core_api,
        token_cache=token_cache,
        reconciler=reconciler,
        label_selector=sync_config.label_selector,
        cron_schedule=sync_config.cron_schedule,
    )

    health_server = start_health_server(
        ready_checks={"watch": watcher.ready, "sweep": scheduler.ready},
        port=sync_config.health_port,
    )

    shutdown_event = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:
        logging.getLogger(__name__).info("Received signal %d, shutting down", signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    logging.getLogger(__name__).info(
        "Syncing secret %s for registry %s into namespaces matching %s (schedule %r)",
        sync_config.secret_name,
        sync_config.registry,
        sync_config.label_selector,
        sync_config.cron_schedule,
    )

    threads = [
        _start_loop("scheduler", scheduler.run_forever, shutdown_event),
        _start_loop("watcher", watcher.run_forever, shutdown_event),
    ]

    shutdown_event.wait()
    watcher.request_stop()
    for thread in threads:
        thread.join(timeout=THREAD_STOP_TIMEOUT_SECONDS)
        if thread.is_alive():
            logging.getLogger(__name__).warning(
                "%s loop did not stop within %ss", thread.name, THREAD_STOP_TIMEOUT_SECONDS
            )

    health_server.shutdown()
    logging.getLogger(__name__).info("Controller stopped")


if __name__ == "__main__":
    main()
