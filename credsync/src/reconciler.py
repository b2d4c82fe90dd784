from __future__ import annotations

import logging
from dataclasses import dataclass

from kubernetes.client import CoreV1Api

from credsync.src.kube import ApiError, create_secret, patch_secret_data, secret_exists
from credsync.src.metrics import METRICS


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of reconciling one namespace.

    ``action`` is ``"created"``, ``"patched"`` or ``"none"`` when the
    existence check itself failed and no write was attempted.
    """

    namespace: str
    action: str
    ok: bool
    error: str | None = None


class SecretReconciler:
    """Brings one namespace's pull secret in line with a docker config payload.

    Every call performs exactly one write: a create when the secret is
    missing, otherwise a JSON patch of the data field. Failures are logged and
    returned, never raised, so one namespace cannot abort a sweep.
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        secret_name: str,
        logger: logging.Logger | None = None,
    ) -> None:
        self.core_api = core_api
        self.secret_name = secret_name
        self.logger = logger or logging.getLogger(__name__)

    def _record(self, result: ReconcileResult) -> ReconcileResult:
        METRICS.reconciles_total.labels(
            action=result.action,
            outcome="success" if result.ok else "error",
        ).inc()
        return result

    def reconcile(self, namespace: str, docker_config: str) -> ReconcileResult:
        try:
            exists = secret_exists(self.core_api, namespace, self.secret_name)
        except ApiError as exc:
            self.logger.error(
                "Failed to list secrets in namespace %s (status=%s): %s",
                namespace,
                exc.status,
                exc.message,
            )
            return self._record(
                ReconcileResult(namespace=namespace, action="none", ok=False, error=str(exc))
            )
        except Exception as exc:
            self.logger.exception("Unexpected error listing secrets in namespace %s", namespace)
            return self._record(
                ReconcileResult(namespace=namespace, action="none", ok=False, error=str(exc))
            )

        action = "patched" if exists else "created"
        try:
            if exists:
                patch_secret_data(self.core_api, namespace, self.secret_name, docker_config)
            else:
                create_secret(self.core_api, namespace, self.secret_name, docker_config)
        except ApiError as exc:
            self.logger.error(
                "Failed to %s secret %s in namespace %s (status=%s): %s",
                "patch" if exists else "create",
                self.secret_name,
                namespace,
                exc.status,
                exc.message,
            )
            return self._record(
                ReconcileResult(namespace=namespace, action=action, ok=False, error=str(exc))
            )
        except Exception as exc:
            self.logger.exception(
                "Unexpected error writing secret %s in namespace %s", self.secret_name, namespace
            )
            return self._record(
                ReconcileResult(namespace=namespace, action=action, ok=False, error=str(exc))
            )

        self.logger.info("Secret %s %s in namespace %s", self.secret_name, action, namespace)
        return self._record(ReconcileResult(namespace=namespace, action=action, ok=True))
