from __future__ import annotations

import base64
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from credsync.src.metrics import METRICS

LOGGER = logging.getLogger(__name__)

ECR_USERNAME = "AWS"


class TokenFetchError(RuntimeError):
    """Raised when the ECR authorization call fails or returns a malformed response."""


@dataclass(frozen=True)
class CachedToken:
    """An encoded docker config together with the monotonic time it was fetched."""

    docker_config: str
    acquired_at: float


def encode_docker_config(registry: str, token: str | None) -> str:
    """Return the base64 ``.dockerconfigjson`` payload for *registry*.

    The document holds a single ``auths`` entry keyed by the registry
    hostname. When *token* is empty the ``auths`` map is empty.
    """
    auths: dict[str, dict[str, str]] = {}
    if token:
        auths[registry] = {"username": ECR_USERNAME, "password": token}
    payload = json.dumps({"auths": auths}, separators=(",", ":"))
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_docker_config(docker_config: str) -> dict[str, Any]:
    """Inverse of :func:`encode_docker_config`."""
    return json.loads(base64.b64decode(docker_config).decode("utf-8"))


def build_ecr_client() -> Any:
    """Return a boto3 ECR client using the ambient AWS credential chain."""
    return boto3.client("ecr")


class TokenCache:
    """Read-through cache in front of ``ecr:GetAuthorizationToken``.

    ECR tokens are valid for twelve hours; the default freshness window is
    half of that so a cached token is never close to expiry when served.
    Sweeps always pass ``use_cache=False`` and watch events pass
    ``use_cache=True``.

    The cache is shared by the watcher and scheduler threads without a lock.
    Concurrent refreshes can both write; the last write wins, which is fine
    because any freshly fetched token is valid.
    """

    def __init__(
        self,
        ecr_client: Any,
        registry: str,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ecr_client = ecr_client
        self.registry = registry
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._cached: CachedToken | None = None

    @property
    def cached(self) -> CachedToken | None:
        return self._cached

    def _is_fresh(self, entry: CachedToken, now: float) -> bool:
        return now - entry.acquired_at < self.ttl_seconds

    def get_token(self, use_cache: bool) -> str:
        """Return the encoded docker config, refreshing from ECR when needed.

        Raises :class:`TokenFetchError` when the provider fails; the cached
        entry, if any, is left as it was.
        """
        entry = self._cached
        if use_cache and entry is not None and self._is_fresh(entry, self.clock()):
            METRICS.token_fetches_total.labels(source="cache", outcome="hit").inc()
            return entry.docker_config

        try:
            docker_config = self._fetch()
        except TokenFetchError:
            METRICS.token_fetches_total.labels(source="provider", outcome="error").inc()
            raise

        self._cached = CachedToken(docker_config=docker_config, acquired_at=self.clock())
        METRICS.token_fetches_total.labels(source="provider", outcome="success").inc()
        return docker_config

    def _fetch(self) -> str:
        try:
            response = self.ecr_client.get_authorization_token()
        except (BotoCoreError, ClientError) as exc:
            raise TokenFetchError(f"ECR GetAuthorizationToken failed: {exc}") from exc

        if not isinstance(response, dict) or "authorizationData" not in response:
            raise TokenFetchError("ECR GetAuthorizationToken response has no authorizationData")

        authorization_data = response.get("authorizationData") or []
        token = None
        if authorization_data:
            token = authorization_data[0].get("authorizationToken")

        if not token:
            # Still encoded: secrets are written with an empty auths map.
            LOGGER.warning(
                "ECR returned no authorization token; using empty credentials for %s",
                self.registry,
            )
        else:
            LOGGER.info("Fetched new ECR authorization token for %s", self.registry)

        return encode_docker_config(self.registry, token)
