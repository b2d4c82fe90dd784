from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from croniter import croniter

DEFAULT_SECRET_NAME = "ecr-creds"
DEFAULT_LABEL_NAME = "credentialType"
DEFAULT_LABEL_VALUE = "ecr"
DEFAULT_CRON_SCHEDULE = "0 */6 * * *"
DEFAULT_TOKEN_CACHE_TTL_SECONDS = 6 * 60 * 60


class ConfigError(RuntimeError):
    """Raised when the controller configuration is invalid."""


@dataclass(frozen=True)
class SyncConfig:
    """Immutable controller configuration loaded once at startup.

    Each component receives only the fields it needs; nothing reads the
    environment after :func:`load_config` returns.

    Attributes:
        registry:            Registry hostname used as the ``auths`` key.
        secret_name:         Name of the managed pull secret in every namespace.
        label_name:          Namespace label key defining the sync scope.
        label_value:         Namespace label value defining the sync scope.
        cron_schedule:       Five-field cron expression for full sweeps.
        token_cache_ttl_seconds: Freshness window for the cached ECR token.
        watch_timeout_seconds:   Server-side timeout of one watch stream.
        watch_restart_delay_seconds: Optional pause before re-watching after a stream error.
        health_port:         Port of the health/metrics HTTP server.
    """

    registry: str
    secret_name: str = DEFAULT_SECRET_NAME
    label_name: str = DEFAULT_LABEL_NAME
    label_value: str = DEFAULT_LABEL_VALUE
    cron_schedule: str = DEFAULT_CRON_SCHEDULE
    token_cache_ttl_seconds: int = DEFAULT_TOKEN_CACHE_TTL_SECONDS
    watch_timeout_seconds: int = 300
    watch_restart_delay_seconds: int = 0
    health_port: int = 8080

    @property
    def label_selector(self) -> str:
        return f"{self.label_name}={self.label_value}"


def env_int(
    values: Mapping[str, str],
    name: str,
    default: int,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    raw = values.get(name)
    if raw is None:
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be an integer") from exc

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got: {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be <= {maximum}, got: {value}")
    return value


def _non_empty(values: Mapping[str, str], name: str, default: str | None = None) -> str:
    raw = values.get(name, default)
    if raw is None or not raw.strip():
        raise ConfigError(f"{name} must be a non-empty string")
    return raw.strip()


def load_config(env: Mapping[str, str] | None = None) -> SyncConfig:
    """Build a :class:`SyncConfig` from environment variables.

    ``DOCKER_REGISTRY`` is required. The label and schedule defaults match
    the container image defaults (``credentialType=ecr``, every six hours).
    AWS credentials are not read here; boto3 resolves them on its own.
    """
    values = env if env is not None else os.environ

    registry = _non_empty(values, "DOCKER_REGISTRY")
    secret_name = _non_empty(values, "ECR_SECRET_NAME", DEFAULT_SECRET_NAME)
    label_name = _non_empty(values, "ECR_LABEL_NAME", DEFAULT_LABEL_NAME)
    label_value = _non_empty(values, "ECR_LABEL_VALUE", DEFAULT_LABEL_VALUE)

    cron_schedule = _non_empty(values, "ECR_CRON_SCHEDULE", DEFAULT_CRON_SCHEDULE)
    if not croniter.is_valid(cron_schedule):
        raise ConfigError(f"ECR_CRON_SCHEDULE is not a valid cron expression: {cron_schedule!r}")

    return SyncConfig(
        registry=registry,
        secret_name=secret_name,
        label_name=label_name,
        label_value=label_value,
        cron_schedule=cron_schedule,
        token_cache_ttl_seconds=env_int(
            values, "TOKEN_CACHE_TTL_SECONDS", DEFAULT_TOKEN_CACHE_TTL_SECONDS, minimum=0
        ),
        watch_timeout_seconds=env_int(values, "WATCH_TIMEOUT_SECONDS", 300, minimum=1),
        watch_restart_delay_seconds=env_int(
            values, "WATCH_RESTART_DELAY_SECONDS", 0, minimum=0
        ),
        health_port=env_int(values, "HEALTH_PORT", 8080, minimum=1, maximum=65535),
    )
