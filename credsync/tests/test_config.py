from __future__ import annotations

import pytest

from credsync.src.config import ConfigError, SyncConfig, env_int, load_config

REGISTRY = "000000.dkr.ecr.us-east-1.amazonaws.com"


def test_load_config_defaults() -> None:
    config = load_config({"DOCKER_REGISTRY": REGISTRY})

    assert config == SyncConfig(registry=REGISTRY)
    assert config.secret_name == "ecr-creds"
    assert config.label_selector == "credentialType=ecr"
    assert config.cron_schedule == "0 */6 * * *"
    assert config.token_cache_ttl_seconds == 21600
    assert config.watch_restart_delay_seconds == 0
    assert config.health_port == 8080


def test_load_config_custom_values() -> None:
    config = load_config(
        {
            "DOCKER_REGISTRY": REGISTRY,
            "ECR_SECRET_NAME": "regcred",
            "ECR_LABEL_NAME": "team",
            "ECR_LABEL_VALUE": "platform",
            "ECR_CRON_SCHEDULE": "*/15 * * * *",
            "TOKEN_CACHE_TTL_SECONDS": "600",
            "WATCH_TIMEOUT_SECONDS": "120",
            "WATCH_RESTART_DELAY_SECONDS": "0",
            "HEALTH_PORT": "9090",
        }
    )

    assert config.secret_name == "regcred"
    assert config.label_selector == "team=platform"
    assert config.cron_schedule == "*/15 * * * *"
    assert config.token_cache_ttl_seconds == 600
    assert config.watch_timeout_seconds == 120
    assert config.watch_restart_delay_seconds == 0
    assert config.health_port == 9090


def test_load_config_requires_registry() -> None:
    with pytest.raises(ConfigError, match="DOCKER_REGISTRY must be a non-empty string"):
        load_config({})


def test_load_config_rejects_blank_label() -> None:
    with pytest.raises(ConfigError, match="ECR_LABEL_VALUE"):
        load_config({"DOCKER_REGISTRY": REGISTRY, "ECR_LABEL_VALUE": "  "})


def test_load_config_rejects_invalid_cron() -> None:
    with pytest.raises(ConfigError, match="not a valid cron expression"):
        load_config({"DOCKER_REGISTRY": REGISTRY, "ECR_CRON_SCHEDULE": "every six hours"})


def test_load_config_rejects_out_of_range_port() -> None:
    with pytest.raises(ConfigError, match="HEALTH_PORT must be <= 65535, got: 70000"):
        load_config({"DOCKER_REGISTRY": REGISTRY, "HEALTH_PORT": "70000"})


def test_load_config_reads_process_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCKER_REGISTRY", REGISTRY)
    monkeypatch.setenv("ECR_SECRET_NAME", "from-env")

    assert load_config().secret_name == "from-env"


# ---------------------------------------------------------------------------
# env_int()
# ---------------------------------------------------------------------------


def test_env_int_returns_default_when_not_set() -> None:
    assert env_int({}, "TEST_ENV_INT", 42) == 42


def test_env_int_parses_valid_integer() -> None:
    assert env_int({"TEST_ENV_INT": "10"}, "TEST_ENV_INT", 42) == 10


@pytest.mark.parametrize("raw", ["abc", ""])
def test_env_int_raises_on_non_numeric(raw: str) -> None:
    with pytest.raises(ConfigError, match="TEST_ENV_INT must be an integer"):
        env_int({"TEST_ENV_INT": raw}, "TEST_ENV_INT", 42)


def test_env_int_enforces_minimum() -> None:
    with pytest.raises(ConfigError, match="TEST_ENV_INT must be >= 0, got: -1"):
        env_int({"TEST_ENV_INT": "-1"}, "TEST_ENV_INT", 42, minimum=0)

