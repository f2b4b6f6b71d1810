"""
Tests for settings loading and command-line overrides.
"""
import pytest

from vdb_controller.__main__ import apply_args, build_parser
from vdb_controller.config.settings import Settings, parse_bind_address


@pytest.mark.parametrize(
    "address,expected",
    [
        (":8081", ("0.0.0.0", 8081)),
        ("127.0.0.1:8082", ("127.0.0.1", 8082)),
        ("localhost:9443", ("localhost", 9443)),
    ],
)
def test_parse_bind_address(address, expected):
    assert parse_bind_address(address) == expected


@pytest.mark.parametrize("address", ["", "8081", ":http", "host:"])
def test_parse_bind_address_rejects_invalid(address):
    with pytest.raises(ValueError):
        parse_bind_address(address)


def test_defaults():
    config = Settings(_env_file=None)

    assert config.metrics_bind_address == ":8082"
    assert config.health_probe_bind_address == ":8081"
    assert config.webhook_port == 9443
    assert config.leader_elect is False
    assert config.reconcile_interval == 30.0
    assert config.watch_namespace is None


def test_environment_variables(monkeypatch):
    monkeypatch.setenv("AWS_REGION", "eu-west-1")
    monkeypatch.setenv("AWS_ACCESS_KEY", "AKIDEXAMPLE")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "secret")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config = Settings(_env_file=None)

    assert config.aws_region == "eu-west-1"
    assert config.aws_access_key == "AKIDEXAMPLE"
    assert config.aws_secret_access_key == "secret"
    assert config.log_level == "DEBUG"


def test_invalid_environment_rejected(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "qa")
    with pytest.raises(ValueError):
        Settings(_env_file=None)


def test_flags_override_settings():
    config = Settings(_env_file=None)
    args = build_parser().parse_args(
        [
            "--metrics-bind-address", "127.0.0.1:9090",
            "--health-probe-bind-address", ":9091",
            "--leader-elect",
            "--webhook-port", "9444",
            "--max-concurrent-reconciles", "8",
            "--namespace", "team-a",
        ]
    )

    apply_args(args, config)

    assert config.metrics_bind_address == "127.0.0.1:9090"
    assert config.health_probe_bind_address == ":9091"
    assert config.leader_elect is True
    assert config.webhook_port == 9444
    assert config.max_concurrent_reconciles == 8
    assert config.watch_namespace == "team-a"


def test_absent_flags_keep_settings():
    config = Settings(_env_file=None, leader_elect=True, max_concurrent_reconciles=2)
    args = build_parser().parse_args([])

    apply_args(args, config)

    assert config.leader_elect is True
    assert config.max_concurrent_reconciles == 2
    assert config.metrics_bind_address == ":8082"


def test_invalid_flag_values_rejected():
    config = Settings(_env_file=None)
    with pytest.raises(ValueError):
        apply_args(build_parser().parse_args(["--metrics-bind-address", "nope"]), config)
    with pytest.raises(ValueError):
        apply_args(build_parser().parse_args(["--max-concurrent-reconciles", "0"]), config)
