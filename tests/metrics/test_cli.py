# SPDX-License-Identifier: Apache-2.0
"""
CLI — `autoscale-metrics collect` / `health` against a stubbed frontend.
"""

import json

import pytest

from autoscale_sdk import cli
from autoscale_sdk.metrics import temporal_collector

pytestmark = pytest.mark.cli


@pytest.fixture
def stubbed_frontend(monkeypatch, stub_dial):
    monkeypatch.setattr(temporal_collector, "dial_temporal", stub_dial)
    for var in (
        "TEMPORAL_ADDRESS",
        "TEMPORAL_NAMESPACE",
        "TEMPORAL_API_KEY",
        "TEMPORAL_METRIC_QUERY",
        "TEMPORAL_TLS_CERT",
        "TEMPORAL_TLS_KEY",
        "TEMPORAL_TLS_CERT_DATA",
        "TEMPORAL_TLS_KEY_DATA",
    ):
        monkeypatch.delenv(var, raising=False)
    return stub_dial


def test_cli_collect_prints_counts(stubbed_frontend, stub_transport, capsys):
    rc = cli.main(["collect", "orders", "billing", "--address", "h:7233", "--namespace", "ns"])
    out = capsys.readouterr().out
    assert rc == 0
    assert out.splitlines() == ["orders\t7", "billing\t7"]
    assert stubbed_frontend.last.target_host == "h:7233"
    assert stub_transport.close_calls == 1


def test_cli_collect_json_and_query(stubbed_frontend, stub_transport, capsys):
    rc = cli.main(
        [
            "collect", "orders",
            "--address", "h:7233",
            "--namespace", "ns",
            "--query", 'TaskQueue="${APP_NAME}"',
            "--json",
        ]
    )
    assert rc == 0
    assert json.loads(capsys.readouterr().out) == {"orders": 7.0}
    assert stub_transport.queries == ['ExecutionStatus="Running" AND (TaskQueue="orders")']


def test_cli_collect_reads_environment(stubbed_frontend, monkeypatch, capsys):
    monkeypatch.setenv("TEMPORAL_ADDRESS", "env:7233")
    monkeypatch.setenv("TEMPORAL_NAMESPACE", "env-ns")
    assert cli.main(["collect", "a", "--timeout-ms", "0"]) == 0
    assert stubbed_frontend.last.namespace == "env-ns"


def test_cli_missing_address_is_config_error(stubbed_frontend, capsys):
    rc = cli.main(["collect", "orders", "--namespace", "ns"])
    err = capsys.readouterr().err
    assert rc == 2
    assert "temporal address required" in err
    assert "BAD_CONFIG" in err
    assert stubbed_frontend.calls == []


def test_cli_backend_error_exit_code(stubbed_frontend, stub_transport, capsys):
    stub_transport.error = RuntimeError("namespace not found")
    rc = cli.main(["collect", "orders", "--address", "h:7233", "--namespace", "ns"])
    assert rc == 1
    assert "namespace not found" in capsys.readouterr().err
    assert stub_transport.close_calls == 1


def test_cli_health(stubbed_frontend, capsys):
    rc = cli.main(["health", "--address", "h:7233", "--namespace", "ns", "--json"])
    assert rc == 0
    assert json.loads(capsys.readouterr().out)["ok"] is True


def test_cli_requires_command(capsys):
    assert cli.main([]) == 2
