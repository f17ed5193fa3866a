from __future__ import annotations

import json

import pytest

from fencewatch import cli


@pytest.fixture(autouse=True)
def _local_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "MONGODB_CONNECTION_STRING",
        "COMMUNICATION_SERVICES_CONNECTION_STRING",
        "FENCEWATCH_SENDER_ADDRESS",
        "FENCEWATCH_PURGE_RETENTION",
        "FENCEWATCH_SCAN_INTERVAL",
    ):
        monkeypatch.delenv(key, raising=False)


def test_purge_prints_summary(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["purge"]) == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["purgedCount"] == 0
    assert summary["violationsCountAfter"] == 0


def test_scan_without_notifier_is_a_config_error() -> None:
    assert cli.main(["scan"]) == 2


def test_invalid_environment_is_a_config_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FENCEWATCH_SCAN_INTERVAL", "often")
    assert cli.main(["purge"]) == 2


def test_command_is_required() -> None:
    with pytest.raises(SystemExit):
        cli.main([])
