from __future__ import annotations

import os

import pytest

from hm2mqtt import __main__ as cli
from hm2mqtt.config import BridgeConfig


def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith(("DEVICE_", "MQTT_", "LOG_LEVEL", "POLL_EXTRA")):
            monkeypatch.delenv(key, raising=False)


def test_no_devices_exits_with_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    assert cli.main([]) == 1


def test_invalid_config_exits_with_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("MQTT_POLLING_INTERVAL", "soon")
    assert cli.main(["--log-level", "debug"]) == 1


def test_runs_bridge_with_env_config(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("DEVICE_0", "HMA-1:001122334455")
    seen: list[BridgeConfig] = []

    async def fake_run(config: BridgeConfig) -> None:
        seen.append(config)

    monkeypatch.setattr(cli, "_run", fake_run)
    assert cli.main(["--log-level", "warning"]) == 0
    assert seen[0].devices[0].device_id == "001122334455"


def test_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--version"])
    assert excinfo.value.code == 0
    assert "hm2mqtt" in capsys.readouterr().out
