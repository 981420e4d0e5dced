"""Environment settings tests."""

from __future__ import annotations

import pytest

from config import Settings


@pytest.mark.parametrize("raw, expected", [("debug", "DEBUG"), (" warning ", "WARNING"), ("VERBOSE", "INFO"), ("", "INFO")])
def test_log_level_names(monkeypatch, raw, expected) -> None:
    monkeypatch.setenv("ELLSOLVE_LOG_LEVEL", raw)
    assert Settings.from_env().log_level == expected


def test_cli_starts_with_unknown_log_level(tmp_path, monkeypatch) -> None:
    import cli

    monkeypatch.setenv("ELLSOLVE_LOG_LEVEL", "VERBOSE")
    monkeypatch.setattr(cli, "settings", Settings.from_env())
    argv = [str(tmp_path / "out"), "2", "32", "32", "0.125", "0.125", "--configurations", "normal"]
    assert cli.main(argv, ask=lambda prompt: "n") == 0


def test_backend_wait_is_never_negative(monkeypatch) -> None:
    monkeypatch.setenv("ELLSOLVE_BACKEND_WAIT_SECONDS", "-3")
    assert Settings.from_env().backend_wait_seconds == 0.0
    monkeypatch.delenv("ELLSOLVE_BACKEND_WAIT_SECONDS")
    assert Settings.from_env().backend_wait_seconds == 60.0
