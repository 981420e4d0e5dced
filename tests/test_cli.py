"""Command line driver tests."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import numpy as np
import pytest

import cli
from services.ascii_io import FIELD_FILES, read_field
from services.problems import gaussian


ARGS = ["2", "32", "32", "0.125", "0.125"]


def _never_asked(prompt: str) -> str:
    raise AssertionError(f"unexpected prompt: {prompt}")


def _answer(value: str):
    prompts = []

    def ask(prompt: str) -> str:
        prompts.append(prompt)
        return value

    ask.prompts = prompts
    return ask


def test_writes_all_field_files(tmp_path: Path) -> None:
    out = tmp_path / "brill"
    assert cli.main([str(out), *ARGS], ask=_never_asked) == 0
    for name in FIELD_FILES:
        assert (out / name).is_file()

    u = read_field(out / "u.asc")
    assert (u.nr_total, u.nz_total) == (35, 35)
    assert np.all(np.isfinite(u.values))
    res = read_field(out / "res.asc")
    assert np.abs(res.values).max() < 1e-8


def test_manufactured_problem_matches_exact_solution(tmp_path: Path) -> None:
    out = tmp_path / "mms"
    argv = [str(out), *ARGS, "--problem", "manufactured", "--configurations", "normal"]
    assert cli.main(argv, ask=_never_asked) == 0
    u = read_field(out / "u.asc")
    interior = (u.r > 0) & (u.z > 0)
    assert np.abs(u.values - gaussian(u.r, u.z))[interior].max() < 5e-2


def test_existing_directory_asks_before_overwriting(tmp_path: Path) -> None:
    out = tmp_path / "existing"
    out.mkdir()

    decline = _answer("n")
    assert cli.main([str(out), *ARGS], ask=decline) == 1
    assert len(decline.prompts) == 1
    assert "overwrite" in decline.prompts[0]
    assert not (out / "u.asc").exists()

    accept = _answer("Y")
    assert cli.main([str(out), *ARGS, "--configurations", "normal"], ask=accept) == 0
    assert (out / "u.asc").is_file()


def test_yes_flag_skips_prompts(tmp_path: Path) -> None:
    out = tmp_path / "existing"
    out.mkdir()
    assert cli.main([str(out), *ARGS, "--configurations", "normal", "--yes"], ask=_never_asked) == 0


def test_unusable_directory_offers_current_directory(tmp_path: Path, monkeypatch) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="ascii")
    workdir = tmp_path / "work"
    workdir.mkdir()
    monkeypatch.chdir(workdir)

    decline = _answer("n")
    assert cli.main([str(blocker), *ARGS], ask=decline) == 1
    assert "current directory" in decline.prompts[0]

    assert cli.main([str(blocker), *ARGS, "--configurations", "normal"], ask=_answer("y")) == 0
    assert (workdir / "u.asc").is_file()


def test_missing_arguments_offer_defaults(tmp_path: Path, monkeypatch) -> None:
    decline = _answer("n")
    assert cli.main([], ask=decline) == 1
    assert "default arguments" in decline.prompts[0]

    out = tmp_path / "defaults"
    monkeypatch.setattr(cli, "settings", replace(cli.settings, output_dir=str(out)))
    assert cli.main(["--configurations", "normal"], ask=_answer("y")) == 0
    assert read_field(out / "u.asc").nr_total == 2 + 256 + 1


def test_non_interactive_runs_never_prompt(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "settings", replace(cli.settings, interactive=False))
    assert cli.main([], ask=_never_asked) == 1
    out = tmp_path / "existing"
    out.mkdir()
    assert cli.main([str(out), *ARGS], ask=_never_asked) == 1


@pytest.mark.parametrize(
    "argv, message",
    [
        (["3", "32", "32", "0.125", "0.125"], "grid.order"),
        (["2", "31", "32", "0.125", "0.125"], "grid.nr_interior"),
        (["2", "32", "4096", "0.125", "0.125"], "grid.nz_interior"),
        (["2", "32", "32", "0.0001", "0.125"], "grid.dr"),
        (["2", "32", "32", "0.125", "2.0"], "grid.dz"),
    ],
)
def test_invalid_parameters_exit_with_error(tmp_path: Path, capsys, argv, message) -> None:
    out = tmp_path / "bad"
    assert cli.main([str(out), *argv], ask=_never_asked) == 1
    assert message in capsys.readouterr().out
    assert not out.exists()


def test_unknown_configuration_is_rejected(tmp_path: Path, capsys) -> None:
    assert cli.main([str(tmp_path / "x"), *ARGS, "--configurations", "normal,ooc"], ask=_never_asked) == 1
    assert "unknown solve configuration" in capsys.readouterr().out
