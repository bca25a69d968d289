from __future__ import annotations

import importlib.util
import json
from pathlib import Path

import pytest


def load_diag():
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "polycode_diag.py"
    spec = importlib.util.spec_from_file_location("polycode_diag_test_module", module_path)
    assert spec and spec.loader
    diag = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(diag)
    return diag


def _fake_git(tmp_path: Path, outputs: dict[str, str]) -> Path:
    cases = "\n".join(
        f'  *" {command} "*) printf \'{output}\' ;;' for command, output in outputs.items()
    )
    script = tmp_path / "git"
    script.write_text(
        f'#!/bin/sh\ncase " $* " in\n{cases}\n  *) ;;\nesac\n',
        encoding="utf-8",
    )
    script.chmod(0o755)
    return script


def test_locations_lists_configured_targets(monkeypatch, capsys, tmp_path: Path) -> None:
    (tmp_path / "wsl.yaml").write_text(
        "id: wsl\nconnection_type: wsl\npath: /home/dev/app\nwsl:\n  distro: Ubuntu\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("POLYCODE_LOCATION_PATHS", str(tmp_path))

    load_diag().main(["locations"])

    assert capsys.readouterr().out.strip() == "wsl [wsl] /home/dev/app"


def test_locations_reports_invalid_files(monkeypatch, capsys, tmp_path: Path) -> None:
    (tmp_path / "bad.yaml").write_text("id: broken\n", encoding="utf-8")
    monkeypatch.setenv("POLYCODE_LOCATION_PATHS", str(tmp_path))

    with pytest.raises(SystemExit):
        load_diag().main(["locations", "--json"])

    assert "Locations invalid" in capsys.readouterr().out


def test_git_status_prints_snapshot(monkeypatch, capsys, tmp_path: Path) -> None:
    git = _fake_git(
        tmp_path,
        {
            "--porcelain": "M  app.py\\n",
            "--abbrev-ref": "main\\n",
            "--count": "0\\t1\\n",
            "--numstat": "3\\t1\\tapp.py\\n",
        },
    )
    monkeypatch.setenv("GIT_PATH", str(git))
    monkeypatch.setenv("POLYCODE_LOCATION_PATHS", str(tmp_path / "none"))

    load_diag().main(["git-status", str(tmp_path), "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["branch"] == "main"
    assert payload["ahead"] == 1
    assert payload["additions"] == 3
    assert payload["files"][0]["path"] == "app.py"


def test_git_status_requires_git(monkeypatch, capsys, tmp_path: Path) -> None:
    monkeypatch.setenv("GIT_PATH", str(tmp_path / "missing-git"))

    with pytest.raises(SystemExit):
        load_diag().main(["git-status", str(tmp_path)])

    assert "git unavailable" in capsys.readouterr().out


def test_no_subcommand_prints_help(capsys) -> None:
    load_diag().main([])

    assert "Polycode MCP diagnostics" in capsys.readouterr().out
