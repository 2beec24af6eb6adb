"""
Tests for the command-line entrypoint (extract / apply modes).
"""

import json
from pathlib import Path

import pytest

import codeforge
import codeforge_cli
from codeforge import core

GENERATED = (
    "Adds a counter.\n"
    '<file path="src/components/Counter.tsx">\n'
    "import { useState } from 'react';\nimport clsx from 'clsx';\nexport function Counter() {}\n"
    "</file>"
)


@pytest.fixture(autouse=True)
def quiet(monkeypatch):
    monkeypatch.setattr(core, "configure_logging", lambda **kwargs: None)
    monkeypatch.delenv("CODEFORGE_MODE", raising=False)
    monkeypatch.delenv("CODEFORGE_PROJECT_ROOT", raising=False)


def test_extract(tmp_path: Path, capsys):
    src = tmp_path / "response.txt"
    src.write_text(GENERATED, encoding="utf-8")

    assert core.main(["--extract", str(src), "--project-root", str(tmp_path)]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["explanation"] == "Adds a counter."
    assert [f["path"] for f in out["files"]] == ["src/components/Counter.tsx"]
    assert out["packages"] == ["react", "clsx"]


def test_apply_generated_text(tmp_path: Path, project_dir: Path, capsys):
    src = tmp_path / "response.txt"
    src.write_text(GENERATED, encoding="utf-8")

    assert core.main(["--apply", str(src), "--project-root", str(project_dir)]) == 0
    events = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert events[0]["type"] == "status"
    assert events[-1]["type"] == "complete"
    assert events[-1]["results"]["packages"] == ["clsx"]
    assert (project_dir / "src/components/Counter.tsx").is_file()


def test_apply_json_request_with_rejected_file(tmp_path: Path, project_dir: Path, capsys):
    src = tmp_path / "request.json"
    body = {"files": [{"path": "src/a.ts", "content": "a"}, {"path": ".env", "content": "X=1"}]}
    src.write_text(json.dumps(body), encoding="utf-8")

    assert core.main(["--apply", str(src), "--project-root", str(project_dir)]) == 1
    events = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert events[-1]["results"]["errors"] == ["src/.env: Protected file: .env"]


def test_apply_invalid_request(tmp_path: Path, project_dir: Path, capsys):
    src = tmp_path / "request.json"
    src.write_text(json.dumps({"files": [{"path": "../x.ts", "content": ""}]}), encoding="utf-8")

    assert core.main(["--apply", str(src), "--project-root", str(project_dir)]) == 2
    out = json.loads(capsys.readouterr().out)
    assert out["type"] == "error"


def test_mode_from_env(tmp_path: Path, monkeypatch, capsys):
    src = tmp_path / "response.txt"
    src.write_text(GENERATED, encoding="utf-8")
    monkeypatch.setenv("CODEFORGE_MODE", "extract")

    assert core.main([str(src), "--project-root", str(tmp_path)]) == 0
    assert json.loads(capsys.readouterr().out)["files"]


def test_init_config(tmp_path: Path):
    assert core.main(["--init-config", "--project-root", str(tmp_path)]) == 0
    assert (tmp_path / ".codeforge" / "config.json").is_file()


def test_no_mode_prints_help(tmp_path: Path, capsys):
    assert core.main(["--project-root", str(tmp_path)]) == 1
    assert "usage" in capsys.readouterr().out.lower()


def test_package_entrypoint(tmp_path: Path):
    assert codeforge.main(["--init-config", "--project-root", str(tmp_path)]) == 0
    assert json.loads((tmp_path / ".codeforge" / "config.json").read_text(encoding="utf-8"))["sandbox"]["enabled"] is False


def test_console_script_subcommand(tmp_path: Path, monkeypatch, capsys):
    src = tmp_path / "response.txt"
    src.write_text(GENERATED, encoding="utf-8")
    monkeypatch.setenv("CODEFORGE_MODE", "")
    monkeypatch.setattr("sys.argv", ["codeforge", "extract", str(src), "--project-root", str(tmp_path)])

    assert codeforge_cli.main() == 0
    assert json.loads(capsys.readouterr().out)["packages"] == ["react", "clsx"]
