"""Tests for the foldertree command line."""

import json
from pathlib import Path

import pytest

from foldertree.cli.main import main


@pytest.fixture(autouse=True)
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(
        "FOLDERTREE_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path}/tree.db"
    )
    monkeypatch.setenv("FOLDERTREE_STORAGE_DIR", str(tmp_path / "storage"))


def run_cli(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture, *argv: str
) -> dict:
    monkeypatch.setattr("sys.argv", ["foldertree", *argv])
    main()
    return json.loads(capsys.readouterr().out)


def test_mkdir_then_ls(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    docs = run_cli(monkeypatch, capsys, "mkdir", "Docs")
    assert docs["name"] == "Docs"
    assert docs["path"] == "/docs"

    run_cli(monkeypatch, capsys, "touch", "Notes.TXT", "--parent", str(docs["id"]))

    listing = run_cli(monkeypatch, capsys, "ls", str(docs["id"]))
    assert [f["name"] for f in listing["files"]] == ["Notes"]
    assert [f["extension"] for f in listing["files"]] == ["txt"]

    root = run_cli(monkeypatch, capsys, "ls")
    assert [f["name"] for f in root["folders"]] == ["Docs"]


def test_trash_and_verify(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    docs = run_cli(monkeypatch, capsys, "mkdir", "Docs")
    run_cli(monkeypatch, capsys, "rm", str(docs["id"]))

    trash = run_cli(monkeypatch, capsys, "trash")
    assert [f["name"] for f in trash["folders"]] == ["Docs"]

    counts = run_cli(monkeypatch, capsys, "empty-trash")
    assert counts == {"deletedFolderCount": 1, "deletedFileCount": 0}

    report = run_cli(monkeypatch, capsys, "verify")
    assert report["problems"] == []


def test_name_conflict_exits_with_error(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    run_cli(monkeypatch, capsys, "mkdir", "Docs")

    monkeypatch.setattr("sys.argv", ["foldertree", "mkdir", "Docs"])
    with pytest.raises(SystemExit) as exc_info:
        main()
    assert exc_info.value.code == 1
    error = json.loads(capsys.readouterr().err.splitlines()[-1])
    assert error["errorCode"] == "E409"
    assert error["details"]["suggestedName"] == "Docs (2)"

    second = run_cli(monkeypatch, capsys, "mkdir", "Docs", "--on-conflict", "keepBoth")
    assert second["name"] == "Docs (2)"


def test_no_command_prints_help(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("sys.argv", ["foldertree"])
    with pytest.raises(SystemExit):
        main()
