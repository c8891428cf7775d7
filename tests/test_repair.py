from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from project_index_repair.paths import PathPolicy
from project_index_repair.repair import (
    MalformedInputError,
    ReadError,
    WriteError,
    add_project,
    deduplicate,
    inspect,
    list_projects,
    read_index,
    remove_project,
    repair,
)

WINDOWS = PathPolicy(flavor="windows")


def _write_index(tmp_path: Path, entries: list[str]) -> Path:
    index = tmp_path / "projects.json"
    index.write_text(json.dumps(entries), encoding="utf-8")
    return index


def test_repair_scenario_double_escaped(tmp_path: Path) -> None:
    index = _write_index(
        tmp_path,
        ["C:\\a\\\\\\b\\my-ai-desktop", "C:\\a\\b\\my-ai-desktop", "C:\\c\\d"],
    )

    summary = repair(index, WINDOWS)

    expected = ["C:\\a\\b\\my-ai-desktop", "C:\\c\\d"]
    assert summary.entries == expected
    assert summary.original_count == 3
    assert summary.final_count == 2
    assert summary.removed_count == 1
    assert summary.malformed_count == 1
    assert summary.watched == ["C:\\a\\b\\my-ai-desktop"]
    assert summary.written is True
    assert index.read_text(encoding="utf-8") == json.dumps(expected, indent=2)


def test_repair_empty_index(tmp_path: Path) -> None:
    index = _write_index(tmp_path, [])

    report = inspect(index, WINDOWS)
    summary = repair(index, WINDOWS)

    assert report.total == 0
    assert report.malformed == []
    assert summary.entries == []
    assert summary.removed_count == 0
    assert json.loads(index.read_text(encoding="utf-8")) == []


def test_repair_invalid_json_leaves_file_untouched(tmp_path: Path) -> None:
    index = tmp_path / "projects.json"
    index.write_text('["C:\\\\a", "not js', encoding="utf-8")
    before = index.read_bytes()

    with pytest.raises(MalformedInputError) as excinfo:
        repair(index, WINDOWS)

    assert excinfo.value.line == 1
    assert excinfo.value.path == str(index)
    assert index.read_bytes() == before
    assert sorted(p.name for p in tmp_path.iterdir()) == ["projects.json"]


def test_repair_trailing_separator_duplicate(tmp_path: Path) -> None:
    index = _write_index(tmp_path, ["C:\\x\\", "C:\\y", "C:\\x"])

    summary = repair(index, WINDOWS)

    assert summary.entries == ["C:\\x", "C:\\y"]
    assert summary.duplicates == [
        {"index": 2, "raw": "C:\\x", "normalized": "C:\\x", "duplicate_of": 0}
    ]


def test_repair_is_idempotent(tmp_path: Path) -> None:
    index = _write_index(
        tmp_path, ["C:\\a\\\\\\b", "C:/a/b", "D:\\dev\\app\\", "D:\\dev\\app", "/srv//x"]
    )

    first = repair(index)
    first_bytes = index.read_bytes()
    second = repair(index)

    assert second.removed_count == 0
    assert second.entries == first.entries
    assert index.read_bytes() == first_bytes


def test_repair_preserves_first_occurrence_order(tmp_path: Path) -> None:
    index = _write_index(tmp_path, ["C:\\b", "C:\\a", "C:\\b\\", "C:\\c", "C:\\a\\."])

    summary = repair(index, WINDOWS)

    assert summary.entries == ["C:\\b", "C:\\a", "C:\\c"]
    assert summary.removed_count == len(summary.duplicates) == 2
    assert [d["duplicate_of"] for d in summary.duplicates] == [0, 1]


def test_deduplicate_output_has_no_duplicates() -> None:
    entries = ["C:\\p", "C:/p", "C:\\p\\\\", "C:\\q", "C:\\q\\..\\p"]
    kept, duplicates = deduplicate(entries, WINDOWS)

    assert len(kept) == len(set(kept))
    assert len(kept) + len(duplicates) == len(entries)
    assert kept == ["C:\\p", "C:\\q"]


def test_repair_case_sensitivity_is_configurable(tmp_path: Path) -> None:
    entries = ["C:\\Proj", "c:\\proj"]

    sensitive = repair(_write_index(tmp_path, entries), WINDOWS, dry_run=True)
    insensitive = repair(
        _write_index(tmp_path, entries),
        PathPolicy(flavor="windows", ignore_case=True),
        dry_run=True,
    )

    assert sensitive.entries == ["C:\\Proj", "c:\\proj"]
    assert insensitive.entries == ["C:\\Proj"]


def test_repair_dry_run_does_not_write(tmp_path: Path) -> None:
    index = _write_index(tmp_path, ["C:\\a", "C:\\a\\"])
    before = index.read_bytes()

    summary = repair(index, WINDOWS, dry_run=True)

    assert summary.written is False
    assert summary.removed_count == 1
    assert index.read_bytes() == before


def test_repair_keeps_non_ascii_text(tmp_path: Path) -> None:
    index = _write_index(tmp_path, ["C:\\Users\\José\\proj"])

    repair(index, WINDOWS)

    assert "José" in index.read_text(encoding="utf-8")


def test_repair_backup_and_operations_log(tmp_path: Path) -> None:
    index = _write_index(tmp_path, ["C:\\a", "C:\\a\\"])
    before = index.read_bytes()
    ops_log = tmp_path / "logs" / "ops.log"

    summary = repair(index, WINDOWS, backup_dir=tmp_path / "backups", ops_log=ops_log)

    assert summary.backup_path is not None
    backup = Path(summary.backup_path)
    assert backup.parent == tmp_path / "backups"
    assert backup.name.endswith("__projects.json")
    assert backup.read_bytes() == before

    records = [json.loads(line) for line in ops_log.read_text(encoding="utf-8").splitlines()]
    assert len(records) == 1
    assert records[0]["op"] == "project_index_repair"
    assert records[0]["final_count"] == 1


def test_repair_write_failure_keeps_original(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    index = _write_index(tmp_path, ["C:\\a", "C:\\a\\"])
    before = index.read_bytes()

    def boom(src: str, dst: str) -> None:
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(os, "replace", boom)

    with pytest.raises(WriteError) as excinfo:
        repair(index, WINDOWS)

    assert "No space left on device" in str(excinfo.value)
    assert index.read_bytes() == before
    assert sorted(p.name for p in tmp_path.iterdir()) == ["projects.json"]


def test_read_index_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        read_index(tmp_path / "missing.json")
    with pytest.raises(FileNotFoundError):
        repair(tmp_path / "missing.json")


def test_read_index_directory_raises_read_error(tmp_path: Path) -> None:
    with pytest.raises(ReadError) as excinfo:
        read_index(tmp_path)
    assert excinfo.value.path == str(tmp_path)
    assert isinstance(excinfo.value, OSError)
    assert list_projects(tmp_path / "missing.json") == []


def test_read_index_rejects_wrong_shape(tmp_path: Path) -> None:
    index = tmp_path / "projects.json"

    index.write_text(json.dumps({"included": ["C:\\a"]}), encoding="utf-8")
    with pytest.raises(MalformedInputError):
        read_index(index)

    index.write_text(json.dumps(["C:\\a", 42]), encoding="utf-8")
    with pytest.raises(MalformedInputError) as excinfo:
        read_index(index)
    assert excinfo.value.index == 1


def test_read_index_rejects_invalid_utf8(tmp_path: Path) -> None:
    index = tmp_path / "projects.json"
    index.write_bytes(b'["C:\\\\\xff"]')

    with pytest.raises(MalformedInputError):
        read_index(index)


def test_inspect_classifies_entries_without_writing(tmp_path: Path) -> None:
    index = _write_index(
        tmp_path,
        ["C:\\\\\\\\dev\\my-ai-desktop", "C:\\dev\\my-ai-desktop", "C:\\dev\\other"],
    )
    before = index.read_bytes()

    report = inspect(index, WINDOWS)

    assert index.read_bytes() == before
    assert [e.classification for e in report.entries] == ["malformed", "ok", "ok"]
    assert [e.index for e in report.malformed] == [0]
    assert [e.index for e in report.flagged] == [0, 1]
    data = report.to_dict()
    assert data["malformed_count"] == 1
    assert data["entries"][0]["normalized"] == "C:\\dev\\my-ai-desktop"


def test_list_projects_missing_file(tmp_path: Path) -> None:
    assert list_projects(tmp_path / "missing.json") == []


def test_add_project_verifies_and_deduplicates(tmp_path: Path) -> None:
    index = tmp_path / "projects.json"
    project = tmp_path / "proj"
    project.mkdir()
    (project / "CLAUDE.md").write_text("# proj\n", encoding="utf-8")

    first = add_project(index, str(project) + "/")
    second = add_project(index, str(project))

    assert first["added"] is True
    assert first["path"] == str(project)
    assert second["added"] is False
    assert read_index(index) == [str(project)]


def test_add_project_rejects_non_claude_directory(tmp_path: Path) -> None:
    index = tmp_path / "projects.json"
    plain = tmp_path / "plain"
    plain.mkdir()

    with pytest.raises(ValueError):
        add_project(index, str(plain))
    with pytest.raises(ValueError):
        add_project(index, str(tmp_path / "missing"))
    assert not index.exists()


def test_add_project_without_verify_normalizes(tmp_path: Path) -> None:
    index = _write_index(tmp_path, ["C:\\a"])

    result = add_project(index, "C:\\dev\\\\\\app\\", WINDOWS, verify=False)

    assert result == {"added": True, "path": "C:\\dev\\app", "message": "Project added"}
    assert read_index(index) == ["C:\\a", "C:\\dev\\app"]


def test_remove_project(tmp_path: Path) -> None:
    index = _write_index(tmp_path, ["C:\\a", "C:\\b", "C:\\a\\"])

    result = remove_project(index, "C:/a")

    assert result["removed"] is True
    assert result["count"] == 2
    assert read_index(index) == ["C:\\b"]


def test_remove_project_not_listed(tmp_path: Path) -> None:
    index = _write_index(tmp_path, ["C:\\a"])
    before = index.read_bytes()

    result = remove_project(index, "C:\\zzz")

    assert result["removed"] is False
    assert index.read_bytes() == before


def test_repair_keeps_posix_entry_with_backslash(tmp_path: Path) -> None:
    index = _write_index(tmp_path, ["/home/me/odd\\name", "/home/me/app"])

    summary = repair(index)

    assert summary.entries == ["/home/me/odd\\name", "/home/me/app"]
    assert summary.removed_count == 0
    assert read_index(index) == ["/home/me/odd\\name", "/home/me/app"]


def test_repair_uses_supplied_entries(tmp_path: Path) -> None:
    index = _write_index(tmp_path, ["C:\\stale"])

    summary = repair(index, WINDOWS, dry_run=True, entries=["C:\\a", "C:\\a\\"])

    assert summary.entries == ["C:\\a"]
    assert summary.original_count == 2


def test_add_and_remove_keep_dollar_in_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("name", "expanded")
    index = _write_index(tmp_path, [])

    added = add_project(index, "C:\\$name\\app", WINDOWS, verify=False)
    removed = remove_project(index, "C:\\$name\\app", WINDOWS)

    assert added["path"] == "C:\\$name\\app"
    assert removed["count"] == 1
    assert read_index(index) == []
