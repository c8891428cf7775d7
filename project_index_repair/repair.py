"""
project_index_repair.repair

Inspection and repair of the project index file: a JSON array of absolute
project paths shared with the desktop config manager.

Lifecycle of a repair: read -> normalize -> deduplicate -> persist. Reading
and parsing happen before anything touches the disk, so a malformed file is
never rewritten. Persisting goes through a temporary file in the same
directory followed by ``os.replace``; the original is either fully replaced
or left untouched.

The routine assumes exclusive access to the file. Two processes repairing the
same file at once is unsupported.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import shutil
import tempfile
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .paths import (
    PathPolicy,
    comparison_key,
    expand_home,
    is_malformed,
    mentions,
    normalize_path,
)

LOGGER_NAME = "ProjectIndexRepair"
logger = logging.getLogger(LOGGER_NAME)


# --- Errors ---
class ProjectIndexError(Exception):
    """Base class for project index failures."""

    def __init__(
        self,
        message: str,
        path: Path | str | None = None,
        line: int | None = None,
        column: int | None = None,
        index: int | None = None,
    ) -> None:
        super().__init__(message)
        self.path = str(path) if path is not None else None
        self.line = line
        self.column = column
        self.index = index


class MalformedInputError(ProjectIndexError, ValueError):
    """The index file is not a JSON array of strings."""


class ReadError(ProjectIndexError, OSError):
    """The index file exists but could not be read (directory, permissions, I/O)."""


class WriteError(ProjectIndexError, OSError):
    """The repaired index (or its backup) could not be written."""


# --- Results ---
@dataclass
class DiagnosticEntry:
    index: int
    raw: str
    normalized: str
    malformed: bool
    watched: bool

    @property
    def classification(self) -> str:
        return "malformed" if self.malformed else "ok"


@dataclass
class DiagnosticReport:
    """Per-entry classification of an index file, produced without mutating it."""

    path: str
    total: int
    entries: list[DiagnosticEntry] = field(default_factory=list)

    @property
    def malformed(self) -> list[DiagnosticEntry]:
        return [e for e in self.entries if e.malformed]

    @property
    def flagged(self) -> list[DiagnosticEntry]:
        """Entries worth showing an operator: malformed or matching the watch substring."""
        return [e for e in self.entries if e.malformed or e.watched]

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "total": self.total,
            "malformed_count": len(self.malformed),
            "entries": [
                dict(asdict(e), classification=e.classification) for e in self.entries
            ],
        }


@dataclass
class RepairSummary:
    path: str
    original_count: int
    final_count: int
    malformed_count: int = 0
    entries: list[str] = field(default_factory=list)
    watched: list[str] = field(default_factory=list)
    duplicates: list[dict[str, Any]] = field(default_factory=list)
    written: bool = False
    backup_path: str | None = None

    @property
    def removed_count(self) -> int:
        return self.original_count - self.final_count

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["removed_count"] = self.removed_count
        return data


# --- Reading ---
def read_index(index_path: Path) -> list[str]:
    """
    function_purpose: Load and validate the index file as a JSON array of strings.

    Raises:
    - FileNotFoundError     the file does not exist
    - ReadError             any other OS error while reading
    - MalformedInputError   undecodable text, invalid JSON, or wrong shape
    """
    index_path = Path(index_path)
    try:
        with open(index_path, "r", encoding="utf-8") as handle:
            text = handle.read()
    except UnicodeDecodeError as exc:
        raise MalformedInputError(
            f"{index_path}: not valid UTF-8 text at byte {exc.start}",
            path=index_path,
        ) from exc
    except FileNotFoundError:
        raise
    except OSError as exc:
        raise ReadError(
            f"{index_path}: cannot read index: {exc.strerror or exc}", path=index_path
        ) from exc

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedInputError(
            f"{index_path}: invalid JSON at line {exc.lineno} column {exc.colno} "
            f"(char {exc.pos}): {exc.msg}",
            path=index_path,
            line=exc.lineno,
            column=exc.colno,
        ) from exc

    if not isinstance(data, list):
        raise MalformedInputError(
            f"{index_path}: top-level value must be an array, got {type(data).__name__}",
            path=index_path,
        )
    for idx, item in enumerate(data):
        if not isinstance(item, str):
            raise MalformedInputError(
                f"{index_path}: entry {idx} must be a string, got {type(item).__name__}",
                path=index_path,
                index=idx,
            )
    return data


# --- Transformation ---
def diagnose(entries: list[str], policy: PathPolicy) -> list[DiagnosticEntry]:
    return [
        DiagnosticEntry(
            index=idx,
            raw=raw,
            normalized=normalize_path(raw, policy.flavor),
            malformed=is_malformed(raw),
            watched=mentions(raw, policy.watch),
        )
        for idx, raw in enumerate(entries)
    ]


def deduplicate(
    entries: list[str], policy: PathPolicy
) -> tuple[list[str], list[dict[str, Any]]]:
    """
    function_purpose: Normalize entries and keep only the first occurrence of each.

    Returns (kept, duplicates) where kept preserves first-occurrence order and
    duplicates records every dropped entry with the index it collided with.
    """
    seen: dict[str, int] = {}
    kept: list[str] = []
    duplicates: list[dict[str, Any]] = []
    for idx, raw in enumerate(entries):
        normalized = normalize_path(raw, policy.flavor)
        key = comparison_key(normalized, policy.ignore_case)
        if key in seen:
            duplicates.append(
                {
                    "index": idx,
                    "raw": raw,
                    "normalized": normalized,
                    "duplicate_of": seen[key],
                }
            )
            continue
        seen[key] = idx
        kept.append(normalized)
    return kept, duplicates


# --- Persistence ---
def serialize_index(entries: list[str]) -> str:
    return json.dumps(entries, indent=2, ensure_ascii=False)


def write_index_atomic(index_path: Path, entries: list[str]) -> None:
    """
    function_purpose: Replace the index file atomically with the given entries.

    Writes to a sibling temporary file, fsyncs it, copies the original's mode
    bits and renames it over the target. The temporary file is removed on any
    failure and the original content is left as it was.
    """
    index_path = Path(index_path)
    content = serialize_index(entries)

    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{index_path.name}.", suffix=".tmp", dir=index_path.parent
        )
    except OSError as exc:
        raise WriteError(
            f"{index_path}: cannot create temporary file: {exc}", path=index_path
        ) from exc

    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        if index_path.exists():
            shutil.copymode(index_path, tmp_path)
        os.replace(tmp_path, index_path)
    except OSError as exc:
        with contextlib.suppress(OSError):
            tmp_path.unlink()
        raise WriteError(f"{index_path}: write failed: {exc}", path=index_path) from exc


def backup_index(index_path: Path, backup_dir: Path) -> Path:
    """
    function_purpose: Copy the current index file to a timestamped backup before rewriting it.
    """
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    target = Path(backup_dir) / f"{ts}__{Path(index_path).name}"
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(index_path, target)
    except OSError as exc:
        raise WriteError(
            f"{index_path}: backup to {target} failed: {exc}", path=index_path
        ) from exc
    logger.info("Backed up %s to %s", index_path, target)
    return target


def log_operation(ops_log: Path | None, op: str, payload: dict[str, Any]) -> None:
    """
    function_purpose: Append a single JSON line describing a rewrite of the index file.
    """
    if ops_log is None:
        return

    ts = datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")
    record = {"ts": ts, "op": op}
    record.update(payload)

    try:
        ops_log = Path(ops_log)
        ops_log.parent.mkdir(parents=True, exist_ok=True)
        with open(ops_log, "a", encoding="utf-8") as f:
            _ = f.write(json.dumps(record, ensure_ascii=False) + "\n")
    except OSError:
        # The rewrite already succeeded; an audit failure must not report otherwise.
        logger.warning("Failed to write operation log entry", exc_info=True)


# --- Operations ---
def build_report(
    index_path: Path, entries: list[str], policy: PathPolicy | None = None
) -> DiagnosticReport:
    """Classify already-read entries; lets a caller inspect and repair from one read."""
    policy = policy or PathPolicy()
    report = DiagnosticReport(
        path=str(index_path), total=len(entries), entries=diagnose(entries, policy)
    )
    logger.info(
        "Inspected %s: %d entries, %d malformed",
        index_path,
        report.total,
        len(report.malformed),
    )
    return report


def inspect(index_path: Path, policy: PathPolicy | None = None) -> DiagnosticReport:
    """
    function_purpose: Classify every entry of the index file without modifying it.
    """
    return build_report(index_path, read_index(index_path), policy)


def repair(
    index_path: Path,
    policy: PathPolicy | None = None,
    dry_run: bool = False,
    backup_dir: Path | None = None,
    ops_log: Path | None = None,
    entries: list[str] | None = None,
) -> RepairSummary:
    """
    function_purpose: Normalize, deduplicate and atomically rewrite the index file.

    Args:
    - index_path: Path         JSON array of project paths
    - policy: PathPolicy       normalization flavor, case handling, watch substring
    - dry_run: bool            compute the summary without writing anything
    - backup_dir: Path | None  copy the original here before rewriting
    - ops_log: Path | None     JSON-lines audit log of rewrites
    - entries: list | None     entries already read from index_path (read here when None)

    Returns a RepairSummary. The first occurrence of each normalized path wins.
    """
    policy = policy or PathPolicy()
    index_path = Path(index_path)
    if entries is None:
        entries = read_index(index_path)
    kept, duplicates = deduplicate(entries, policy)

    summary = RepairSummary(
        path=str(index_path),
        original_count=len(entries),
        final_count=len(kept),
        malformed_count=sum(1 for raw in entries if is_malformed(raw)),
        entries=kept,
        watched=[p for p in kept if mentions(p, policy.watch)],
        duplicates=duplicates,
    )

    if dry_run:
        logger.info(
            "Dry run on %s: would keep %d of %d entries",
            index_path,
            summary.final_count,
            summary.original_count,
        )
        return summary

    if backup_dir is not None:
        summary.backup_path = str(backup_index(index_path, backup_dir))

    write_index_atomic(index_path, kept)
    summary.written = True
    logger.info(
        "Repaired %s: %d -> %d entries (%d removed)",
        index_path,
        summary.original_count,
        summary.final_count,
        summary.removed_count,
    )
    log_operation(
        ops_log,
        "project_index_repair",
        {
            "path": str(index_path),
            "original_count": summary.original_count,
            "final_count": summary.final_count,
            "backup_path": summary.backup_path,
        },
    )
    return summary


def list_projects(index_path: Path) -> list[str]:
    """
    function_purpose: Return the entries of the index file; a missing file is an empty list.
    """
    try:
        return read_index(index_path)
    except FileNotFoundError:
        return []


def is_claude_project(project_dir: Path) -> bool:
    return (project_dir / ".claude").exists() or (project_dir / "CLAUDE.md").exists()


def add_project(
    index_path: Path,
    project: str,
    policy: PathPolicy | None = None,
    verify: bool = True,
    ops_log: Path | None = None,
) -> dict[str, Any]:
    """
    function_purpose: Add a project path to the index, normalized, unless already present.

    With verify=True the directory must exist and contain .claude/ or CLAUDE.md.
    """
    policy = policy or PathPolicy()
    if not project or not project.strip():
        raise ValueError("project path must be a non-empty string")

    expanded = expand_home(project.strip())
    normalized = normalize_path(expanded, policy.flavor)

    if verify:
        project_dir = Path(expanded)
        if not project_dir.is_dir():
            raise ValueError(f"project directory does not exist: {expanded}")
        if not is_claude_project(project_dir):
            raise ValueError(
                f"not a Claude project (expected .claude/ or CLAUDE.md): {expanded}"
            )

    entries = list_projects(index_path)
    key = comparison_key(normalized, policy.ignore_case)
    for existing in entries:
        if comparison_key(normalize_path(existing, policy.flavor), policy.ignore_case) == key:
            return {"added": False, "path": normalized, "message": "Project already listed"}

    entries.append(normalized)
    write_index_atomic(Path(index_path), entries)
    logger.info("Added project %s to %s", normalized, index_path)
    log_operation(ops_log, "project_index_add", {"path": str(index_path), "project": normalized})
    return {"added": True, "path": normalized, "message": "Project added"}


def remove_project(
    index_path: Path,
    project: str,
    policy: PathPolicy | None = None,
    ops_log: Path | None = None,
) -> dict[str, Any]:
    """
    function_purpose: Remove every entry that normalizes to the given project path.

    Only the index entry is removed; the project directory is not touched.
    """
    policy = policy or PathPolicy()
    normalized = normalize_path(expand_home(project.strip()), policy.flavor)
    key = comparison_key(normalized, policy.ignore_case)

    entries = read_index(index_path)
    remaining = [
        e
        for e in entries
        if comparison_key(normalize_path(e, policy.flavor), policy.ignore_case) != key
    ]
    removed = len(entries) - len(remaining)
    if not removed:
        return {"removed": False, "path": normalized, "count": 0, "message": "Project not listed"}

    write_index_atomic(Path(index_path), remaining)
    logger.info("Removed %d entries for %s from %s", removed, normalized, index_path)
    log_operation(
        ops_log,
        "project_index_remove",
        {"path": str(index_path), "project": normalized, "count": removed},
    )
    return {"removed": True, "path": normalized, "count": removed, "message": "Project removed"}
