"""
project_index_repair.server

Command-line entry point and FastMCP stdio server for repairing the desktop
config manager's project index file.

The project index (default ~/.claude-config-manager-projects.json) is a JSON
array of project paths. Older builds wrote double-escaped Windows paths
(``C:\\\\\\a``) and the same project several times; the desktop app then listed
ghost duplicates. This tool:
  * Reports malformed entries and entries matching a watch substring
  * Normalizes every path and drops duplicates (first occurrence wins)
  * Rewrites the file atomically (temp file + rename), optionally after a backup
  * Lists, adds and removes project entries with the same normalization

The desktop app must re-read the index after it has been rewritten here.

Usage:
- As a script:
  python -m project_index_repair                 # inspect, then repair the configured index
  python -m project_index_repair --inspect       # diagnostics only
  python -m project_index_repair --dry-run       # show what a repair would do
  python -m project_index_repair --serve         # start stdio MCP server

- As a module within MCP client config (stdio):
  command: python
  args: ["-m", "project_index_repair", "--serve"]

Configuration: see project_index_repair.settings.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

from fastmcp import FastMCP

from .paths import FLAVORS
from .repair import (
    LOGGER_NAME,
    DiagnosticReport,
    MalformedInputError,
    ReadError,
    RepairSummary,
    WriteError,
    add_project,
    build_report,
    inspect,
    list_projects,
    read_index,
    remove_project,
    repair,
)
from .settings import Settings, configure_logging, load_settings

SERVER_NAME = LOGGER_NAME

EXIT_OK = 0
EXIT_NOT_FOUND = 3
EXIT_MALFORMED = 4
EXIT_WRITE = 5
EXIT_INVALID = 6
EXIT_READ = 7


mcp = FastMCP(
    SERVER_NAME,
    instructions=(
        "ProjectIndexRepair MCP Server\n"
        "\n"
        "Purpose:\n"
        "- Inspect and repair the desktop config manager's project index, a JSON array of project paths.\n"
        "- Repair normalizes every path, removes duplicates (first occurrence wins) and rewrites the\n"
        "  file atomically.\n"
        "\n"
        "Exposed tools:\n"
        "- project_index_info(): resolved settings (index path, flavor, case handling)\n"
        "- project_index_inspect(): per-entry diagnostics without modifying the file\n"
        "- project_index_repair(dry_run?, backup?): normalize, deduplicate and rewrite\n"
        "- project_index_list(): current entries\n"
        "- project_index_add(path, verify?): add a project path (normalized)\n"
        "- project_index_remove(path): remove a project path from the index (files are untouched)\n"
        "\n"
        "Notes:\n"
        "- Run project_index_inspect before project_index_repair so malformed entries can be reviewed.\n"
        "- The desktop app should be restarted (or reloaded) after a repair.\n"
    ),
)


def _settings_info(settings: Settings) -> dict[str, Any]:
    return {
        "name": SERVER_NAME,
        "index_path": str(settings.index_path),
        "flavor": settings.flavor,
        "ignore_case": settings.ignore_case,
        "watch": settings.watch,
        "backup": settings.backup,
        "backup_dir": str(settings.backup_dir),
        "transport": "stdio",
    }


def _repair_with(
    settings: Settings, dry_run: bool, backup: bool, entries: list[str] | None = None
) -> RepairSummary:
    return repair(
        settings.index_path,
        settings.policy(),
        dry_run=dry_run,
        backup_dir=settings.backup_dir if backup else None,
        ops_log=settings.ops_log_file,
        entries=entries,
    )


@mcp.tool
def project_index_info() -> dict[str, Any]:
    """
    function_purpose: Return the resolved configuration of the repair tool.

    Returns:
    - name, index_path, flavor, ignore_case, watch, backup, backup_dir, transport
    """
    return _settings_info(load_settings())


@mcp.tool
def project_index_inspect() -> dict[str, Any]:
    """
    function_purpose: Classify every entry of the project index without modifying it.

    Returns:
    - path: str
    - total: int
    - malformed_count: int
    - entries: list of {index, raw, normalized, malformed, watched, classification}
    """
    settings = load_settings()
    return inspect(settings.index_path, settings.policy()).to_dict()


@mcp.tool
def project_index_repair(dry_run: bool = False, backup: bool | None = None) -> dict[str, Any]:
    """
    function_purpose: Normalize and deduplicate the project index, then rewrite it atomically.

    Args:
    - dry_run: bool         If True, compute the result without writing (default: False)
    - backup: bool | None   Copy the original to the backup directory first (default: from settings)

    Returns:
    - original_count, final_count, removed_count, malformed_count
    - entries: final list, watched: retained entries matching the watch substring
    - duplicates: dropped entries with the index they collided with
    - written: bool, backup_path: str | None
    """
    settings = load_settings()
    use_backup = settings.backup if backup is None else backup
    return _repair_with(settings, dry_run, use_backup).to_dict()


@mcp.tool
def project_index_list() -> list[str]:
    """
    function_purpose: Return the entries of the project index (empty if the file does not exist).
    """
    return list_projects(load_settings().index_path)


@mcp.tool
def project_index_add(path: str, verify: bool = True) -> dict[str, Any]:
    """
    function_purpose: Add a project path to the index.

    Args:
    - path: str       Project directory; a leading '~' is expanded, other characters are kept
    - verify: bool    Require the directory to exist and contain .claude/ or CLAUDE.md (default: True)

    Returns: {added: bool, path: str, message: str}
    """
    settings = load_settings()
    return add_project(
        settings.index_path, path, settings.policy(), verify=verify, ops_log=settings.ops_log_file
    )


@mcp.tool
def project_index_remove(path: str) -> dict[str, Any]:
    """
    function_purpose: Remove a project path from the index. Project files are not touched.

    Returns: {removed: bool, path: str, count: int, message: str}
    """
    settings = load_settings()
    return remove_project(
        settings.index_path, path, settings.policy(), ops_log=settings.ops_log_file
    )


# --- Console output ---
def print_report(report: DiagnosticReport) -> None:
    print("Before fix:")
    print("Total projects:", report.total)
    for entry in report.flagged:
        label = "BAD " if entry.malformed else "OK  "
        print(f"  {entry.index + 1}. {label} {json.dumps(entry.raw, ensure_ascii=False)}")


def print_summary(summary: RepairSummary) -> None:
    print("\nAfter fix:")
    print("Total projects:", summary.final_count)
    for idx, entry in enumerate(summary.entries):
        if entry in summary.watched:
            print(f"  {idx + 1}. {json.dumps(entry, ensure_ascii=False)}")
    print(f"\nRemoved {summary.removed_count} duplicate(s).")
    if summary.backup_path:
        print("Backup:", summary.backup_path)
    if summary.written:
        print("File updated successfully!")
    else:
        print("Dry run: file not modified.")


def _fail(kind: str, message: str, code: int) -> int:
    print(f"{kind}: {message}", file=sys.stderr)
    return code


# --- Entry points ---
def run(settings: Settings | None = None) -> None:
    """
    function_purpose: Entry point to start the MCP stdio server.
    """
    settings = settings or load_settings()
    logger = configure_logging(settings.log_file)
    logger.info("Server starting with index_path=%s", str(settings.index_path))
    mcp.run()  # stdio transport by default


def build_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="project_index_repair",
        description="Inspect and repair the desktop config manager's project index file.",
    )
    parser.add_argument("--path", metavar="FILE", help="Project index file to operate on")
    parser.add_argument("--config", metavar="FILE", help="YAML settings file")
    parser.add_argument("--flavor", choices=FLAVORS, help="Path normalization flavor")
    parser.add_argument(
        "--ignore-case",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Treat paths differing only by case as duplicates",
    )
    parser.add_argument("--watch", metavar="TEXT", help="Substring to highlight in diagnostics")
    parser.add_argument(
        "--no-watch", action="store_true", help="Disable the watch substring"
    )
    parser.add_argument(
        "--inspect", action="store_true", help="Print diagnostics only; do not modify the file"
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="Compute the repair without writing"
    )
    parser.add_argument(
        "--backup",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Copy the index to the backup directory before rewriting",
    )
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    parser.add_argument("--list", action="store_true", help="List index entries and exit")
    parser.add_argument("--add", metavar="PROJECT", help="Add a project path to the index")
    parser.add_argument("--remove", metavar="PROJECT", help="Remove a project path from the index")
    parser.add_argument(
        "--no-verify",
        action="store_true",
        help="With --add, skip the .claude/ or CLAUDE.md check",
    )
    parser.add_argument("--serve", action="store_true", help="Start MCP stdio server")
    return parser


def _dispatch(args: Any, settings: Settings) -> int:
    logger = configure_logging(settings.log_file)
    policy = settings.policy()
    index_path = settings.index_path

    if args.serve:
        run(settings)
        return EXIT_OK

    if args.list:
        logger.info("Listing projects in %s", index_path)
        print(json.dumps(list_projects(index_path), indent=2, ensure_ascii=False))
        return EXIT_OK

    if args.add:
        logger.info("Adding project: %s", args.add)
        result = add_project(
            index_path, args.add, policy, verify=not args.no_verify, ops_log=settings.ops_log_file
        )
        print(json.dumps(result, indent=2, ensure_ascii=False))
        return EXIT_OK

    if args.remove:
        logger.info("Removing project: %s", args.remove)
        result = remove_project(index_path, args.remove, policy, ops_log=settings.ops_log_file)
        print(json.dumps(result, indent=2, ensure_ascii=False))
        return EXIT_OK

    # Diagnostics always come before the rewrite so an operator can abort.
    entries = read_index(index_path)
    report = build_report(index_path, entries, policy)
    if args.inspect:
        if args.json:
            print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
        else:
            print_report(report)
        return EXIT_OK

    if not args.json:
        print_report(report)
    summary = _repair_with(settings, args.dry_run, settings.backup, entries)
    if args.json:
        payload = {"report": report.to_dict(), "summary": summary.to_dict()}
        print(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        print_summary(summary)
    return EXIT_OK


def cli_main(argv: list[str] | None = None) -> int:
    """
    function_purpose: CLI for inspecting and repairing the project index.

    Usage:
      python -m project_index_repair [--path FILE] [--dry-run] [--[no-]backup] [--[no-]ignore-case] [--json]
      python -m project_index_repair --inspect
      python -m project_index_repair --list
      python -m project_index_repair --add <PROJECT> [--no-verify]
      python -m project_index_repair --remove <PROJECT>
      python -m project_index_repair --serve

    Exit codes: 0 ok, 2 usage, 3 index not found, 4 malformed index,
    5 write failure, 6 invalid settings or arguments, 7 index unreadable.
    """
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(Path(args.config) if args.config else None)
        settings = settings.with_overrides(
            index_path=args.path,
            flavor=args.flavor,
            ignore_case=args.ignore_case,
            watch=args.watch,
            backup=args.backup,
        )
        if args.no_watch:
            settings = settings.with_overrides(watch="")
    except ValueError as exc:
        return _fail("ConfigError", str(exc), EXIT_INVALID)

    try:
        return _dispatch(args, settings)
    except FileNotFoundError as exc:
        return _fail(
            "FileNotFoundError",
            f"{exc.filename or settings.index_path}: index file not found",
            EXIT_NOT_FOUND,
        )
    except ReadError as exc:
        return _fail("ReadError", str(exc), EXIT_READ)
    except MalformedInputError as exc:
        return _fail("MalformedInputError", str(exc), EXIT_MALFORMED)
    except WriteError as exc:
        return _fail("WriteError", str(exc), EXIT_WRITE)
    except ValueError as exc:
        return _fail("ValueError", str(exc), EXIT_INVALID)


def main() -> None:
    sys.exit(cli_main())


if __name__ == "__main__":
    main()
