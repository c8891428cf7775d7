"""
project_index_repair.paths

Path policy used by the repairer: how an index entry is normalized, how two
normalized entries are compared, and what counts as a corrupted entry.

Index files written by the desktop app on Windows hold backslash paths, and
older builds double-escaped them (``C:\\a\\\\\\b``). Entries are normalized per
flavor:

- windows: ``ntpath.normpath`` (``/`` -> ``\\``, runs collapsed, ``.``/``..``
  resolved, trailing separator dropped except on a drive root)
- posix:   ``posixpath.normpath``
- native:  ``os.path.normpath`` of the running interpreter
- auto:    windows for a drive prefix or a leading backslash; posix for a leading
           ``/``; otherwise windows only when the entry contains a backslash

Comparison is case-sensitive unless ``ignore_case`` is set.
"""

from __future__ import annotations

import ntpath
import os
import posixpath
import re
from dataclasses import dataclass
from typing import Mapping

FLAVORS = ("auto", "windows", "posix", "native")
DEFAULT_WATCH = "my-ai-desktop"

_MALFORMED_RUN = re.compile(r"\\{3,}")
_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")
_ENV_REF = re.compile(
    r"\$\{([^}:]+)(?::-([^}]*))?\}|\$([A-Z_][A-Z0-9_]*)", re.IGNORECASE
)


@dataclass(frozen=True)
class PathPolicy:
    """How entries are normalized and compared."""

    flavor: str = "auto"
    ignore_case: bool = False
    watch: str | None = DEFAULT_WATCH

    def __post_init__(self) -> None:
        if self.flavor not in FLAVORS:
            raise ValueError(
                f"unknown path flavor '{self.flavor}' (expected one of {', '.join(FLAVORS)})"
            )


def detect_flavor(path: str) -> str:
    """
    function_purpose: Guess whether an entry is a Windows or POSIX path.

    A rooted POSIX path stays posix even when a segment holds a literal backslash.
    """
    if _DRIVE_PREFIX.match(path) or path.startswith("\\"):
        return "windows"
    if path.startswith("/"):
        return "posix"
    return "windows" if "\\" in path else "posix"


def normalize_path(path: str, flavor: str = "auto") -> str:
    """
    function_purpose: Canonicalize separators and resolve redundant segments.

    Equivalent entries normalize to the same text; normalizing twice is a no-op.
    """
    if flavor == "auto":
        flavor = detect_flavor(path)
    if flavor == "windows":
        return ntpath.normpath(path)
    if flavor == "posix":
        return posixpath.normpath(path)
    if flavor == "native":
        return os.path.normpath(path)
    raise ValueError(f"unknown path flavor '{flavor}'")


def comparison_key(normalized: str, ignore_case: bool = False) -> str:
    return normalized.casefold() if ignore_case else normalized


def is_malformed(raw: str) -> bool:
    """
    function_purpose: Detect the double-escaping signature (3+ consecutive backslashes).
    """
    return _MALFORMED_RUN.search(raw) is not None


def mentions(raw: str, watch: str | None) -> bool:
    return bool(watch) and watch in raw


def expand_env_vars(value: str, env: Mapping[str, str] | None = None) -> str:
    """
    function_purpose: Expand ${VAR}, ${VAR:-default} and $VAR references.

    Unset or empty variables fall back to the default, or to an empty string.
    """
    if not value:
        return value
    source = os.environ if env is None else env

    def _sub(match: re.Match[str]) -> str:
        name = match.group(1) or match.group(3)
        default = match.group(2) or ""
        return source.get(name) or default

    return _ENV_REF.sub(_sub, value)


def find_env_var_references(value: str) -> list[str]:
    """
    function_purpose: List variable names referenced in a string (unique, in order).
    """
    names: list[str] = []
    for match in _ENV_REF.finditer(value or ""):
        name = match.group(1) or match.group(3)
        if name and name not in names:
            names.append(name)
    return names


def expand_path(path: str, env: Mapping[str, str] | None = None) -> str:
    """
    function_purpose: Expand environment references, then a leading '~', in a user-supplied path.
    """
    expanded = expand_env_vars(path, env)
    if expanded.startswith("~"):
        expanded = os.path.expanduser(expanded)
    return expanded


def expand_home(path: str) -> str:
    """Expand only a leading '~'; '$' is a legal character in project directory names."""
    return os.path.expanduser(path) if path.startswith("~") else path
