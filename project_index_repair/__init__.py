"""
project_index_repair: maintenance tool for the desktop config manager's project index.

This package inspects and repairs the JSON project index (normalizing paths and
removing duplicates) from the command line or as FastMCP tools.
"""

__version__: str = "0.1.0"


def version() -> str:
    return __version__


__all__: list[str] = ["__version__", "version"]
