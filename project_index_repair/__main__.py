"""
Package entry point for the project index repair tool.

This allows running:
  - python -m project_index_repair            -> inspect and repair the configured index
  - python -m project_index_repair --serve    -> start the stdio MCP server

The entry point delegates to project_index_repair.server.cli_main().
"""

import sys

from project_index_repair.server import cli_main


def main() -> None:
    sys.exit(cli_main())


if __name__ == "__main__":
    main()
