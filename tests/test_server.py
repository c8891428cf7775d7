from __future__ import annotations

import asyncio
import json
from pathlib import Path

from fastmcp import Client

from project_index_repair.server import mcp

EXPECTED_TOOLS = {
    "project_index_info",
    "project_index_inspect",
    "project_index_repair",
    "project_index_list",
    "project_index_add",
    "project_index_remove",
}


def test_tools_are_registered() -> None:
    async def _names() -> set[str]:
        async with Client(mcp) as client:
            tools = await client.list_tools()
            return {t.name for t in tools}

    assert EXPECTED_TOOLS <= asyncio.run(_names())


def test_repair_tool_rewrites_configured_index(isolated_env: Path) -> None:
    isolated_env.write_text(json.dumps(["C:\\x\\", "C:\\y", "C:\\x"]), encoding="utf-8")

    async def _call() -> dict:
        async with Client(mcp) as client:
            result = await client.call_tool("project_index_repair", {"dry_run": False})
            return result.structured_content

    payload = asyncio.run(_call())

    assert payload["entries"] == ["C:\\x", "C:\\y"]
    assert payload["removed_count"] == 1
    assert json.loads(isolated_env.read_text(encoding="utf-8")) == ["C:\\x", "C:\\y"]


def test_inspect_tool_reports_malformed_entries(isolated_env: Path) -> None:
    isolated_env.write_text(json.dumps(["C:\\\\\\\\a", "C:\\b"]), encoding="utf-8")

    async def _call() -> dict:
        async with Client(mcp) as client:
            result = await client.call_tool("project_index_inspect", {})
            return result.structured_content

    payload = asyncio.run(_call())

    assert payload["total"] == 2
    assert payload["malformed_count"] == 1
    assert payload["entries"][0]["classification"] == "malformed"
