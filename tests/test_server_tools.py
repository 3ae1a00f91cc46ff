"""Tests for MCP server tool registration and tool handlers."""
import asyncio
import json

import pytest
import pytest_asyncio

from video_bookmarks.router import CommandRouter
from video_bookmarks.server import call_bookmark_tool, create_server


@pytest_asyncio.fixture
async def router(store):
    return CommandRouter(store)


async def call(router, name, **arguments):
    result = await call_bookmark_tool(router, name, arguments)
    return result[0].text


class TestServerTools:
    def test_server_creates(self):
        server = create_server()
        assert server.name == "video-bookmarks-mcp"

    def test_all_tools_registered(self):
        from mcp.types import ListToolsRequest

        server = create_server()

        async def check():
            result = await server.request_handlers[ListToolsRequest](None)
            return result.root.tools

        tools = asyncio.run(check())
        tool_names = [t.name for t in tools]

        expected = [
            "health_check",
            "add_bookmark",
            "list_bookmarks",
            "browse_bookmarks",
            "list_tags",
            "update_bookmark",
            "delete_bookmark",
            "set_subject_tags",
            "clear_bookmarks",
            "import_bookmarks",
            "export_bookmarks",
        ]

        assert len(tools) == 11
        for name in expected:
            assert name in tool_names, f"Missing tool: {name}"


@pytest.mark.asyncio
class TestToolHandlers:
    async def test_health_check(self, router):
        data = json.loads(await call(router, "health_check"))
        assert data["status"] == "ok"
        assert data["bookmarks"] == 0

    async def test_add_and_list(self, router):
        added = json.loads(await call(router, "add_bookmark", subject_id="abc", time=75, note="hi"))
        listed = json.loads(await call(router, "list_bookmarks", subject_id="abc"))
        assert [r["id"] for r in listed] == [added["id"]]
        assert listed[0]["timeLabel"] == "1:15"
        assert listed[0]["color"] == "yellow"

    async def test_add_requires_subject(self, router):
        text = await call(router, "add_bookmark", subject_id="", time=1)
        assert text.startswith("Error:")

    async def test_browse_groups_and_paginates(self, router, sample_records):
        await router.dispatch({"action": "import-bookmarks", "items": sample_records})
        view = json.loads(await call(router, "browse_bookmarks", page_size=5))
        assert view["totalGroups"] == 3
        assert [g["subjectId"] for g in view["groups"]] == ["jNQXAC9IVRw", "9bZkp7q19f0", "dQw4w9WgXcQ"]

        filtered = json.loads(await call(router, "browse_bookmarks", tag="music", sort_key="time"))
        assert len(filtered["groups"]) == 1
        assert [b["time"] for b in filtered["groups"][0]["bookmarks"]] == [43, 120]

    async def test_browse_rejects_bad_page_size(self, router):
        text = await call(router, "browse_bookmarks", page_size=7)
        assert text.startswith("Error:")

    async def test_list_tags(self, router, sample_records):
        await router.dispatch({"action": "import-bookmarks", "items": sample_records})
        assert json.loads(await call(router, "list_tags")) == ["dance", "history", "music", "rickroll"]

    async def test_update_and_delete(self, router):
        added = json.loads(await call(router, "add_bookmark", subject_id="abc", time=1))
        updated = json.loads(await call(router, "update_bookmark", id=added["id"], patch={"note": "x"}))
        assert updated == {"found": True}
        deleted = json.loads(await call(router, "delete_bookmark", id=added["id"]))
        assert deleted == {"found": True}

    async def test_set_subject_tags(self, router):
        await call(router, "add_bookmark", subject_id="abc", time=1)
        await call(router, "add_bookmark", subject_id="abc", time=2)
        result = json.loads(await call(router, "set_subject_tags", subject_id="abc", tags=["x"]))
        assert result == {"updated": 2}

    async def test_clear_requires_confirm(self, router):
        await call(router, "add_bookmark", subject_id="abc", time=1)
        assert (await call(router, "clear_bookmarks", confirm=False)).startswith("Error:")
        assert json.loads(await call(router, "clear_bookmarks", confirm=True)) == {"cleared": 1}

    async def test_export_then_import(self, router, sample_records):
        await router.dispatch({"action": "import-bookmarks", "items": sample_records})
        exported = await call(router, "export_bookmarks")
        assert len(json.loads(exported)) == len(sample_records)

        result = json.loads(await call(router, "import_bookmarks", json=exported))
        assert result == {"imported": len(sample_records)}

    async def test_import_malformed(self, router):
        text = await call(router, "import_bookmarks", json="{oops")
        assert text.startswith("Error: Invalid bookmark file")

    async def test_unknown_tool(self, router):
        with pytest.raises(ValueError, match="Unknown tool"):
            await call_bookmark_tool(router, "explode", {})
