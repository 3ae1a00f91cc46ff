"""MCP server exposing the video bookmark store."""
import json
import sys
from typing import Any, Dict, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from video_bookmarks.bridge import BookmarksBridge
from video_bookmarks.config import get_config
from video_bookmarks.errors import MalformedInterchange, ValidationError
from video_bookmarks.interchange import export_bookmarks, parse_interchange
from video_bookmarks.router import CommandRouter
from video_bookmarks.schema import new_bookmark
from video_bookmarks.store import get_bookmark_store
from video_bookmarks.view import (
    GROUP_SORT_ORDERS,
    NEWEST_FIRST,
    PAGE_SIZES,
    SORT_KEYS,
    SORT_DIRECTIONS,
    SubjectSort,
    ViewState,
    build_view,
    collect_tags,
    view_to_dict,
)


# Global state
_router: Optional[CommandRouter] = None


async def get_router() -> CommandRouter:
    """Get or create the router over the global bookmark store."""
    global _router

    if _router is None:
        _router = CommandRouter(await get_bookmark_store())

    return _router


def _text(payload: Any) -> List[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2, ensure_ascii=False))]


def _error(message: str) -> List[TextContent]:
    return [TextContent(type="text", text=f"Error: {message}")]


def _envelope(response: Dict[str, Any]) -> List[TextContent]:
    if not response["ok"]:
        return _error(response["error"])
    return _text(response.get("data", {"ok": True}))


_ID_PROPERTY = {"type": "integer", "description": "Bookmark id"}

TOOLS = [
    Tool(
        name="health_check",
        description="Report whether the bookmark database is reachable and how many bookmarks it holds.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="add_bookmark",
        description="Add a timestamped bookmark to a video. Returns the assigned id.",
        inputSchema={
            "type": "object",
            "properties": {
                "subject_id": {"type": "string", "description": "Video identifier"},
                "time": {"type": "integer", "description": "Position in seconds"},
                "subject_title": {"type": "string", "description": "Video title"},
                "note": {"type": "string"},
                "subtitle": {"type": "string", "description": "Transcript text at this position"},
                "color": {"type": "string", "description": "Marker color token"},
                "tags": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["subject_id", "time"],
        },
    ),
    Tool(
        name="list_bookmarks",
        description="List raw bookmark records, optionally only those of one video.",
        inputSchema={
            "type": "object",
            "properties": {
                "subject_id": {"type": "string", "description": "Only bookmarks of this video"},
            },
        },
    ),
    Tool(
        name="browse_bookmarks",
        description=(
            "Browse bookmarks grouped by video with search, tag filter, ordering and pagination. "
            "Search matches title, note, subtitle (substring) or a tag (exact)."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "search": {"type": "string"},
                "tag": {"type": "string", "description": "Only bookmarks carrying this tag"},
                "order": {"type": "string", "enum": list(GROUP_SORT_ORDERS)},
                "sort_key": {
                    "type": "string",
                    "enum": list(SORT_KEYS),
                    "description": "Sort key applied inside every group",
                },
                "sort_direction": {"type": "string", "enum": list(SORT_DIRECTIONS)},
                "page": {"type": "integer", "minimum": 1},
                "page_size": {"type": "integer", "enum": list(PAGE_SIZES)},
            },
        },
    ),
    Tool(
        name="list_tags",
        description="List every distinct tag in use.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="update_bookmark",
        description="Change fields of a bookmark (note, subtitle, color, tags, subject title, time).",
        inputSchema={
            "type": "object",
            "properties": {
                "id": _ID_PROPERTY,
                "patch": {"type": "object", "description": "Fields to replace"},
            },
            "required": ["id", "patch"],
        },
    ),
    Tool(
        name="delete_bookmark",
        description="Delete a bookmark by id.",
        inputSchema={
            "type": "object",
            "properties": {"id": _ID_PROPERTY},
            "required": ["id"],
        },
    ),
    Tool(
        name="set_subject_tags",
        description="Replace the tags on every bookmark of a video.",
        inputSchema={
            "type": "object",
            "properties": {
                "subject_id": {"type": "string"},
                "tags": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["subject_id", "tags"],
        },
    ),
    Tool(
        name="clear_bookmarks",
        description="Delete ALL bookmarks. Requires confirm=true.",
        inputSchema={
            "type": "object",
            "properties": {"confirm": {"type": "boolean"}},
            "required": ["confirm"],
        },
    ),
    Tool(
        name="import_bookmarks",
        description="Import bookmarks from exported JSON text (ids are reassigned).",
        inputSchema={
            "type": "object",
            "properties": {"json": {"type": "string", "description": "JSON array of bookmarks"}},
            "required": ["json"],
        },
    ),
    Tool(
        name="export_bookmarks",
        description="Export every bookmark as a JSON array.",
        inputSchema={"type": "object", "properties": {}},
    ),
]


def _view_state(arguments: Dict[str, Any], records: List[Dict[str, Any]]) -> ViewState:
    subject_sorts = {}
    sort_key = arguments.get("sort_key")
    if sort_key:
        direction = arguments.get("sort_direction") or ("desc" if sort_key == "addedAt" else "asc")
        sort = SubjectSort(sort_key, direction)
        subject_sorts = {record.get("subjectId"): sort for record in records}

    return ViewState(
        search_query=arguments.get("search") or "",
        tag_filter=arguments.get("tag") or None,
        group_sort_order=arguments.get("order") or NEWEST_FIRST,
        subject_sorts=subject_sorts,
        page=int(arguments.get("page") or 1),
        page_size=int(arguments.get("page_size") or get_config().default_page_size),
    )


async def call_bookmark_tool(router: CommandRouter, name: str, arguments: Dict[str, Any]) -> List[TextContent]:
    """Run one tool against a router.

    Args:
        router: Router over the bookmark store
        name: Tool name
        arguments: Tool arguments

    Returns:
        Text content with JSON results or an error message
    """
    arguments = arguments or {}

    if name == "health_check":
        response = await router.dispatch({"action": "list-all"})
        if not response["ok"]:
            return _text({"status": "error", "error": response["error"]})
        return _text({
            "status": "ok",
            "database": str(router.store.db_path),
            "bookmarks": len(response["data"]),
        })

    if name == "add_bookmark":
        try:
            record = new_bookmark(
                subject_id=arguments.get("subject_id", ""),
                time=arguments.get("time", 0),
                subject_title=arguments.get("subject_title"),
                note=arguments.get("note", ""),
                subtitle=arguments.get("subtitle", ""),
                color=arguments.get("color") or "yellow",
                tags=arguments.get("tags"),
            )
        except ValidationError as e:
            return _error(str(e))
        return _envelope(await router.dispatch({"action": "add-bookmark", "data": record}))

    if name == "list_bookmarks":
        return _envelope(await router.dispatch({
            "action": "list-all",
            "subjectId": arguments.get("subject_id"),
        }))

    if name == "browse_bookmarks":
        response = await router.dispatch({"action": "list-all"})
        if not response["ok"]:
            return _error(response["error"])
        records = response["data"]
        try:
            state = _view_state(arguments, records)
        except ValueError as e:
            return _error(str(e))
        return _text(view_to_dict(build_view(records, state)))

    if name == "list_tags":
        response = await router.dispatch({"action": "list-all"})
        if not response["ok"]:
            return _error(response["error"])
        return _text(collect_tags(response["data"]))

    if name == "update_bookmark":
        return _envelope(await router.dispatch({
            "action": "update-bookmark",
            "id": arguments.get("id"),
            "patch": arguments.get("patch"),
        }))

    if name == "delete_bookmark":
        return _envelope(await router.dispatch({
            "action": "delete-bookmark",
            "id": arguments.get("id"),
        }))

    if name == "set_subject_tags":
        return _envelope(await router.dispatch({
            "action": "set-subject-tags",
            "subjectId": arguments.get("subject_id"),
            "tags": arguments.get("tags"),
        }))

    if name == "clear_bookmarks":
        if arguments.get("confirm") is not True:
            return _error("clear_bookmarks requires confirm=true")
        return _envelope(await router.dispatch({"action": "clear-bookmarks"}))

    if name == "import_bookmarks":
        try:
            items = parse_interchange(arguments.get("json", ""))
        except MalformedInterchange as e:
            return _error(str(e))
        return _envelope(await router.dispatch({"action": "import-bookmarks", "items": items}))

    if name == "export_bookmarks":
        response = await router.dispatch({"action": "list-all"})
        if not response["ok"]:
            return _error(response["error"])
        return [TextContent(type="text", text=export_bookmarks(response["data"]))]

    raise ValueError(f"Unknown tool: {name}")


def create_server() -> Server:
    """Create and configure the MCP server.

    Returns:
        Configured Server instance
    """
    server = Server("video-bookmarks-mcp")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List available tools."""
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: Any) -> list[TextContent]:
        """Handle tool calls."""
        router = await get_router()
        return await call_bookmark_tool(router, name, arguments)

    return server


async def main():
    """Main entry point: MCP over stdio plus the viewer WebSocket bridge."""
    server = create_server()
    router = await get_router()
    bridge = BookmarksBridge(router, port=get_config().bridge_port)

    try:
        await bridge.start()
    except OSError as e:
        print(
            f"[BookmarksBridge] Could not start WebSocket server on port {bridge.port}: {e}",
            file=sys.stderr,
        )

    try:
        async with stdio_server() as (read_stream, write_stream):
            initialization_options = server.create_initialization_options()
            await server.run(read_stream, write_stream, initialization_options)
    finally:
        await bridge.stop()
        await router.store.close()
