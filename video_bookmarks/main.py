"""Main entry point for the video bookmarks MCP server."""
import asyncio

from video_bookmarks.server import main


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
