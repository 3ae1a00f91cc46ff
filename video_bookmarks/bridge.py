"""WebSocket bridge between viewer surfaces and the command router.

Viewer pages (the bookmark list, the player overlay) connect over a local
WebSocket and send router requests. Several surfaces may be connected at
once; each request is dispatched and awaited before its response is sent.

Protocol:
  Client -> Server:  {"requestId": "<id>", "action": "<name>", ...payload}
  Server -> Client:  {"requestId": "<id>", "ok": true|false, "data"|"error": ...}
"""
import json
import sys
from typing import Any, Dict, Optional, Set

import websockets
from websockets.asyncio.server import serve as ws_serve

from video_bookmarks.router import CommandRouter, failure


DEFAULT_PORT = 8765
MALFORMED_MESSAGE = "malformed_message"


class BookmarksBridge:
    """Async WebSocket server that forwards viewer requests to the router."""

    def __init__(self, router: CommandRouter, port: int = DEFAULT_PORT, host: str = "localhost"):
        self.router = router
        self.port = port
        self.host = host
        self._server: Optional[Any] = None
        self._clients: Set[Any] = set()
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the WebSocket server (non-blocking).

        Raises:
            OSError: If the port cannot be bound
        """
        self._server = await ws_serve(self._handler, self.host, self.port)
        self._running = True
        print(
            f"[BookmarksBridge] WebSocket server listening on ws://{self.host}:{self.bound_port}",
            file=sys.stderr,
        )

    async def stop(self) -> None:
        """Shut down the WebSocket server."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        self._running = False
        self._clients.clear()

    @property
    def is_running(self) -> bool:
        """True if the WebSocket server is up (even if no client connected)."""
        return self._running

    @property
    def client_count(self) -> int:
        return len(self._clients)

    @property
    def bound_port(self) -> Optional[int]:
        """Actual listening port, useful when started with port 0."""
        if not self._server:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    # ------------------------------------------------------------------
    # WebSocket handler
    # ------------------------------------------------------------------

    async def _handler(self, websocket: Any) -> None:
        """Serve a single viewer connection."""
        self._clients.add(websocket)
        print(
            f"[BookmarksBridge] Viewer connected ({len(self._clients)} total)",
            file=sys.stderr,
        )

        try:
            async for raw in websocket:
                response = await self.handle_message(raw)
                if response is not None:
                    await websocket.send(json.dumps(response, ensure_ascii=False))
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self._clients.discard(websocket)
            print("[BookmarksBridge] Viewer disconnected", file=sys.stderr)

    async def handle_message(self, raw: Any) -> Optional[Dict[str, Any]]:
        """Turn one raw frame into a response, or None for keepalives."""
        try:
            msg = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            return failure(MALFORMED_MESSAGE)

        if not isinstance(msg, dict):
            return failure(MALFORMED_MESSAGE)

        # Keepalive / ping
        if msg.get("type") in ("keepalive", "ping"):
            return None

        request_id = msg.pop("requestId", None)
        response = await self.router.dispatch(msg)
        if request_id is not None:
            response = {"requestId": request_id, **response}
        return response
