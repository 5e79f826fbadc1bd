"""aiohttp WebSocket endpoint agents connect to.

Agents open ``GET /agent?id=<id>&model=..&manf=..&release=..`` and exchange
JSON text frames of the form ``{"event": <kind>, "data": <payload>}``.
Binary buffers travel base64-encoded inside ``data``.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any

import aiohttp
from aiohttp import web

from agenthub._constants import WELCOME_EVENT
from agenthub.config import HubConfig
from agenthub.exceptions import StorageIOError, TransportError
from agenthub.hub import AgentHub
from agenthub.transport import CallbackTransport

_logger = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    return str(value)


def encode_frame(event: str, data: Any) -> str:
    return json.dumps({"event": event, "data": data}, default=_json_default)


def decode_frame(text: str) -> tuple[str, Any]:
    """Split a text frame into ``(event, data)``.

    Raises
    ------
    ValueError
        The frame is not JSON or has no ``event`` string.
    """
    frame = json.loads(text)
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        raise ValueError("frame must be an object with an 'event' string")
    return frame["event"], frame.get("data")


def connect_metadata(request: web.Request) -> dict[str, Any]:
    """Build an agent's ``dynamicData`` from its upgrade request."""
    query = request.query
    return {
        "clientIP": request.remote,
        "device": {
            "model": query.get("model"),
            "manufacture": query.get("manf"),
            "version": query.get("release"),
        },
    }


class WebSocketTransport(CallbackTransport):
    """:class:`AgentTransport` over one aiohttp WebSocket."""

    def __init__(self, ws: web.WebSocketResponse, *, label: str = "") -> None:
        super().__init__(label=label)
        self._ws = ws

    async def send(self, kind: str, payload: dict[str, Any]) -> None:
        if self.is_closed or self._ws.closed:
            raise TransportError(f"WebSocket for {self.label} is closed")
        try:
            await self._ws.send_str(encode_frame(kind, payload))
        except (ConnectionError, RuntimeError) as exc:
            raise TransportError(f"WebSocket send to {self.label} failed: {exc}") from exc
        _logger.debug("Sent %s to %s", kind, self.label)


class AgentServer:
    """Serves the agent WebSocket endpoint and a health check."""

    def __init__(self, hub: AgentHub, config: HubConfig | None = None) -> None:
        self._hub = hub
        self._config = config or hub.config
        self._sockets: set[web.WebSocketResponse] = set()
        self._runner: web.AppRunner | None = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/agent", self.handle_agent)
        app.router.add_get("/health", self.handle_health)
        app.on_shutdown.append(self._on_shutdown)
        return app

    async def handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({"status": "healthy", **self._hub.get_stats().to_document()})

    async def handle_agent(self, request: web.Request) -> web.StreamResponse:
        agent_id = request.query.get("id", "").strip()
        if not agent_id:
            return web.json_response({"error": "Missing agent id"}, status=400)

        ws = web.WebSocketResponse(heartbeat=self._config.ws_heartbeat)
        await ws.prepare(request)
        self._sockets.add(ws)
        transport = WebSocketTransport(ws, label=agent_id)
        try:
            await transport.send(WELCOME_EVENT, {})
            await self._hub.connect(transport, agent_id, connect_metadata(request))
        except (TransportError, StorageIOError) as exc:
            _logger.error("Rejecting connection from %s: %s", agent_id, exc)
            self._sockets.discard(ws)
            await ws.close()
            return ws

        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._handle_text(transport, msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    _logger.warning("WebSocket error from %s: %s", agent_id, ws.exception())
        finally:
            self._sockets.discard(ws)
            await transport.closed()
        return ws

    async def _handle_text(self, transport: WebSocketTransport, text: str) -> None:
        try:
            event, data = decode_frame(text)
        except ValueError as exc:
            _logger.warning("Malformed frame from %s: %s", transport.label, exc)
            return
        await transport.dispatch(event, data)

    async def _on_shutdown(self, _app: web.Application) -> None:
        for ws in list(self._sockets):
            await ws.close(code=aiohttp.WSCloseCode.GOING_AWAY, message=b"Server shutdown")

    async def start(self) -> None:
        app = self.create_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()
        _logger.info("Agent server listening on %s:%s", self._config.host, self._config.port)

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        _logger.info("Agent server stopped")
