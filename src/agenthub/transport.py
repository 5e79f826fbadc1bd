"""Agent transport abstraction.

A transport is one persistent bidirectional connection to one agent. The
core only needs to send events, subscribe to inbound events by kind and be
told when the connection closes. Concrete adapters (WebSocket, MQTT) derive
from :class:`CallbackTransport` and feed it inbound traffic through
:meth:`CallbackTransport.dispatch` and :meth:`CallbackTransport.closed`.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

_logger = logging.getLogger(__name__)

MessageHandler = Callable[[Any], Awaitable[None]]
CloseHandler = Callable[[], Awaitable[None]]


class AgentTransport(Protocol):
    """Structural interface used by the session registry and dispatcher.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production adapters concrete.
    """

    async def send(self, kind: str, payload: dict[str, Any]) -> None:
        """Transmit one event. Raises :class:`agenthub.exceptions.TransportError`."""
        ...

    def on_message(self, kind: str, handler: MessageHandler) -> None: ...

    def on_close(self, handler: CloseHandler) -> None: ...


class CallbackTransport:
    """Handler bookkeeping shared by transport adapters."""

    def __init__(self, *, label: str = "") -> None:
        self.label = label
        self._message_handlers: dict[str, list[MessageHandler]] = {}
        self._close_handlers: list[CloseHandler] = []
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def send(self, kind: str, payload: dict[str, Any]) -> None:
        raise NotImplementedError

    def on_message(self, kind: str, handler: MessageHandler) -> None:
        self._message_handlers.setdefault(kind, []).append(handler)

    def on_close(self, handler: CloseHandler) -> None:
        self._close_handlers.append(handler)

    async def dispatch(self, kind: str, data: Any) -> int:
        """Run every handler registered for *kind*; returns how many ran."""
        handlers = list(self._message_handlers.get(kind, ()))
        if not handlers:
            _logger.debug("No handler for event %s on %s", kind, self.label or self)
            return 0
        for handler in handlers:
            await handler(data)
        return len(handlers)

    async def closed(self) -> None:
        """Signal that the connection is gone; close handlers run once."""
        if self._closed:
            return
        self._closed = True
        handlers = list(self._close_handlers)
        self._close_handlers.clear()
        self._message_handlers.clear()
        for handler in handlers:
            try:
                await handler()
            except Exception:
                _logger.exception("Close handler failed on %s", self.label or self)
