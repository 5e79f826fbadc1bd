"""Ingestion layer.

Handlers that receive telemetry pushed by agents and merge it into the
agent store.
"""

from agenthub.ingestion.downloads import DownloadWriter
from agenthub.ingestion.telemetry import OUTBOUND_ONLY_KINDS, TelemetryIngestor

__all__ = ["OUTBOUND_ONLY_KINDS", "DownloadWriter", "TelemetryIngestor"]
