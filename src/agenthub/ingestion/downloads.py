"""Writes binary payloads (downloaded files, voice recordings) to disk."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from agenthub._hashing import file_extension, generate_file_key
from agenthub.models.telemetry import BinaryPayload

_logger = logging.getLogger(__name__)


class DownloadWriter:
    """Stores payloads under random keys and returns their public path.

    Parameters
    ----------
    directory : Path or None
        Target directory; ``None`` disables binary storage.
    url_prefix : str
        Prefix of the path recorded in the download log.
    """

    def __init__(self, directory: Path | None, url_prefix: str) -> None:
        self._directory = directory
        self._url_prefix = url_prefix.rstrip("/")

    @property
    def directory(self) -> Path | None:
        return self._directory

    async def save(self, payload: BinaryPayload) -> str | None:
        """Write *payload*; returns the storage path or ``None`` if it was dropped."""
        if self._directory is None:
            _logger.warning("No downloads directory configured; dropping %s", payload.name)
            return None

        filename = f"{generate_file_key()}{file_extension(payload.name)}"
        target = self._directory / filename
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, _write_file, target, payload.buffer)
        except OSError as exc:
            _logger.error("Failed to save %s to %s: %s", payload.name, target, exc)
            return None
        _logger.debug("Saved %d bytes to %s", len(payload.buffer), target)
        return f"{self._url_prefix}/{filename}"


def _write_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
