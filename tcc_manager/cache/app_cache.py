"""
Durable snapshot of discovered apps and their last settled permissions.

The document is a JSON object keyed by app id (the bundle path), written
pretty-printed with sorted keys so it diffs cleanly. Writes go through a
temporary file in the same directory followed by ``os.replace``.

Rules:
1. Saving an empty collection is refused, so a failed discovery pass can
   never wipe a good snapshot.
2. Loading never raises: a missing, empty or undecodable document is a
   cache miss (``None``).
3. ``pending`` is transient and never written.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional

import aiofiles

from tcc_manager.core.file_sync_utils import fsync_directory, fsync_file
from tcc_manager.core.logging_utils import get_module_logger
from tcc_manager.core.models import AppRecord
from tcc_manager.core.paths import CACHE_FILE

logger = get_module_logger("AppCache")


def encode_document(records: Iterable[AppRecord]) -> str:
    document = {record.id: record.to_dict() for record in records}
    return json.dumps(document, indent=2, sort_keys=True) + "\n"


def decode_document(text: str) -> Optional[List[AppRecord]]:
    """Decode a cache document; None for anything but a non-empty, valid one."""
    if not text.strip():
        return None
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Cache document is not valid JSON: %s", exc)
        return None
    if not isinstance(document, dict) or not document:
        return None

    records: List[AppRecord] = []
    for key in sorted(document):
        entry = document[key]
        if not isinstance(entry, dict):
            logger.warning("Cache entry %s is not an object", key)
            return None
        try:
            records.append(AppRecord.from_dict(entry))
        except ValueError as exc:
            logger.warning("Cache entry %s is malformed: %s", key, exc)
            return None
    return records


class AppCache:

    def __init__(self, path: Path = CACHE_FILE):
        self._path = Path(path)
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def save(self, records: Iterable[AppRecord]) -> bool:
        """Persist ``records``; returns False if refused or the write failed."""
        snapshot = [record.copy() for record in records]
        if not snapshot:
            logger.warning("Refusing to save an empty app list over %s", self._path)
            return False

        payload = encode_document(snapshot)
        async with self._write_lock:
            try:
                await asyncio.to_thread(self._write_atomic, payload)
            except OSError as exc:
                logger.error("Failed to save app cache %s: %s", self._path, exc)
                return False

        logger.info("Saved %d apps to %s", len(snapshot), self._path)
        return True

    def _write_atomic(self, payload: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path: Optional[Path] = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                dir=str(self._path.parent),
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
                encoding="utf-8",
            ) as tmp:
                tmp_path = Path(tmp.name)
                tmp.write(payload)
                fsync_file(tmp)

            os.replace(tmp_path, self._path)
            tmp_path = None
            fsync_directory(self._path.parent)
        finally:
            if tmp_path is not None:
                try:
                    tmp_path.unlink()
                except FileNotFoundError:
                    pass

    async def load(self) -> Optional[List[AppRecord]]:
        """Return the cached apps ordered by id, or None on a cache miss."""
        try:
            async with aiofiles.open(self._path, "r", encoding="utf-8") as fh:
                text = await fh.read()
        except FileNotFoundError:
            logger.debug("No app cache at %s", self._path)
            return None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read app cache %s: %s", self._path, exc)
            return None

        records = decode_document(text)
        if records is None:
            logger.info("App cache %s is empty or unusable", self._path)
            return None
        logger.info("Loaded %d apps from %s", len(records), self._path)
        return records

    async def clear(self) -> bool:
        try:
            await asyncio.to_thread(self._path.unlink)
        except FileNotFoundError:
            return True
        except OSError as exc:
            logger.error("Failed to delete app cache %s: %s", self._path, exc)
            return False
        logger.info("Cleared app cache %s", self._path)
        return True


__all__ = ["AppCache", "decode_document", "encode_document"]
