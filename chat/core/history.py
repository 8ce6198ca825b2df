"""Per-conversation chat history kept as JSON files.

Each conversation lives in ``<history_dir>/<chatid>.json`` as
``{"history": [[query, response], ...], "timestamp": epochMillis}``.
Records older than the retention window are dropped lazily when loaded and
eagerly by :meth:`HistoryStore.sweep_expired`; the two run independently.
"""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Iterable, List, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"
# Keeps "<id>.json" and ".<id>.<random>.tmp" under the 255-byte filename limit.
MAX_CONVERSATION_ID_BYTES = 200


class HistoryStoreError(RuntimeError):
    """The history directory refused an operation."""


class InvalidConversationId(ValueError):
    """The conversation id cannot be used as a record filename."""


class Turn(NamedTuple):
    query: str
    response: str


class ConversationRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(..., exclude=True)
    turns: List[Turn] = Field(default_factory=list, alias="history")
    timestamp: Optional[int] = Field(default=None, description="Last write, epoch millis")


def now_ms() -> int:
    return int(time.time() * 1000)


class HistoryStore:
    """Owns the history directory. All public operations are coroutines."""

    def __init__(self, directory: Union[str, Path], max_age_seconds: float = 3600.0):
        self.directory = Path(directory)
        self.max_age_ms = int(max_age_seconds * 1000)

    def path_for(self, conversation_id: str) -> Path:
        if (
            not conversation_id
            or conversation_id in {".", ".."}
            or any(ch in conversation_id for ch in ("/", "\\", "\x00"))
            or len(conversation_id.encode("utf-8", "surrogatepass")) > MAX_CONVERSATION_ID_BYTES
        ):
            raise InvalidConversationId(f"Invalid conversation id: {conversation_id!r}")
        return self.directory / f"{conversation_id}{RECORD_SUFFIX}"

    def is_expired(
        self,
        timestamp: Optional[int],
        max_age_ms: Optional[int] = None,
        now: Optional[int] = None,
    ) -> bool:
        if timestamp is None:
            return False
        limit = self.max_age_ms if max_age_ms is None else max_age_ms
        return (now_ms() if now is None else now) - timestamp > limit

    async def load(self, conversation_id: str) -> ConversationRecord:
        """Return the stored record, or an empty one if missing, corrupt or expired."""
        path = self.path_for(conversation_id)
        record = await asyncio.to_thread(self._read, conversation_id, path)
        if self.is_expired(record.timestamp):
            try:
                if await asyncio.to_thread(self._unlink, path):
                    logger.info("Deleted old chat history file: %s", path.name)
            except OSError as exc:
                logger.error("Failed to delete old chat history file %s: %s", path.name, exc)
            return ConversationRecord(conversation_id=conversation_id)
        return record

    async def save(self, conversation_id: str, turns: Iterable[Turn]) -> ConversationRecord:
        """Replace the record with ``turns`` stamped now. Write errors propagate."""
        path = self.path_for(conversation_id)
        record = ConversationRecord(
            conversation_id=conversation_id,
            turns=[Turn(*turn) for turn in turns],
            timestamp=now_ms(),
        )
        payload = record.model_dump_json(by_alias=True, indent=2)
        await asyncio.to_thread(self._write, path, payload)
        return record

    async def append(self, record: ConversationRecord, turn: Turn) -> ConversationRecord:
        return await self.save(record.conversation_id, [*record.turns, turn])

    async def clear(self, conversation_id: str) -> bool:
        """Delete the record. ``False`` means there was nothing to delete."""
        path = self.path_for(conversation_id)
        try:
            removed = await asyncio.to_thread(self._unlink, path)
        except OSError as exc:
            raise HistoryStoreError(f"Could not delete {path.name}: {exc}") from exc
        if removed:
            logger.info("Deleted chat history file: %s", path.name)
        return removed

    async def sweep_expired(self, max_age_seconds: Optional[float] = None) -> List[str]:
        """Delete every record older than the window and return their ids."""
        max_age_ms = self.max_age_ms if max_age_seconds is None else int(max_age_seconds * 1000)
        return await asyncio.to_thread(self._sweep, max_age_ms)

    def _read(self, conversation_id: str, path: Path) -> ConversationRecord:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("record is not a JSON object")
            return ConversationRecord.model_validate({**data, "conversation_id": conversation_id})
        except FileNotFoundError:
            pass
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable chat history %s: %s", path.name, exc)
        return ConversationRecord(conversation_id=conversation_id)

    def _write(self, path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, path)
        except Exception:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def _record_timestamp(self, path: Path) -> Optional[int]:
        record = self._read(path.stem, path)
        if record.timestamp is not None:
            return record.timestamp
        # No usable timestamp: age it by modification time instead.
        try:
            return int(path.stat().st_mtime * 1000)
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Cannot stat chat history %s: %s", path.name, exc)
            return None

    def _sweep(self, max_age_ms: int) -> List[str]:
        if not self.directory.is_dir():
            return []
        now = now_ms()
        removed: List[str] = []
        for path in sorted(self.directory.glob(f"*{RECORD_SUFFIX}")):
            if not self.is_expired(self._record_timestamp(path), max_age_ms, now):
                continue
            try:
                if self._unlink(path):
                    removed.append(path.stem)
                    logger.info("Deleted old chat history file: %s", path.name)
            except OSError as exc:
                logger.error("Failed to delete old chat history file %s: %s", path.name, exc)
        return removed
