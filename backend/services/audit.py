"""
Gate Audit Log

Append-only, category-partitioned record of every gate transaction:
- incoming: raw request, recorded before reconciliation
- matched / mismatch / invalid: one entry per decision outcome
- error: authority failures and unclassified errors
- forwarded / forward-error: downstream delivery results

Each category is an independent history. Entries are never mutated or
deleted. Writers to one category are serialised and every entry gets the
next per-category sequence number, so concurrent transactions cannot lose
each other's appends.

Storage: one JSON Lines file per category (JsonlAuditLog), or memory
(InMemoryAuditLog) for tests and embedding.
"""

import asyncio
import json
import logging
import os
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ==================== ENUMS ====================

class AuditCategory(str, Enum):
    """Independent audit histories"""
    INCOMING = "incoming"
    MATCHED = "matched"
    MISMATCH = "mismatch"
    INVALID = "invalid"
    ERROR = "error"
    FORWARDED = "forwarded"
    FORWARD_ERROR = "forward-error"


# ==================== MODELS ====================

class AuditEntry(BaseModel):
    """One immutable audit record"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    sequence: int
    category: str
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    payload: Dict[str, Any] = Field(default_factory=dict)


def _category_value(category: Union[AuditCategory, str]) -> str:
    value = category.value if isinstance(category, AuditCategory) else str(category)
    # Category names become file names
    if not value or any(c in value for c in ("/", "\\", "..")):
        raise ValueError(f"Invalid audit category: {value!r}")
    return value


# ==================== AUDIT LOG ====================

class AuditLog(ABC):
    """
    Append-only audit store.

    Usage:
        entry = await audit_log.append(AuditCategory.MATCHED, decision.to_payload())
        history = await audit_log.query(AuditCategory.MATCHED)
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, category: str) -> asyncio.Lock:
        lock = self._locks.get(category)
        if lock is None:
            lock = self._locks[category] = asyncio.Lock()
        return lock

    async def append(self, category: Union[AuditCategory, str], payload: Dict[str, Any]) -> AuditEntry:
        """Record a payload under a category, preserving insertion order."""
        name = _category_value(category)
        async with self._lock_for(name):
            sequence = await self._next_sequence(name)
            entry = AuditEntry(sequence=sequence, category=name, payload=payload)
            await self._store(entry)

        logger.info(f"AUDIT: {name} #{entry.sequence}")
        return entry

    @abstractmethod
    async def query(self, category: Union[AuditCategory, str]) -> List[AuditEntry]:
        """Full history of a category in append order."""

    @abstractmethod
    async def _next_sequence(self, category: str) -> int:
        """Allocate the next sequence number; called with the category lock held."""

    @abstractmethod
    async def _store(self, entry: AuditEntry):
        """Persist an entry; called with the category lock held."""


class InMemoryAuditLog(AuditLog):
    """Audit log held in process memory."""

    def __init__(self):
        super().__init__()
        self._entries: Dict[str, List[AuditEntry]] = {}

    async def query(self, category: Union[AuditCategory, str]) -> List[AuditEntry]:
        return list(self._entries.get(_category_value(category), []))

    async def _next_sequence(self, category: str) -> int:
        return len(self._entries.get(category, [])) + 1

    async def _store(self, entry: AuditEntry):
        self._entries.setdefault(entry.category, []).append(entry)


class JsonlAuditLog(AuditLog):
    """
    Audit log stored as one JSON Lines file per category.

    A damaged or unreadable history is logged and read as empty (or as the
    decodable part of it); it never stops the service from appending.
    """

    FILE_SUFFIX = ".log.jsonl"

    def __init__(self, log_dir: Union[str, Path]):
        super().__init__()
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._sequences: Dict[str, int] = {}

    def path_for(self, category: Union[AuditCategory, str]) -> Path:
        return self.log_dir / f"{_category_value(category)}{self.FILE_SUFFIX}"

    async def query(self, category: Union[AuditCategory, str]) -> List[AuditEntry]:
        return await asyncio.to_thread(self._read_entries, self.path_for(category))

    async def _next_sequence(self, category: str) -> int:
        if category not in self._sequences:
            self._sequences[category] = await asyncio.to_thread(
                self._recover_tail, self.path_for(category)
            )
        self._sequences[category] += 1
        return self._sequences[category]

    async def _store(self, entry: AuditEntry):
        line = json.dumps(entry.model_dump(), default=str)
        await asyncio.to_thread(self._write_line, self.path_for(entry.category), line)

    def is_writable(self) -> bool:
        return self.log_dir.is_dir() and os.access(self.log_dir, os.W_OK)

    def _write_line(self, path: Path, line: str):
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
            f.flush()
            os.fsync(f.fileno())

    def _recover_tail(self, path: Path) -> int:
        """
        Count complete entries and terminate a torn last line.

        A crash mid-write can leave a fragment with no trailing newline. It
        is closed off so the next entry starts on its own line, and it is
        not counted towards the sequence.
        """
        try:
            with open(path, "rb") as f:
                data = f.read()
        except FileNotFoundError:
            return 0
        except OSError as e:
            logger.error(f"Failed to read audit history {path.name}, starting from empty: {e}")
            return 0

        lines = data.split(b"\n")
        torn = lines.pop()
        if torn.strip():
            logger.warning(f"Audit history {path.name} ends with a partial entry, closing it off")
            with open(path, "ab") as f:
                f.write(b"\n")
                f.flush()
                os.fsync(f.fileno())

        return sum(1 for line in lines if line.strip())

    def _read_entries(self, path: Path) -> List[AuditEntry]:
        entries = []
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                for line_number, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        entries.append(AuditEntry(**json.loads(line)))
                    except (ValueError, TypeError) as e:
                        logger.warning(f"Skipping unreadable audit entry {path.name}:{line_number}: {e}")
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.error(f"Failed to read audit history {path.name}: {e}")
            return []
        return entries


AUDIT_CATEGORIES = [category.value for category in AuditCategory]
