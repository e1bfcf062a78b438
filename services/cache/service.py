"""Staleness-aware cache for the consolidated receipts aggregate.

Holds exactly one entry: the last aggregate together with the set of
document ids it was built from. Reads compare that set with the documents
currently visible; any difference in either direction makes the entry stale.
Recomputing is always the caller's decision, the cache never does it.

Persistence is injected through ``CacheStore`` so the entry survives process
restarts; ``JsonFileCacheStore`` keeps it in a single JSON file.
"""

import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from types import TracebackType

from prometheus_client import Counter
from pydantic import BaseModel, ValidationError

from services.extraction.schema import AggregateResult, CacheEntry

logger = logging.getLogger(__name__)

cache_writes_total = Counter(
    "receipt_cache_writes_total",
    "Total writes of the consolidated receipts cache",
    ["status"],  # success, failed
)


class CacheState(StrEnum):
    """Lifecycle state of the cached aggregate relative to the live documents."""

    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"


class CacheError(Exception):
    """Base class for receipt cache errors."""


class CacheClosedError(CacheError):
    """Raised when the cache is used before ``open`` or after ``close``."""


class CacheWriteError(CacheError):
    """Raised when the entry could not be persisted.

    The new entry is already served from memory; it is lost on restart.

    Attributes:
        entry: The entry that is held in memory only
    """

    def __init__(self, message: str, entry: CacheEntry) -> None:
        super().__init__(message)
        self.entry = entry


class CacheStats(BaseModel):
    """Summary of the cache for display.

    Attributes:
        has_entry: Whether an aggregate is cached
        cached_at: When the entry was written
        document_count: Number of documents the entry was built from
        size_bytes: Size of the persisted entry
    """

    has_entry: bool
    cached_at: datetime | None = None
    document_count: int = 0
    size_bytes: int = 0


class CacheStore(ABC):
    """Durable storage for the single cache entry."""

    @abstractmethod
    def load(self) -> CacheEntry | None:
        """Load the persisted entry, or None if nothing is stored."""
        pass

    @abstractmethod
    def save(self, entry: CacheEntry) -> None:
        """Persist the entry, replacing any previous one."""
        pass

    @abstractmethod
    def delete(self) -> None:
        """Remove the persisted entry if present."""
        pass

    @abstractmethod
    def size_bytes(self) -> int:
        """Size of the persisted entry in bytes (0 if absent)."""
        pass


class JsonFileCacheStore(CacheStore):
    """Cache store backed by one JSON file.

    Writes go to a temporary file in the same directory that then replaces
    the target, so a crash mid-write leaves the previous entry intact.
    """

    def __init__(self, path: Path) -> None:
        """Initialize store.

        Args:
            path: JSON file holding the entry
        """
        self.path = Path(path)

    def load(self) -> CacheEntry | None:
        if not self.path.exists():
            return None
        return CacheEntry.model_validate_json(self.path.read_text(encoding="utf-8"))

    def save(self, entry: CacheEntry) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_path = Path(tmp.name)
                tmp.write(entry.model_dump_json(indent=2))
            os.replace(tmp_path, self.path)
        finally:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink()

    def delete(self) -> None:
        self.path.unlink(missing_ok=True)

    def size_bytes(self) -> int:
        return self.path.stat().st_size if self.path.exists() else 0


class ReceiptCache:
    """Single-entry aggregate cache with explicit open/close lifecycle.

    Writes are serialized; the last write wins.
    """

    def __init__(self, store: CacheStore) -> None:
        """Initialize cache.

        Args:
            store: Durable storage for the entry
        """
        self._store = store
        self._entry: CacheEntry | None = None
        self._open = False
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> "ReceiptCache":
        """Load the persisted entry.

        An unreadable or corrupt entry is logged and the cache starts empty.

        Returns:
            The opened cache
        """
        with self._lock:
            try:
                self._entry = self._store.load()
            except (OSError, ValidationError, ValueError) as e:
                logger.warning(f"Ignoring unreadable receipt cache: {e}")
                self._entry = None
            self._open = True

        if self._entry is not None:
            logger.info(
                f"Loaded receipt cache with {len(self._entry.document_ids)} documents "
                f"from {self._entry.cached_at.isoformat()}"
            )
        return self

    def close(self) -> None:
        """Drop the in-memory entry; the persisted entry is kept."""
        with self._lock:
            self._entry = None
            self._open = False

    def __enter__(self) -> "ReceiptCache":
        return self.open()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _require_open(self) -> None:
        if not self._open:
            raise CacheClosedError("Receipt cache is not open")

    def read(self) -> CacheEntry | None:
        """Return the cached entry, or None when the cache is empty."""
        self._require_open()
        return self._entry

    def write(self, aggregate: AggregateResult, document_ids: Iterable[str]) -> CacheEntry:
        """Replace the cached entry after a full recompute.

        Args:
            aggregate: Freshly computed aggregate
            document_ids: Document set the aggregate was built from

        Returns:
            The new entry

        Raises:
            CacheWriteError: If persisting failed (the entry is still served
                from memory until the process exits)
        """
        self._require_open()
        entry = CacheEntry(
            aggregate=aggregate,
            document_ids=frozenset(document_ids),
            cached_at=datetime.now(UTC),
        )
        with self._lock:
            self._entry = entry
            try:
                self._store.save(entry)
            except OSError as e:
                cache_writes_total.labels(status="failed").inc()
                logger.error(f"Failed to persist receipt cache: {e}")
                raise CacheWriteError(
                    f"Receipt summary could not be saved and will be lost on restart: {e}",
                    entry,
                ) from e

        cache_writes_total.labels(status="success").inc()
        logger.info(f"Receipt cache written for {len(entry.document_ids)} documents")
        return entry

    def is_stale(self, live_document_ids: Iterable[str]) -> bool:
        """Check whether the cached document set differs from the live one.

        Args:
            live_document_ids: Documents currently visible

        Returns:
            True if any document was added or removed, or nothing is cached
        """
        entry = self.read()
        if entry is None:
            return True
        return bool(entry.document_ids ^ frozenset(live_document_ids))

    def state(self, live_document_ids: Iterable[str]) -> CacheState:
        """Classify the cache as empty, fresh or stale for the live documents."""
        if self.read() is None:
            return CacheState.EMPTY
        return CacheState.STALE if self.is_stale(live_document_ids) else CacheState.FRESH

    def diff(self, live_document_ids: Iterable[str]) -> tuple[list[str], list[str]]:
        """List documents added to and removed from the live set since caching.

        Returns:
            (added, removed), each sorted
        """
        entry = self.read()
        cached = entry.document_ids if entry is not None else frozenset()
        live = frozenset(live_document_ids)
        return sorted(live - cached), sorted(cached - live)

    def clear(self) -> None:
        """Remove the entry from memory and from the store."""
        self._require_open()
        with self._lock:
            self._entry = None
            self._store.delete()
        logger.info("Receipt cache cleared")

    def stats(self) -> CacheStats:
        """Describe the cached entry."""
        entry = self.read()
        if entry is None:
            return CacheStats(has_entry=False)
        try:
            size = self._store.size_bytes()
        except OSError:
            size = 0
        return CacheStats(
            has_entry=True,
            cached_at=entry.cached_at,
            document_count=len(entry.document_ids),
            size_bytes=size,
        )
