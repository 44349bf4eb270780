"""
ARCHGRAPH MUTATION LOGGER - The Catalog Journal

Records every entity and edge mutation so drift can be traced back to the
write that caused it.

Architecture:
- MutationLogger: Core logging interface
- FileLogger: Optional newline-delimited JSON, one file per day
- EventBuffer: In-memory ring buffer for recent events

Usage:
    journal = MutationLogger()
    journal.log_entity_created("abc123", "persona")
    journal.log_edge_created("usecase_u1", "tool_t1", "REALIZED_BY")

    for event in journal.get_events_for_entity("abc123"):
        print(f"{event.timestamp}: {event.mutation_type}")
"""
import msgspec
from typing import Optional, Dict, List, Any, Callable
from datetime import datetime, timezone
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from collections import deque
import threading
import logging
import io


logger = logging.getLogger("archgraph.journal")


# =============================================================================
# MUTATION TYPES
# =============================================================================

class MutationType(str, Enum):
    """Types of catalog mutations for event tracking."""
    ENTITY_CREATED = "ENTITY_CREATED"
    ENTITY_UPDATED = "ENTITY_UPDATED"
    ENTITY_DELETED = "ENTITY_DELETED"
    EDGE_CREATED = "EDGE_CREATED"
    EDGE_DELETED = "EDGE_DELETED"
    RECONCILED = "RECONCILED"


class MutationEvent(msgspec.Struct, kw_only=True):
    """Individual mutation event."""
    timestamp: str
    sequence: int
    mutation_type: str                  # MutationType value
    entity_id: Optional[str] = None
    entity_type: Optional[str] = None
    changed_fields: List[str] = msgspec.field(default_factory=list)

    # Source/target for edges
    source_id: Optional[str] = None
    target_id: Optional[str] = None
    edge_type: Optional[str] = None

    # For reconciliation passes
    entities_rewritten: int = 0


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class LoggerConfig:
    """Configuration for the mutation logger."""
    enable_file_log: bool = False       # Enable file-based logging
    log_path: Optional[Path] = None     # Path for log files
    buffer_size: int = 10000            # In-memory buffer size

    def __post_init__(self):
        if self.log_path is None:
            self.log_path = Path("./workspace/logs")


# =============================================================================
# EVENT BUFFER
# =============================================================================

class EventBuffer:
    """
    Thread-safe ring buffer for recent mutation events.

    Provides O(1) append and O(n) query for filtering.
    """

    def __init__(self, max_size: int = 10000):
        self._buffer: deque[MutationEvent] = deque(maxlen=max_size)
        self._lock = threading.RLock()
        self._sequence = 0

    def append(self, event: MutationEvent) -> None:
        with self._lock:
            self._buffer.append(event)

    def get_since(self, timestamp: str) -> List[MutationEvent]:
        with self._lock:
            return [e for e in self._buffer if e.timestamp >= timestamp]

    def get_last(self, n: int) -> List[MutationEvent]:
        with self._lock:
            items = list(self._buffer)
            return items[-n:] if len(items) >= n else items

    def get_by_entity(self, entity_id: str) -> List[MutationEvent]:
        with self._lock:
            return [
                e for e in self._buffer
                if e.entity_id == entity_id or entity_id in (e.source_id, e.target_id)
            ]

    def get_by_type(self, mutation_type: str) -> List[MutationEvent]:
        with self._lock:
            return [e for e in self._buffer if e.mutation_type == mutation_type]

    def next_sequence(self) -> int:
        with self._lock:
            self._sequence += 1
            return self._sequence

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


# =============================================================================
# FILE LOGGER
# =============================================================================

class FileLogger:
    """
    File-based event logger.

    Writes events as newline-delimited JSON for easy parsing.
    Rotates logs daily.
    """

    def __init__(self, log_path: Path):
        self._log_path = log_path
        self._current_file: Optional[io.TextIOWrapper] = None
        self._current_date: Optional[str] = None
        self._lock = threading.Lock()
        self._encoder = msgspec.json.Encoder()

        log_path.mkdir(parents=True, exist_ok=True)

    def write(self, event: MutationEvent) -> None:
        """Write an event to the log file."""
        with self._lock:
            try:
                self._ensure_file()
                line = self._encoder.encode(event).decode("utf-8") + "\n"
                self._current_file.write(line)
                self._current_file.flush()
            except OSError as e:
                logger.error(f"Journal write failed: {e}", exc_info=True)

    def _ensure_file(self) -> None:
        """Ensure we have a valid file handle for today."""
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")

        if self._current_date != today:
            if self._current_file:
                self._current_file.close()

            filepath = self._log_path / f"mutations_{today}.jsonl"
            self._current_file = open(filepath, "a", encoding="utf-8")
            self._current_date = today

    def close(self) -> None:
        with self._lock:
            if self._current_file:
                self._current_file.close()
                self._current_file = None

    def read_log(self, date: str) -> List[MutationEvent]:
        """Read events from a specific date's log. Unparseable lines are skipped."""
        filepath = self._log_path / f"mutations_{date}.jsonl"

        if not filepath.exists():
            return []

        events = []
        decoder = msgspec.json.Decoder(type=MutationEvent)

        with open(filepath, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(decoder.decode(line.encode()))
                except msgspec.DecodeError:
                    logger.warning(f"Skipping malformed journal line in {filepath.name}")

        return events


# =============================================================================
# MUTATION LOGGER (Main Interface)
# =============================================================================

class MutationLogger:
    """
    Main logging interface for catalog mutations.

    Logs to the in-memory buffer always and to a daily JSONL file when
    configured. Thread-safe for concurrent logging.
    """

    def __init__(self, config: Optional[LoggerConfig] = None):
        self.config = config or LoggerConfig()

        self._buffer = EventBuffer(self.config.buffer_size)
        self._file_logger: Optional[FileLogger] = None

        if self.config.enable_file_log and self.config.log_path:
            self._file_logger = FileLogger(self.config.log_path)

        self._subscribers: List[Callable[[MutationEvent], None]] = []

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def _emit(self, event: MutationEvent) -> MutationEvent:
        self._buffer.append(event)

        if self._file_logger:
            self._file_logger.write(event)

        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception as e:
                logger.error(f"Journal subscriber error: {e}", exc_info=True)

        return event

    # =========================================================================
    # LOGGING METHODS
    # =========================================================================

    def log_entity_created(self, entity_id: str, entity_type: str) -> MutationEvent:
        return self._emit(MutationEvent(
            timestamp=self._now(),
            sequence=self._buffer.next_sequence(),
            mutation_type=MutationType.ENTITY_CREATED.value,
            entity_id=entity_id,
            entity_type=entity_type,
        ))

    def log_entity_updated(
        self,
        entity_id: str,
        entity_type: str,
        changed_fields: Optional[List[str]] = None,
    ) -> MutationEvent:
        return self._emit(MutationEvent(
            timestamp=self._now(),
            sequence=self._buffer.next_sequence(),
            mutation_type=MutationType.ENTITY_UPDATED.value,
            entity_id=entity_id,
            entity_type=entity_type,
            changed_fields=list(changed_fields or []),
        ))

    def log_entity_deleted(self, entity_id: str, entity_type: str) -> MutationEvent:
        return self._emit(MutationEvent(
            timestamp=self._now(),
            sequence=self._buffer.next_sequence(),
            mutation_type=MutationType.ENTITY_DELETED.value,
            entity_id=entity_id,
            entity_type=entity_type,
        ))

    def log_edge_created(self, source_id: str, target_id: str, edge_type: str) -> MutationEvent:
        return self._emit(MutationEvent(
            timestamp=self._now(),
            sequence=self._buffer.next_sequence(),
            mutation_type=MutationType.EDGE_CREATED.value,
            source_id=source_id,
            target_id=target_id,
            edge_type=edge_type,
        ))

    def log_edge_deleted(self, source_id: str, target_id: str, edge_type: str) -> MutationEvent:
        return self._emit(MutationEvent(
            timestamp=self._now(),
            sequence=self._buffer.next_sequence(),
            mutation_type=MutationType.EDGE_DELETED.value,
            source_id=source_id,
            target_id=target_id,
            edge_type=edge_type,
        ))

    def log_reconciled(self, entities_rewritten: int) -> MutationEvent:
        return self._emit(MutationEvent(
            timestamp=self._now(),
            sequence=self._buffer.next_sequence(),
            mutation_type=MutationType.RECONCILED.value,
            entities_rewritten=entities_rewritten,
        ))

    # =========================================================================
    # QUERY METHODS
    # =========================================================================

    def get_recent_events(self, n: int = 100) -> List[MutationEvent]:
        return self._buffer.get_last(n)

    def get_events_since(self, timestamp: str) -> List[MutationEvent]:
        return self._buffer.get_since(timestamp)

    def get_events_for_entity(self, entity_id: str) -> List[MutationEvent]:
        return self._buffer.get_by_entity(entity_id)

    def get_events_by_type(self, mutation_type: str) -> List[MutationEvent]:
        return self._buffer.get_by_type(mutation_type)

    def get_entity_timeline(self, entity_id: str) -> List[Dict[str, Any]]:
        """Simplified list of mutations touching one entity, for debugging."""
        return [
            {
                "time": e.timestamp,
                "type": e.mutation_type,
                "fields": e.changed_fields,
                "edge": e.edge_type,
            }
            for e in self.get_events_for_entity(entity_id)
        ]

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def subscribe(self, callback: Callable[[MutationEvent], None]) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[MutationEvent], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def close(self) -> None:
        if self._file_logger:
            self._file_logger.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_global_logger: Optional[MutationLogger] = None


def get_logger() -> MutationLogger:
    """Get or create the global journal instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = MutationLogger()
    return _global_logger


def configure_logger(config: LoggerConfig) -> MutationLogger:
    """Configure and return a new global journal."""
    global _global_logger
    if _global_logger:
        _global_logger.close()
    _global_logger = MutationLogger(config)
    return _global_logger


def reset_logger() -> None:
    """Close and drop the global journal."""
    global _global_logger
    if _global_logger:
        _global_logger.close()
    _global_logger = None
