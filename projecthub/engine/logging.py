"""
ProjectHub event log: JSONL files per object type and category, fed by a
background queue so request handlers never block on disk.

    logs/{object_type}/{category}/{YYYY-MM-DD}.jsonl[.gz]

Operational diagnostics use ``logging.getLogger("projecthub.*")`` as usual;
the files written here are the business audit trail (task transitions,
reward awards, security denials, API requests) and can be read back with
``FileLogger.query``.
"""

from __future__ import annotations

import gzip
import json
import logging
import shutil
import threading
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from itertools import islice
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, Iterable, Iterator, List, Optional

logger = logging.getLogger("projecthub.engine.logging")

OBJECT_TYPE_CATEGORIES = {
    "tasks": ["execution", "security"],
    "rewards": ["execution"],
    "projects": ["execution", "security"],
    "notifications": ["execution"],
    "users": ["execution", "security"],
    "web_apis": ["execution", "performance", "security"],
    "system": ["execution", "security"],
}

# Days to keep, per category
DEFAULT_RETENTION = {
    "execution": 90,
    "performance": 30,
    "security": 365,
}

_SUFFIXES = (".jsonl", ".jsonl.gz")


class LogEntry:
    """One event record plus the folder it belongs in."""

    __slots__ = ("object_type", "category", "data")

    def __init__(self, object_type: str, category: str, data: Dict[str, Any]):
        self.object_type = object_type
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))

    def __repr__(self) -> str:
        return f"LogEntry({self.object_type}/{self.category}, event={self.data.get('event')!r})"


def _open_log(path: Path):
    if path.name.endswith(".gz"):
        return gzip.open(path, "rt", encoding="utf-8")
    return open(path, "r", encoding="utf-8")


def _file_date(path: Path) -> Optional[date]:
    """2024-01-10.jsonl / 2024-01-10.jsonl.gz -> date(2024, 1, 10)."""
    stem = path.name.partition(".")[0]
    try:
        return date.fromisoformat(stem)
    except ValueError:
        return None


class FileLogger:
    """
    Appends entries to today's file for their object type and category.

    Writers to the same file are serialised with a per-path lock.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._locks: Dict[Path, threading.Lock] = defaultdict(threading.Lock)
        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for category in categories:
                (self._log_dir / obj_type / category).mkdir(parents=True, exist_ok=True)

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def _today_path(self, entry: LogEntry) -> Path:
        folder = self._log_dir / entry.object_type / entry.category
        folder.mkdir(parents=True, exist_ok=True)
        return folder / f"{date.today().isoformat()}.jsonl"

    def write(self, entry: LogEntry) -> None:
        self.write_batch([entry])

    def write_batch(self, entries: Iterable[LogEntry]) -> None:
        """Write entries with one open() per destination file."""
        by_path: Dict[Path, List[str]] = defaultdict(list)
        for entry in entries:
            by_path[self._today_path(entry)].append(entry.to_json())

        for path, lines in by_path.items():
            payload = "".join(line + "\n" for line in lines)
            with self._locks[path], open(path, "a", encoding="utf-8") as fh:
                fh.write(payload)

    def query(
        self,
        object_type: str,
        category: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 500,
    ) -> List[Dict[str, Any]]:
        """
        Read entries back, newest day first, returned oldest first.

        ``start_date`` defaults to a week before ``end_date`` (today).
        ``filters`` keeps only entries whose keys equal every given value;
        plain and gzipped files for the same day are both read.
        """
        folder = self._log_dir / object_type / category
        if not folder.is_dir():
            return []

        end_date = end_date or date.today()
        start_date = start_date or end_date - timedelta(days=7)

        matches = (
            record
            for path in self._files_between(folder, start_date, end_date)
            for record in self._records(path)
            if not filters or all(record.get(k) == v for k, v in filters.items())
        )
        found = list(islice(matches, limit))
        found.reverse()
        return found

    @staticmethod
    def _files_between(folder: Path, start: date, end: date) -> Iterator[Path]:
        day = end
        while day >= start:
            for suffix in _SUFFIXES:
                candidate = folder / f"{day.isoformat()}{suffix}"
                if candidate.exists():
                    yield candidate
            day -= timedelta(days=1)

    @staticmethod
    def _records(path: Path) -> Iterator[Dict[str, Any]]:
        try:
            with _open_log(path) as fh:
                lines = fh.readlines()
        except OSError as exc:
            logger.warning("Could not read log file %s: %s", path, exc)
            return
        for raw in lines:
            raw = raw.strip()
            if not raw:
                continue
            try:
                yield json.loads(raw)
            except json.JSONDecodeError:
                logger.debug("Skipping malformed line in %s", path)


class AsyncLogQueue:
    """
    Bounded in-memory buffer in front of a FileLogger.

    ``push`` never blocks: when the buffer is full the entry is counted as
    dropped. A daemon thread wakes every ``flush_interval_ms`` and writes
    what has accumulated in chunks of ``flush_batch_size``.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._file_logger = file_logger
        self._interval = flush_interval_ms / 1000.0
        self._batch_size = max(1, flush_batch_size)
        self._buffer: Queue = Queue(maxsize=max_queue_size)
        self._stopping = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._dropped = 0

    @property
    def pending_count(self) -> int:
        return self._buffer.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped

    def start(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._stopping.clear()
        self._worker = threading.Thread(target=self._run, name="projecthub-log-flush", daemon=True)
        self._worker.start()
        logger.info("Async log queue started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the worker, then write out whatever is still buffered."""
        self._stopping.set()
        if self._worker is not None:
            self._worker.join(timeout=timeout)
            self._worker = None
        self._flush()
        logger.info("Async log queue stopped (dropped: %d)", self._dropped)

    def push(self, entry: LogEntry) -> bool:
        try:
            self._buffer.put_nowait(entry)
        except Full:
            self._dropped += 1
            return False
        return True

    def _run(self) -> None:
        while not self._stopping.wait(self._interval):
            self._flush()

    def _take(self) -> List[LogEntry]:
        chunk: List[LogEntry] = []
        while len(chunk) < self._batch_size:
            try:
                chunk.append(self._buffer.get_nowait())
            except Empty:
                break
        return chunk

    def _flush(self) -> None:
        chunk = self._take()
        while chunk:
            try:
                self._file_logger.write_batch(chunk)
            except OSError as exc:
                logger.error("Log flush failed, %d entries lost: %s", len(chunk), exc)
            chunk = self._take()


# ---------------------------------------------------------------------------
# Entry builders
# ---------------------------------------------------------------------------

def _event(event: str, level: str, **fields: Any) -> Dict[str, Any]:
    """Common envelope; fields that are None are left out."""
    data: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
    }
    data.update((key, value) for key, value in fields.items() if value is not None)
    return data


def log_task_event(
    event: str,
    task_id: Any,
    user_id: Any = None,
    execution_id: Optional[str] = None,
    from_status: Optional[str] = None,
    to_status: Optional[str] = None,
    fields_changed: Optional[List[str]] = None,
    error: Optional[str] = None,
) -> LogEntry:
    """Task lifecycle: created, updated, status_changed, completed, reward_failed."""
    return LogEntry("tasks", "execution", _event(
        event,
        "ERROR" if error else "INFO",
        execution_id=execution_id or None,
        user_id=user_id,
        task_id=task_id,
        from_status=from_status or None,
        to_status=to_status or None,
        fields_changed=fields_changed or None,
        error=error,
    ))


def log_reward_awarded(
    user_id: Any,
    task_id: Optional[Any],
    reward_type: str,
    value: int,
    description: str,
    total_points: int,
    current_streak: int,
    execution_id: Optional[str] = None,
) -> LogEntry:
    return LogEntry("rewards", "execution", _event(
        "reward_awarded",
        "INFO",
        execution_id=execution_id or None,
        user_id=user_id,
        task_id=task_id,
        reward_type=reward_type,
        value=value,
        description=description,
        total_points=total_points,
        current_streak=current_streak,
    ))


def log_record_operation(
    object_type: str,
    operation: str,
    record_id: Optional[Any] = None,
    user_id: Any = None,
    execution_id: Optional[str] = None,
    fields_changed: Optional[List[str]] = None,
) -> LogEntry:
    """CRUD on projects, notifications or users; unknown types land in system/."""
    folder = object_type if object_type in OBJECT_TYPE_CATEGORIES else "system"
    return LogEntry(folder, "execution", _event(
        f"record_{operation}",
        "INFO",
        execution_id=execution_id or None,
        user_id=user_id,
        operation=operation,
        record_id=record_id,
        fields_changed=fields_changed or None,
    ))


def log_security_event(
    event: str,
    object_type: str,
    user_id: Any,
    role: Optional[str] = None,
    record_id: Optional[Any] = None,
    permission_needed: Optional[str] = None,
    execution_id: Optional[str] = None,
    level: str = "WARNING",
) -> LogEntry:
    """Login, logout and access denials. Types without a security/ folder use system/."""
    has_folder = "security" in OBJECT_TYPE_CATEGORIES.get(object_type, [])
    return LogEntry(object_type if has_folder else "system", "security", _event(
        event,
        level,
        execution_id=execution_id or None,
        user_id=user_id,
        object_type=object_type,
        role=role or None,
        record_id=record_id,
        permission_needed=permission_needed or None,
    ))


def log_web_api_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    user_id: Any = None,
    execution_id: Optional[str] = None,
    client_ip: Optional[str] = None,
) -> LogEntry:
    return LogEntry("web_apis", "execution", _event(
        "web_api_request",
        "INFO" if status_code < 400 else "ERROR",
        execution_id=execution_id or None,
        user_id=user_id,
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
        client_ip=client_ip or None,
    ))


def log_system_event(
    event: str,
    level: str = "INFO",
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    return LogEntry("system", "execution", _event(event, level, details=details or None))


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------

class LogRetentionManager:
    """
    Applies per-category retention to the log tree.

    Files older than the category's retention are deleted; plain ``.jsonl``
    files older than ``compress_after_days`` are gzipped in place.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        retention_days: Optional[Dict[str, int]] = None,
        compress_after_days: int = 7,
    ):
        self._log_dir = Path(log_dir)
        self._retention = dict(DEFAULT_RETENTION)
        if retention_days:
            self._retention.update(retention_days)
        self._compress_after = compress_after_days

    def _dated_files(self) -> Iterator[tuple]:
        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for category in categories:
                folder = self._log_dir / obj_type / category
                if not folder.is_dir():
                    continue
                for path in sorted(folder.iterdir()):
                    file_day = _file_date(path) if path.is_file() else None
                    if file_day is not None:
                        yield category, path, file_day

    def cleanup(self, today: Optional[date] = None) -> Dict[str, int]:
        """Returns ``{"deleted": n, "compressed": m}``."""
        today = today or date.today()
        counts = {"deleted": 0, "compressed": 0}

        for category, path, file_day in self._dated_files():
            age = (today - file_day).days
            if age > self._retention.get(category, DEFAULT_RETENTION["execution"]):
                path.unlink()
                counts["deleted"] += 1
            elif age > self._compress_after and path.name.endswith(".jsonl"):
                if self._gzip(path):
                    counts["compressed"] += 1

        logger.info("Log cleanup: %s", counts)
        return counts

    @staticmethod
    def _gzip(path: Path) -> bool:
        target = path.with_name(path.name + ".gz")
        try:
            with open(path, "rb") as src, gzip.open(target, "wb") as dst:
                shutil.copyfileobj(src, dst)
        except OSError as exc:
            logger.error("Failed to compress %s: %s", path, exc)
            target.unlink(missing_ok=True)
            return False
        path.unlink()
        return True


# ---------------------------------------------------------------------------
# Process-wide queue
# ---------------------------------------------------------------------------

_global_queue: Optional[AsyncLogQueue] = None


def init_logging(
    log_dir: str = "logs",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    """Create and start the queue that ``log()`` writes to."""
    global _global_queue
    if _global_queue is not None:
        _global_queue.stop()
    _global_queue = AsyncLogQueue(
        FileLogger(log_dir=log_dir),
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    _global_queue.start()
    return _global_queue


def get_log_queue() -> Optional[AsyncLogQueue]:
    return _global_queue


def log(entry: LogEntry) -> bool:
    """Queue an entry. Returns False when logging is not initialised or the queue is full."""
    if _global_queue is None:
        logger.debug("Event log not initialised, dropping %r", entry)
        return False
    return _global_queue.push(entry)


def shutdown_logging() -> None:
    global _global_queue
    queue, _global_queue = _global_queue, None
    if queue is not None:
        queue.stop()
