"""Sink implementations for the tracker's analytics contract.

A sink is any callable accepting either::

    sink("event", name, data)
    sink("identify", custom_id, session_id, page_path, friendly_name)

RecordingSink keeps calls in memory. HttpCollectorSink and BigQuerySink
do network I/O, so calling them only queues the call; a daemon worker
thread delivers it. ``flush()`` waits for everything queued so far,
``close()`` flushes and stops the worker.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)


def _split_call(args: Tuple[Any, ...]) -> Tuple[str, Tuple[Any, ...]]:
    if not args or args[0] not in ("event", "identify"):
        raise ValueError(f"Unknown sink call {args[:1]!r}")
    return args[0], args[1:]


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class RecordingSink:
    """Keeps every sink call; handy for demos, debugging and tests."""

    def __init__(self) -> None:
        self.calls: List[Tuple[Any, ...]] = []

    def __call__(self, *args: Any) -> None:
        _split_call(args)
        self.calls.append(args)

    @property
    def events(self) -> List[Tuple[str, Dict[str, Any]]]:
        return [(c[1], c[2]) for c in self.calls if c[0] == "event"]

    @property
    def identifies(self) -> List[Tuple[Any, ...]]:
        return [c[1:] for c in self.calls if c[0] == "identify"]

    def event_names(self) -> List[str]:
        return [name for name, _ in self.events]

    def clear(self) -> None:
        self.calls.clear()


# ---------------------------------------------------------------------------
# Background delivery
# ---------------------------------------------------------------------------

_FLUSH = object()
_STOP = object()


class BackgroundSink(ABC):
    """Base for sinks whose delivery must not run on the caller's thread.

    Subclasses implement ``_prepare`` (runs on the caller, turns a sink
    call into a queue item) and ``_deliver`` (runs on the worker). The
    worker calls ``_on_idle`` when nothing arrived for ``idle_interval``
    seconds and on every flush.
    """

    def __init__(self, *, max_queue_size: int = 10_000, idle_interval: float = 5.0) -> None:
        self.idle_interval = idle_interval
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._worker: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()
        self._closed = False

    def __call__(self, *args: Any) -> None:
        item = self._prepare(*args)
        if self._closed:
            logger.warning("%s is closed; dropping %s call", type(self).__name__, args[0])
            return
        self._ensure_worker()
        try:
            self._queue.put_nowait(item)
        except queue.Full:
            logger.warning(
                "%s queue full (%d); dropping %s call",
                type(self).__name__,
                self._queue.maxsize,
                args[0],
            )

    @property
    def pending(self) -> int:
        """Calls queued but not yet handed to ``_deliver``."""
        return self._queue.qsize()

    def flush(self) -> None:
        """Block until every call queued so far has been delivered."""
        if self._worker is None:
            return
        self._queue.put(_FLUSH)
        self._queue.join()

    def close(self) -> None:
        if self._closed:
            return
        self.flush()
        self._closed = True
        if self._worker is not None:
            self._queue.put(_STOP)
            self._worker.join()
            self._worker = None

    # -- worker --

    def _ensure_worker(self) -> None:
        with self._start_lock:
            if self._worker is None:
                self._worker = threading.Thread(
                    target=self._run, name=f"{type(self).__name__}-worker", daemon=True
                )
                self._worker.start()

    def _run(self) -> None:
        while True:
            try:
                item = self._queue.get(timeout=self.idle_interval)
            except queue.Empty:
                self._safely(self._on_idle)
                continue
            try:
                if item is _STOP:
                    return
                if item is _FLUSH:
                    self._safely(self._on_idle)
                else:
                    self._safely(self._deliver, item)
            finally:
                self._queue.task_done()

    def _safely(self, fn, *args: Any) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception("%s delivery failed", type(self).__name__)

    @abstractmethod
    def _prepare(self, *args: Any) -> Any: ...

    @abstractmethod
    def _deliver(self, item: Any) -> None: ...

    def _on_idle(self) -> None:
        pass


# ---------------------------------------------------------------------------
# HTTP collector
# ---------------------------------------------------------------------------


class HttpCollectorSink(BackgroundSink):
    """POSTs each sink call as JSON to a collector endpoint.

    Delivery is best-effort: transport errors and non-2xx responses are
    logged and dropped.

    Usage::

        sink = HttpCollectorSink("https://collector.example.com/clarity")
        platform = HeadlessPlatform(sink=sink)
        ...
        sink.close()
    """

    def __init__(
        self,
        endpoint: str,
        *,
        client: Optional[httpx.Client] = None,
        timeout: float = 3.0,
        headers: Optional[Dict[str, str]] = None,
        max_queue_size: int = 10_000,
    ) -> None:
        super().__init__(max_queue_size=max_queue_size)
        self.endpoint = endpoint
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, headers=headers)

    @staticmethod
    def to_body(*args: Any) -> Dict[str, Any]:
        kind, rest = _split_call(args)
        if kind == "event":
            name, data = rest
            return {"type": "event", "name": name, "data": data}
        custom_id, session_id, page_path, friendly_name = rest
        return {
            "type": "identify",
            "custom_id": custom_id,
            "session_id": session_id,
            "page_path": page_path,
            "friendly_name": friendly_name,
        }

    def _prepare(self, *args: Any) -> Dict[str, Any]:
        return self.to_body(*args)

    def _deliver(self, body: Dict[str, Any]) -> None:
        try:
            response = self._client.post(self.endpoint, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Collector rejected %s call: HTTP %d",
                body["type"],
                exc.response.status_code,
            )
        except httpx.HTTPError:
            logger.exception("Collector delivery failed for %s call", body["type"])

    def close(self) -> None:
        super().close()
        if self._owns_client:
            self._client.close()


# ---------------------------------------------------------------------------
# BigQuery
# ---------------------------------------------------------------------------

# One row per sink call; enrichment fields become columns, the full
# payload is kept as JSON.
EVENT_COLUMNS = [
    ("event_id", "STRING", "REQUIRED"),
    ("kind", "STRING", "REQUIRED"),  # event | identify
    ("event_name", "STRING", "NULLABLE"),
    ("timestamp", "TIMESTAMP", "REQUIRED"),
    ("session_id", "STRING", "NULLABLE"),
    ("user_id", "STRING", "NULLABLE"),
    ("user_type", "STRING", "NULLABLE"),
    ("page", "STRING", "NULLABLE"),
    ("friendly_name", "STRING", "NULLABLE"),
    ("viewport", "STRING", "NULLABLE"),
    ("payload_json", "JSON", "NULLABLE"),
]


def events_table_ddl(project: str, dataset: str, table: str) -> str:
    """CREATE TABLE statement for the events table, for manual setup."""
    columns = ",\n".join(
        f"  {name} {bq_type}{' NOT NULL' if mode == 'REQUIRED' else ''}"
        for name, bq_type, mode in EVENT_COLUMNS
    )
    return (
        f"CREATE TABLE IF NOT EXISTS `{project}.{dataset}.{table}` (\n{columns}\n)\n"
        "PARTITION BY DATE(timestamp)\n"
        "CLUSTER BY session_id, event_name;\n"
    )


class BigQuerySink(BackgroundSink):
    """Streams sink calls into a BigQuery table from a worker thread.

    Rows collect into a pending batch that is inserted when it reaches
    ``batch_size``, when the queue has been idle for ``idle_interval``
    seconds, and on flush()/close(). A failed insert keeps the batch for
    the next attempt; beyond ``max_pending`` rows the oldest are dropped.
    """

    def __init__(
        self,
        project_id: str,
        dataset_id: str = "clarity_events",
        table_id: str = "events",
        *,
        batch_size: int = 50,
        idle_interval: float = 5.0,
        max_pending: int = 5_000,
        auto_create_table: bool = True,
        client: Any = None,
    ):
        super().__init__(idle_interval=idle_interval)
        self.table = f"{project_id}.{dataset_id}.{table_id}"
        self.project_id = project_id
        self.dataset_id = dataset_id
        self.table_id = table_id
        self.batch_size = batch_size
        self.max_pending = max_pending
        self.auto_create_table = auto_create_table
        self._client = client
        self._batch: List[Dict[str, Any]] = []  # worker thread only
        self._table_ready = not auto_create_table

    @staticmethod
    def to_row(*args: Any) -> Dict[str, Any]:
        """Map one sink call onto EVENT_COLUMNS (None fields dropped)."""
        kind, rest = _split_call(args)
        if kind == "event":
            name, data = rest
            row = {
                "event_name": name,
                "timestamp": data.get("timestamp"),
                "session_id": data.get("session_id"),
                "user_id": data.get("user_id"),
                "user_type": data.get("user_type"),
                "page": data.get("page"),
                "viewport": data.get("viewport"),
                "payload_json": json.dumps(data),
            }
        else:
            custom_id, session_id, page_path, friendly_name = rest
            row = {
                "session_id": session_id,
                "user_id": custom_id,
                "page": page_path,
                "friendly_name": friendly_name,
            }
        row["event_id"] = str(uuid.uuid4())
        row["kind"] = kind
        row["timestamp"] = row.get("timestamp") or datetime.now(timezone.utc).isoformat()
        return {k: v for k, v in row.items() if v is not None}

    def _prepare(self, *args: Any) -> Dict[str, Any]:
        return self.to_row(*args)

    def _deliver(self, row: Dict[str, Any]) -> None:
        self._batch.append(row)
        if len(self._batch) >= self.batch_size:
            self._insert_batch()

    def _on_idle(self) -> None:
        self._insert_batch()

    def _bigquery_client(self):
        if self._client is None:
            from google.cloud import bigquery

            self._client = bigquery.Client(project=self.project_id)
        return self._client

    def _create_table(self) -> None:
        from google.cloud import bigquery

        client = self._bigquery_client()
        client.create_dataset(f"{self.project_id}.{self.dataset_id}", exists_ok=True)
        table = bigquery.Table(
            self.table,
            schema=[bigquery.SchemaField(n, t, mode=m) for n, t, m in EVENT_COLUMNS],
        )
        table.time_partitioning = bigquery.TimePartitioning(field="timestamp")
        table.clustering_fields = ["session_id", "event_name"]
        client.create_table(table, exists_ok=True)
        logger.info("Created or found Clarity events table %s", self.table)

    def _insert_batch(self) -> None:
        if not self._batch:
            return
        rows = list(self._batch)
        try:
            if not self._table_ready:
                self._create_table()
                self._table_ready = True
            errors = self._bigquery_client().insert_rows_json(self.table, rows)
        except Exception:
            overflow = len(self._batch) - self.max_pending
            if overflow > 0:
                del self._batch[:overflow]
                logger.warning("Dropped %d oldest Clarity rows awaiting retry", overflow)
            logger.exception("Insert of %d Clarity rows failed; will retry", len(rows))
            return
        del self._batch[: len(rows)]
        if errors:
            logger.error("BigQuery rejected rows (%d sent): %s", len(rows), errors[:3])
        else:
            logger.debug("Inserted %d Clarity rows into %s", len(rows), self.table)

    def close(self) -> None:
        super().close()
        if self._client is not None and hasattr(self._client, "close"):
            self._client.close()
