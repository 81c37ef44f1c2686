#!/usr/bin/env python3
"""
Consumer Flush State Machine

Receives transport units from the broker channel, buffers their rows and
persists them through the storage sink in batches.

States:
    AWAITING_SCHEMA -> BUFFERING <-> FLUSHING
    any -> DRAINING -> STOPPED (shutdown only)

Two independent triggers request a flush:
- size: checked on the dispatch thread right after each append
- interval: a timer thread firing every ``flush_interval`` seconds

Both go through flush(), which is guarded by a single-flight lock: at most one
flush runs at a time and a trigger that fires while one is in progress is
dropped, not queued. Rows appended meanwhile stay in the buffer and are
picked up by the next flush.

Offsets are acknowledged only after the rows they carry were written, so a
crash between write and commit leads to redelivery (duplicates), never loss.
"""

import logging
import threading
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from core.errors import DecodeError, PipelineError, SchemaDriftError, StorageError
from core.schema import SchemaDriftPolicy, TableSchema, TypedRow

from .kafka_channel import InboundMessage
from .transport import TransportUnit, decode_unit

logger = logging.getLogger(__name__)


class ConsumerState(str, Enum):
    AWAITING_SCHEMA = "awaiting_schema"
    BUFFERING = "buffering"
    FLUSHING = "flushing"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass
class ConsumerStats:
    units_received: int = 0
    rows_flushed: int = 0
    flushes: int = 0
    dropped_triggers: int = 0
    rejected_units: int = 0
    decode_failures: int = 0


@dataclass
class BufferedRow:
    row: TypedRow
    message: Optional[InboundMessage] = None


class FlushConsumer:
    """
    Buffering consumer for one broker consumer-group member.

    All state (buffer, session schema, sink handle, status) lives on the
    instance; several consumers in one process never share anything.

    Args:
        channel: Broker channel with start/stop/poll/acknowledge
            (e.g. KafkaUnitConsumer)
        sink: Storage sink with start/stop/provision/write_batch
            (e.g. PostgresTableSink)
        batch_size: Buffer length that triggers a flush
        flush_interval: Seconds between periodic flushes
        drift_policy: What to do with a unit whose schema differs from the
            session schema
        poll_timeout: Seconds to block in each channel poll
    """

    name = "FlushConsumer"

    def __init__(self, channel, sink, batch_size: int = 100, flush_interval: float = 5.0,
                 drift_policy: SchemaDriftPolicy = SchemaDriftPolicy.REJECT,
                 poll_timeout: float = 1.0):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if flush_interval <= 0:
            raise ValueError("flush_interval must be positive")

        self.channel = channel
        self.sink = sink
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.drift_policy = SchemaDriftPolicy(drift_policy)
        self.poll_timeout = poll_timeout
        self.stats = ConsumerStats()

        self._buffer: List[BufferedRow] = []
        self._schema: Optional[TableSchema] = None
        self._handle = None
        self._state = ConsumerState.AWAITING_SCHEMA

        # Guards buffer, schema, handle, state and stats
        self._lock = threading.Lock()
        # Single-flight guard for flush()
        self._flight = threading.Lock()

        self._started = False
        self._shutdown = threading.Event()
        self._timer_stop = threading.Event()
        self._timer: Optional[threading.Thread] = None
        self._pending_error: Optional[PipelineError] = None

    # Introspection -----------------------------------------------------------
    @property
    def state(self) -> ConsumerState:
        with self._lock:
            return self._state

    @property
    def buffer_size(self) -> int:
        with self._lock:
            return len(self._buffer)

    @property
    def session_schema(self) -> Optional[TableSchema]:
        with self._lock:
            return self._schema

    @property
    def is_ready(self) -> bool:
        return self._started and self.state not in (ConsumerState.DRAINING, ConsumerState.STOPPED)

    def stats_snapshot(self) -> Dict[str, Any]:
        with self._lock:
            snapshot = asdict(self.stats)
            snapshot['buffered'] = len(self._buffer)
            snapshot['state'] = self._state.value
        return snapshot

    # Lifecycle ---------------------------------------------------------------
    def start(self) -> None:
        """Connect the sink and the channel, then start the periodic flush timer"""
        if self._started:
            logger.warning(f"{self.name} already started")
            return

        logger.info(f"=== Starting {self.name} ===")
        self.sink.start()
        register_revoke = getattr(self.channel, "on_revoke", None)
        if register_revoke is not None:
            register_revoke(lambda: self.flush(trigger="rebalance", wait=True))
        self.channel.start()

        self._started = True
        self.start_timer()
        logger.info(f"{self.name} running (batch size {self.batch_size}, interval {self.flush_interval}s)")

    def start_timer(self) -> None:
        if self._timer is not None:
            return
        self._timer_stop.clear()
        self._timer = threading.Thread(target=self._run_timer, name=f"{self.name}-timer", daemon=True)
        self._timer.start()

    def _stop_timer(self) -> None:
        self._timer_stop.set()
        timer = self._timer
        if timer is not None and timer is not threading.current_thread():
            timer.join()
        self._timer = None

    def _run_timer(self) -> None:
        while not self._timer_stop.wait(self.flush_interval):
            try:
                self.flush(trigger="interval")
            except PipelineError as exc:
                logger.error(f"Periodic flush failed: {exc}")
                self._pending_error = exc
                self._shutdown.set()
                return

    def request_shutdown(self) -> None:
        """Ask run() to leave its loop and drain; safe to call from signal handlers"""
        self._shutdown.set()

    def stop(self) -> None:
        """
        Drain: stop accepting units, flush whatever is buffered exactly once,
        then release the channel and the sink.
        """
        with self._lock:
            if self._state in (ConsumerState.DRAINING, ConsumerState.STOPPED):
                return
            self._state = ConsumerState.DRAINING

        self._shutdown.set()
        self._stop_timer()

        logger.info(f"Draining {self.buffer_size} buffered rows")
        try:
            self.flush(trigger="drain", wait=True)
        finally:
            try:
                self.channel.stop()
            finally:
                self.sink.stop()
                with self._lock:
                    self._state = ConsumerState.STOPPED
                self._started = False
                logger.info(f"{self.name} stopped: {self.stats_snapshot()}")

    def run(self) -> None:
        """Dispatch loop: poll, decode, buffer; drains on shutdown or fatal error"""
        if not self._started:
            self.start()
        try:
            while not self._shutdown.is_set():
                self._raise_pending_error()
                message = self.channel.poll(self.poll_timeout)
                if message is None:
                    continue
                self.handle_message(message)
            self._raise_pending_error()
        finally:
            self.stop()

    def _raise_pending_error(self) -> None:
        if self._pending_error is not None:
            error, self._pending_error = self._pending_error, None
            raise error

    # Unit handling -----------------------------------------------------------
    def handle_message(self, message: InboundMessage) -> bool:
        try:
            unit = decode_unit(message.value)
        except DecodeError as exc:
            with self._lock:
                self.stats.decode_failures += 1
            logger.error(
                f"Skipping undecodable message {message.topic}[{message.partition}]@{message.offset}: {exc}"
            )
            return False

        try:
            return self.handle_unit(unit, message)
        except SchemaDriftError as exc:
            logger.error(f"Rejected message {message.topic}[{message.partition}]@{message.offset}: {exc}")
            return False

    def handle_unit(self, unit: TransportUnit, message: Optional[InboundMessage] = None) -> bool:
        """
        Buffer one unit; returns False when the consumer is draining.

        The first unit of a session provisions storage from its schema.
        Raises SchemaDriftError when the unit's schema differs from the
        session schema under the reject policy.
        """
        with self._lock:
            self.stats.units_received += 1
            state = self._state
            schema = self._schema

        if state in (ConsumerState.DRAINING, ConsumerState.STOPPED):
            logger.warning(f"{self.name} is {state.value}, unit not accepted")
            return False

        if schema is None:
            self._open_session(unit.table_schema)
        elif unit.table_schema != schema:
            self._handle_drift(unit)

        with self._lock:
            if self._state in (ConsumerState.DRAINING, ConsumerState.STOPPED):
                return False
            self._buffer.append(BufferedRow(row=unit.row, message=message))
            size = len(self._buffer)

        logger.debug(f"Processed message, buffer size: {size}")
        if size >= self.batch_size:
            self.flush(trigger="size")
        return True

    def _open_session(self, schema: TableSchema) -> None:
        logger.info(f"Provisioning storage for schema: {schema.describe()}")
        handle = self.sink.provision(schema)
        with self._lock:
            self._schema = schema
            self._handle = handle
            if self._state is ConsumerState.AWAITING_SCHEMA:
                self._state = ConsumerState.BUFFERING

    def _handle_drift(self, unit: TransportUnit) -> None:
        if self.drift_policy is SchemaDriftPolicy.NEW_SESSION:
            logger.warning("Schema changed, flushing buffer and starting a new session")
            self.flush(trigger="schema_drift", wait=True)
            self._open_session(unit.table_schema)
            return

        with self._lock:
            self.stats.rejected_units += 1
        raise SchemaDriftError(
            f"Unit from {unit.provenance} has columns {list(unit.table_schema.column_names)}, "
            f"session has {list(self.session_schema.column_names)}"
        )

    # Flushing ----------------------------------------------------------------
    def flush(self, trigger: str = "manual", wait: bool = False) -> int:
        """
        Write the buffered rows as one batch and acknowledge their offsets.

        Returns the number of rows written; 0 when the buffer was empty or
        the trigger was dropped because another flush is in progress. With
        ``wait=True`` the call blocks until it can run instead of dropping.
        Raises StorageError when the write fails; the rows stay buffered.
        """
        if not self._flight.acquire(blocking=wait):
            with self._lock:
                self.stats.dropped_triggers += 1
            logger.debug(f"Flush already in progress, dropping {trigger} trigger")
            return 0

        try:
            with self._lock:
                batch = list(self._buffer)
                handle = self._handle
                if not batch:
                    return 0
                if self._state is ConsumerState.BUFFERING:
                    self._state = ConsumerState.FLUSHING

            logger.info(f"Flushing buffer with {len(batch)} rows ({trigger} trigger)")
            try:
                self.sink.write_batch(handle, [item.row for item in batch])
            except StorageError as exc:
                logger.error(f"Flush of {len(batch)} rows failed: {exc}")
                raise
            except Exception as exc:
                logger.error(f"Flush of {len(batch)} rows failed: {exc}")
                raise StorageError(f"Batch write failed: {exc}") from exc
            finally:
                with self._lock:
                    if self._state is ConsumerState.FLUSHING:
                        self._state = ConsumerState.BUFFERING

            with self._lock:
                # Only flush() removes rows and it is single-flight
                del self._buffer[:len(batch)]
                self.stats.rows_flushed += len(batch)
                self.stats.flushes += 1
                total = self.stats.rows_flushed

            self._acknowledge(batch)
            logger.info(f"Flushed {len(batch)} rows (total: {total})")
            return len(batch)
        finally:
            self._flight.release()

    def _acknowledge(self, batch: List[BufferedRow]) -> None:
        messages = [item.message for item in batch if item.message is not None]
        if not messages:
            return
        try:
            self.channel.acknowledge(messages)
        except PipelineError as exc:
            # Rows are stored; they will be redelivered and written again
            logger.error(f"Rows written but offsets not acknowledged: {exc}")
