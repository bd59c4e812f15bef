"""Database log handler.

logging.Handler that stores application log records in the system_logs
table from a background asyncio task.

Examples:
    >>> handler = DatabaseLogHandler(level=logging.INFO)
    >>> logging.getLogger().addHandler(handler)
    >>> await handler.start()
    >>> ...
    >>> await handler.stop()
"""

import logging
import asyncio
import traceback
from typing import Optional
from queue import Queue, Empty, Full

from .repository import SystemLogRepository


class DatabaseLogHandler(logging.Handler):
    """Queue log records and write them to PostgreSQL in batches.

    emit() only enqueues, so logging never blocks on the database and a
    database outage never breaks the application. Every flush cycle drains
    the whole queue; records arriving while the queue is full are dropped
    and counted in ``dropped``.

    Attributes:
        queue: pending log records (bounded by ``max_queue_size``)
        batch_size: records written between event loop yields
        flush_interval: seconds between flush cycles
        dropped: records discarded because the queue was full
    """

    def __init__(
        self,
        level: int = logging.INFO,
        batch_size: int = 10,
        flush_interval: float = 5.0,
        max_queue_size: int = 10000
    ):
        super().__init__(level)
        self.queue: Queue = Queue(maxsize=max_queue_size)
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.dropped = 0
        self._stop_event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self._started = False

        # records of the persistence layer itself are never stored
        self._excluded_loggers = {
            "telehealth.database.log_handler",
            "telehealth.database.repository",
            "telehealth.database.connection",
            "asyncpg",
        }

    def emit(self, record: logging.LogRecord):
        if record.name in self._excluded_loggers:
            return

        try:
            self.queue.put_nowait(self._format_record(record))
        except Full:
            self.dropped += 1
        except Exception:
            self.handleError(record)

    def _format_record(self, record: logging.LogRecord) -> dict:
        """Convert a LogRecord to SystemLogRepository.add_log() keyword arguments."""
        exception = None
        if record.exc_info:
            exception = "".join(traceback.format_exception(*record.exc_info))

        return {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger_name": record.name,
            "module": record.module,
            "func_name": record.funcName,
            "line_no": record.lineno,
            "exception": exception,
            "extra": getattr(record, "extra", None),
        }

    async def start(self):
        """Start the background writer. Call once the database is up."""
        if self._started:
            return

        self._started = True
        self._stop_event.clear()
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.create_task(self._worker())

    async def stop(self):
        """Flush the remaining records and stop the writer."""
        if not self._started:
            return

        self._stop_event.set()
        if self._task:
            await self._task
        self._started = False

    async def _flush(self, repo: SystemLogRepository) -> int:
        """Write everything queued, yielding to the loop after each batch."""
        written = 0
        while True:
            try:
                record = self.queue.get_nowait()
            except Empty:
                break
            await repo.add_log(**record)
            written += 1
            if written % self.batch_size == 0:
                await asyncio.sleep(0)
        return written

    async def _worker(self):
        repo = SystemLogRepository()

        while not self._stop_event.is_set():
            try:
                await self._flush(repo)
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.flush_interval)
                except asyncio.TimeoutError:
                    pass
            except Exception as e:
                # stdout only: logging here would feed back into this handler
                print(f"DatabaseLogHandler worker error: {e}")
                await asyncio.sleep(self.flush_interval)

        try:
            await self._flush(repo)
        except Exception as e:
            print(f"DatabaseLogHandler final flush error: {e}")
        if self.dropped:
            print(f"DatabaseLogHandler dropped {self.dropped} records (queue full)")

    def close(self):
        if self._loop and self._started and not self._loop.is_closed():
            asyncio.run_coroutine_threadsafe(self.stop(), self._loop)
        super().close()
