import asyncio
import contextlib
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles

if TYPE_CHECKING:
    from callbrain.context import Context

from callbrain.services.manager import BaseAsyncLoggingService

LOG_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}

# -------------------------------------------------------------- #
# Async Logging Service
# -------------------------------------------------------------- #


class AsyncLoggingService(BaseAsyncLoggingService):
    """Queue-backed async logger writing one line per message to a log file."""

    def __init__(
        self,
        context: "Context",
        log_dir: str = "logs",
        log_file: str | None = None,
        use_timestamp: bool = True,
        console_output: bool = True,
        min_level: str = "DEBUG",
    ):
        """
        Args:
            context: Application context
            log_dir: Directory the log file is created in
            log_file: Explicit file name; generated when omitted
            use_timestamp: Generated names carry the start time, otherwise "callbrain.log"
            console_output: Echo every line to stdout
            min_level: Lines below this level are dropped
        """
        super().__init__(context)
        self.log_dir = Path(log_dir)
        self.console_output = console_output

        if min_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {min_level}")
        self.min_level = min_level.upper()

        if log_file is None:
            if use_timestamp:
                timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
                self.log_file = f"callbrain_{timestamp}.log"
            else:
                self.log_file = "callbrain.log"
        else:
            self.log_file = log_file

        self.log_path = self.log_dir / self.log_file

        self._write_lock = asyncio.Lock()
        self._log_queue: asyncio.Queue[str] = asyncio.Queue()
        self._writer_task: asyncio.Task | None = None

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        """Create the log directory and start the writer task."""
        await super().on_start(services)

        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._writer_task = asyncio.create_task(self._process_log_queue())

        await self.info(f"Logging to {self.log_path} (min level {self.min_level})")

    async def on_close(self) -> None:
        """Stop the writer and flush whatever is still queued."""
        await super().on_close()

        if self._writer_task:
            self._writer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer_task
            self._writer_task = None

        await self._flush_queue()

    # -------------------------------------------------------------- #
    # Public Logging Methods
    # -------------------------------------------------------------- #

    async def log(self, message: str, level: str = "INFO") -> None:
        """Queue a log message.

        Args:
            message: The log message
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        """
        level = level.upper()
        if LOG_LEVELS.get(level, 0) < LOG_LEVELS[self.min_level]:
            return

        timestamp = datetime.now().isoformat()
        await self._log_queue.put(f"[{timestamp}] [{level}] {message}")

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    async def _process_log_queue(self) -> None:
        """Write queued messages until cancelled."""
        while True:
            message = await self._log_queue.get()
            await self._write_to_file(message)
            self._log_queue.task_done()

    async def _write_to_file(self, message: str) -> None:
        if self.console_output:
            print(message, file=sys.stdout, flush=True)

        async with self._write_lock:
            try:
                async with aiofiles.open(self.log_path, mode="a") as f:
                    await f.write(message + "\n")
            except OSError as e:
                print(f"[ERROR] Failed to write to log file: {e}", file=sys.stderr, flush=True)

    async def _flush_queue(self) -> None:
        while not self._log_queue.empty():
            message = self._log_queue.get_nowait()
            await self._write_to_file(message)
