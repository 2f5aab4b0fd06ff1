"""Single-flight chunk dispatcher."""

import asyncio
import logging
import queue
import threading
import time
from typing import Callable, Optional

from .base import AbstractTranscriptionBackend
from ..exceptions import AuthError, NetworkError, RateLimitError, TranscriptionError
from ..models.chunk import Chunk
from ..models.events import Status
from ..models.transcription import TranscriptionRequest, TranscriptionResult

logger = logging.getLogger(__name__)

# Slack on top of the drain deadline for the worker to record the last outcome
DRAIN_GRACE_SECONDS = 0.5


class ChunkDispatcher:
    """Sends chunks to a transcription backend one at a time, in submission order.

    A single worker thread runs its own asyncio loop and awaits each backend
    call before taking the next chunk from the queue, so completion order is
    submission order and at most one chunk is ever SENDING.
    """

    def __init__(self,
                 backend: AbstractTranscriptionBackend,
                 language: str = "en-US",
                 chunk_timeout: float = 15.0,
                 retry_attempts: int = 2,
                 retry_backoff: float = 0.5,
                 on_result: Optional[Callable[[TranscriptionResult], None]] = None,
                 on_failure: Optional[Callable[[Chunk], None]] = None,
                 on_fatal: Optional[Callable[[TranscriptionError], None]] = None,
                 on_status: Optional[Callable[[str], None]] = None,
                 name: str = "dispatcher"):
        self.backend = backend
        self.language = language
        self.chunk_timeout = chunk_timeout
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.on_result = on_result
        self.on_failure = on_failure
        self.on_fatal = on_fatal
        self.on_status = on_status
        self.name = name

        self.task_queue: "queue.Queue[Optional[Chunk]]" = queue.Queue()
        self.worker_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._current_chunk: Optional[Chunk] = None
        self._current_task: Optional[asyncio.Task] = None
        self._sending = 0
        self._halted = False
        self._shutdown = False
        self._drain_deadline: Optional[float] = None

        self.stats = {
            "submitted": 0,
            "succeeded": 0,
            "failed": 0,
            "skipped": 0,
            "cancelled": 0,
            "max_concurrent_sends": 0,
        }

    def start(self) -> None:
        if self.worker_thread is not None:
            return
        self.worker_thread = threading.Thread(target=self._worker_loop, daemon=True)
        self.worker_thread.name = f"{self.name}_worker"
        self.worker_thread.start()
        logger.info(f"Started {self.name} worker ({self.backend.service_name})")

    def submit(self, chunk: Chunk) -> bool:
        """Queue a chunk. Never blocks."""
        if self._shutdown:
            self._skip(chunk, "dispatcher shut down")
            return False
        with self._lock:
            self.stats["submitted"] += 1
        logger.debug(f"Queued chunk {chunk.sequence} ({chunk.payload.size} bytes)")
        self.task_queue.put(chunk)
        return True

    @property
    def in_flight(self) -> Optional[Chunk]:
        return self._current_chunk

    @property
    def halted(self) -> bool:
        return self._halted

    def _worker_loop(self) -> None:
        """Worker thread body: one event loop, one chunk at a time."""
        thread_name = threading.current_thread().name
        logger.debug(f"Worker thread {thread_name} starting")

        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop

        try:
            while True:
                chunk = self.task_queue.get()
                if chunk is None:
                    logger.debug(f"Worker {thread_name} received sentinel, exiting.")
                    self.task_queue.task_done()
                    break
                try:
                    loop.run_until_complete(self._dispatch(chunk))
                except Exception as e:
                    logger.error(f"Unhandled exception dispatching chunk {chunk.sequence}: {e}",
                                 exc_info=True)
                finally:
                    self.task_queue.task_done()
        finally:
            with self._lock:
                self._loop = None
            loop.close()
            logger.debug(f"Worker thread {thread_name} exiting and closing its event loop.")

    def _effective_timeout(self) -> float:
        if self._drain_deadline is None:
            return self.chunk_timeout
        return min(self.chunk_timeout, self._drain_deadline - time.monotonic())

    async def _dispatch(self, chunk: Chunk) -> None:
        if self._halted:
            self._skip(chunk, "dispatcher halted after fatal backend error")
            return
        timeout = self._effective_timeout()
        if timeout <= 0:
            self._fail(chunk, "drain deadline exceeded before dispatch")
            return

        chunk.mark_sending()
        self._notify(self.on_status, Status.PROCESSING_CHUNK)
        logger.info(f"Transcribing chunk {chunk.sequence} ({chunk.payload.duration_seconds:.1f}s) "
                    f"via {self.backend.service_name}")

        deadline = time.monotonic() + timeout
        task = asyncio.get_running_loop().create_task(self._send_with_retries(chunk, deadline))
        with self._lock:
            self._sending += 1
            self.stats["max_concurrent_sends"] = max(self.stats["max_concurrent_sends"], self._sending)
            self._current_chunk = chunk
            self._current_task = task

        try:
            text = await asyncio.wait_for(task, timeout)
        except asyncio.TimeoutError:
            self._fail(chunk, f"timed out after {timeout:.1f}s")
        except asyncio.CancelledError:
            with self._lock:
                self.stats["cancelled"] += 1
            self._fail(chunk, "cancelled")
        except AuthError as e:
            self._fail(chunk, str(e))
            self._halted = True
            logger.error(f"{self.name}: fatal backend error, halting dispatch: {e}")
            self._notify(self.on_fatal, e)
        except TranscriptionError as e:
            self._fail(chunk, str(e))
        except Exception as e:
            logger.error(f"Unexpected backend failure for chunk {chunk.sequence}: {e}", exc_info=True)
            self._fail(chunk, f"unexpected error: {e}")
        else:
            chunk.succeed(text)
            with self._lock:
                self.stats["succeeded"] += 1
            result = TranscriptionResult(
                sequence=chunk.sequence,
                text=chunk.text,
                latency=chunk.latency,
                service=self.backend.service_name,
                attempts=chunk.attempts,
            )
            logger.info(f"Chunk {chunk.sequence} done in {result.latency:.2f}s: '{result.text[:50]}'")
            self._notify(self.on_result, result)
        finally:
            with self._lock:
                self._sending -= 1
                self._current_chunk = None
                self._current_task = None

    async def _send_with_retries(self, chunk: Chunk, deadline: float) -> str:
        payload = chunk.payload
        request = TranscriptionRequest(
            audio=payload.data,
            sample_rate=payload.sample_rate,
            channels=payload.channels,
            encoding=payload.encoding,
            language=self.language,
            sequence=chunk.sequence,
        )
        attempt = 0
        while True:
            attempt += 1
            chunk.attempts = attempt
            request.timeout = max(deadline - time.monotonic(), 0.0)
            try:
                return await self.backend.transcribe(request)
            except (NetworkError, RateLimitError) as e:
                if attempt > self.retry_attempts:
                    raise
                delay = self._retry_delay(e, attempt)
                logger.warning(f"Chunk {chunk.sequence} attempt {attempt} failed ({e}); "
                               f"retrying in {delay:.2f}s")
                await asyncio.sleep(delay)

    def _retry_delay(self, error: TranscriptionError, attempt: int) -> float:
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            return error.retry_after
        return self.retry_backoff * (2 ** (attempt - 1))

    def cancel_in_flight(self) -> bool:
        """Abort the backend call in progress, if any. Safe from any thread."""
        with self._lock:
            task = self._current_task
            chunk = self._current_chunk
            loop = self._loop
        if task is None or loop is None or task.done():
            return False
        logger.info(f"Cancelling in-flight chunk {chunk.sequence}")
        try:
            loop.call_soon_threadsafe(task.cancel)
        except RuntimeError:
            # Loop closed between the check and the call
            return False
        return True

    def set_drain_deadline(self, deadline: float) -> None:
        """Cap every call dispatched from now on at ``deadline`` (time.monotonic)."""
        with self._lock:
            if self._drain_deadline is None or deadline < self._drain_deadline:
                self._drain_deadline = deadline

    def drain(self, timeout: float) -> bool:
        """Wait for queued chunks, bounding every remaining call by ``timeout`` overall.

        Returns:
            True if the queue emptied in time
        """
        self.set_drain_deadline(time.monotonic() + timeout)
        deadline = self._drain_deadline
        logger.info(f"[{self.name}] Draining {self.task_queue.unfinished_tasks} chunks, "
                    f"up to {timeout:.1f}s")
        if self._wait_idle(deadline):
            return True
        # A call started before the deadline was set may still be running
        self.cancel_in_flight()
        if self._wait_idle(deadline + DRAIN_GRACE_SECONDS):
            return True
        logger.warning(f"[{self.name}] Drain deadline reached with "
                       f"{self.task_queue.unfinished_tasks} chunks unfinished")
        return False

    def _wait_idle(self, until: float) -> bool:
        while time.monotonic() < until:
            if self.task_queue.unfinished_tasks == 0:
                return True
            time.sleep(0.01)
        return self.task_queue.unfinished_tasks == 0

    def shutdown(self, timeout: float = 2.0) -> None:
        """Stop the worker. Idempotent."""
        if self._shutdown:
            return
        self._shutdown = True
        if self.worker_thread is not None and self.worker_thread is not threading.current_thread():
            self.task_queue.put(None)
            self.worker_thread.join(timeout)
            if self.worker_thread.is_alive():
                logger.warning(f"Worker thread {self.worker_thread.name} did not terminate cleanly.")

        while True:
            try:
                chunk = self.task_queue.get_nowait()
            except queue.Empty:
                break
            if chunk is not None and not chunk.status.is_terminal:
                self._skip(chunk, "dispatcher shut down")
            self.task_queue.task_done()
        logger.info(f"{self.name} shutdown complete: {self.stats}")

    def _fail(self, chunk: Chunk, reason: str) -> None:
        chunk.fail(reason)
        with self._lock:
            self.stats["failed"] += 1
        logger.warning(f"Chunk {chunk.sequence} failed: {reason}")
        self._notify(self.on_failure, chunk)

    def _skip(self, chunk: Chunk, reason: str) -> None:
        chunk.skip(reason)
        with self._lock:
            self.stats["skipped"] += 1
        logger.debug(f"Chunk {chunk.sequence} skipped: {reason}")
        self._notify(self.on_failure, chunk)

    def _notify(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Error in {self.name} callback: {e}", exc_info=True)
