import logging
import time
from unittest.mock import MagicMock

import pytest

from livescribe.exceptions import AuthError, NetworkError, RateLimitError
from livescribe.models.chunk import AudioPayload, Chunk, ChunkStatus
from livescribe.models.events import Status
from livescribe.transcription.dispatcher import ChunkDispatcher

logger = logging.getLogger(__name__)


def create_chunk(sequence: int, size: int = 3200) -> Chunk:
    """Creates a dummy chunk for testing."""
    return Chunk(sequence=sequence, payload=AudioPayload(data=b"\x01" * size), captured_at=time.time())


@pytest.fixture
def callbacks():
    return {
        "on_result": MagicMock(),
        "on_failure": MagicMock(),
        "on_fatal": MagicMock(),
        "on_status": MagicMock(),
    }


def make_dispatcher(backend, callbacks, **kwargs) -> ChunkDispatcher:
    kwargs.setdefault("retry_backoff", 0.01)
    dispatcher = ChunkDispatcher(backend, name="test_dispatcher", **callbacks, **kwargs)
    dispatcher.start()
    return dispatcher


@pytest.mark.unit
class TestChunkDispatcher:

    def test_results_arrive_in_sequence_order_despite_latency(self, backend_cls, callbacks):
        """A slow first chunk still completes before a fast second one."""
        backend = backend_cls(delays={1: 0.3, 2: 0.0, 3: 0.1})
        dispatcher = make_dispatcher(backend, callbacks)
        chunks = [create_chunk(i) for i in (1, 2, 3)]
        for chunk in chunks:
            dispatcher.submit(chunk)

        assert dispatcher.drain(5.0)
        dispatcher.shutdown()

        sequences = [c.args[0].sequence for c in callbacks["on_result"].call_args_list]
        assert sequences == [1, 2, 3]
        assert backend.calls == [1, 2, 3]
        assert all(c.status is ChunkStatus.SUCCEEDED for c in chunks)

    def test_at_most_one_chunk_in_flight(self, backend_cls, callbacks):
        backend = backend_cls(default_delay=0.02)
        dispatcher = make_dispatcher(backend, callbacks)
        for i in range(1, 11):
            dispatcher.submit(create_chunk(i))

        assert dispatcher.drain(5.0)
        dispatcher.shutdown()

        assert backend.max_active == 1
        assert dispatcher.stats["max_concurrent_sends"] == 1
        assert dispatcher.stats["succeeded"] == 10

    def test_timeout_fails_chunk_and_continues(self, backend_cls, callbacks):
        backend = backend_cls(delays={1: 2.0})
        dispatcher = make_dispatcher(backend, callbacks, chunk_timeout=0.2)
        first, second = create_chunk(1), create_chunk(2)
        dispatcher.submit(first)
        dispatcher.submit(second)

        assert dispatcher.drain(5.0)
        dispatcher.shutdown()

        assert first.status is ChunkStatus.FAILED
        assert "timed out" in first.error
        assert second.status is ChunkStatus.SUCCEEDED
        callbacks["on_failure"].assert_called_once_with(first)
        callbacks["on_fatal"].assert_not_called()

    def test_transient_errors_are_retried(self, backend_cls, callbacks):
        backend = backend_cls(script={1: [NetworkError("connection reset"), "recovered"]})
        dispatcher = make_dispatcher(backend, callbacks, retry_attempts=2)
        chunk = create_chunk(1)
        dispatcher.submit(chunk)

        assert dispatcher.drain(5.0)
        dispatcher.shutdown()

        assert chunk.status is ChunkStatus.SUCCEEDED
        assert chunk.text == "recovered"
        assert chunk.attempts == 2
        assert callbacks["on_result"].call_args.args[0].attempts == 2

    def test_requests_carry_time_left_on_chunk_deadline(self, backend_cls, callbacks):
        backend = backend_cls(script={1: [NetworkError("connection reset"), "recovered"]})
        dispatcher = make_dispatcher(backend, callbacks, chunk_timeout=1.0, retry_attempts=1,
                                     retry_backoff=0.1)
        dispatcher.submit(create_chunk(1))

        assert dispatcher.drain(5.0)
        dispatcher.shutdown()

        first, second = backend.timeouts
        assert 0.0 < second < first <= 1.0
        assert first - second >= 0.1

    def test_retries_are_bounded(self, backend_cls, callbacks):
        backend = backend_cls(script={1: [NetworkError("a"), NetworkError("b"), NetworkError("c")]})
        dispatcher = make_dispatcher(backend, callbacks, retry_attempts=1)
        chunk = create_chunk(1)
        dispatcher.submit(chunk)

        assert dispatcher.drain(5.0)
        dispatcher.shutdown()

        assert chunk.status is ChunkStatus.FAILED
        assert backend.calls == [1, 1]

    def test_rate_limit_honours_retry_after(self, callbacks, backend_cls):
        dispatcher = ChunkDispatcher(backend_cls(), retry_backoff=0.5)
        assert dispatcher._retry_delay(RateLimitError("slow down", retry_after=0.05), 1) == 0.05
        assert dispatcher._retry_delay(NetworkError("x"), 1) == 0.5
        assert dispatcher._retry_delay(NetworkError("x"), 3) == 2.0

    def test_auth_error_halts_dispatch(self, backend_cls, callbacks):
        backend = backend_cls(script={1: [AuthError("bad key")]}, delays={1: 0.05})
        dispatcher = make_dispatcher(backend, callbacks)
        chunks = [create_chunk(i) for i in (1, 2, 3)]
        for chunk in chunks:
            dispatcher.submit(chunk)

        assert dispatcher.drain(5.0)
        dispatcher.shutdown()

        assert dispatcher.halted
        assert chunks[0].status is ChunkStatus.FAILED
        assert [c.status for c in chunks[1:]] == [ChunkStatus.SKIPPED, ChunkStatus.SKIPPED]
        assert backend.calls == [1]
        callbacks["on_fatal"].assert_called_once()
        assert isinstance(callbacks["on_fatal"].call_args.args[0], AuthError)

    def test_cancel_in_flight(self, backend_cls, callbacks):
        backend = backend_cls(delays={1: 5.0})
        dispatcher = make_dispatcher(backend, callbacks, chunk_timeout=10.0)
        chunk = create_chunk(1)
        dispatcher.submit(chunk)

        deadline = time.monotonic() + 2.0
        while dispatcher.in_flight is None and time.monotonic() < deadline:
            time.sleep(0.01)
        assert dispatcher.cancel_in_flight()

        assert dispatcher.drain(2.0)
        dispatcher.shutdown()
        assert chunk.status is ChunkStatus.FAILED
        assert chunk.error == "cancelled"
        assert dispatcher.stats["cancelled"] == 1
        assert backend.cancelled == [1]

    def test_cancel_with_nothing_in_flight(self, backend_cls, callbacks):
        dispatcher = make_dispatcher(backend_cls(), callbacks)
        assert dispatcher.cancel_in_flight() is False
        dispatcher.shutdown()

    def test_drain_deadline_bounds_remaining_calls(self, backend_cls, callbacks):
        backend = backend_cls(default_delay=5.0)
        dispatcher = make_dispatcher(backend, callbacks, chunk_timeout=10.0)
        chunks = [create_chunk(i) for i in (1, 2, 3)]
        for chunk in chunks:
            dispatcher.submit(chunk)

        start = time.monotonic()
        dispatcher.drain(0.3)
        dispatcher.shutdown()
        elapsed = time.monotonic() - start

        assert elapsed < 3.0
        assert all(c.status is ChunkStatus.FAILED for c in chunks)

    def test_status_reported_before_each_send(self, backend_cls, callbacks):
        dispatcher = make_dispatcher(backend_cls(), callbacks)
        dispatcher.submit(create_chunk(1))
        dispatcher.submit(create_chunk(2))

        assert dispatcher.drain(5.0)
        dispatcher.shutdown()

        statuses = [c.args[0] for c in callbacks["on_status"].call_args_list]
        assert statuses == [Status.PROCESSING_CHUNK, Status.PROCESSING_CHUNK]

    def test_submit_after_shutdown_skips(self, backend_cls, callbacks):
        dispatcher = make_dispatcher(backend_cls(), callbacks)
        dispatcher.shutdown()
        chunk = create_chunk(1)

        assert dispatcher.submit(chunk) is False
        assert chunk.status is ChunkStatus.SKIPPED

    def test_shutdown_is_idempotent(self, backend_cls, callbacks):
        dispatcher = make_dispatcher(backend_cls(), callbacks)
        dispatcher.shutdown()
        dispatcher.shutdown()
        assert not dispatcher.worker_thread.is_alive()
