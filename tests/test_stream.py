import gc
import time

import pytest
import requests

from conftest import FakeConnection, FakeTransport, hint_event, sse_lines, tx_hash, wait_for
from mev_share.backoff import Backoff
from mev_share.errors import StreamClosed, StreamUnrecoverable
from mev_share.stream import ConnectionState, HintEventStream, InvalidTransition, Reconnector
from mev_share.types import EventType, EventTypeFilter


def make_stream(transport, **kwargs):
    kwargs.setdefault('backoff', Backoff(base=0, max_retries=1))
    return HintEventStream(transport, **kwargs)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestReconnector:
    def test_backoff_then_failure(self):
        reconnector = Reconnector(Backoff(base=1, factor=2, max_retries=3))

        assert [reconnector.disconnected() for _ in range(3)] == [1, 2, 4]
        assert reconnector.state is ConnectionState.RECONNECTING
        assert reconnector.disconnected() is None
        assert reconnector.state is ConnectionState.FAILED

    def test_connect_resets_attempts(self):
        reconnector = Reconnector(Backoff(base=1, factor=2, max_retries=3))
        reconnector.disconnected()
        reconnector.disconnected()

        assert reconnector.connected()
        assert reconnector.attempt == 0
        assert reconnector.disconnected() == 1

    def test_max_downtime(self):
        clock = FakeClock()
        reconnector = Reconnector(Backoff(base=1, max_retries=100), max_downtime=10, clock=clock)

        assert reconnector.disconnected() == 1
        clock.now += 11
        assert reconnector.disconnected() is None
        assert reconnector.state is ConnectionState.FAILED

    def test_failed_is_terminal(self):
        reconnector = Reconnector(Backoff(max_retries=0))
        assert reconnector.disconnected() is None

        with pytest.raises(InvalidTransition):
            reconnector.connected()
        reconnector.close()
        assert reconnector.state is ConnectionState.CLOSED

    def test_closed_absorbs_events(self):
        reconnector = Reconnector(Backoff())
        reconnector.close()

        assert reconnector.disconnected() is None
        assert not reconnector.connected()
        reconnector.close()
        assert reconnector.state is ConnectionState.CLOSED


class TestHintEventStream:
    def test_malformed_messages_do_not_end_the_stream(self):
        malformed = ['not json', '{}', '{"hash": "0x12"}', '[]', '{"hash": 5}',
                     '{"hash": "%s", "txs": 3}' % tx_hash(1), '"text"',
                     '{"hash": "%s", "mevGasPrice": "lots"}' % tx_hash(2), '{', 'null',
                     '{"hash": "%s", "gasUsed": "\\u00b2"}' % tx_hash(3),
                     '{"hash": "%s", "gasUsed": "²"}' % tx_hash(4),
                     '[' * 100000 + ']' * 100000]
        transport = FakeTransport(FakeConnection(sse_lines(*malformed, hint_event(42))))
        stream = make_stream(transport)

        received = stream.read(timeout=2)

        assert received.hint.hash == tx_hash(42)
        assert received.dropped_count == 0
        with pytest.raises(StreamUnrecoverable):
            stream.read(timeout=2)
        assert stream.decode_errors == 13
        stream.close()

    def test_reconnects_after_disconnect(self):
        transport = FakeTransport(
            FakeConnection(sse_lines(hint_event(1)), error=requests.ConnectionError('reset')),
            FakeConnection(sse_lines(hint_event(2)), block=True),
        )
        backoff = Backoff(base=0.01, factor=2, max_retries=3)
        stream = make_stream(transport, backoff=backoff)
        started = time.monotonic()

        with stream:
            first = stream.read(timeout=2)
            second = stream.read(timeout=2)
            elapsed = time.monotonic() - started

            assert [first.hint.hash, second.hint.hash] == [tx_hash(1), tx_hash(2)]
            assert second.hint.sequence > first.hint.sequence
            assert transport.opens == 2
            assert stream.state is ConnectionState.CONNECTED
            assert elapsed < backoff.total() + 1

    def test_gives_up_after_max_retries(self):
        transport = FakeTransport()
        stream = make_stream(transport, backoff=Backoff(base=0, max_retries=2))

        with pytest.raises(StreamUnrecoverable) as info:
            stream.read(timeout=2)

        assert info.value.attempts == 3
        assert transport.opens == 3
        assert stream.state is ConnectionState.FAILED

    def test_full_buffer_drops_oldest(self):
        transport = FakeTransport(FakeConnection(sse_lines(*[hint_event(n) for n in range(1, 21)])))
        stream = make_stream(transport, buffer_size=5, backoff=Backoff(max_retries=0))
        stream.start()
        wait_for(lambda: stream.state is ConnectionState.FAILED)

        reads = [stream.read(timeout=1) for _ in range(5)]

        assert [r.hint.hash for r in reads] == [tx_hash(n) for n in range(16, 21)]
        assert [r.dropped_count for r in reads] == [15, 0, 0, 0, 0]
        assert stream.total_dropped == 15
        with pytest.raises(StreamUnrecoverable):
            stream.read(timeout=1)

    def test_event_type_filter(self):
        bundle_txs = [{'to': '0x' + '11' * 20}, {'functionSelector': '0xa9059cbb'}]
        transport = FakeTransport(FakeConnection(
            sse_lines(hint_event(1), hint_event(2, txs=bundle_txs), hint_event(3)), block=True))

        with make_stream(transport, event_filter=EventTypeFilter.BUNDLE) as stream:
            received = stream.read(timeout=2)
            assert received.hint.hash == tx_hash(2)
            assert received.hint.event_type is EventType.BUNDLE
            assert stream.read(timeout=0.1) is None

    def test_close_releases_connection(self):
        connection = FakeConnection([], block=True)
        stream = make_stream(FakeTransport(connection))
        stream.start()
        wait_for(lambda: stream.state is ConnectionState.CONNECTED)

        stream.close()

        assert connection.closed.is_set()
        assert not stream._reader.thread.is_alive()
        assert stream.state is ConnectionState.CLOSED
        with pytest.raises(StreamClosed):
            stream.read()
        assert list(stream) == []

    def test_read_after_close_ignores_buffered_hints(self):
        transport = FakeTransport(FakeConnection(sse_lines(hint_event(1), hint_event(2)), block=True))
        stream = make_stream(transport)
        assert stream.read(timeout=2).hint.hash == tx_hash(1)
        wait_for(lambda: len(stream._reader._buffer) == 1)

        stream.close()

        with pytest.raises(StreamClosed):
            stream.read(timeout=0)

    def test_breaking_out_of_iteration_releases_connection(self):
        connection = FakeConnection(sse_lines(hint_event(1), hint_event(2)), block=True)
        stream = make_stream(FakeTransport(connection))

        for hint in stream:
            assert hint.hash == tx_hash(1)
            break

        assert connection.closed.is_set()
        assert not stream._reader.thread.is_alive()
        assert stream.state is ConnectionState.CLOSED

    def test_unreferenced_stream_releases_connection(self):
        connection = FakeConnection([], block=True)
        stream = make_stream(FakeTransport(connection))
        reader, reconnector = stream._reader, stream.reconnector
        stream.start()
        wait_for(lambda: reconnector.state is ConnectionState.CONNECTED)

        del stream
        gc.collect()

        wait_for(connection.closed.is_set)
        reader.thread.join(2)
        assert not reader.thread.is_alive()
        assert reconnector.state is ConnectionState.CLOSED

    def test_close_during_backoff(self):
        stream = make_stream(FakeTransport(), backoff=Backoff(base=30, max_retries=5))
        stream.start()
        wait_for(lambda: stream.state is ConnectionState.RECONNECTING)
        started = time.monotonic()

        stream.close()

        assert time.monotonic() - started < 1
        assert not stream._reader.thread.is_alive()

    def test_resumes_with_last_event_id(self):
        transport = FakeTransport(
            FakeConnection(['id: 7', 'data: ' + hint_event(1), '']),
            FakeConnection(sse_lines(hint_event(2)), block=True),
        )
        with make_stream(transport) as stream:
            assert stream.read(timeout=2).hint.hash == tx_hash(1)
            assert stream.read(timeout=2).hint.hash == tx_hash(2)

        assert transport.last_event_ids == [None, '7']

    def test_iteration_yields_hints(self):
        transport = FakeTransport(FakeConnection(sse_lines(hint_event(1), hint_event(2))))
        stream = make_stream(transport, backoff=Backoff(max_retries=0))

        hashes = []
        with pytest.raises(StreamUnrecoverable):
            for hint in stream:
                hashes.append(hint.hash)

        assert hashes == [tx_hash(1), tx_hash(2)]
        stream.close()
