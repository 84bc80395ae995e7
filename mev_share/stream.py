"""
Reconnecting consumer of the MEV-Share hint stream.

A reader thread owns the SSE connection and pushes decoded hints into a
bounded buffer; the caller pulls from it with `read()` or by iterating.
When the buffer is full the oldest hint is dropped and the drop is reported
on the next read. Reconnects follow `Reconnector`, a small state machine
with an explicit transition table.
"""

import enum
import itertools
import logging
import threading
import time
import weakref
from collections import deque
from typing import NamedTuple, Optional

import requests

from mev_share.backoff import Backoff
from mev_share.errors import HintDecodeError, StreamClosed, StreamUnrecoverable
from mev_share.hints import decode_hint
from mev_share.sse import iter_sse_messages
from mev_share.types import EventTypeFilter, Hint

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 256

# errors that end one connection but not the stream
DISCONNECT_ERRORS = (requests.RequestException, OSError)


class ConnectionState(enum.Enum):
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    RECONNECTING = 'reconnecting'
    FAILED = 'failed'
    CLOSED = 'closed'


TRANSITIONS = {
    ConnectionState.CONNECTING: {ConnectionState.CONNECTED, ConnectionState.RECONNECTING,
                                 ConnectionState.FAILED, ConnectionState.CLOSED},
    ConnectionState.CONNECTED: {ConnectionState.RECONNECTING, ConnectionState.FAILED, ConnectionState.CLOSED},
    ConnectionState.RECONNECTING: {ConnectionState.CONNECTED, ConnectionState.RECONNECTING,
                                   ConnectionState.FAILED, ConnectionState.CLOSED},
    ConnectionState.FAILED: {ConnectionState.CLOSED},
    ConnectionState.CLOSED: set(),
}


class InvalidTransition(RuntimeError):
    pass


class Reconnector:
    """
    Tracks connection state and decides how long to wait before reconnecting.

    `attempt` counts consecutive failed connections; a successful connect
    resets it. The stream fails once attempts exceed the backoff's
    max_retries or the stream has been down for max_downtime seconds.
    """

    def __init__(self, backoff, max_downtime=None, clock=time.monotonic):
        self.backoff = backoff
        self.max_downtime = max_downtime
        self.clock = clock
        self.state = ConnectionState.CONNECTING
        self.attempt = 0
        self.down_since = None
        self._lock = threading.Lock()

    def _move(self, state):
        if state not in TRANSITIONS[self.state]:
            raise InvalidTransition(f'{self.state.value} -> {state.value}')
        logger.debug('Hint stream %s -> %s', self.state.value, state.value)
        self.state = state

    def downtime(self):
        return 0.0 if self.down_since is None else self.clock() - self.down_since

    def connected(self):
        with self._lock:
            if self.state is ConnectionState.CLOSED:
                return False
            self._move(ConnectionState.CONNECTED)
            self.attempt = 0
            self.down_since = None
            return True

    def disconnected(self):
        """Returns the delay before the next attempt, or None if the stream has failed or was closed."""
        with self._lock:
            if self.state is ConnectionState.CLOSED:
                return None
            if self.down_since is None:
                self.down_since = self.clock()
            self.attempt += 1
            out_of_time = self.max_downtime is not None and self.downtime() >= self.max_downtime
            if self.attempt > self.backoff.max_retries or out_of_time:
                self._move(ConnectionState.FAILED)
                return None
            self._move(ConnectionState.RECONNECTING)
            return self.backoff.delay(self.attempt)

    def close(self):
        with self._lock:
            if self.state is not ConnectionState.CLOSED:
                self._move(ConnectionState.CLOSED)


class Received(NamedTuple):
    hint: Hint
    dropped_count: int


class _HintReader:
    """Reader thread and buffer behind a HintEventStream. Holds no reference back to the stream."""

    def __init__(self, transport, event_filter, buffer_size, reconnector, join_timeout):
        self.transport = transport
        self.event_filter = event_filter
        self.reconnector = reconnector
        self.join_timeout = join_timeout
        self.decode_errors = 0
        self.total_dropped = 0
        self.thread = None

        self._buffer = deque(maxlen=buffer_size)
        self._dropped = 0
        self._error: Optional[StreamUnrecoverable] = None
        self._cond = threading.Condition()
        self._closed = threading.Event()
        self._connection = None
        self._last_event_id = None
        self._sequence = itertools.count(1)

    def start(self):
        with self._cond:
            if self.thread is None and not self._closed.is_set():
                self.thread = threading.Thread(target=self._run, name='hint-stream', daemon=True)
                self.thread.start()

    def read(self, timeout=None):
        self.start()
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if self._closed.is_set():
                    raise StreamClosed('hint stream is closed')
                if self._buffer:
                    break
                if self._error is not None:
                    raise self._error
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return None
                self._cond.wait(remaining)
            hint = self._buffer.popleft()
            dropped, self._dropped = self._dropped, 0
        return Received(hint, dropped)

    def close(self, join=True):
        self._closed.set()
        self.reconnector.close()
        connection = self._connection
        if connection is not None:
            connection.close()
        with self._cond:
            self._cond.notify_all()
        thread = self.thread
        if join and thread is not None and thread is not threading.current_thread():
            thread.join(self.join_timeout)

    def _run(self):
        try:
            while not self._closed.is_set():
                if self._connect_and_read() and not self._closed.is_set():
                    logger.warning('Hint stream closed by the server')
                if not self._wait_before_reconnect():
                    return
        except Exception as exc:
            if self._closed.is_set():
                # closing the response under the reader can surface as any error
                logger.debug('Hint stream reader stopped: %r', exc)
                return
            logger.exception('Hint stream reader crashed')
            self._fail(StreamUnrecoverable(self.reconnector.attempt, self.reconnector.downtime(), exc))

    def _connect_and_read(self):
        """Reads one connection until it ends. Returns True if the server ended it cleanly."""
        try:
            self._connection = self.transport.open(self._last_event_id)
        except DISCONNECT_ERRORS as exc:
            logger.warning('Hint stream connection failed: %s', exc)
            return False
        try:
            if self._closed.is_set() or not self.reconnector.connected():
                return False
            logger.info('Hint stream connected')
            for message in iter_sse_messages(self._connection.lines()):
                if self._closed.is_set():
                    return False
                if message.id is not None:
                    self._last_event_id = message.id
                self._on_message(message.data)
            return True
        except DISCONNECT_ERRORS as exc:
            if not self._closed.is_set():
                logger.warning('Hint stream disconnected: %s', exc)
            return False
        finally:
            connection, self._connection = self._connection, None
            connection.close()

    def _wait_before_reconnect(self):
        if self._closed.is_set():
            return False
        delay = self.reconnector.disconnected()
        if delay is None:
            if not self._closed.is_set():
                reconnector = self.reconnector
                logger.error('Hint stream giving up after %s attempts', reconnector.attempt)
                self._fail(StreamUnrecoverable(reconnector.attempt, reconnector.downtime()))
            return False
        logger.warning('Reconnecting hint stream in %.2fs (attempt %s)', delay, self.reconnector.attempt)
        return not self._closed.wait(delay)

    def _on_message(self, data):
        try:
            hint = decode_hint(data, next(self._sequence))
        except HintDecodeError as exc:
            self.decode_errors += 1
            logger.warning('Dropping malformed hint: %s', exc)
            return
        if not self.event_filter.matches(hint):
            return
        with self._cond:
            if len(self._buffer) == self._buffer.maxlen:
                self._dropped += 1
                self.total_dropped += 1
            self._buffer.append(hint)
            self._cond.notify()

    def _fail(self, error):
        with self._cond:
            self._error = error
            self._cond.notify_all()


class HintEventStream:
    """
    Hints from the relay, read with `read()` or by iterating.

    Leaving a `with` block, ending a `for` loop (including `break`) or
    dropping the last reference to the stream closes the connection.
    """

    def __init__(self, transport, event_filter=EventTypeFilter.ALL, buffer_size=DEFAULT_BUFFER_SIZE,
                 backoff=None, max_downtime=None, join_timeout=5.0):
        self.transport = transport
        self.event_filter = event_filter
        self.reconnector = Reconnector(backoff if backoff is not None else Backoff(), max_downtime)
        self._reader = _HintReader(transport, event_filter, buffer_size, self.reconnector, join_timeout)
        self._finalizer = weakref.finalize(self, self._reader.close, False)

    @property
    def state(self):
        return self.reconnector.state

    @property
    def decode_errors(self):
        return self._reader.decode_errors

    @property
    def total_dropped(self):
        return self._reader.total_dropped

    def start(self):
        self._reader.start()
        return self

    def read(self, timeout=None) -> Optional[Received]:
        """
        Next buffered hint with the number of hints dropped since the previous read.

        Returns None if `timeout` expires first. Raises StreamUnrecoverable
        once the stream has failed and the buffer is drained, and StreamClosed
        after close(), even if hints are still buffered.
        """
        return self._reader.read(timeout)

    def close(self):
        self._finalizer.detach()
        self._reader.close()

    def __iter__(self):
        try:
            while True:
                try:
                    received = self.read()
                except StreamClosed:
                    return
                if received.dropped_count:
                    logger.warning('Consumer fell behind, %s hints dropped', received.dropped_count)
                yield received.hint
        finally:
            self.close()

    def __enter__(self):
        return self.start()

    def __exit__(self, *exc_info):
        self.close()
