"""
=============================================================================
REACTOR: ONE EVENT LOOP, MANY THREADS
=============================================================================

The reactor is the concurrency substrate of the engine. Every socket
operation (accept, read, write, TLS handshake) is started through it and
finishes by queueing a completion handler, which some worker thread then
runs.

=============================================================================
WHY NOT A THREAD PER CONNECTION?
=============================================================================

A blocking design parks one thread on every idle keep-alive connection.
Here a connection that is waiting for bytes costs a selector registration
and nothing else; the N worker threads only ever run code that has work
to do.

=============================================================================
ARCHITECTURE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                            Reactor                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   async_read_until(conn, ...)                                        │
    │        │                                                             │
    │        ├── attempt now (non-blocking) ── done? ──► READY QUEUE       │
    │        │                                                ▲            │
    │        └── would block ──► REGISTRATION QUEUE           │            │
    │                                 │                       │            │
    │                                 ▼                       │            │
    │                  ┌──────────────────────────┐           │            │
    │                  │  poller (holds the lock)  │           │            │
    │                  │  selector.select()        │───────────┘            │
    │                  │  op.attempt() on readiness│  completions           │
    │                  └──────────────────────────┘                        │
    │                                                                      │
    │   Worker threads:  take from READY QUEUE, run callback(error, result)│
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Every thread calls run(). At any moment at most one of them holds the poll
lock and sits in select(); the rest run ready completion handlers. When the
poller finishes a select() pass it releases the lock and goes back to
running handlers like everyone else (leader/follower).

=============================================================================
COMPLETION HANDLERS
=============================================================================

All handlers have the same shape:

    def on_done(error: Optional[Exception], result: Any) -> None

Exactly one of them is meaningful: `error` is None on success. A handler is
ALWAYS run from the ready queue, never inline from the call that started
the operation, so a chain of operations (a keep-alive connection serving
thousands of requests) never grows the stack.

=============================================================================
ONE OPERATION PER SOCKET
=============================================================================

The selector has one registration per socket, so a socket may have at most
one outstanding operation. The connection driver guarantees this: it only
starts the next step from inside the previous step's completion handler.

=============================================================================
"""

import functools
import logging
import queue
import selectors
import socket
import ssl
import threading
from typing import Any, Callable, Optional

from .connection import Connection, PeerClosedError


logger = logging.getLogger(__name__)


CompletionHandler = Callable[[Optional[Exception], Any], None]


class ReadLimitError(ValueError):
    """The delimiter did not show up within the allowed number of bytes."""


# =============================================================================
# OPERATIONS: One non-blocking step each
# =============================================================================


class _Operation:
    """
    A pending socket operation.

    attempt() makes as much progress as the socket allows without blocking.
    It returns True once the operation is finished, with `result` or `error`
    set, and False when it has to wait for `events` on `sock`.
    """

    # What to wait for when the plain socket reports EWOULDBLOCK
    wait_for = selectors.EVENT_READ

    def __init__(self, sock: socket.socket, callback: CompletionHandler):
        self.sock = sock
        self.callback = callback
        self.events = self.wait_for
        self.result: Any = None
        self.error: Optional[Exception] = None

    def attempt(self) -> bool:
        try:
            return self._perform()
        except (BlockingIOError, InterruptedError):
            self.events = self.wait_for
            return False
        except ssl.SSLWantReadError:
            # TLS may need to read even while we are writing (renegotiation,
            # handshake records), and vice versa
            self.events = selectors.EVENT_READ
            return False
        except ssl.SSLWantWriteError:
            self.events = selectors.EVENT_WRITE
            return False
        except OSError as e:
            self.error = e
            return True

    def _perform(self) -> bool:
        raise NotImplementedError


class _AcceptOp(_Operation):
    def _perform(self) -> bool:
        self.result = self.sock.accept()
        return True


class _HandshakeOp(_Operation):
    def _perform(self) -> bool:
        self.sock.do_handshake()
        return True


class _ReadOp(_Operation):
    """Base for operations that append received bytes to a connection buffer."""

    def __init__(self, conn: Connection, callback: CompletionHandler, buffer_size: int):
        super().__init__(conn.socket, callback)
        self.conn = conn
        self.buffer_size = buffer_size

    def _recv(self):
        chunk = self.sock.recv(self.buffer_size)
        if not chunk:
            raise PeerClosedError("connection closed by peer")
        self.conn.buffer += chunk


class _ReadUntilOp(_ReadOp):
    """Read until `delimiter` is in the buffer. Result: index of the delimiter."""

    def __init__(self, conn, callback, buffer_size, delimiter: bytes, limit: Optional[int]):
        super().__init__(conn, callback, buffer_size)
        self.delimiter = delimiter
        self.limit = limit
        self._scanned = 0  # Buffer prefix already known not to hold the delimiter

    def _perform(self) -> bool:
        while True:
            buffer = self.conn.buffer
            index = buffer.find(self.delimiter, self._scanned)
            if index >= 0:
                self.result = index
                return True

            self._scanned = max(0, len(buffer) - len(self.delimiter) + 1)

            if self.limit is not None and len(buffer) > self.limit:
                self.error = ReadLimitError(
                    f"{self.delimiter!r} not found in the first {self.limit} bytes"
                )
                return True

            # Keep reading until the socket would block; a TLS socket may hold
            # decrypted records that select() cannot see
            self._recv()


class _ReadAtLeastOp(_ReadOp):
    """Read until the buffer holds at least `size` bytes. Result: buffer length."""

    def __init__(self, conn, callback, buffer_size, size: int):
        super().__init__(conn, callback, buffer_size)
        self.size = size

    def _perform(self) -> bool:
        while len(self.conn.buffer) < self.size:
            missing = self.size - len(self.conn.buffer)
            self.buffer_size = max(self.buffer_size, min(missing, 1024 * 1024))
            self._recv()
        self.result = len(self.conn.buffer)
        return True


class _WriteOp(_Operation):
    """Write all of `data`. Result: number of bytes written."""

    wait_for = selectors.EVENT_WRITE

    def __init__(self, conn: Connection, callback: CompletionHandler, data: bytes):
        super().__init__(conn.socket, callback)
        self._view = memoryview(data)
        self._offset = 0

    def _perform(self) -> bool:
        while self._offset < len(self._view):
            self._offset += self.sock.send(self._view[self._offset:])
        self.result = self._offset
        return True


# =============================================================================
# THE REACTOR
# =============================================================================


class Reactor:
    """
    Thread-safe event loop shared by all worker threads.

    Usage:
        reactor = Reactor()
        reactor.async_accept(listener, on_accept)

        # On as many threads as you like:
        reactor.run()          # Returns after reactor.stop()
    """

    def __init__(self, poll_interval: float = 0.05, buffer_size: int = 8192):
        """
        Args:
            poll_interval: Longest time a thread blocks in select() or on the
                           ready queue before re-checking for stop().
            buffer_size: Bytes requested per recv().
        """
        self.poll_interval = poll_interval
        self.buffer_size = buffer_size

        self._selector = selectors.DefaultSelector()

        # Completion handlers waiting for a thread to run them
        self._ready: "queue.Queue[Callable[[], None]]" = queue.Queue()

        # Operations that would block, waiting for the poller to register them.
        # Only the thread holding _poll_lock touches the selector.
        self._registrations: "queue.Queue[_Operation]" = queue.Queue()
        self._poll_lock = threading.Lock()

        self._stopped = threading.Event()
        self._closed = False

        # Writing a byte here interrupts a select() in progress
        self._wakeup_r, self._wakeup_w = socket.socketpair()
        self._wakeup_r.setblocking(False)
        self._wakeup_w.setblocking(False)
        self._selector.register(self._wakeup_r, selectors.EVENT_READ)

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    # =========================================================================
    # STARTING OPERATIONS
    # =========================================================================

    def post(self, func: Callable[..., None], *args: Any):
        """Queue `func(*args)` to run on one of the reactor threads."""
        self._ready.put(functools.partial(func, *args))
        self._wake()

    def async_accept(self, listener: socket.socket, callback: CompletionHandler):
        """Accept one connection. Result: (client_socket, client_address)."""
        self._submit(_AcceptOp(listener, callback))

    def async_handshake(self, sock: ssl.SSLSocket, callback: CompletionHandler):
        """Run the server side of a TLS handshake. Result: None."""
        self._submit(_HandshakeOp(sock, callback))

    def async_read_until(
        self,
        conn: Connection,
        delimiter: bytes,
        callback: CompletionHandler,
        limit: Optional[int] = None,
    ):
        """
        Read into conn.buffer until it contains `delimiter`.

        Bytes already buffered count, and bytes received past the delimiter
        stay in the buffer. Result: index of the delimiter in conn.buffer.
        Fails with ReadLimitError when more than `limit` bytes arrive
        without the delimiter.
        """
        self._submit(_ReadUntilOp(conn, callback, self.buffer_size, delimiter, limit))

    def async_read_at_least(self, conn: Connection, size: int, callback: CompletionHandler):
        """Read into conn.buffer until it holds `size` bytes. Result: buffer length."""
        self._submit(_ReadAtLeastOp(conn, callback, self.buffer_size, size))

    def async_write(self, conn: Connection, data: bytes, callback: CompletionHandler):
        """Write all of `data` to the connection. Result: bytes written."""
        self._submit(_WriteOp(conn, callback, data))

    def _submit(self, op: _Operation):
        # Most writes, and reads on a busy connection, finish right away
        if op.attempt():
            self._complete(op)
            return

        self._registrations.put(op)
        self._wake()

    def _complete(self, op: _Operation):
        self._ready.put(functools.partial(op.callback, op.error, op.result))

    def _wake(self):
        try:
            self._wakeup_w.send(b"\0")
        except (BlockingIOError, InterruptedError):
            pass  # Wakeup already pending
        except OSError:
            pass  # Reactor closed

    # =========================================================================
    # RUNNING THE LOOP
    # =========================================================================

    def run(self):
        """
        Drive the event loop on the calling thread until stop().

        Any number of threads may call this concurrently.
        """
        name = threading.current_thread().name
        logger.debug(f"{name} entered event loop")

        while not self._stopped.is_set():
            try:
                task = self._ready.get_nowait()
            except queue.Empty:
                task = None

            if task is None:
                # Nothing to run: become the poller if nobody else is
                if self._poll_lock.acquire(blocking=False):
                    try:
                        self._poll()
                    finally:
                        self._poll_lock.release()
                    continue

                try:
                    task = self._ready.get(timeout=self.poll_interval)
                except queue.Empty:
                    continue

            self._run_task(task)

        logger.debug(f"{name} left event loop")

    def _run_task(self, task: Callable[[], None]):
        try:
            task()
        except Exception as e:
            # A broken handler must not take the worker thread down with it
            logger.exception(f"Unhandled error in completion handler: {e}")

    def _poll(self):
        self._drain_registrations()

        timeout = 0 if not self._ready.empty() else self.poll_interval
        for key, _ in self._selector.select(timeout):
            if key.fileobj is self._wakeup_r:
                self._drain_wakeup()
                continue

            op: _Operation = key.data
            if op.attempt():
                self._selector.unregister(key.fileobj)
                self._complete(op)
            elif op.events != key.events:
                self._selector.modify(key.fileobj, op.events, op)

    def _drain_registrations(self):
        while True:
            try:
                op = self._registrations.get_nowait()
            except queue.Empty:
                return

            try:
                self._selector.register(op.sock, op.events, op)
            except (ValueError, KeyError, OSError) as e:
                # Socket closed under us, or a second operation on one socket
                op.error = e
                self._complete(op)

    def _drain_wakeup(self):
        try:
            while self._wakeup_r.recv(4096):
                pass
        except (BlockingIOError, InterruptedError):
            pass

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def stop(self):
        """Make every run() return. Pending operations are abandoned."""
        self._stopped.set()
        self._wake()

    def close(self):
        """
        Release the selector and the wakeup sockets. Call after run() returned.

        Sockets still waiting on an abandoned operation (idle keep-alive
        clients, the listener) are closed too.
        """
        if self._closed:
            return
        self._closed = True

        self._drain_registrations()
        for key in list(self._selector.get_map().values()):
            if key.fileobj is not self._wakeup_r:
                try:
                    key.fileobj.close()
                except OSError:
                    pass

        self._selector.close()
        self._wakeup_r.close()
        self._wakeup_w.close()
