"""
=============================================================================
WORKER POOL
=============================================================================

N threads, one event loop. Every worker runs Reactor.run(), so every I/O
completion and every handler invocation can land on any of them.

=============================================================================
HOW THIS DIFFERS FROM A CLASSIC THREAD POOL
=============================================================================

A classic pool has a queue of tasks and workers that pull from it:

    pool.submit(handle_connection, args=(conn,))   # One task per connection

Here the "queue" is the reactor's ready queue and a task is a single
completion handler (a read finished, a write finished, ...). A connection
is never pinned to a worker: its header read may complete on Worker-1 and
its body read on Worker-3.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          WorkerPool.run()                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. Start num_threads - 1 Worker threads → reactor.run()           │
    │   2. Run reactor.run() on the calling thread                         │
    │   3. reactor.stop() makes every run() return                         │
    │   4. Join all Worker threads                                         │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import threading
import logging
from enum import Enum
from typing import List

from .reactor import Reactor


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    """Worker thread states, used for monitoring."""
    IDLE = "idle"          # Created, not started
    RUNNING = "running"    # Inside reactor.run()
    STOPPED = "stopped"    # Thread exited


class Worker(threading.Thread):
    """A thread that drives the shared reactor until it is stopped."""

    def __init__(self, reactor: Reactor, worker_id: int):
        # daemon=True: a stuck handler never keeps the process alive
        super().__init__(name=f"Worker-{worker_id}", daemon=True)
        self.reactor = reactor
        self.worker_id = worker_id
        self.state = WorkerState.IDLE

    def run(self):
        self.state = WorkerState.RUNNING
        try:
            self.reactor.run()
        except Exception as e:
            logger.exception(f"Worker {self.worker_id} crashed: {e}")
        finally:
            self.state = WorkerState.STOPPED


class WorkerPool:
    """
    Runs a reactor on `num_threads` threads, the calling thread included.

    Usage:
        pool = WorkerPool(reactor, num_threads=4)
        pool.run()        # Blocks until reactor.stop()
    """

    def __init__(self, reactor: Reactor, num_threads: int = 4):
        if num_threads < 1:
            raise ValueError("num_threads must be >= 1")

        self.reactor = reactor
        self.num_threads = num_threads
        self._workers: List[Worker] = []

    @property
    def workers(self) -> List[Worker]:
        return list(self._workers)

    @property
    def active_workers(self) -> int:
        """Worker threads currently inside the event loop (caller excluded)."""
        return sum(1 for w in self._workers if w.state == WorkerState.RUNNING)

    def start(self):
        """Launch the additional worker threads."""
        logger.info(f"Starting event loop on {self.num_threads} threads")

        for worker_id in range(1, self.num_threads):
            worker = Worker(self.reactor, worker_id)
            self._workers.append(worker)
            worker.start()

    def run(self):
        """Start the workers, run the loop here too, join everyone when it exits."""
        self.start()
        try:
            self.reactor.run()
        finally:
            # Also reached on KeyboardInterrupt, when nobody called stop() yet
            self.reactor.stop()
            self.join()

    def join(self, timeout: float = 5.0):
        """Wait for the worker threads; call after reactor.stop()."""
        for worker in self._workers:
            worker.join(timeout=timeout)
            if worker.is_alive():
                logger.warning(f"Worker {worker.worker_id} did not stop within {timeout}s")
        self._workers.clear()
