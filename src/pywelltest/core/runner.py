"""Background execution of a single fit.

A FitTask owns one worker thread and runs at most one fit at a time. Progress
is published to a bounded queue without blocking: when the consumer falls
behind, updates are dropped rather than stalling the optimizer. An optional
listener is fed from its own bounded queue by a separate thread, so it never
runs on the optimizing thread. Cancellation is cooperative through the task's
CancellationToken.

Usage:
    task = FitTask(optimizer)
    future = task.start(data.time, data.pressure, data.derivative, params, model)
    while not future.done():
        for update in task.drain_updates():
            redraw(update)
    result = future.result()
"""

from concurrent.futures import Future, ThreadPoolExecutor
import logging
import queue
import threading

import numpy as np

from .models import ModelFunction
from .optimizer import (
    CancellationToken,
    FitResult,
    IterationCallback,
    IterationUpdate,
    LevenbergMarquardtOptimizer,
)
from .parameters import ParameterSet

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 64

# Ends the listener thread
_STOP = object()


class FitTask:
    """Runs a LevenbergMarquardtOptimizer fit on a background thread."""

    def __init__(
        self,
        optimizer: LevenbergMarquardtOptimizer | None = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        listener: IterationCallback | None = None,
        listener_queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        """Initialize the task.

        Args:
            optimizer: Optimizer to run, default configuration if None
            queue_size: Capacity of the progress queue (>= 1)
            listener: Optional callback for each update, in addition to the
                queue. It runs on a separate listener thread, so a slow
                listener only loses updates and never delays the fit.
            listener_queue_size: Updates buffered for the listener (>= 1)
        """
        if queue_size < 1:
            raise ValueError(f"queue_size ({queue_size}) must be at least 1")
        if listener_queue_size < 1:
            raise ValueError(f"listener_queue_size ({listener_queue_size}) must be at least 1")
        self.optimizer = optimizer or LevenbergMarquardtOptimizer()
        self.listener = listener
        self.updates: queue.Queue[IterationUpdate] = queue.Queue(maxsize=queue_size)
        self.cancel_token = CancellationToken()
        self.dropped_updates = 0
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="fit")
        self._future: Future[FitResult] | None = None
        self._lock = threading.Lock()

        self._listener_queue: queue.Queue | None = None
        self._listener_thread: threading.Thread | None = None
        if listener is not None:
            self._listener_queue = queue.Queue(maxsize=listener_queue_size)
            self._listener_thread = threading.Thread(
                target=self._deliver, name="fit-progress", daemon=True
            )
            self._listener_thread.start()

    @property
    def running(self) -> bool:
        """True while a fit is active."""
        return self._future is not None and not self._future.done()

    def start(
        self,
        time: np.ndarray,
        pressure: np.ndarray,
        derivative: np.ndarray | None,
        parameters: ParameterSet,
        model: ModelFunction,
    ) -> "Future[FitResult]":
        """Start a fit in the background.

        Returns:
            Future resolving to the terminal FitResult. Input errors raised
            before the fit starts (e.g. InsufficientDataError) are set on the
            future.

        Raises:
            RuntimeError: If a fit is already running on this task
        """
        with self._lock:
            if self.running:
                raise RuntimeError("A fit is already running on this task")
            self.cancel_token = CancellationToken()
            self.dropped_updates = 0
            self._future = self._executor.submit(
                self.optimizer.fit,
                time,
                pressure,
                derivative,
                parameters,
                model,
                self._publish,
                self.cancel_token,
            )
            return self._future

    def cancel(self) -> None:
        """Request cancellation of the running fit."""
        self.cancel_token.cancel()

    def result(self, timeout: float | None = None) -> FitResult:
        """Wait for the running fit and return its result.

        Raises:
            RuntimeError: If no fit was started
        """
        if self._future is None:
            raise RuntimeError("No fit has been started")
        return self._future.result(timeout=timeout)

    def drain_updates(self) -> list[IterationUpdate]:
        """Return all queued updates without blocking."""
        drained = []
        while True:
            try:
                drained.append(self.updates.get_nowait())
            except queue.Empty:
                return drained

    def shutdown(self, cancel: bool = True) -> None:
        """Release the threads, cancelling a running fit by default.

        Updates already queued for the listener are delivered before this
        returns.
        """
        if cancel:
            self.cancel()
        self._executor.shutdown(wait=True)
        if self._listener_thread is not None and self._listener_thread.is_alive():
            self._listener_queue.put(_STOP)
            self._listener_thread.join()

    def __enter__(self) -> "FitTask":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    def _publish(self, update: IterationUpdate) -> None:
        """Hand an update to the queue and the listener without blocking."""
        self._offer(self.updates, update)
        if self._listener_queue is not None:
            self._offer(self._listener_queue, update)

    def _offer(self, target: "queue.Queue[IterationUpdate]", update: IterationUpdate) -> None:
        try:
            target.put_nowait(update)
        except queue.Full:
            self.dropped_updates += 1
            logger.debug(f"Progress queue full; dropped update for iteration {update.iteration}")

    def _deliver(self) -> None:
        """Listener thread: pass queued updates to the listener until stopped."""
        while True:
            update = self._listener_queue.get()
            if update is _STOP:
                return
            try:
                self.listener(update)
            except Exception:
                logger.exception("Progress listener raised; update skipped")
