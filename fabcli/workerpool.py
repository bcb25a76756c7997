from __future__ import annotations

import logging
import queue
import threading
from enum import Enum
from typing import Optional, Protocol

from .errors import PoolStoppedError

logger = logging.getLogger(__name__)


class WorkerState(str, Enum):
    READY = "READY"
    BUSY = "BUSY"
    STOPPED = "STOPPED"


class Runnable(Protocol):
    def invoke(self) -> None: ...


class WorkerEvents(Protocol):
    def state_change(self, worker: "Worker", state: WorkerState) -> None: ...

    def task_started(self, worker: "Worker", task: Runnable) -> None: ...

    def task_completed(self, worker: "Worker", task: Runnable) -> None: ...


_STOP = object()
_STOP_POLL_S = 0.05


class Worker:
    """
    Runs one task at a time on its own thread.

    The worker announces itself as READY before every wait, so the pool only
    hands it a task (or the stop sentinel) when it is idle.
    """

    def __init__(self, name: str, events: WorkerEvents) -> None:
        self.name = name
        self._events = events
        self._inbox: queue.Queue = queue.Queue(maxsize=1)
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        logger.debug("Worker[%s] starting...", self.name)
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def submit(self, task: Runnable) -> None:
        self._inbox.put(task)

    def stop(self) -> None:
        logger.debug("Worker[%s] stopping...", self.name)
        self._inbox.put(_STOP)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        while True:
            logger.debug("Worker[%s] waiting for task...", self.name)
            self._events.state_change(self, WorkerState.READY)
            item = self._inbox.get()
            if item is _STOP:
                self._events.state_change(self, WorkerState.STOPPED)
                logger.debug("Worker[%s] stopped", self.name)
                return
            self._invoke(item)

    def _invoke(self, task: Runnable) -> None:
        logger.debug("Worker[%s].invoke ...", self.name)
        self._events.task_started(self, task)
        try:
            task.invoke()
        except Exception:
            logger.exception("Worker[%s] task raised an unexpected error", self.name)
        finally:
            self._events.task_completed(self, task)
        logger.debug("Worker[%s].invoke done.", self.name)


class WorkerPool:
    """
    Fixed-size pool of workers with synchronous hand-off.

    There is no task queue: submit() blocks until a worker is ready and gives
    the task directly to it, so at most ``concurrency`` tasks are in flight.
    """

    def __init__(self, name: str, concurrency: int) -> None:
        if int(concurrency) < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.name = name
        self.concurrency = int(concurrency)
        self._available: queue.Queue[Worker] = queue.Queue(maxsize=self.concurrency)
        self._workers = [Worker(f"{name}-{i}", self) for i in range(self.concurrency)]

        self._cond = threading.Condition()
        self._pending = 0
        self._inflight = 0
        self._peak_inflight = 0
        self._live = 0
        self._started = False
        self._stopped = False
        self._all_stopped = threading.Event()

    @property
    def inflight(self) -> int:
        with self._cond:
            return self._inflight

    @property
    def peak_inflight(self) -> int:
        with self._cond:
            return self._peak_inflight

    @property
    def live_workers(self) -> int:
        with self._cond:
            return self._live

    @property
    def stopped(self) -> bool:
        with self._cond:
            return self._stopped

    def start(self) -> None:
        with self._cond:
            if self._started:
                return
            if self._stopped:
                raise PoolStoppedError(f"worker pool {self.name} is stopped")
            self._started = True
            self._live = len(self._workers)
        for worker in self._workers:
            worker.start()

    def submit(self, task: Runnable) -> None:
        with self._cond:
            if self._stopped:
                raise PoolStoppedError(f"worker pool {self.name} is stopped")
            if not self._started:
                raise RuntimeError(f"worker pool {self.name} is not started")
            self._pending += 1

        logger.debug("WorkerPool.submit[%s] - waiting for available worker", self.name)
        while True:
            try:
                worker = self._available.get(timeout=_STOP_POLL_S)
            except queue.Empty:
                # stop() may have taken the last ready worker.
                with self._cond:
                    if self._stopped:
                        self._pending -= 1
                        self._cond.notify_all()
                        raise PoolStoppedError(f"worker pool {self.name} is stopped")
                continue
            break

        with self._cond:
            if self._stopped:
                self._pending -= 1
                self._cond.notify_all()
                self._available.put_nowait(worker)
                raise PoolStoppedError(f"worker pool {self.name} is stopped")

        logger.debug("WorkerPool.submit[%s] - got worker [%s]. Submitting task...", self.name, worker.name)
        worker.submit(task)

    def stop(self, wait: bool = True) -> None:
        logger.debug("[%s] Stopping worker pool ...", self.name)
        with self._cond:
            already_stopping = self._stopped
            self._stopped = True
            if not self._started:
                self._all_stopped.set()
                return
            if wait:
                logger.debug("[%s] ... waiting for tasks to complete ...", self.name)
                while self._pending > 0:
                    self._cond.wait()
            else:
                logger.debug("[%s] ... not waiting for in-flight tasks ...", self.name)

        if already_stopping:
            self._all_stopped.wait()
            return

        logger.debug("[%s] ... stopping workers ...", self.name)
        for _ in range(len(self._workers)):
            worker = self._available.get()
            worker.stop()

        self._all_stopped.wait()
        for worker in self._workers:
            worker.join()
        logger.debug("[%s] ... worker pool stopped", self.name)

    def state_change(self, worker: Worker, state: WorkerState) -> None:
        if state is WorkerState.READY:
            self._available.put(worker)
        elif state is WorkerState.STOPPED:
            with self._cond:
                self._live -= 1
                if self._live == 0:
                    self._all_stopped.set()
        else:
            logger.warning("Unsupported worker state: %s", state)

    def task_started(self, worker: Worker, task: Runnable) -> None:
        with self._cond:
            self._inflight += 1
            self._peak_inflight = max(self._peak_inflight, self._inflight)

    def task_completed(self, worker: Worker, task: Runnable) -> None:
        with self._cond:
            self._inflight -= 1
            self._pending -= 1
            self._cond.notify_all()
