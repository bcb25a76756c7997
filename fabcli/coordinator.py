from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from .argexpr import ArgExpander
from .errors import InvocationAbortedError, PoolStoppedError
from .models import ArgStruct, Summary
from .printer import Printer
from .progress import PrinterProgressPublisher, ProgressPublisher, ProgressSnapshot
from .responsefilter import ResponseFilter
from .retry import RetryOpts
from .sdk import ChannelClient, Peer
from .task import ChaincodeTask, InvokeTask, QueryTask
from .workerpool import WorkerPool

logger = logging.getLogger(__name__)

DEFAULT_PROGRESS_INTERVAL_S = 3.0


@dataclass(slots=True)
class InvocationConfig:
    chaincode_id: str
    arg_sets: list[ArgStruct]
    iterations: int = 1
    concurrency: int = 1
    max_attempts: int = 1
    resubmit_delay_s: float = 0.0
    timeout_s: Optional[float] = None
    verbose: bool = False
    payload_only: bool = False
    targets: list[Peer] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.chaincode_id:
            raise ValueError("chaincode_id is required")
        if int(self.iterations) < 0:
            raise ValueError(f"iterations must be >= 0, got {self.iterations}")
        if int(self.concurrency) < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")

    @property
    def task_count(self) -> int:
        return int(self.iterations) * len(self.arg_sets)

    @property
    def print_responses(self) -> bool:
        return self.verbose or self.iterations == 1


@dataclass(slots=True, frozen=True)
class _Completed:
    task_id: str
    error: Optional[BaseException]


@dataclass(slots=True, frozen=True)
class _SubmitFinished:
    submitted: int
    error: Optional[BaseException] = None


class InvocationCoordinator:
    """
    Runs a batch of chaincode invocations or queries on a worker pool.

    The coordinating thread owns all run state. Task callbacks only post
    completion messages to a queue; the coordinating thread drains it, keeps
    the counters and publishes progress every ``progress_interval_s``. A
    separate submitter thread feeds the pool so that blocking submissions do
    not stall progress reporting.
    """

    def __init__(
        self,
        client: ChannelClient,
        printer: Printer,
        *,
        expander: Optional[ArgExpander] = None,
        response_filter: Optional[ResponseFilter] = None,
        publishers: Optional[Sequence[ProgressPublisher]] = None,
        progress_interval_s: float = DEFAULT_PROGRESS_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.printer = printer
        self.expander = expander or ArgExpander()
        self.response_filter = response_filter or ResponseFilter()
        self.publishers = list(publishers) if publishers is not None else [PrinterProgressPublisher(printer)]
        self.progress_interval_s = max(0.01, float(progress_interval_s))
        self._clock = clock
        self._pool: Optional[WorkerPool] = None
        self._pool_lock = threading.Lock()
        self._aborted = threading.Event()

    def invoke(self, config: InvocationConfig) -> Summary:
        return self._run(config, InvokeTask)

    def query(self, config: InvocationConfig) -> Summary:
        return self._run(config, QueryTask)

    def abort(self) -> None:
        """Stops accepting submissions; tasks already handed to workers run to completion."""
        self._aborted.set()
        with self._pool_lock:
            pool = self._pool
        if pool is not None:
            threading.Thread(target=pool.stop, kwargs={"wait": False}, name="fabcli-abort", daemon=True).start()

    def build_tasks(
        self,
        config: InvocationConfig,
        task_cls: type[ChaincodeTask],
        completions: queue.Queue,
    ) -> list[ChaincodeTask]:
        retry_opts = RetryOpts(max_attempts=config.max_attempts, resubmit_delay_s=config.resubmit_delay_s)
        tasks: list[ChaincodeTask] = []
        for _ in range(config.iterations):
            for arg_set in config.arg_sets:
                task_id = str(len(tasks) + 1)
                tasks.append(
                    task_cls(
                        task_id,
                        self.client,
                        config.chaincode_id,
                        arg_set,
                        completed_cb=_completion_poster(completions, task_id),
                        targets=config.targets,
                        retry_opts=retry_opts,
                        printer=self.printer,
                        expander=self.expander,
                        response_filter=self.response_filter,
                        verbose=config.print_responses,
                        payload_only=config.payload_only,
                        timeout_s=config.timeout_s,
                    )
                )
        return tasks

    def _run(self, config: InvocationConfig, task_cls: type[ChaincodeTask]) -> Summary:
        try:
            return self._run_tasks(config, task_cls)
        finally:
            # An abort applies to the run it interrupted, or to the next one if none was running.
            self._aborted.clear()

    def _run_tasks(self, config: InvocationConfig, task_cls: type[ChaincodeTask]) -> Summary:
        completions: queue.Queue = queue.Queue()
        tasks = self.build_tasks(config, task_cls, completions)
        summary = Summary(invocation_count=len(tasks))
        if not tasks:
            logger.info("Nothing to %s: no tasks were built", task_cls.kind)
            return summary

        if self._aborted.is_set():
            raise InvocationAbortedError(f"{task_cls.kind} run aborted before start", summary)

        pool = WorkerPool(f"{task_cls.kind}-pool", config.concurrency)
        pool.start()
        with self._pool_lock:
            self._pool = pool

        logger.info("Running %d %s task(s) with concurrency %d", len(tasks), task_cls.kind, config.concurrency)
        start = self._clock()
        try:
            submit_done, errors_by_task = self._drain(pool, tasks, completions, summary, start)
            end = self._clock()
            pool.stop(wait=True)
        except BaseException:
            logger.exception("%s run failed; stopping worker pool %s", task_cls.kind, pool.name)
            pool.stop(wait=False)
            self._close_publishers()
            raise
        finally:
            with self._pool_lock:
                self._pool = None

        submitted = tasks[: submit_done.submitted]
        summary.duration_s = max(0.0, end - start)
        summary.total_attempts = sum(task.attempts for task in submitted)
        summary.errors = [(task.task_id, errors_by_task[task.task_id]) for task in submitted if task.task_id in errors_by_task]
        summary.transient_errors = [
            (task.task_id, task.last_error)
            for task in submitted
            if task.task_id not in errors_by_task and task.last_error is not None
        ]

        try:
            if summary.invocation_count > 1:
                self._publish(summary, len(tasks), summary.duration_s)
        finally:
            self._close_publishers()
        self._report(summary)

        if submit_done.error is not None:
            raise InvocationAbortedError(
                f"{task_cls.kind} run aborted after submitting {submit_done.submitted} of {len(tasks)} task(s)",
                summary,
            ) from submit_done.error
        return summary

    def _drain(
        self,
        pool: WorkerPool,
        tasks: list[ChaincodeTask],
        completions: queue.Queue,
        summary: Summary,
        start: float,
    ) -> tuple[_SubmitFinished, dict[str, BaseException]]:
        """Feeds the pool from a submitter thread and counts completions until every submitted task is done."""
        submitter = threading.Thread(
            target=self._submit_all,
            args=(pool, tasks, completions),
            name=f"fabcli-{pool.name}-submitter",
            daemon=True,
        )
        submitter.start()

        errors_by_task: dict[str, BaseException] = {}
        expected = len(tasks)
        finished = 0
        submit_done: Optional[_SubmitFinished] = None
        next_tick = start + self.progress_interval_s

        while submit_done is None or finished < expected:
            timeout = max(0.0, next_tick - self._clock())
            try:
                msg = completions.get(timeout=timeout)
            except queue.Empty:
                msg = None

            if isinstance(msg, _Completed):
                finished += 1
                if msg.error is None:
                    summary.success_count += 1
                else:
                    summary.failure_count += 1
                    errors_by_task.setdefault(msg.task_id, msg.error)
            elif isinstance(msg, _SubmitFinished):
                submit_done = msg
                expected = msg.submitted

            now = self._clock()
            if now >= next_tick:
                self._publish(summary, len(tasks), now - start)
                next_tick = now + self.progress_interval_s

        submitter.join()
        return submit_done, errors_by_task

    def _submit_all(self, pool: WorkerPool, tasks: list[ChaincodeTask], completions: queue.Queue) -> None:
        submitted = 0
        try:
            for task in tasks:
                if self._aborted.is_set():
                    raise PoolStoppedError(f"worker pool {pool.name} is stopped")
                pool.submit(task)
                submitted += 1
        except Exception as exc:
            logger.warning("Stopped submitting tasks after %d of %d: %s", submitted, len(tasks), exc)
            completions.put(_SubmitFinished(submitted, exc))
            return
        completions.put(_SubmitFinished(submitted))

    def _publish(self, summary: Summary, total: int, elapsed_s: float) -> None:
        snapshot = ProgressSnapshot(
            ts=time.time(),
            total=total,
            succeeded=summary.success_count,
            failed=summary.failure_count,
            elapsed_s=elapsed_s,
        )
        for publisher in self.publishers:
            publisher.publish(snapshot)

    def _close_publishers(self) -> None:
        for publisher in self.publishers:
            publisher.close()

    def _report(self, summary: Summary) -> None:
        self.printer.print_task_errors(summary)
        if summary.invocation_count > 1:
            self.printer.print_summary(summary)


def _completion_poster(completions: queue.Queue, task_id: str) -> Callable[[Optional[BaseException]], None]:
    def _on_completed(err: Optional[BaseException]) -> None:
        completions.put(_Completed(task_id, err))

    return _on_completed
