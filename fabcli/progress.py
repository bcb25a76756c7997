from __future__ import annotations

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .printer import Printer

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ProgressSnapshot:
    ts: float
    total: int
    succeeded: int
    failed: int
    elapsed_s: float = 0.0

    @property
    def completed(self) -> int:
        return self.succeeded + self.failed


class ProgressPublisher(ABC):
    @abstractmethod
    def publish(self, snapshot: ProgressSnapshot) -> None:
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError


class NoopProgressPublisher(ProgressPublisher):
    def publish(self, snapshot: ProgressSnapshot) -> None:
        _ = snapshot

    def close(self) -> None:
        return


class PrinterProgressPublisher(ProgressPublisher):
    def __init__(self, printer: "Printer") -> None:
        self.printer = printer

    def publish(self, snapshot: ProgressSnapshot) -> None:
        self.printer.print_progress(snapshot)

    def close(self) -> None:
        return


def snapshot_to_dict(snapshot: ProgressSnapshot) -> dict[str, Any]:
    return {
        "ts": float(snapshot.ts),
        "total": int(snapshot.total),
        "succeeded": int(snapshot.succeeded),
        "failed": int(snapshot.failed),
        "completed": snapshot.completed,
        "elapsed_s": float(snapshot.elapsed_s),
    }


def snapshot_from_dict(raw: dict[str, Any]) -> ProgressSnapshot:
    # "completed" is derived and ignored; absent counters read as zero.
    return ProgressSnapshot(
        ts=float(raw.get("ts") or 0.0),
        total=int(raw.get("total") or 0),
        succeeded=int(raw.get("succeeded") or 0),
        failed=int(raw.get("failed") or 0),
        elapsed_s=float(raw.get("elapsed_s") or 0.0),
    )


class FileProgressPublisher(ProgressPublisher):
    """
    Keeps a JSON file updated with the latest progress of a run.

    publish() only replaces the pending snapshot, so the coordinator never
    waits on disk I/O. A writer thread writes whatever is pending; snapshots
    published faster than the disk keeps up are skipped, but the last one
    published before close() is always written. The file is replaced
    atomically so readers never see a partial document.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.writes = 0
        self.error: Optional[OSError] = None
        self._cond = threading.Condition()
        self._pending: Optional[ProgressSnapshot] = None
        self._closed = False
        self._thread = threading.Thread(target=self._writer_loop, name="fabcli-progress-file", daemon=True)
        self._thread.start()

    def publish(self, snapshot: ProgressSnapshot) -> None:
        with self._cond:
            if self._closed or self.error is not None:
                return
            self._pending = snapshot
            self._cond.notify()

    def close(self, timeout_s: float = 2.0) -> None:
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify()
        self._thread.join(timeout_s)

    def _writer_loop(self) -> None:
        while True:
            with self._cond:
                while self._pending is None and not self._closed:
                    self._cond.wait()
                snapshot, self._pending = self._pending, None
                closing = self._closed

            if snapshot is not None:
                try:
                    self._write(snapshot)
                except OSError as exc:
                    with self._cond:
                        self.error = exc
                    logger.error("Unable to write progress file %s: %s; progress file disabled", self.path, exc)
                    return
            if closing:
                return

    def _write(self, snapshot: ProgressSnapshot) -> None:
        tmp = self.path.with_name(f".{self.path.name}.{os.getpid()}.tmp")
        try:
            tmp.write_text(json.dumps(snapshot_to_dict(snapshot), sort_keys=True), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise
        self.writes += 1
