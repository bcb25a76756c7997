from __future__ import annotations

import base64
import dataclasses
import io
import json
import logging
import threading
from enum import Enum
from typing import Any, Optional, Sequence, TextIO

from rich.console import Console
from rich.table import Table
from rich.text import Text

from .models import ProposalResponse, Summary
from .progress import ProgressSnapshot, snapshot_to_dict

logger = logging.getLogger(__name__)


class OutputFormat(str, Enum):
    DISPLAY = "display"
    JSON = "json"
    RAW = "raw"


class WriterType(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"
    LOG = "log"


def _plain_console(file: Optional[TextIO] = None, *, stderr: bool = False, width: Optional[int] = None) -> Console:
    return Console(
        file=file,
        stderr=stderr,
        width=width,
        markup=False,
        highlight=False,
        emoji=False,
        soft_wrap=True,
    )


class Printer:
    """
    Writes command output in the selected format to the selected writer.

    One printer is shared by every worker of a run, so each emit is done under
    a lock to keep multi-line output from interleaving.
    """

    def __init__(
        self,
        output_format: OutputFormat | str = OutputFormat.DISPLAY,
        writer_type: WriterType | str = WriterType.STDOUT,
        *,
        base64_encode: bool = False,
        file: Optional[TextIO] = None,
    ) -> None:
        self.output_format = OutputFormat(output_format)
        self.writer_type = WriterType(writer_type)
        self.base64_encode = bool(base64_encode)
        self._lock = threading.Lock()
        if self.writer_type is WriterType.LOG:
            self._console: Optional[Console] = None
        else:
            self._console = _plain_console(file, stderr=self.writer_type is WriterType.STDERR)

    def print(self, fmt: str, *args: Any) -> None:
        self._emit(Text(fmt % args if args else fmt))

    def print_proposal_responses(self, responses: Sequence[ProposalResponse], payload_only: bool = False) -> None:
        if self.output_format is OutputFormat.JSON:
            if payload_only:
                self._emit_json([self.encode_payload(r.payload) for r in responses])
            else:
                self._emit_json([self._response_dict(r) for r in responses])
            return

        if self.output_format is OutputFormat.RAW:
            for idx, response in enumerate(responses):
                self._emit(Text(f"Response[{idx}]: {response.payload!r}" if payload_only else f"Response[{idx}]: {response!r}"))
            return

        if payload_only:
            for idx, response in enumerate(responses):
                self._emit(Text(f"Response[{idx}]: {self.encode_payload(response.payload)}"))
            return

        table = Table(title="Proposal Responses", show_lines=False)
        table.add_column("#", justify="right")
        table.add_column("Endorser")
        table.add_column("Status", justify="right")
        table.add_column("TxID")
        table.add_column("Payload")
        for idx, response in enumerate(responses):
            table.add_row(
                str(idx),
                response.endorser,
                str(response.status),
                response.tx_id,
                self.encode_payload(response.payload),
            )
        self._emit(table)

    def print_event(self, event: Any) -> None:
        kind = type(event).__name__
        fields = {key: self._plain_value(value) for key, value in dataclasses.asdict(event).items()}

        if self.output_format is OutputFormat.JSON:
            self._emit_json({"type": kind, **fields})
            return
        if self.output_format is OutputFormat.RAW:
            self._emit(Text(repr(event)))
            return

        lines = [f"{kind}:"]
        lines.extend(f"  {key}: {value}" for key, value in fields.items())
        self._emit(Text("\n".join(lines)))

    def print_progress(self, snapshot: ProgressSnapshot) -> None:
        if self.output_format is OutputFormat.JSON:
            self._emit_json(snapshot_to_dict(snapshot))
            return
        self._emit(
            Text(
                f"... completed {snapshot.succeeded}/{snapshot.total} successfully, "
                f"{snapshot.failed}/{snapshot.total} failed"
            )
        )

    def print_task_errors(self, summary: Summary) -> None:
        if not summary.errors and not summary.transient_errors:
            return

        if self.output_format is OutputFormat.JSON:
            self._emit_json(
                {
                    "errors": [{"task_id": tid, "error": str(err)} for tid, err in summary.errors],
                    "transient_errors": [{"task_id": tid, "error": str(err)} for tid, err in summary.transient_errors],
                }
            )
            return

        for task_id, err in summary.errors:
            self._emit(Text(f"Error in task {task_id}: {err}"))
        if summary.transient_errors:
            self._emit(Text("Transient errors:"))
            for task_id, err in summary.transient_errors:
                self._emit(Text(f"  Task {task_id} recovered from: {err}"))

    def print_summary(self, summary: Summary) -> None:
        data = {
            "invocations": summary.invocation_count,
            "successes": summary.success_count,
            "errors": summary.failure_count,
            "transient_errors": len(summary.transient_errors),
            "attempts": summary.total_attempts,
            "duration_s": round(summary.duration_s, 3),
            "rate_per_second": round(summary.rate_per_second, 2),
        }
        if self.output_format is OutputFormat.JSON:
            self._emit_json({"summary": data})
            return
        if self.output_format is OutputFormat.RAW:
            self._emit(Text(repr(data)))
            return

        table = Table(title="Summary", show_header=False)
        table.add_column("Field")
        table.add_column("Value", justify="right")
        table.add_row("Invocations", str(summary.invocation_count))
        table.add_row("Successes", str(summary.success_count))
        table.add_row("Errors", str(summary.failure_count))
        table.add_row("Transient errors", str(len(summary.transient_errors)))
        table.add_row("Attempts", str(summary.total_attempts))
        table.add_row("Duration", f"{summary.duration_s:.3f}s")
        table.add_row("Rate", f"{summary.rate_per_second:.2f}/s")
        self._emit(table)

    def encode_payload(self, payload: bytes) -> str:
        raw = bytes(payload or b"")
        if not self.base64_encode:
            try:
                return raw.decode("utf-8")
            except UnicodeDecodeError:
                pass
        return base64.b64encode(raw).decode("ascii")

    def _response_dict(self, response: ProposalResponse) -> dict:
        return {
            "endorser": response.endorser,
            "status": response.status,
            "message": response.message,
            "tx_id": response.tx_id,
            "payload": self.encode_payload(response.payload),
        }

    def _plain_value(self, value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            return self.encode_payload(bytes(value))
        if isinstance(value, (list, tuple)):
            return [self._plain_value(item) for item in value]
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        return str(value)

    def _emit_json(self, value: Any) -> None:
        self._emit(Text(json.dumps(value, sort_keys=True, default=str)))

    def _emit(self, renderable: Any) -> None:
        with self._lock:
            if self._console is not None:
                self._console.print(renderable)
                return

            buf = io.StringIO()
            _plain_console(buf, width=120).print(renderable)
            for line in buf.getvalue().splitlines():
                if line.strip():
                    logger.info(line)
