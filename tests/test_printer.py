import io
import json
import logging

from fabcli.errors import InvokeError
from fabcli.models import ChaincodeEvent, ProposalResponse, Summary
from fabcli.printer import Printer
from fabcli.progress import ProgressSnapshot


def _responses() -> list[ProposalResponse]:
    return [
        ProposalResponse(endorser="peer0", status=200, payload=b"hello", tx_id="tx1"),
        ProposalResponse(endorser="peer1", status=200, payload=b"\xff\x00", tx_id="tx1"),
    ]


def test_payload_only_display() -> None:
    out = io.StringIO()
    Printer("display", "stdout", file=out).print_proposal_responses(_responses(), payload_only=True)

    lines = out.getvalue().splitlines()
    assert lines[0] == "Response[0]: hello"
    assert lines[1] == "Response[1]: /wA="


def test_json_responses() -> None:
    out = io.StringIO()
    Printer("json", "stdout", file=out).print_proposal_responses(_responses())

    data = json.loads(out.getvalue())
    assert data[0] == {"endorser": "peer0", "message": "", "payload": "hello", "status": 200, "tx_id": "tx1"}


def test_base64_flag_encodes_every_payload() -> None:
    printer = Printer("json", "stdout", base64_encode=True, file=io.StringIO())
    assert printer.encode_payload(b"hello") == "aGVsbG8="


def test_progress_line_counts_successes_and_failures_separately() -> None:
    out = io.StringIO()
    Printer(file=out).print_progress(ProgressSnapshot(ts=0.0, total=10, succeeded=6, failed=2))

    assert out.getvalue().strip() == "... completed 6/10 successfully, 2/10 failed"


def test_task_errors_and_summary() -> None:
    out = io.StringIO()
    printer = Printer(file=out)
    summary = Summary(
        invocation_count=3,
        success_count=2,
        failure_count=1,
        total_attempts=4,
        duration_s=2.0,
        errors=[("3", InvokeError.persistent("bad"))],
        transient_errors=[("1", InvokeError.transient("conflict"))],
    )

    printer.print_task_errors(summary)
    printer.print_summary(summary)

    text = out.getvalue()
    assert "Error in task 3: bad" in text
    assert "Task 1 recovered from: conflict" in text
    assert "Summary" in text
    assert "1.50/s" in text


def test_json_summary() -> None:
    out = io.StringIO()
    Printer("json", file=out).print_summary(Summary(invocation_count=4, success_count=4, duration_s=2.0))

    data = json.loads(out.getvalue())["summary"]
    assert data["invocations"] == 4
    assert data["rate_per_second"] == 2.0


def test_event_display() -> None:
    out = io.StringIO()
    event = ChaincodeEvent(chaincode_id="mycc", event_name="moved", tx_id="tx9", payload=b"data")
    Printer(file=out).print_event(event)

    text = out.getvalue()
    assert text.startswith("ChaincodeEvent:")
    assert "event_name: moved" in text
    assert "payload: data" in text


def test_log_writer_forwards_lines_to_logger(caplog) -> None:
    printer = Printer("display", "log")
    with caplog.at_level(logging.INFO, logger="fabcli.printer"):
        printer.print("value=%d", 5)

    assert "value=5" in caplog.text
