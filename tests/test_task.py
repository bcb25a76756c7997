import pytest

from fakes import FakeChannelClient, FakePeer, commit_failure, ok_response

from fabcli.argexpr import ArgExpander
from fabcli.errors import ErrorCode, InvokeError
from fabcli.models import ArgStruct, ExecuteResponse, ProposalResponse, TaskState, TxValidationCode
from fabcli.responsefilter import ResponseFilter
from fabcli.retry import RetryOpts
from fabcli.task import InvokeTask, QueryTask


class _Recorder:
    def __init__(self) -> None:
        self.calls: list = []

    def __call__(self, err) -> None:
        self.calls.append(err)


def _task(client, *, cls=InvokeTask, attempts: int = 1, delay_s: float = 0.0, args=None, sleeps=None, **kwargs):
    recorder = _Recorder()
    task = cls(
        "1",
        client,
        "mycc",
        args or ArgStruct(func="put", args=["k", "v"]),
        completed_cb=recorder,
        retry_opts=RetryOpts(max_attempts=attempts, resubmit_delay_s=delay_s),
        response_filter=ResponseFilter(),
        sleep=(sleeps.append if sleeps is not None else (lambda _s: None)),
        **kwargs,
    )
    return task, recorder


def test_successful_invoke_calls_back_with_none() -> None:
    client = FakeChannelClient([ok_response("tx-1")])
    task, recorder = _task(client)

    task.invoke()

    assert recorder.calls == [None]
    assert task.state is TaskState.SUCCEEDED
    assert task.attempts == 1
    assert task.tx_id == "tx-1"
    method, request, _targets, _timeout = client.calls[0]
    assert method == "execute"
    assert request.fcn == "put"
    assert request.args == (b"k", b"v")


def test_transient_commit_failure_is_resubmitted() -> None:
    client = FakeChannelClient([commit_failure(TxValidationCode.MVCC_READ_CONFLICT, "tx-1"), ok_response("tx-2")])
    sleeps: list[float] = []
    task, recorder = _task(client, attempts=3, delay_s=0.01, sleeps=sleeps)

    task.invoke()

    assert recorder.calls == [None]
    assert task.attempts == 2
    assert sleeps == [0.01]
    assert isinstance(task.last_error, InvokeError)
    assert task.last_error.code is ErrorCode.TRANSIENT
    assert "MVCC_READ_CONFLICT" in str(task.last_error)
    assert task.tx_id == "tx-1"


def test_persistent_commit_failure_is_not_retried() -> None:
    client = FakeChannelClient(default=commit_failure(TxValidationCode.ENDORSEMENT_POLICY_FAILURE, "tx-9"))
    task, recorder = _task(client, attempts=5)

    task.invoke()

    assert len(recorder.calls) == 1
    err = recorder.calls[0]
    assert err.code is ErrorCode.PERSISTENT
    assert str(err) == "invoke error received from event hub for TxID [tx-9]. Code: ENDORSEMENT_POLICY_FAILURE"
    assert task.attempts == 1
    assert task.state is TaskState.FAILED
    assert len(client.calls) == 1


def _divergent() -> ExecuteResponse:
    return ExecuteResponse(
        transaction_id="tx-d",
        responses=[
            ProposalResponse(endorser="peer0", status=200, payload=b"value-1", tx_id="tx-d"),
            ProposalResponse(endorser="peer1", status=200, payload=b"value-2", tx_id="tx-d"),
        ],
    )


def test_divergent_endorsements_fail_with_single_attempt() -> None:
    task, recorder = _task(FakeChannelClient(default=_divergent()))

    task.invoke()

    assert recorder.calls[0].code is ErrorCode.TRANSIENT
    assert task.attempts == 1


def test_divergent_endorsements_recover_on_consistent_retry() -> None:
    client = FakeChannelClient([_divergent(), ok_response("tx-ok")])
    task, recorder = _task(client, attempts=3)

    task.invoke()

    assert recorder.calls == [None]
    assert task.attempts == 2


def test_exhausted_attempts_report_last_error() -> None:
    client = FakeChannelClient(default=commit_failure(TxValidationCode.PHANTOM_READ_CONFLICT))
    task, recorder = _task(client, attempts=3)

    task.invoke()

    assert task.attempts == 3
    assert len(client.calls) == 3
    assert recorder.calls[0] is task.last_error


def test_client_errors_are_classified() -> None:
    client = FakeChannelClient([ConnectionError("unreachable"), TimeoutError("late"), ok_response()])
    task, recorder = _task(client, attempts=3)

    task.invoke()

    assert recorder.calls == [None]
    assert task.attempts == 3
    assert task.last_error.code is ErrorCode.TIMEOUT_ON_COMMIT


def test_invoke_error_from_client_keeps_its_code() -> None:
    client = FakeChannelClient([InvokeError.persistent("access denied")])
    task, recorder = _task(client, attempts=3)

    task.invoke()

    assert recorder.calls[0].code is ErrorCode.PERSISTENT
    assert len(client.calls) == 1


def test_args_are_expanded_once_and_reused_on_retry() -> None:
    client = FakeChannelClient([commit_failure(TxValidationCode.MVCC_READ_CONFLICT), ok_response()])
    task, _recorder = _task(
        client,
        attempts=2,
        args=ArgStruct(func="put", args=["key_$seq()", "$pad(2,z)"]),
        expander=ArgExpander(),
    )

    task.invoke()

    first, second = client.calls[0][1], client.calls[1][1]
    assert first.args == (b"key_1", b"zz")
    assert second is first


def test_targets_and_timeout_are_forwarded() -> None:
    client = FakeChannelClient()
    peers = [FakePeer("grpcs://peer0:7051")]
    task, _recorder = _task(client, targets=peers, timeout_s=2.5)

    task.invoke()

    _method, _request, targets, timeout_s = client.calls[0]
    assert [p.url() for p in targets] == ["grpcs://peer0:7051"]
    assert timeout_s == 2.5


def test_query_uses_query_and_ignores_commit_code() -> None:
    client = FakeChannelClient(default=commit_failure(TxValidationCode.MVCC_READ_CONFLICT))
    task, recorder = _task(client, cls=QueryTask)

    task.invoke()

    assert recorder.calls == [None]
    assert client.calls[0][0] == "query"


def test_completed_task_cannot_be_invoked_again() -> None:
    task, recorder = _task(FakeChannelClient())
    task.invoke()

    with pytest.raises(RuntimeError):
        task.invoke()
    assert recorder.calls == [None]


def test_verbose_task_prints_responses() -> None:
    printed: list = []

    class _Printer:
        def print_proposal_responses(self, responses, payload_only=False) -> None:
            printed.append((list(responses), payload_only))

    task, _recorder = _task(FakeChannelClient(), printer=_Printer(), verbose=True, payload_only=True)
    task.invoke()

    assert len(printed) == 1
    assert printed[0][1] is True
