import json

import pytest

from fakes import FakeChannelClient, FakeEventService, FakeProvider, commit_failure, ok_response

from fabcli.main import build_parser, main
from fabcli.models import BlockEvent, TxValidationCode

PROVIDER = "fakes:FakeProvider"


@pytest.fixture(autouse=True)
def _no_provider_env(monkeypatch):
    monkeypatch.delenv("FABCLI_SDK_PROVIDER", raising=False)


def test_invoke_success(capsys) -> None:
    FakeProvider.reset(client=FakeChannelClient([ok_response("tx-1", payload=b"stored")]))

    rc = main(
        [
            "chaincode",
            "invoke",
            "--sdk-provider",
            PROVIDER,
            "--cid",
            "mychannel",
            "--ccid",
            "mycc",
            "--args",
            '{"Func":"put","Args":["k","v"]}',
            "--orgid",
            "org1,org2",
            "--payload",
        ]
    )

    assert rc == 0
    provider = FakeProvider.instances[0]
    assert provider.channel_ids == ["mychannel"]
    assert provider.org_ids == ["org1", "org2"]
    assert provider.closed
    assert "Response[0]: stored" in capsys.readouterr().out


def test_invoke_batch_with_json_summary(capsys) -> None:
    FakeProvider.reset()

    rc = main(
        [
            "chaincode",
            "invoke",
            "--sdk-provider",
            PROVIDER,
            "--ccid",
            "mycc",
            "--args",
            '[{"Func":"put","Args":["a","1"]},{"Func":"put","Args":["b","2"]}]',
            "--iterations",
            "3",
            "--concurrency",
            "2",
            "--format",
            "json",
            "--peer",
            "grpcs://peer0:7051",
        ]
    )

    assert rc == 0
    client = FakeProvider.client
    assert len(client.calls) == 6
    assert all([p.url() for p in call[2]] == ["grpcs://peer0:7051"] for call in client.calls)
    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.strip()]
    summary = [line["summary"] for line in lines if "summary" in line][0]
    assert summary["invocations"] == 6
    assert summary["successes"] == 6


def test_invoke_failure_exits_with_one(capsys) -> None:
    FakeProvider.reset(client=FakeChannelClient(default=commit_failure(TxValidationCode.ENDORSEMENT_POLICY_FAILURE, "tx-f")))

    rc = main(
        [
            "chaincode",
            "invoke",
            "--sdk-provider",
            PROVIDER,
            "--ccid",
            "mycc",
            "--args",
            '{"Func":"put","Args":["k","v"]}',
            "--attempts",
            "5",
            "--resubmitdelay",
            "0",
        ]
    )

    assert rc == 1
    assert len(FakeProvider.client.calls) == 1
    assert "Error in task 1:" in capsys.readouterr().out


def test_query_with_config_file(tmp_path) -> None:
    FakeProvider.reset()
    config = tmp_path / "fabcli.yaml"
    config.write_text(f"sdk_provider: {PROVIDER}\nchannel_id: fromfile\nmax_attempts: 1\n", encoding="utf-8")

    rc = main(["chaincode", "query", "--config", str(config), "--ccid", "mycc", "--args", '{"Func":"get","Args":["k"]}'])

    assert rc == 0
    assert FakeProvider.client.calls[0][0] == "query"
    assert FakeProvider.instances[0].channel_ids == ["fromfile"]


def test_missing_chaincode_id_exits_with_one(capsys) -> None:
    FakeProvider.reset()

    rc = main(["chaincode", "invoke", "--sdk-provider", PROVIDER, "--args", '{"Func":"put"}'])

    assert rc == 1
    assert FakeProvider.client.calls == []
    captured = capsys.readouterr()
    assert "must specify the chaincode ID" in captured.out + captured.err


def test_invalid_args_json_exits_with_one() -> None:
    FakeProvider.reset()

    rc = main(["chaincode", "invoke", "--sdk-provider", PROVIDER, "--ccid", "mycc", "--args", "{broken"])

    assert rc == 1
    assert FakeProvider.client.calls == []


def test_missing_provider_exits_with_one(capsys) -> None:
    rc = main(["chaincode", "query", "--ccid", "mycc", "--args", '{"Func":"get"}'])

    assert rc == 1
    captured = capsys.readouterr()
    assert "no SDK provider configured" in captured.out + captured.err


def test_listen_block_with_count(capsys) -> None:
    events = FakeEventService()
    FakeProvider.reset(events=events)

    original = events._register

    def _prefill(kind, *args):
        reg, q = original(kind, *args)
        q.put(BlockEvent(number=7, source_url="grpcs://peer0:7051"))
        return reg, q

    events._register = _prefill

    rc = main(["event", "listenblock", "--sdk-provider", PROVIDER, "--count", "1", "--format", "json"])

    assert rc == 0
    assert len(events.unregistered) == 1
    out = capsys.readouterr().out
    assert '"number": 7' in out


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])
    with pytest.raises(SystemExit):
        build_parser().parse_args(["chaincode"])
