from __future__ import annotations

import queue
import threading
import time
from typing import Callable, Optional, Sequence, Union

from fabcli.models import ChaincodeRequest, ExecuteResponse, ProposalResponse, TxValidationCode
from fabcli.sdk import ChannelClient, EventService, Peer, Registration, SdkProvider

Outcome = Union[ExecuteResponse, BaseException, Callable[[ChaincodeRequest], ExecuteResponse]]


def ok_response(tx_id: str = "tx", payload: bytes = b"ok", endorsers: Sequence[str] = ("peer0", "peer1")) -> ExecuteResponse:
    return ExecuteResponse(
        transaction_id=tx_id,
        responses=[ProposalResponse(endorser=e, status=200, payload=payload, tx_id=tx_id) for e in endorsers],
        tx_validation_code=TxValidationCode.VALID,
        payload=payload,
    )


def commit_failure(code: int, tx_id: str = "tx") -> ExecuteResponse:
    response = ok_response(tx_id)
    response.tx_validation_code = code
    return response


class FakePeer(Peer):
    def __init__(self, url: str) -> None:
        self._url = url

    def url(self) -> str:
        return self._url


class FakeChannelClient(ChannelClient):
    """
    Channel client returning scripted outcomes in call order.

    Once the script is exhausted every call returns ``default``. Exceptions in
    the script are raised.
    """

    def __init__(self, outcomes: Sequence[Outcome] = (), *, default: Optional[Outcome] = None, delay_s: float = 0.0) -> None:
        self._outcomes = list(outcomes)
        self._default = default if default is not None else (lambda _request: ok_response())
        self.delay_s = delay_s
        self.calls: list[tuple[str, ChaincodeRequest, Optional[Sequence[Peer]], Optional[float]]] = []
        self._lock = threading.Lock()
        self.inflight = 0
        self.peak_inflight = 0

    def execute(self, request, *, targets=None, timeout_s=None) -> ExecuteResponse:
        return self._call("execute", request, targets, timeout_s)

    def query(self, request, *, targets=None, timeout_s=None) -> ExecuteResponse:
        return self._call("query", request, targets, timeout_s)

    def _call(self, method: str, request, targets, timeout_s) -> ExecuteResponse:
        with self._lock:
            self.calls.append((method, request, targets, timeout_s))
            outcome = self._outcomes.pop(0) if self._outcomes else self._default
            self.inflight += 1
            self.peak_inflight = max(self.peak_inflight, self.inflight)
        try:
            if self.delay_s:
                time.sleep(self.delay_s)
            if isinstance(outcome, BaseException):
                raise outcome
            if callable(outcome):
                outcome = outcome(request)
            return outcome
        finally:
            with self._lock:
                self.inflight -= 1


class FakeEventService(EventService):
    def __init__(self) -> None:
        self.queues: dict[str, queue.Queue] = {}
        self.registered: list[tuple[str, tuple]] = []
        self.unregistered: list[Registration] = []

    def _register(self, kind: str, *args) -> tuple[Registration, queue.Queue]:
        reg = Registration(reg_id=f"{kind}-{len(self.registered)}", kind=kind)
        self.registered.append((kind, args))
        events: queue.Queue = queue.Queue()
        self.queues[kind] = events
        return reg, events

    def register_block_event(self):
        return self._register("block")

    def register_filtered_block_event(self):
        return self._register("filteredblock")

    def register_chaincode_event(self, chaincode_id, event_filter):
        return self._register("chaincode", chaincode_id, event_filter)

    def register_tx_status_event(self, tx_id):
        return self._register("txstatus", tx_id)

    def unregister(self, registration: Registration) -> None:
        self.unregistered.append(registration)


class FakeProvider(SdkProvider):
    """
    Provider used by the CLI tests through ``--sdk-provider fakes:FakeProvider``.

    Tests script it through the class attributes before running the command.
    """

    client: Optional[FakeChannelClient] = None
    events: Optional[FakeEventService] = None
    instances: list["FakeProvider"] = []

    def __init__(self, *, provider_args: Optional[dict] = None) -> None:
        super().__init__(provider_args=provider_args)
        self.closed = False
        self.channel_ids: list[str] = []
        self.org_ids: list[str] = []
        FakeProvider.instances.append(self)

    @classmethod
    def reset(cls, client: Optional[FakeChannelClient] = None, events: Optional[FakeEventService] = None) -> None:
        cls.client = client or FakeChannelClient()
        cls.events = events or FakeEventService()
        cls.instances = []

    def channel_client(self, channel_id, *, org_ids=()):
        self.channel_ids.append(channel_id)
        self.org_ids = list(org_ids)
        return FakeProvider.client

    def peers(self, urls):
        return [FakePeer(url) for url in urls]

    def event_service(self, channel_id):
        self.channel_ids.append(channel_id)
        return FakeProvider.events

    def close(self) -> None:
        self.closed = True
