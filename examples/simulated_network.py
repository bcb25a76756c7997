from __future__ import annotations

import hashlib
import itertools
import logging
import queue
import random
import re
import threading
import time
import uuid
from typing import Optional, Sequence

from fabcli.models import (
    BlockEvent,
    ChaincodeEvent,
    ChaincodeRequest,
    ExecuteResponse,
    FilteredBlockEvent,
    ProposalResponse,
    TxStatusEvent,
    TxValidationCode,
)
from fabcli.sdk import ChannelClient, EventService, Peer, Registration, SdkProvider

logger = logging.getLogger(__name__)


class SimulatedPeer(Peer):
    def __init__(self, url: str, msp_id: str = "Org1MSP") -> None:
        self._url = url
        self._msp_id = msp_id

    def url(self) -> str:
        return self._url

    def msp_id(self) -> str:
        return self._msp_id


class SimulatedEventService(EventService):
    """Fans committed blocks out to every matching registration."""

    def __init__(self, channel_id: str) -> None:
        self.channel_id = channel_id
        self._lock = threading.Lock()
        self._registrations: dict[str, tuple[Registration, queue.Queue, dict]] = {}

    def _register(self, kind: str, **match: str) -> tuple[Registration, queue.Queue]:
        reg = Registration(reg_id=uuid.uuid4().hex, kind=kind)
        events: queue.Queue = queue.Queue()
        with self._lock:
            self._registrations[reg.reg_id] = (reg, events, match)
        return reg, events

    def register_block_event(self) -> tuple[Registration, queue.Queue]:
        return self._register("block")

    def register_filtered_block_event(self) -> tuple[Registration, queue.Queue]:
        return self._register("filteredblock")

    def register_chaincode_event(self, chaincode_id: str, event_filter: str) -> tuple[Registration, queue.Queue]:
        return self._register("chaincode", chaincode_id=chaincode_id, event_filter=event_filter)

    def register_tx_status_event(self, tx_id: str) -> tuple[Registration, queue.Queue]:
        return self._register("txstatus", tx_id=tx_id)

    def unregister(self, registration: Registration) -> None:
        with self._lock:
            self._registrations.pop(registration.reg_id, None)

    def publish_block(self, number: int, source_url: str, request: ChaincodeRequest, tx_id: str, code: int) -> None:
        with self._lock:
            registrations = list(self._registrations.values())
        for reg, events, match in registrations:
            if reg.kind == "block":
                events.put(BlockEvent(number=number, source_url=source_url, block={"tx_ids": [tx_id]}))
            elif reg.kind == "filteredblock":
                events.put(FilteredBlockEvent(number=number, channel_id=self.channel_id, source_url=source_url, tx_ids=(tx_id,)))
            elif reg.kind == "txstatus" and match["tx_id"] == tx_id:
                events.put(TxStatusEvent(tx_id=tx_id, tx_validation_code=code, block_number=number, source_url=source_url))
            elif (
                reg.kind == "chaincode"
                and code == TxValidationCode.VALID
                and match["chaincode_id"] == request.chaincode_id
                and re.fullmatch(match["event_filter"], request.fcn)
            ):
                events.put(
                    ChaincodeEvent(
                        chaincode_id=request.chaincode_id,
                        event_name=request.fcn,
                        tx_id=tx_id,
                        payload=b",".join(request.args),
                        block_number=number,
                        source_url=source_url,
                    )
                )


class SimulatedChannelClient(ChannelClient):
    """
    In-memory key/value chaincode endorsed by every peer of the network.

    Functions: ``put(key, value)``, ``get(key)`` and ``del(key)``. A configurable
    share of commits fails with MVCC_READ_CONFLICT to exercise resubmission.
    """

    def __init__(
        self,
        channel_id: str,
        peers: Sequence[SimulatedPeer],
        events: SimulatedEventService,
        *,
        conflict_rate: float = 0.0,
        latency_s: float = 0.0,
        seed: Optional[int] = None,
    ) -> None:
        self.channel_id = channel_id
        self.peers = list(peers)
        self.events = events
        self.conflict_rate = float(conflict_rate)
        self.latency_s = float(latency_s)
        self._rng = random.Random(seed)
        self._lock = threading.Lock()
        self._state: dict[str, bytes] = {}
        self._blocks = itertools.count(1)

    def execute(self, request, *, targets=None, timeout_s=None) -> ExecuteResponse:
        tx_id, responses = self._endorse(request, targets, timeout_s)
        with self._lock:
            conflict = self._rng.random() < self.conflict_rate
            code = TxValidationCode.MVCC_READ_CONFLICT if conflict else TxValidationCode.VALID
            if not conflict:
                self._apply(request)
            number = next(self._blocks)
        self.events.publish_block(number, responses[0].endorser, request, tx_id, int(code))
        logger.debug("Committed [%s] in block %d with code %s", tx_id, number, code.name)
        return ExecuteResponse(transaction_id=tx_id, responses=responses, tx_validation_code=int(code), payload=responses[0].payload)

    def query(self, request, *, targets=None, timeout_s=None) -> ExecuteResponse:
        tx_id, responses = self._endorse(request, targets, timeout_s)
        return ExecuteResponse(transaction_id=tx_id, responses=responses, payload=responses[0].payload)

    def _endorse(self, request: ChaincodeRequest, targets, timeout_s) -> tuple[str, list[ProposalResponse]]:
        if timeout_s is not None and self.latency_s > timeout_s:
            time.sleep(timeout_s)
            raise TimeoutError(f"no response within {timeout_s:.3f}s")
        if self.latency_s > 0:
            time.sleep(self.latency_s)

        tx_id = hashlib.sha256(uuid.uuid4().bytes).hexdigest()
        status, payload = self._simulate(request)
        endorsers = [peer.url() for peer in (targets or self.peers)]
        return tx_id, [ProposalResponse(endorser=url, status=status, payload=payload, tx_id=tx_id) for url in endorsers]

    def _simulate(self, request: ChaincodeRequest) -> tuple[int, bytes]:
        args = [arg.decode("utf-8") for arg in request.args]
        with self._lock:
            if request.fcn == "get" and len(args) == 1:
                return 200, self._state.get(args[0], b"")
        if request.fcn in {"put", "del"} and args:
            return 200, b""
        return 500, f"unknown function or arguments: {request.fcn}".encode("utf-8")

    def _apply(self, request: ChaincodeRequest) -> None:
        args = [arg.decode("utf-8") for arg in request.args]
        if request.fcn == "put" and len(args) >= 2:
            self._state[args[0]] = args[1].encode("utf-8")
        elif request.fcn == "del":
            self._state.pop(args[0], None)


class SimulatedProvider(SdkProvider):
    """
    SDK provider backed by an in-memory network.

    Usage: ``fabcli chaincode invoke --sdk-provider examples/simulated_network.py ...``.
    Provider arguments (``sdk:`` in the config file): ``peers`` (number of
    peers, default 2), ``conflict_rate``, ``latency_ms`` and ``seed``.
    """

    def __init__(self, *, provider_args: Optional[dict] = None) -> None:
        super().__init__(provider_args=provider_args)
        count = int(self.provider_args.get("peers", 2))
        self._peers = [SimulatedPeer(f"grpcs://peer{i}.org1.example.com:7051") for i in range(count)]
        self._events: dict[str, SimulatedEventService] = {}
        self._clients: dict[str, SimulatedChannelClient] = {}

    def channel_client(self, channel_id: str, *, org_ids: Sequence[str] = ()) -> ChannelClient:
        if channel_id not in self._clients:
            self._clients[channel_id] = SimulatedChannelClient(
                channel_id,
                self._peers,
                self.event_service(channel_id),
                conflict_rate=float(self.provider_args.get("conflict_rate", 0.0)),
                latency_s=float(self.provider_args.get("latency_ms", 0)) / 1000.0,
                seed=self.provider_args.get("seed"),
            )
        return self._clients[channel_id]

    def peers(self, urls: Sequence[str]) -> list[Peer]:
        return [SimulatedPeer(url) for url in urls]

    def event_service(self, channel_id: str) -> SimulatedEventService:
        if channel_id not in self._events:
            self._events[channel_id] = SimulatedEventService(channel_id)
        return self._events[channel_id]
