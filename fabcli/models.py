from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Optional


class TaskState(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


TERMINAL_TASK_STATES = {TaskState.SUCCEEDED, TaskState.FAILED}


class TxValidationCode(IntEnum):
    VALID = 0
    NIL_ENVELOPE = 1
    BAD_PAYLOAD = 2
    BAD_COMMON_HEADER = 3
    BAD_CREATOR_SIGNATURE = 4
    INVALID_ENDORSER_TRANSACTION = 5
    INVALID_CONFIG_TRANSACTION = 6
    UNSUPPORTED_TX_PAYLOAD = 7
    BAD_PROPOSAL_TXID = 8
    DUPLICATE_TXID = 9
    ENDORSEMENT_POLICY_FAILURE = 10
    MVCC_READ_CONFLICT = 11
    PHANTOM_READ_CONFLICT = 12
    UNKNOWN_TX_TYPE = 13
    TARGET_CHAIN_NOT_FOUND = 14
    MARSHAL_TX_ERROR = 15
    NIL_TXACTION = 16
    EXPIRED_CHAINCODE = 17
    CHAINCODE_VERSION_CONFLICT = 18
    BAD_HEADER_EXTENSION = 19
    BAD_CHANNEL_HEADER = 20
    BAD_RESPONSE_PAYLOAD = 21
    BAD_RWSET = 22
    ILLEGAL_WRITESET = 23
    INVALID_WRITESET = 24
    NOT_VALIDATED = 254
    INVALID_OTHER_REASON = 255


TRANSIENT_VALIDATION_CODES = {
    TxValidationCode.DUPLICATE_TXID,
    TxValidationCode.MVCC_READ_CONFLICT,
    TxValidationCode.PHANTOM_READ_CONFLICT,
}


def validation_code_name(code: int) -> str:
    try:
        return TxValidationCode(int(code)).name
    except ValueError:
        return f"UNKNOWN({code})"


@dataclass(slots=True)
class ArgStruct:
    func: str
    args: list[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class ChaincodeRequest:
    chaincode_id: str
    fcn: str
    args: tuple[bytes, ...] = ()


@dataclass(slots=True, frozen=True)
class ProposalResponse:
    endorser: str
    status: int
    payload: bytes = b""
    tx_id: str = ""
    message: str = ""


@dataclass(slots=True)
class ExecuteResponse:
    transaction_id: str
    responses: list[ProposalResponse] = field(default_factory=list)
    tx_validation_code: int = TxValidationCode.VALID
    payload: bytes = b""


@dataclass(slots=True, frozen=True)
class BlockEvent:
    number: int
    source_url: str = ""
    block: Any = None


@dataclass(slots=True, frozen=True)
class FilteredBlockEvent:
    number: int
    channel_id: str = ""
    source_url: str = ""
    tx_ids: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class ChaincodeEvent:
    chaincode_id: str
    event_name: str
    tx_id: str
    payload: bytes = b""
    block_number: int = 0
    source_url: str = ""


@dataclass(slots=True, frozen=True)
class TxStatusEvent:
    tx_id: str
    tx_validation_code: int
    block_number: int = 0
    source_url: str = ""


@dataclass(slots=True)
class Summary:
    invocation_count: int
    success_count: int = 0
    failure_count: int = 0
    total_attempts: int = 0
    duration_s: float = 0.0
    errors: list[tuple[str, BaseException]] = field(default_factory=list)
    transient_errors: list[tuple[str, BaseException]] = field(default_factory=list)

    @property
    def rate_per_second(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return self.invocation_count / self.duration_s

    @property
    def first_error(self) -> Optional[BaseException]:
        return self.errors[0][1] if self.errors else None
