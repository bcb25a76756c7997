from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence

from .argexpr import ArgExpander
from .errors import InvokeError
from .models import (
    TERMINAL_TASK_STATES,
    ArgStruct,
    ChaincodeRequest,
    ExecuteResponse,
    TaskState,
    TRANSIENT_VALIDATION_CODES,
    TxValidationCode,
    validation_code_name,
)
from .printer import Printer
from .responsefilter import ResponseFilter
from .retry import RetryOpts, decide
from .sdk import ChannelClient, Peer

logger = logging.getLogger(__name__)

CompletedCallback = Callable[[Optional[BaseException]], None]
StartedCallback = Callable[[], None]


class Task(ABC):
    """An invocable unit of work."""

    @abstractmethod
    def invoke(self) -> None:
        raise NotImplementedError

    @property
    @abstractmethod
    def attempts(self) -> int:
        """Number of attempts made so far, starting at 1."""
        raise NotImplementedError

    @property
    @abstractmethod
    def last_error(self) -> Optional[BaseException]:
        raise NotImplementedError


class ChaincodeTask(Task):
    """
    Base for tasks that send one chaincode request, with resubmission.

    Each call to invoke() makes attempts until one succeeds or the retry
    policy gives up, then calls ``completed_cb`` exactly once: with None on
    success, with the final error otherwise. Only the worker running the task
    mutates it.
    """

    kind = "chaincode"

    def __init__(
        self,
        task_id: str,
        client: ChannelClient,
        chaincode_id: str,
        args: ArgStruct,
        *,
        completed_cb: CompletedCallback,
        targets: Optional[Sequence[Peer]] = None,
        retry_opts: Optional[RetryOpts] = None,
        printer: Optional[Printer] = None,
        expander: Optional[ArgExpander] = None,
        response_filter: Optional[ResponseFilter] = None,
        verbose: bool = False,
        payload_only: bool = False,
        timeout_s: Optional[float] = None,
        started_cb: Optional[StartedCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.task_id = task_id
        self.client = client
        self.chaincode_id = chaincode_id
        self.args = args
        self.targets = list(targets or [])
        self.retry_opts = retry_opts or RetryOpts()
        self.printer = printer
        self.expander = expander or ArgExpander()
        self.response_filter = response_filter
        self.verbose = verbose
        self.payload_only = payload_only
        self.timeout_s = timeout_s
        self.state = TaskState.PENDING
        self.tx_id: Optional[str] = None
        self.response: Optional[ExecuteResponse] = None

        self._completed_cb = completed_cb
        self._started_cb = started_cb
        self._sleep = sleep
        self._attempt = 1
        self._last_error: Optional[BaseException] = None
        self._request: Optional[ChaincodeRequest] = None

    @property
    def attempts(self) -> int:
        return self._attempt

    @property
    def last_error(self) -> Optional[BaseException]:
        return self._last_error

    def invoke(self) -> None:
        if self.state in TERMINAL_TASK_STATES:
            raise RuntimeError(f"task {self.task_id} already completed with state {self.state.value}")

        self.state = TaskState.RUNNING
        if self._started_cb is not None:
            self._started_cb()

        while True:
            try:
                self._attempt_once()
            except InvokeError as err:
                error: BaseException = err
            except Exception as exc:
                logger.exception("(%s) - Unexpected error invoking chaincode", self.task_id)
                error = InvokeError.persistent("unexpected error invoking chaincode", exc)
            else:
                logger.debug("(%s) - Successfully invoked chaincode", self.task_id)
                self.state = TaskState.SUCCEEDED
                self._completed_cb(None)
                return

            self._last_error = error
            decision = decide(self.retry_opts, self._attempt, error)
            if not decision.should_retry:
                logger.debug("(%s) - Giving up after attempt #%d: %s", self.task_id, self._attempt, error)
                self.state = TaskState.FAILED
                self._completed_cb(error)
                return

            self._before_retry(error)
            if decision.delay_s > 0:
                self._sleep(decision.delay_s)

    def _before_retry(self, error: BaseException) -> None:
        self._attempt += 1
        logger.debug("(%s) - Resubmitting after error, attempt #%d: %s", self.task_id, self._attempt, error)

    def _build_request(self) -> ChaincodeRequest:
        if self._request is None:
            expanded = self.expander.expand_args(self.args.args)
            self._request = ChaincodeRequest(
                chaincode_id=self.chaincode_id,
                fcn=self.args.func,
                args=tuple(arg.encode("utf-8") for arg in expanded),
            )
        return self._request

    def _call_client(self, request: ChaincodeRequest) -> ExecuteResponse:
        try:
            return self._send(request)
        except InvokeError:
            raise
        except TimeoutError as exc:
            raise InvokeError.timeout_on_commit(f"timed out waiting for {self.kind} response", exc) from exc
        except Exception as exc:
            raise InvokeError.transient("SendTransactionProposal returned error", exc) from exc

    def _check_responses(self, response: ExecuteResponse) -> None:
        if self.response_filter is not None:
            self.response_filter.process(response.responses)
        if self.verbose and self.printer is not None:
            self.printer.print_proposal_responses(response.responses, self.payload_only)

    def _attempt_once(self) -> None:
        request = self._build_request()
        logger.debug(
            "(%s) - Invoking chaincode: %s, function: %s, args: %s. Attempt #%d...",
            self.task_id,
            request.chaincode_id,
            request.fcn,
            self.args.args,
            self._attempt,
        )
        response = self._call_client(request)
        self.response = response
        if self.tx_id is None and response.transaction_id:
            self.tx_id = response.transaction_id
        self._check_responses(response)
        self._handle_response(response)

    @abstractmethod
    def _send(self, request: ChaincodeRequest) -> ExecuteResponse:
        raise NotImplementedError

    def _handle_response(self, response: ExecuteResponse) -> None:
        return


class InvokeTask(ChaincodeTask):
    """Invokes a chaincode transaction and waits for its commit status."""

    kind = "invoke"

    def _send(self, request: ChaincodeRequest) -> ExecuteResponse:
        return self.client.execute(request, targets=self.targets or None, timeout_s=self.timeout_s)

    def _handle_response(self, response: ExecuteResponse) -> None:
        code = int(response.tx_validation_code)
        code_name = validation_code_name(code)
        if code == TxValidationCode.VALID:
            logger.debug("(%s) - Successfully committed transaction [%s]", self.task_id, response.transaction_id)
            return
        if code in TRANSIENT_VALIDATION_CODES:
            logger.debug(
                "(%s) - Transaction commit failed for [%s] with code [%s]. This is most likely a transient error.",
                self.task_id,
                response.transaction_id,
                code_name,
            )
            raise InvokeError.transient(
                f"invoke error received from event hub for TxID [{response.transaction_id}]. Code: {code_name}"
            )
        logger.debug("(%s) - Transaction commit failed for [%s] with code [%s]", self.task_id, response.transaction_id, code_name)
        raise InvokeError.persistent(
            f"invoke error received from event hub for TxID [{response.transaction_id}]. Code: {code_name}"
        )


class QueryTask(ChaincodeTask):
    """Evaluates a chaincode function on the endorsers without committing."""

    kind = "query"

    def _send(self, request: ChaincodeRequest) -> ExecuteResponse:
        return self.client.query(request, targets=self.targets or None, timeout_s=self.timeout_s)
