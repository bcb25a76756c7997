from __future__ import annotations

import logging
from typing import Sequence

from .errors import InvokeError
from .models import ProposalResponse

logger = logging.getLogger(__name__)

STATUS_OK = 200


class ResponseFilter:
    """
    Ensures that the responses from all endorsers of a proposal agree.

    Divergent endorsements mean non-deterministic chaincode or a stale replica,
    so the transaction must not be sent for ordering. The error is transient
    because a resubmission may be endorsed by a consistent set of peers.
    """

    def process(self, responses: Sequence[ProposalResponse]) -> Sequence[ProposalResponse]:
        if not responses:
            return responses

        pivot = responses[0]
        tx_id = pivot.tx_id
        for response in responses[1:]:
            tx_id = response.tx_id or tx_id
            if response.status != pivot.status:
                logger.debug(
                    "Status [%s] from [%s] does not match status [%s] from endorser [%s] for TxID [%s]",
                    response.status,
                    response.endorser,
                    pivot.status,
                    pivot.endorser,
                    tx_id,
                )
                raise InvokeError.transient(
                    f"status [{response.status}] from [{response.endorser}] does not match status "
                    f"[{pivot.status}] from endorser [{pivot.endorser}] for TxID [{tx_id}]"
                )
            if bytes(response.payload) != bytes(pivot.payload):
                logger.debug(
                    "The payload from [%s] does not match the payload from endorser [%s] for TxID [%s]",
                    response.endorser,
                    pivot.endorser,
                    tx_id,
                )
                raise InvokeError.transient(
                    f"the payload from [{response.endorser}] does not match the payload from endorser "
                    f"[{pivot.endorser}] for TxID [{tx_id}]"
                )

        if pivot.status != STATUS_OK:
            raise InvokeError.transient(f"error endorsing transaction [{tx_id}] - Status: [{pivot.status}]")

        return responses
