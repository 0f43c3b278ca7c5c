"""
Sender inference for payments to a tracked address.

Bitcoin transactions do not name a sender. For every transaction paying
the tracked address we credit each valid input address with the total
paid to the tracked address, and treat the single non-tracked output (if
there is exactly one) as change back to the sender.

This is a heuristic. A transaction with several inputs credits every
input address with the same full amount, so callers must tolerate
over-attribution for multi-input transactions.
"""

from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from .address import is_valid_address
from .ledger import AddressRecord

logger = structlog.get_logger()


@dataclass(frozen=True)
class PaymentObservation:
    """A payment to a tracked address, attributed to one input address."""

    from_address: str
    to_address: str
    amount: int  # satoshis paid to to_address by the whole transaction
    block_height: int  # 0 if unconfirmed
    txid: str
    change_address: Optional[str] = None


def infer_senders(
    record: AddressRecord,
    validator: Callable[[str], bool] = is_valid_address,
) -> dict[str, PaymentObservation]:
    """
    Map inferred sender address -> PaymentObservation.

    Transactions are visited in ledger order; when several transactions
    share a sender the last one visited wins.
    """
    tracked = record.address.strip()
    senders: dict[str, PaymentObservation] = {}

    for tx in record.raw_transactions:
        amount = 0
        height = tx.block_height or 0
        # Every non-tracked output counts, including ones without an address
        change: list[Optional[str]] = []

        for output in tx.outputs:
            if output.address and output.address.strip() == tracked:
                if output.value:
                    amount += output.value
            else:
                change.append(output.address)

        change_address = change[0] if len(change) == 1 else None

        for tx_input in tx.inputs:
            address = tx_input.prevout_address
            if not address or not validator(address):
                logger.debug("inference_input_skipped", txid=tx.txid, address=address)
                continue

            senders[address] = PaymentObservation(
                from_address=address,
                to_address=tracked,
                amount=amount,
                block_height=height,
                txid=tx.txid,
                change_address=change_address,
            )

    return senders
