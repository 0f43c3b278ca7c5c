"""
In-memory ledger of per-address polling state.

Records are created the first time an address shows up in a worklist
and are never removed while the process runs.
"""

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterator, Optional

import structlog

from .esplora import RawTx
from .observable import Observable

if TYPE_CHECKING:
    from .inference import PaymentObservation

logger = structlog.get_logger()

DEFAULT_MIN_INTERVAL_SECONDS = 3


@dataclass
class AddressRecord:
    """Polling state and last fetched history for one address."""

    address: str
    last_update: int = 0  # unix seconds of last stored data
    last_attempt: int = 0  # unix seconds of last fetch attempt
    raw_transactions: list[RawTx] = field(default_factory=list)

    def senders(self) -> dict[str, "PaymentObservation"]:
        """Inferred sender -> payment observation for this address."""
        # inference imports AddressRecord from this module
        from .inference import infer_senders

        return infer_senders(self)


class RefreshThrottle:
    """Per-address rate limiter driven by each record's attempt timestamp."""

    def __init__(
        self,
        min_interval: int = DEFAULT_MIN_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.min_interval = min_interval
        self.clock = clock

    def now(self) -> int:
        return int(self.clock())

    def is_due(self, record: AddressRecord, now: Optional[int] = None) -> bool:
        if now is None:
            now = self.now()
        return now > record.last_attempt + self.min_interval


class AddressLedger:
    """
    Keyed collection of AddressRecord, published as an Observable.

    Keys are trimmed address strings.
    """

    def __init__(self, throttle: Optional[RefreshThrottle] = None):
        self.throttle = throttle or RefreshThrottle()
        self._records: dict[str, AddressRecord] = {}
        self.records: Observable[dict[str, AddressRecord]] = Observable(
            self._records, name="address_ledger"
        )

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and address.strip() in self._records

    def __iter__(self) -> Iterator[AddressRecord]:
        return iter(list(self._records.values()))

    def get(self, address: str) -> Optional[AddressRecord]:
        return self._records.get(address.strip())

    def ensure(self, address: str) -> AddressRecord:
        """Return the record for address, creating an empty one if needed."""
        key = address.strip()
        record = self._records.get(key)
        if record is None:
            record = AddressRecord(address=key)
            self._records[key] = record
            logger.debug("address_tracked", address=key, tracked=len(self._records))
        return record

    def is_due(
        self,
        record: AddressRecord,
        now: Optional[int] = None,
        min_interval: Optional[int] = None,
    ) -> bool:
        """True iff now > last_attempt + min_interval."""
        if min_interval is None:
            return self.throttle.is_due(record, now)
        if now is None:
            now = self.throttle.now()
        return now > record.last_attempt + min_interval

    def record_attempt(self, record: AddressRecord, now: Optional[int] = None) -> None:
        record.last_attempt = self.throttle.now() if now is None else now

    def record_success(
        self,
        record: AddressRecord,
        raw_transactions: list[RawTx],
        now: Optional[int] = None,
    ) -> bool:
        """
        Replace the record's history with a fresh fetch.

        An empty fetch leaves the record untouched. Returns True iff data
        was stored.
        """
        if not raw_transactions:
            return False
        record.raw_transactions = list(raw_transactions)
        record.last_update = self.throttle.now() if now is None else now
        return True

    def publish(self) -> None:
        """Notify ledger subscribers."""
        self.records.notify()
