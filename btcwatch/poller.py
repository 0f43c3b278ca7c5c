"""
Polling orchestrator - refreshes address history for the current worklists.

Worklists are supplied by the caller on every cycle, so the tracked
address set can grow between cycles. Only one poll may run at a time per
orchestrator; the throttle check and the attempt timestamp are what keep
an address from being fetched twice.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional

import httpx
import structlog

from .esplora import TransactionFetcher, WatchError
from .ledger import AddressLedger
from .tip import TipConsensus

logger = structlog.get_logger()

NETWORKS = ("mainnet", "testnet")

# network -> sale grouping key -> entries exposing a receiving address
Worklists = Mapping[str, Mapping[Any, Iterable[Any]]]


def entry_address(entry: Any) -> Optional[str]:
    """Receiving address of a worklist entry."""
    if isinstance(entry, str):
        return entry
    if isinstance(entry, tuple) and entry and isinstance(entry[0], str):
        return entry[0]
    for attr in ("rx_address", "address"):
        value = getattr(entry, attr, None)
        if isinstance(value, str):
            return value
    return None


@dataclass
class PollStats:
    """Counters for one poll cycle."""

    fetched: int = 0
    skipped: int = 0
    failed: int = 0
    updated: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class PollingOrchestrator:
    """
    Polls every address in the worklists that is due for a refresh.

    Mainnet and testnet are processed concurrently; addresses within a
    network are processed one after another.
    """

    def __init__(
        self,
        ledger: AddressLedger,
        fetcher: TransactionFetcher,
        testnet_fetcher: Optional[TransactionFetcher] = None,
        tip: Optional[TipConsensus] = None,
        poll_interval_seconds: float = 5.0,
        tip_refresh_seconds: float = 60.0,
    ):
        self.ledger = ledger
        self.fetchers = {
            "mainnet": fetcher,
            "testnet": testnet_fetcher or fetcher,
        }
        self.tip = tip
        self.poll_interval_seconds = poll_interval_seconds
        self.tip_refresh_seconds = tip_refresh_seconds
        self.last_stats = PollStats()
        self._polling = False
        self._running = False
        self._last_tip_refresh: Optional[float] = None

    async def _update_address(
        self, address: str, fetcher: TransactionFetcher, stats: PollStats
    ) -> bool:
        """Refresh one address if due. Returns True if its data changed."""
        record = self.ledger.ensure(address)
        now = self.ledger.throttle.now()

        if not self.ledger.is_due(record, now):
            stats.skipped += 1
            return False

        # Advance before fetching so a failing address is still throttled
        self.ledger.record_attempt(record, now)

        try:
            txs = await fetcher.get_address_txs(record.address)
        except (WatchError, httpx.HTTPError) as e:
            stats.failed += 1
            logger.warning("address_fetch_failed", address=record.address, error=str(e))
            return False
        except Exception as e:
            stats.failed += 1
            logger.error(
                "address_fetch_failed",
                address=record.address,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        stats.fetched += 1
        if self.ledger.record_success(record, txs):
            stats.updated += 1
            logger.debug("address_updated", address=record.address, tx_count=len(txs))
            return True
        return False

    async def _process_network(self, network: str, worklists: Worklists, stats: PollStats) -> bool:
        groups = worklists.get(network) or {}
        fetcher = self.fetchers[network]
        has_updates = False

        for group_key, entries in groups.items():
            for entry in entries:
                address = entry_address(entry)
                if not address or not address.strip():
                    logger.debug("worklist_entry_without_address", network=network, group=str(group_key))
                    continue
                if await self._update_address(address, fetcher, stats):
                    has_updates = True

        return has_updates

    async def poll(self, worklists: Worklists) -> bool:
        """
        Run one poll cycle.

        Returns True iff at least one address's data changed; in that case
        ledger subscribers are notified once.
        """
        if self._polling:
            logger.warning("poll_already_running")
            return False

        self._polling = True
        stats = PollStats(started_at=datetime.now())
        try:
            results = await asyncio.gather(
                *(self._process_network(network, worklists, stats) for network in NETWORKS),
                return_exceptions=True,
            )
        finally:
            self._polling = False

        for network, result in zip(NETWORKS, results):
            if isinstance(result, BaseException):
                logger.error("network_poll_error", network=network, error=str(result))

        # Counted per address, so updates survive a network that failed later
        has_updates = stats.updated > 0

        stats.finished_at = datetime.now()
        self.last_stats = stats

        if has_updates:
            self.ledger.publish()

        logger.info(
            "poll_cycle_complete",
            fetched=stats.fetched,
            skipped=stats.skipped,
            failed=stats.failed,
            updated=stats.updated,
            tracked=len(self.ledger),
        )
        return has_updates

    def _tip_due(self) -> bool:
        if self.tip is None:
            return False
        if self._last_tip_refresh is None:
            return True
        return time.monotonic() - self._last_tip_refresh >= self.tip_refresh_seconds

    async def run_once(self, worklists: Worklists, refresh_tip: bool = True) -> bool:
        """Refresh the tip (if attached) and poll, concurrently."""
        tasks = [self.poll(worklists)]
        if refresh_tip and self.tip is not None:
            self._last_tip_refresh = time.monotonic()
            tasks.append(self.tip.refresh())

        results = await asyncio.gather(*tasks)
        return bool(results[0])

    async def run(self, worklist_provider: Callable[[], Worklists]) -> None:
        """Poll continuously until stop() is called."""
        self._running = True
        logger.info(
            "poller_starting",
            poll_interval=self.poll_interval_seconds,
            tip_refresh=self.tip_refresh_seconds,
        )

        while self._running:
            try:
                await self.run_once(worklist_provider(), refresh_tip=self._tip_due())
            except Exception as e:
                logger.error("poll_cycle_error", error=str(e))

            await asyncio.sleep(self.poll_interval_seconds)

    def stop(self) -> None:
        """Stop the poll loop."""
        self._running = False
        logger.info("poller_stopping")
