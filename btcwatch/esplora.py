"""
Esplora-compatible address API client (mempool.space / blockstream.info).
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

import httpx
import structlog

from .address import is_valid_address

logger = structlog.get_logger()

# Esplora returns address history in pages of 25 transactions.
ESPLORA_PAGE_SIZE = 25


class WatchError(Exception):
    """Base error for btcwatch lookups."""


class InvalidAddress(WatchError, ValueError):
    """Address failed validation; no request was made."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"invalid address: {address!r}")


class UpstreamError(WatchError):
    """Upstream API returned a bad status or an unusable body."""

    def __init__(self, message: str, url: str = "", status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


@dataclass
class TxOutput:
    """Transaction output."""

    address: Optional[str]
    value: int


@dataclass
class TxInput:
    """Transaction input, described by the output it spends."""

    prevout_address: Optional[str]


@dataclass
class RawTx:
    """Transaction as reported by the address history endpoint."""

    txid: str
    block_height: int  # 0 if unconfirmed
    outputs: list[TxOutput] = field(default_factory=list)
    inputs: list[TxInput] = field(default_factory=list)


def parse_sats(value: Any) -> int:
    """Parse a satoshi amount given as int or decimal string. Bad values count as 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip(), 10)
        except ValueError:
            return 0
    return 0


def parse_raw_tx(tx_data: dict[str, Any]) -> RawTx:
    """Parse one Esplora transaction object into a RawTx."""
    txid = tx_data.get("txid")
    if not isinstance(txid, str):
        raise UpstreamError("transaction without txid")

    status = tx_data.get("status")
    block_height = 0
    if isinstance(status, dict) and isinstance(status.get("block_height"), int):
        block_height = status["block_height"]

    vouts = tx_data.get("vout") or []
    vins = tx_data.get("vin") or []
    if not isinstance(vouts, list) or not isinstance(vins, list):
        raise UpstreamError(f"transaction {txid} has malformed vin/vout")

    outputs = []
    for vout in vouts:
        if not isinstance(vout, dict):
            continue
        outputs.append(
            TxOutput(
                address=vout.get("scriptpubkey_address"),
                value=parse_sats(vout.get("value")),
            )
        )

    inputs = []
    for vin in vins:
        if not isinstance(vin, dict):
            continue
        # Coinbase inputs have no prevout
        prevout = vin.get("prevout")
        address = prevout.get("scriptpubkey_address") if isinstance(prevout, dict) else None
        inputs.append(TxInput(prevout_address=address))

    return RawTx(txid=txid, block_height=block_height, outputs=outputs, inputs=inputs)


class TransactionFetcher(Protocol):
    """Anything that can list the transactions of an address."""

    async def get_address_txs(self, address: str) -> list[RawTx]:
        ...


class EsploraClient:
    """Async client for Esplora-compatible Bitcoin indexers."""

    def __init__(
        self,
        base_url: str = "https://mempool.space/api",
        timeout: float = 10.0,
        validator: Callable[[str], bool] = is_valid_address,
        client: Optional[httpx.AsyncClient] = None,
        max_pages: int = 1,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.validator = validator
        self.max_pages = max(1, max_pages)
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "EsploraClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if we created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _check_address(self, address: str) -> str:
        address = address.strip()
        if not self.validator(address):
            raise InvalidAddress(address)
        return address

    async def _get_json(self, path: str) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = await self._get_client().get(url)
        except httpx.TimeoutException as e:
            raise UpstreamError(f"timeout after {self.timeout}s", url=url) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"request failed: {e}", url=url) from e

        if not response.is_success:
            raise UpstreamError(
                f"invalid response from server: HTTP {response.status_code}",
                url=url,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError("malformed JSON body", url=url, status_code=response.status_code) from e

    async def get_balance(self, address: str) -> int:
        """Confirmed balance in satoshis (funded minus spent)."""
        address = self._check_address(address)
        data = await self._get_json(f"/address/{address}")

        chain_stats = data.get("chain_stats") if isinstance(data, dict) else None
        if not isinstance(chain_stats, dict):
            raise UpstreamError("missing chain_stats", url=f"{self.base_url}/address/{address}")

        funded = parse_sats(chain_stats.get("funded_txo_sum"))
        spent = parse_sats(chain_stats.get("spent_txo_sum"))
        return funded - spent

    async def get_address_txs(self, address: str) -> list[RawTx]:
        """
        Get transactions for an address, newest first.

        With max_pages > 1 the `/txs/chain/<last_seen_txid>` pagination is
        followed to reach older confirmed history.
        """
        address = self._check_address(address)
        base = f"/address/{address}/txs"
        pages: list[dict[str, Any]] = []
        cursor_txid: Optional[str] = None
        seen_cursors: set[str] = set()

        for _ in range(self.max_pages):
            if cursor_txid is None:
                path = base
            else:
                if cursor_txid in seen_cursors:
                    logger.warning("address_txs_cursor_loop", address=address, cursor_txid=cursor_txid)
                    break
                seen_cursors.add(cursor_txid)
                path = f"{base}/chain/{cursor_txid}"

            page = await self._get_json(path)
            if not isinstance(page, list):
                raise UpstreamError("expected a JSON array of transactions", url=f"{self.base_url}{path}")
            if not page:
                break

            pages.extend(x for x in page if isinstance(x, dict))

            # shorter page means end of history
            if len(page) < ESPLORA_PAGE_SIZE:
                break

            last_txid = page[-1].get("txid") if isinstance(page[-1], dict) else None
            if not last_txid:
                break
            cursor_txid = last_txid

        try:
            return [parse_raw_tx(tx) for tx in pages]
        except UpstreamError as e:
            raise UpstreamError(str(e), url=f"{self.base_url}{base}") from e
