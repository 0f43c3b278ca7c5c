"""
Chain tip tracking from redundant block explorers.

Both sources are queried concurrently and each one publishes its answer
as soon as it arrives. Neither source is authoritative: the last answer
wins, even if an earlier one reported a higher block.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import httpx
import structlog

from .observable import Observable

logger = structlog.get_logger()

TIP_DOMAIN = "bitcoin"

DEFAULT_TIP_SOURCES = (
    ("blockstream", "https://blockstream.info/api/blocks/tip"),
    ("mempool", "https://mempool.space/api/blocks/tip"),
)


@dataclass(frozen=True)
class ChainTip:
    """Most recent known block."""

    height: int = 0
    hash: str = ""

    @property
    def is_valid(self) -> bool:
        return self.height > 0 and bool(self.hash)


def parse_tip(payload: Any) -> Optional[ChainTip]:
    """
    Extract a tip from a "latest blocks" payload (newest first).

    Returns None if the payload has no usable first block.
    """
    if isinstance(payload, list):
        if not payload:
            return None
        payload = payload[0]
    if not isinstance(payload, dict):
        return None

    height = payload.get("height")
    block_hash = payload.get("id")
    if isinstance(height, bool) or not isinstance(height, int):
        return None
    if not isinstance(block_hash, str):
        return None

    tip = ChainTip(height=height, hash=block_hash)
    return tip if tip.is_valid else None


class TipSource:
    """One provider's view of the chain tip."""

    def __init__(
        self,
        name: str,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.name = name
        self.url = url
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch(self) -> Optional[ChainTip]:
        """Fetch the tip. Never raises; any failure gives None."""
        try:
            response = await self._get_client().get(self.url)
            response.raise_for_status()
            tip = parse_tip(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("tip_source_failed", source=self.name, error=str(e))
            return None

        if tip is None:
            logger.debug("tip_source_unusable", source=self.name)
        return tip


class TipConsensus:
    """Owns the published chain tip."""

    def __init__(
        self,
        sources: Iterable[TipSource],
        published: Optional[Observable[ChainTip]] = None,
    ):
        self.sources = list(sources)
        self.published = published or Observable(ChainTip(), name="bitcoin_tip")

    @classmethod
    def from_urls(
        cls,
        urls: Iterable[str],
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "TipConsensus":
        sources = [
            TipSource(httpx.URL(url).host or url, url, client=client, timeout=timeout)
            for url in urls
        ]
        return cls(sources)

    def get(self) -> ChainTip:
        return self.published.get()

    def set(self, tip: ChainTip) -> None:
        """Publish a tip. Invalid tips are ignored."""
        if not tip.is_valid:
            return
        previous = self.published.get()
        self.published.set(tip)
        if tip != previous:
            logger.info("tip_updated", height=tip.height, hash=tip.hash, previous_height=previous.height)

    def tag(self) -> list[str]:
        """Cache key descriptor: ["bitcoin", "<height>:<hash>"] or ["bitcoin", ""]."""
        tip = self.published.get()
        if not tip.is_valid:
            return [TIP_DOMAIN, ""]
        return [TIP_DOMAIN, f"{tip.height}:{tip.hash}"]

    async def _refresh_source(self, source: TipSource) -> Optional[ChainTip]:
        tip = await source.fetch()
        if tip is not None:
            self.set(tip)
        return tip

    async def refresh(self) -> list[Optional[ChainTip]]:
        """
        Query every source concurrently.

        Each source publishes on its own completion. Returns the per-source
        results in source order; never raises.
        """
        results = await asyncio.gather(
            *(self._refresh_source(source) for source in self.sources),
            return_exceptions=True,
        )

        tips: list[Optional[ChainTip]] = []
        for source, result in zip(self.sources, results):
            if isinstance(result, BaseException):
                logger.warning("tip_source_failed", source=source.name, error=str(result))
                tips.append(None)
            else:
                tips.append(result)
        return tips

    async def close(self) -> None:
        for source in self.sources:
            await source.close()
