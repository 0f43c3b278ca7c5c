"""
Tests for chain tip sources and consensus.
"""

import asyncio
from typing import Optional

import httpx
import pytest

from btcwatch.tip import ChainTip, TipConsensus, TipSource, parse_tip

BLOCK_HASH = "00000000000000000002a7c4c1e48d76c5a37902165a270156b7a8d72728a054"


def _blocks(height: int, block_hash: str) -> list[dict]:
    return [
        {"id": block_hash, "height": height, "timestamp": 1_700_000_000},
        {"id": "00" * 32, "height": height - 1, "timestamp": 1_699_999_400},
    ]


class FakeSource(TipSource):
    """Tip source with a canned answer and delay."""

    def __init__(self, name: str, tip: Optional[ChainTip], delay: float = 0.0, error: Optional[Exception] = None):
        super().__init__(name, f"https://{name}.invalid/blocks/tip")
        self.tip = tip
        self.delay = delay
        self.error = error

    async def fetch(self) -> Optional[ChainTip]:
        await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.tip


class TestParseTip:
    """Tests for parse_tip."""

    def test_first_block_is_used(self) -> None:
        assert parse_tip(_blocks(820_000, BLOCK_HASH)) == ChainTip(820_000, BLOCK_HASH)

    def test_single_object(self) -> None:
        assert parse_tip({"id": BLOCK_HASH, "height": 5}) == ChainTip(5, BLOCK_HASH)

    def test_unusable_payloads(self) -> None:
        assert parse_tip([]) is None
        assert parse_tip(None) is None
        assert parse_tip("820000") is None
        assert parse_tip([{"id": BLOCK_HASH, "height": 0}]) is None
        assert parse_tip([{"id": "", "height": 820_000}]) is None
        assert parse_tip([{"id": BLOCK_HASH}]) is None
        assert parse_tip([{"id": BLOCK_HASH, "height": "820000"}]) is None


class TestTipSource:
    """Tests for TipSource.fetch."""

    def _source(self, handler) -> TipSource:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return TipSource("mempool", "https://mempool.space/api/blocks/tip", client=client)

    @pytest.mark.asyncio
    async def test_fetch(self) -> None:
        source = self._source(lambda request: httpx.Response(200, json=_blocks(820_000, BLOCK_HASH)))
        assert await source.fetch() == ChainTip(820_000, BLOCK_HASH)

    @pytest.mark.asyncio
    async def test_http_error_gives_none(self) -> None:
        source = self._source(lambda request: httpx.Response(500))
        assert await source.fetch() is None

    @pytest.mark.asyncio
    async def test_bad_json_gives_none(self) -> None:
        source = self._source(lambda request: httpx.Response(200, content=b"not json"))
        assert await source.fetch() is None

    @pytest.mark.asyncio
    async def test_empty_list_gives_none(self) -> None:
        source = self._source(lambda request: httpx.Response(200, json=[]))
        assert await source.fetch() is None

    @pytest.mark.asyncio
    async def test_connection_error_gives_none(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        source = self._source(handler)
        assert await source.fetch() is None


class TestTipConsensus:
    """Tests for TipConsensus."""

    def test_unset_tag(self) -> None:
        consensus = TipConsensus([])
        assert consensus.tag() == ["bitcoin", ""]

    def test_last_set_wins(self) -> None:
        consensus = TipConsensus([])
        consensus.set(ChainTip(820_001, "bb" * 32))
        consensus.set(ChainTip(820_000, "aa" * 32))

        assert consensus.tag() == ["bitcoin", f"820000:{'aa' * 32}"]

    def test_invalid_tip_ignored(self) -> None:
        consensus = TipConsensus([])
        consensus.set(ChainTip(820_000, "aa" * 32))
        consensus.set(ChainTip(0, ""))

        assert consensus.get() == ChainTip(820_000, "aa" * 32)

    def test_set_publishes(self) -> None:
        consensus = TipConsensus([])
        seen: list[ChainTip] = []
        consensus.published.subscribe(seen.append)
        consensus.set(ChainTip(1, "aa"))

        assert seen == [ChainTip(), ChainTip(1, "aa")]

    @pytest.mark.asyncio
    async def test_refresh_later_source_overwrites(self) -> None:
        """Neither source is authoritative: the slower one wins even if lower."""
        consensus = TipConsensus(
            [
                FakeSource("fast", ChainTip(820_001, "bb" * 32)),
                FakeSource("slow", ChainTip(820_000, "aa" * 32), delay=0.01),
            ]
        )

        results = await consensus.refresh()

        assert results == [ChainTip(820_001, "bb" * 32), ChainTip(820_000, "aa" * 32)]
        assert consensus.get() == ChainTip(820_000, "aa" * 32)

    @pytest.mark.asyncio
    async def test_refresh_one_source_failing(self) -> None:
        consensus = TipConsensus(
            [
                FakeSource("broken", None, error=RuntimeError("boom")),
                FakeSource("ok", ChainTip(820_000, "aa" * 32), delay=0.01),
            ]
        )

        results = await consensus.refresh()

        assert results == [None, ChainTip(820_000, "aa" * 32)]
        assert consensus.tag() == ["bitcoin", f"820000:{'aa' * 32}"]

    @pytest.mark.asyncio
    async def test_refresh_all_failing_keeps_previous_tip(self) -> None:
        consensus = TipConsensus([FakeSource("a", None), FakeSource("b", None)])
        consensus.set(ChainTip(819_999, "cc" * 32))

        assert await consensus.refresh() == [None, None]
        assert consensus.get() == ChainTip(819_999, "cc" * 32)

    @pytest.mark.asyncio
    async def test_refresh_over_http(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "blockstream.info":
                return httpx.Response(200, json=_blocks(820_000, BLOCK_HASH))
            return httpx.Response(502)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        consensus = TipConsensus.from_urls(
            ["https://blockstream.info/api/blocks/tip", "https://mempool.space/api/blocks/tip"],
            client=client,
        )

        results = await consensus.refresh()

        assert [s.name for s in consensus.sources] == ["blockstream.info", "mempool.space"]
        assert results == [ChainTip(820_000, BLOCK_HASH), None]
        assert consensus.tag() == ["bitcoin", f"820000:{BLOCK_HASH}"]
