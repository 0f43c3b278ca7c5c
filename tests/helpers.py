"""Shared test data and fakes."""

from __future__ import annotations

from typing import Optional

from btcwatch.esplora import RawTx, TxInput, TxOutput

TRACKED = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
SENDER = "1BvBMSEYstWetqTFn5Au4m4GFg7xJaNVN2"
SENDER_2 = "3J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy"
CHANGE = "bc1qrp33g0q5c5txsp9arysrx4k6zdkfs4nce4xj0gdcccefvpysxf3qccfmv3"
TESTNET = "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"


class FakeClock:
    """Settable clock for the refresh throttle."""

    def __init__(self, now: float = 1_700_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_tx(
    txid: str,
    outputs: list[tuple[Optional[str], int]],
    inputs: list[Optional[str]],
    block_height: int = 800_000,
) -> RawTx:
    return RawTx(
        txid=txid,
        block_height=block_height,
        outputs=[TxOutput(address=a, value=v) for a, v in outputs],
        inputs=[TxInput(prevout_address=a) for a in inputs],
    )
