"""
btcwatch

Tracks the Bitcoin chain tip from two independent Esplora providers and
polls a changing set of invoice addresses for incoming payments, inferring
which address most likely paid each one.

Usage:
    # Show the current tip tag
    btcwatch tip

    # Show who paid an address
    btcwatch senders bc1q...

    # Watch addresses continuously
    btcwatch watch bc1q... --testnet tb1q...
"""

__version__ = "0.1.0"

from .address import decode_btc_address, is_valid_address
from .config import Settings, WatchConfig
from .esplora import (
    EsploraClient,
    InvalidAddress,
    RawTx,
    UpstreamError,
    WatchError,
)
from .inference import PaymentObservation, infer_senders
from .ledger import AddressLedger, AddressRecord, RefreshThrottle
from .observable import Observable
from .poller import PollingOrchestrator, PollStats
from .tip import ChainTip, TipConsensus, TipSource

__all__ = [
    "__version__",
    "decode_btc_address",
    "is_valid_address",
    "Settings",
    "WatchConfig",
    "EsploraClient",
    "InvalidAddress",
    "RawTx",
    "UpstreamError",
    "WatchError",
    "PaymentObservation",
    "infer_senders",
    "AddressLedger",
    "AddressRecord",
    "RefreshThrottle",
    "Observable",
    "PollingOrchestrator",
    "PollStats",
    "ChainTip",
    "TipConsensus",
    "TipSource",
]
