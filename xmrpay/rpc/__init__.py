"""
Monero-like daemon and wallet RPC.
"""

from xmrpay.rpc.client import (
    LookupOutcome,
    MoneroDaemonRpcClient,
    MoneroRpcClient,
    MoneroWalletRpcClient,
    TransferLookup,
)
from xmrpay.rpc.provider import DaemonSummary, MoneroRpcProvider


__all__ = [
    "DaemonSummary",
    "LookupOutcome",
    "MoneroDaemonRpcClient",
    "MoneroRpcClient",
    "MoneroRpcProvider",
    "MoneroWalletRpcClient",
    "TransferLookup",
]
