"""
RPC provider.

Holds daemon and wallet clients per currency and tracks whether each
currency's daemon and wallet are usable. Availability transitions are
reported through a callback.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from loguru import logger

from xmrpay.config.constants import WALLET_RPC_TIMEOUT
from xmrpay.config.settings import MoneroLikeConfiguration
from xmrpay.rpc.client import MoneroDaemonRpcClient, MoneroWalletRpcClient
from xmrpay.utils.exceptions import WalletRpcError


@dataclass
class DaemonSummary:
    """Last observed state of one currency's daemon and wallet."""

    crypto_code: str
    synced: bool = False
    current_height: int = 0
    target_height: int = 0
    wallet_height: int = 0
    daemon_available: bool = False
    wallet_available: bool = False
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_available(self) -> bool:
        return self.daemon_available and self.synced and self.wallet_available


AvailabilityCallback = Callable[[str, bool], Awaitable[None] | None]


class MoneroRpcProvider:
    """Clients and availability summaries for every configured currency."""

    def __init__(
        self,
        configuration: MoneroLikeConfiguration,
        timeout: float = WALLET_RPC_TIMEOUT,
    ) -> None:
        """
        Initialize provider.

        Args:
            configuration: Per-currency connection settings
            timeout: Per call RPC timeout in seconds
        """
        self.configuration = configuration
        self.daemon_rpc_clients: dict[str, MoneroDaemonRpcClient] = {}
        self.wallet_rpc_clients: dict[str, MoneroWalletRpcClient] = {}
        self.summaries: dict[str, DaemonSummary] = {}
        self._on_change: list[AvailabilityCallback] = []

        for crypto_code, item in configuration.items.items():
            self.daemon_rpc_clients[crypto_code] = MoneroDaemonRpcClient(
                item.daemon_rpc_uri, item.username, item.password, timeout=timeout
            )
            self.wallet_rpc_clients[crypto_code] = MoneroWalletRpcClient(
                item.internal_wallet_rpc_uri, item.username, item.password, timeout=timeout
            )

    @property
    def crypto_codes(self) -> list[str]:
        return list(self.wallet_rpc_clients)

    def on_availability_change(self, callback: AvailabilityCallback) -> None:
        """Register a callback invoked with (crypto_code, available) on transitions."""
        self._on_change.append(callback)

    def is_available(self, crypto_code: str) -> bool:
        summary = self.summaries.get(crypto_code.upper())
        return summary is not None and summary.is_available

    async def update_summary(self, crypto_code: str) -> DaemonSummary:
        """
        Poll daemon and wallet of one currency.

        RPC failures mark the failing side unavailable; they are never raised.

        Args:
            crypto_code: Currency to poll

        Returns:
            Fresh summary
        """
        summary = DaemonSummary(crypto_code=crypto_code)

        try:
            info = await self.daemon_rpc_clients[crypto_code].get_info()
            summary.daemon_available = info.status in (None, "OK")
            summary.current_height = info.height
            summary.target_height = info.target_height
            summary.synced = info.synchronized and not info.busy_syncing
        except WalletRpcError as e:
            logger.warning(f"[{crypto_code}] Daemon RPC unreachable: {e}")

        try:
            summary.wallet_height = await self.wallet_rpc_clients[crypto_code].get_height()
            summary.wallet_available = True
        except WalletRpcError as e:
            logger.warning(f"[{crypto_code}] Wallet RPC unreachable: {e}")

        previous = self.summaries.get(crypto_code)
        self.summaries[crypto_code] = summary

        was_available = previous is not None and previous.is_available
        if previous is None or was_available != summary.is_available:
            await self._notify(crypto_code, summary.is_available)

        return summary

    async def update_all(self) -> None:
        """Poll every configured currency concurrently."""
        await asyncio.gather(
            *(self.update_summary(code) for code in self.crypto_codes)
        )

    async def _notify(self, crypto_code: str, available: bool) -> None:
        for callback in self._on_change:
            try:
                result = callback(crypto_code, available)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"[{crypto_code}] Availability callback failed: {e}")

    async def close(self) -> None:
        """Close every HTTP session."""
        for client in [*self.daemon_rpc_clients.values(), *self.wallet_rpc_clients.values()]:
            await client.close()
