"""
Monero JSON-RPC clients.

Thin aiohttp clients for monerod and monero-wallet-rpc. Every call is
bounded by a timeout and is safe to run concurrently; cancelling the calling
task aborts the HTTP request.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeVar

import aiohttp
from loguru import logger
from pydantic import ValidationError

from xmrpay.config.constants import JSON_RPC_PATH, WALLET_RPC_TIMEOUT
from xmrpay.rpc.models import (
    GetAccountsRequest,
    GetAccountsResponse,
    GetHeightResponse,
    GetInfoResponse,
    GetTransferByTransactionIdRequest,
    GetTransferByTransactionIdResponse,
    GetTransfersRequest,
    GetTransfersResponse,
    RpcModel,
    TransferEntry,
)
from xmrpay.utils.exceptions import (
    JsonRpcApiError,
    MalformedRpcDataError,
    WalletRpcTransportError,
)

T = TypeVar("T", bound=RpcModel)


class LookupOutcome(StrEnum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    TRANSIENT_ERROR = "transient_error"


@dataclass(frozen=True)
class TransferLookup:
    """Result of probing one account for a transaction id."""

    outcome: LookupOutcome
    detail: GetTransferByTransactionIdResponse | None = None
    error: Exception | None = None

    @classmethod
    def found(cls, detail: GetTransferByTransactionIdResponse) -> "TransferLookup":
        return cls(LookupOutcome.FOUND, detail=detail)

    @classmethod
    def not_found(cls) -> "TransferLookup":
        return cls(LookupOutcome.NOT_FOUND)

    @classmethod
    def failed(cls, error: Exception) -> "TransferLookup":
        return cls(LookupOutcome.TRANSIENT_ERROR, error=error)

    @property
    def is_found(self) -> bool:
        return self.outcome is LookupOutcome.FOUND


class MoneroRpcClient:
    """
    JSON-RPC 2.0 client for a Monero-like daemon or wallet.

    Uses digest authentication when credentials are given, as enabled by
    ``--rpc-login``.
    """

    def __init__(
        self,
        uri: str,
        username: str | None = None,
        password: str | None = None,
        timeout: float = WALLET_RPC_TIMEOUT,
    ) -> None:
        """
        Initialize RPC client.

        Args:
            uri: Base URI of the RPC server (without /json_rpc)
            username: RPC login user
            password: RPC login password
            timeout: Total timeout per call in seconds
        """
        self.uri = uri.rstrip("/")
        self.username = username
        self.password = password
        self.timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            middlewares = ()
            if self.username:
                middlewares = (
                    aiohttp.DigestAuthMiddleware(
                        login=self.username, password=self.password or ""
                    ),
                )
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                middlewares=middlewares,
            )
        return self._session

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def send_command(
        self,
        method: str,
        request: RpcModel | None,
        response_model: type[T],
    ) -> T:
        """
        Call a JSON-RPC method.

        Args:
            method: RPC method name
            request: Parameters model, None for no params
            response_model: Model to parse the result into

        Returns:
            Parsed result

        Raises:
            JsonRpcApiError: If the server returned an error object
            WalletRpcTransportError: On network failure, timeout or HTTP error
            MalformedRpcDataError: If the result cannot be parsed
        """
        payload: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": "0",
            "method": method,
        }
        if request is not None:
            payload["params"] = request.to_params()

        try:
            session = await self._get_session()
            async with session.post(
                f"{self.uri}{JSON_RPC_PATH}",
                json=payload,
                headers={"Content-Type": "application/json"},
            ) as response:
                if response.status != 200:
                    raise WalletRpcTransportError(
                        f"{method} failed: HTTP {response.status}"
                    )
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise WalletRpcTransportError(f"{method} failed: {e!r}") from e

        if not isinstance(data, dict):
            raise MalformedRpcDataError(f"{method} returned a non-object body")

        error = data.get("error")
        if error:
            raise JsonRpcApiError(
                method,
                int(error.get("code", 0)),
                str(error.get("message", "")),
            )

        try:
            return response_model.model_validate(data.get("result") or {})
        except ValidationError as e:
            raise MalformedRpcDataError(f"{method} returned malformed data: {e}") from e


class MoneroDaemonRpcClient(MoneroRpcClient):
    """Client for monerod."""

    async def get_info(self) -> GetInfoResponse:
        return await self.send_command("get_info", None, GetInfoResponse)


class MoneroWalletRpcClient(MoneroRpcClient):
    """Client for monero-wallet-rpc exposing the operations the reconciler uses."""

    async def get_height(self) -> int:
        result = await self.send_command("get_height", None, GetHeightResponse)
        return result.height

    async def get_transfers(
        self,
        account_index: int,
        incoming_only: bool,
        subaddr_indices: list[int],
    ) -> list[TransferEntry]:
        """
        Get transfers of one account, filtered to some sub-addresses.

        Args:
            account_index: Wallet account (major index)
            incoming_only: Only report incoming transfers
            subaddr_indices: Sub-address (minor) indices of interest

        Returns:
            Incoming transfers, empty if there are none
        """
        result = await self.send_command(
            "get_transfers",
            GetTransfersRequest(
                account_index=account_index,
                in_=incoming_only,
                subaddr_indices=sorted(set(subaddr_indices)),
            ),
            GetTransfersResponse,
        )
        return result.in_ or []

    async def get_accounts(self) -> list[int]:
        """Get the indices of every account known to the wallet."""
        result = await self.send_command(
            "get_accounts", GetAccountsRequest(), GetAccountsResponse
        )
        return [account.account_index for account in result.subaddress_accounts]

    async def get_transfer_by_txid(
        self, tx_id: str, account_index: int | None
    ) -> TransferLookup:
        """
        Probe one account for a transaction.

        An error answer from the wallet means the account does not know the
        transaction; transport failures are reported separately so the
        caller can tell them apart. A malformed answer is not a lookup
        outcome and propagates.

        Args:
            tx_id: Transaction id
            account_index: Account to probe, None for the wallet default

        Returns:
            TransferLookup with the outcome

        Raises:
            MalformedRpcDataError: If the wallet answer cannot be parsed
        """
        try:
            result = await self.send_command(
                "get_transfer_by_txid",
                GetTransferByTransactionIdRequest(
                    txid=tx_id, account_index=account_index
                ),
                GetTransferByTransactionIdResponse,
            )
        except JsonRpcApiError as e:
            logger.debug(
                f"Transaction {tx_id} not found in account {account_index}: {e.message}"
            )
            return TransferLookup.not_found()
        except WalletRpcTransportError as e:
            return TransferLookup.failed(e)
        return TransferLookup.found(result)
