"""
Wallet and daemon RPC payload models.

Only the fields the listener consumes are declared; unknown fields are
ignored. Integer fields accept decimal strings since some daemon builds
encode 64-bit values as strings.
"""

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def parse_long(value: Any) -> Any:
    """
    Accept ints and decimal strings for 64-bit integer fields.

    Raises:
        ValueError: If a string value is not a base-10 integer
    """
    if isinstance(value, str):
        try:
            return int(value.strip(), 10)
        except ValueError:
            raise ValueError(f"Cannot unmarshal type long from {value!r}") from None
    return value


Long = Annotated[int, BeforeValidator(parse_long)]


class RpcModel(BaseModel):
    """Base model for RPC payloads."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_params(self) -> dict[str, Any]:
        """Serialize as JSON-RPC params, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


class SubaddrIndex(RpcModel):
    """Wallet location of a sub-address: (account, address)."""

    major: Long
    minor: Long


class TransferEntry(RpcModel):
    """Incoming transfer to one sub-address, as reported by the wallet."""

    address: str
    amount: Long
    confirmations: Long = 0
    height: Long = 0
    txid: str
    unlock_time: Long = 0
    subaddr_index: SubaddrIndex
    type: str | None = None
    double_spend_seen: bool = False


class GetTransfersRequest(RpcModel):
    account_index: Long
    in_: bool = Field(default=True, alias="in")
    subaddr_indices: list[Long] = Field(default_factory=list)


class GetTransfersResponse(RpcModel):
    in_: list[TransferEntry] | None = Field(default=None, alias="in")


class GetAccountsRequest(RpcModel):
    tag: str | None = None


class SubaddressAccount(RpcModel):
    account_index: Long
    base_address: str | None = None
    label: str | None = None


class GetAccountsResponse(RpcModel):
    subaddress_accounts: list[SubaddressAccount] = Field(default_factory=list)


class GetTransferByTransactionIdRequest(RpcModel):
    txid: str
    account_index: Long | None = None


class GetTransferByTransactionIdResponse(RpcModel):
    """
    Transfer lookup result.

    ``transfer`` summarises the transaction; ``transfers`` lists every
    incoming output of it that the account owns.
    """

    transfer: TransferEntry
    transfers: list[TransferEntry] = Field(default_factory=list)


class GetInfoResponse(RpcModel):
    """Daemon status returned by get_info."""

    height: Long = 0
    target_height: Long = 0
    synchronized: bool = False
    status: str | None = None
    busy_syncing: bool = False


class GetHeightResponse(RpcModel):
    """Wallet height returned by get_height."""

    height: Long
