"""Shared building blocks: the error type, collaborator interfaces and helpers.

The query services never talk to a database or a node directly. They are
handed a :class:`Backend` that bundles the stores and RPC clients they need;
each collaborator is described here as a :class:`typing.Protocol`.

Stores and RPC clients raise :class:`QueryError` when a lookup fails. The
script codec raises :class:`ValueError` for input it cannot convert.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol, Sequence, TypeVar

_LOG = logging.getLogger(__name__)

T = TypeVar("T")

UTC_FORMAT = "%Y-%m-%d %H:%M:%S"


class QueryError(Exception):
    """Raised when a query cannot be answered."""


class TokenStore(Protocol):
    """Catalogue of fungible tokens.

    Token records expose ``contract_id``, ``code_script``, ``tape_script``,
    ``supply``, ``decimal``, ``name``, ``symbol``, ``description``,
    ``origin_utxo``, ``creator_combine_script``, ``holders_count``,
    ``icon_url``, ``create_timestamp`` and ``token_price``.
    """

    def get_token(self, contract_id: str) -> Any:
        """Return the token record; raise QueryError if it is unknown."""
        ...

    def decimal(self, contract_id: str) -> int:
        """Return the number of decimals of a token."""
        ...

    def code_script(self, contract_id: str) -> str:
        """Return the token's code script, or an empty string."""
        ...

    def code_script_and_decimal(self, contract_id: str) -> tuple[str, int]:
        """Return the token's code script and decimals."""
        ...

    def tokens_by_create_time(self, page: int, size: int) -> tuple[list[Any], int]:
        """Return one page of tokens, newest first, and the total count."""
        ...

    def tokens_by_holders_count(self, page: int, size: int) -> tuple[list[Any], int]:
        """Return one page of tokens, most held first, and the total count."""
        ...


class TxoStore(Protocol):
    """Fungible-token outputs.

    Unspent records expose ``txid``, ``vout``, ``balance`` (the coin value
    of the output), ``contract_id`` and ``ft_balance``.
    """

    def total_balance(self, combine_script: str, contract_id: str) -> int:
        """Return the unspent token balance held by a combine script."""
        ...

    def contract_ids_by_holder(self, combine_script: str) -> list[str]:
        """Return the contract ids of every token a combine script holds."""
        ...

    def utxo_info(self, txid: str, vout: int) -> tuple[int, str, str]:
        """Return (token balance, holder script, contract id) of an output.

        Outputs that carry no token give empty strings for script and id.
        """
        ...

    def unspent(self, combine_script: str, contract_id: str) -> list[Any]:
        """Return the unspent token outputs of a holder for one token."""
        ...


class BalanceStore(Protocol):
    """Per-holder token balances.

    Rank records expose ``holder_combine_script`` and ``balance``.
    """

    def holders_count(self, contract_id: str) -> int:
        """Return the number of holders of a token."""
        ...

    def rank(self, contract_id: str, page: int, size: int) -> list[Any]:
        """Return one page of holders ordered by balance, largest first."""
        ...


class PoolStore(Protocol):
    """Liquidity-pool NFTs.

    Pool records expose ``nft_contract_id``, ``token_contract_id`` and
    ``create_timestamp``.
    """

    def pools_for_token(self, contract_id: str) -> list[Any]:
        """Return the pools that trade a token."""
        ...

    def all_pools(self, page: int, size: int) -> tuple[list[Any], int]:
        """Return one page of pools and the total count."""
        ...

    def pool_nft_info(self, contract_id: str) -> tuple[str, int]:
        """Return (current pool NFT txid, code balance); txid empty if none."""
        ...


class ChainRpc(Protocol):
    """Node RPC returning decoded JSON documents."""

    def transaction(self, txid: str) -> Mapping[str, Any]:
        """Return the decoded transaction with ``vin`` and ``vout`` lists."""
        ...

    def block(self, height: int) -> Mapping[str, Any]:
        """Return the block at a height, with its ``time``."""
        ...


class ElectrumRpc(Protocol):
    """Electrum-style index server."""

    def history(self, script_hash: str) -> list[Mapping[str, Any]]:
        """Return ``{"tx_hash", "height"}`` items, oldest first."""
        ...

    def unspent(self, script_hash: str) -> list[Mapping[str, Any]]:
        """Return the unspent outputs of a script hash."""
        ...

    def balance(self, script_hash: str) -> Mapping[str, Any]:
        """Return ``{"confirmed", "unconfirmed"}`` for a script hash."""
        ...

    def frozen_balance(self, address: str) -> Mapping[str, Any]:
        """Return ``{"frozen"}`` for an address."""
        ...


class ScriptCodec(Protocol):
    """Address and script conversions; raises ValueError on bad input."""

    def validate_address(self, address: str) -> tuple[bool, str]:
        """Return whether the address is valid and its type."""
        ...

    def address_to_script_hash(self, address: str) -> str:
        """Return the index script hash of an address."""
        ...

    def address_to_public_key_hash(self, address: str) -> str:
        """Return the hex public-key hash of an address."""
        ...

    def combine_script_to_address(self, combine_script: str) -> str:
        """Return the address a combine script stands for."""
        ...

    def p2ms_script_to_address(self, asm: str) -> str:
        """Return the multisig address of a locking script."""
        ...

    def p2ms_unlock_script_to_address(self, asm: str) -> str:
        """Return the multisig address of an unlocking script."""
        ...

    def sha256_hex(self, script_hex: str) -> str:
        """Return the index hash of a hex script."""
        ...

    def pool_balance_from_tape(self, asm: str) -> tuple[int, int, int]:
        """Return (LP, token A, TBC) balances recorded in a pool tape."""
        ...


@dataclass
class Backend:
    """The stores and clients a service may use."""

    tokens: Optional[TokenStore] = None
    txos: Optional[TxoStore] = None
    balances: Optional[BalanceStore] = None
    pools: Optional[PoolStore] = None
    chain: Optional[ChainRpc] = None
    electrum: Optional[ElectrumRpc] = None
    codec: Optional[ScriptCodec] = None


def paginate(items: Sequence[T], page: int, size: int) -> list[T]:
    """Return page ``page`` (counted from 0) of ``size`` items each."""
    if page < 0 or size < 0:
        raise ValueError("page and size must not be negative")
    start = page * size
    if start >= len(items):
        return []
    return list(items[start:start + size])


def format_utc(timestamp: int) -> str:
    """Format a Unix timestamp as ``YYYY-MM-DD HH:MM:SS`` in UTC."""
    return datetime.fromtimestamp(timestamp, timezone.utc).strftime(UTC_FORMAT)


def block_time(rpc: ChainRpc, height: int) -> Optional[int]:
    """Return the time of the block at ``height``, or None if unavailable."""
    try:
        info = rpc.block(int(height))
    except QueryError as exc:
        _LOG.warning("block lookup failed at height %s: %s", height, exc)
        return None
    if not isinstance(info, Mapping):
        _LOG.warning("malformed block info at height %s", height)
        return None
    value = info.get("time")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _LOG.warning("block at height %s has no usable time", height)
        return None
    return int(value)