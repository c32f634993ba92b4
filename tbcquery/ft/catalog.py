"""Token details, outputs, holder ranking and token listings."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Union

from tbcquery.core import Backend, QueryError

_LOG = logging.getLogger(__name__)

UNKNOWN_ADDRESS = "未知地址"
ORDER_BY_CREATE_TIME = "ftCreateTimestamp"
ORDER_BY_HOLDERS = "ftHoldersCount"


@dataclass(frozen=True)
class TokenInfo:
    """Full description of one token."""

    ft_contract_id: str
    ft_code_script: str
    ft_tape_script: str
    ft_supply: float
    ft_decimal: int
    ft_name: str
    ft_symbol: str
    ft_description: str
    ft_origin_utxo: str
    ft_creator_combine_script: str
    ft_holders_count: int
    ft_icon_url: str
    ft_create_timestamp: int
    ft_token_price: str


@dataclass(frozen=True)
class FtUtxo:
    """An unspent output carrying a token."""

    utxo_id: str
    utxo_vout: int
    utxo_balance: int
    ft_contract_id: str
    ft_decimal: int
    ft_balance: int


@dataclass(frozen=True)
class HolderRank:
    """One holder's place in a token's ranking."""

    address: str
    balance: int
    rank: int
    hold_ratio: float


@dataclass
class HolderRankPage:
    """One page of a token's holder ranking."""

    ft_contract_id: str
    ft_decimal: int
    ft_holders_count: int
    holder_rank: list[HolderRank] = field(default_factory=list)


@dataclass(frozen=True)
class TokenListEntry:
    """A token as shown in the token listing."""

    ft_contract_id: str
    ft_supply: float
    ft_decimal: int
    ft_name: str
    ft_symbol: str
    ft_description: str
    ft_creator_address: str
    ft_create_timestamp: int
    ft_token_price: str
    ft_holders_count: int
    ft_icon_url: str


@dataclass
class TokenListPage:
    """One page of the token listing and the total token count."""

    ft_token_count: int
    ft_token_list: list[TokenListEntry] = field(default_factory=list)


def _parse_int(value: Union[int, str], name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise QueryError(f"invalid {name}: {value!r}") from exc
    return number


def _check_page(page: int, size: int) -> None:
    if page < 0:
        raise QueryError("invalid parameters: page must not be negative")
    if size <= 0:
        raise QueryError("invalid parameters: size must be positive")


def _scaled_supply(supply: int, decimal: int) -> float:
    return float(supply) / float(10 ** int(decimal))


class FtCatalogService:
    """Answers descriptive queries about fungible tokens."""

    def __init__(self, backend: Backend) -> None:
        self._backend = backend

    def token_info(self, contract_id: str) -> TokenInfo:
        """Return the description of a token, its supply in whole units."""
        if not contract_id:
            raise QueryError("invalid parameters: contract id is required")
        try:
            token = self._backend.tokens.get_token(contract_id)
        except QueryError as exc:
            raise QueryError(f"failed to read token: {exc}") from exc
        return TokenInfo(
            ft_contract_id=token.contract_id,
            ft_code_script=token.code_script,
            ft_tape_script=token.tape_script,
            ft_supply=_scaled_supply(token.supply, token.decimal),
            ft_decimal=int(token.decimal),
            ft_name=token.name,
            ft_symbol=token.symbol,
            ft_description=token.description,
            ft_origin_utxo=token.origin_utxo,
            ft_creator_combine_script=token.creator_combine_script,
            ft_holders_count=token.holders_count,
            ft_icon_url=token.icon_url,
            ft_create_timestamp=token.create_timestamp,
            ft_token_price=f"{token.token_price:f}",
        )

    def utxos(self, address: str, contract_id: str) -> list[FtUtxo]:
        """Return the unspent outputs of one token held by ``address``."""
        if not address or not contract_id:
            raise QueryError("invalid parameters: address and contract id are required")
        try:
            combine_script = self._backend.codec.address_to_public_key_hash(address) + "00"
        except ValueError as exc:
            raise QueryError(f"failed to build combine script: {exc}") from exc
        try:
            decimal = int(self._backend.tokens.decimal(contract_id))
        except QueryError as exc:
            raise QueryError(f"failed to read token decimals: {exc}") from exc
        try:
            records = self._backend.txos.unspent(combine_script, contract_id)
        except QueryError as exc:
            raise QueryError(f"failed to list token outputs: {exc}") from exc
        result = [
            FtUtxo(r.txid, r.vout, r.balance, r.contract_id, decimal, r.ft_balance)
            for r in records
        ]
        _LOG.info("found %d token outputs", len(result))
        return result

    def _holder_address(self, combine_script: str) -> str:
        if len(combine_script) > 2 and combine_script.endswith("00"):
            try:
                return self._backend.codec.combine_script_to_address(combine_script)
            except ValueError as exc:
                _LOG.warning("cannot convert %s: %s", combine_script, exc)
                return UNKNOWN_ADDRESS
        return "Contract_" + combine_script

    def holder_rank(
        self, contract_id: str, page: Union[int, str], size: Union[int, str]
    ) -> HolderRankPage:
        """Return one page of a token's holders, ranked by balance."""
        if not contract_id:
            raise QueryError("invalid parameters: contract id is required")
        page = _parse_int(page, "page")
        size = _parse_int(size, "size")
        _check_page(page, size)

        try:
            token = self._backend.tokens.get_token(contract_id)
        except QueryError as exc:
            raise QueryError(f"failed to read token: {exc}") from exc
        try:
            holders_count = self._backend.balances.holders_count(contract_id)
        except QueryError as exc:
            raise QueryError(f"failed to count holders: {exc}") from exc
        try:
            balances = self._backend.balances.rank(contract_id, page, size)
        except QueryError as exc:
            raise QueryError(f"failed to rank holders: {exc}") from exc

        total_supply = token.supply
        ranking = []
        for offset, entry in enumerate(balances, start=page * size + 1):
            ratio = entry.balance / total_supply if total_supply > 0 else 0.0
            ranking.append(
                HolderRank(
                    address=self._holder_address(entry.holder_combine_script),
                    balance=entry.balance,
                    rank=offset,
                    hold_ratio=float(ratio),
                )
            )
        return HolderRankPage(contract_id, int(token.decimal), int(holders_count), ranking)

    def token_list(self, page: int, size: int, order_by: str) -> TokenListPage:
        """Return one page of tokens ordered by creation time or holder count.

        An unrecognised ordering yields an empty page.
        """
        _check_page(page, size)
        key = (order_by or "").lower()
        tokens = self._backend.tokens
        try:
            if key == ORDER_BY_CREATE_TIME.lower():
                records, total = tokens.tokens_by_create_time(page, size)
            elif key == ORDER_BY_HOLDERS.lower():
                records, total = tokens.tokens_by_holders_count(page, size)
            else:
                records, total = [], 0
        except QueryError as exc:
            raise QueryError(f"failed to list tokens: {exc}") from exc

        entries = []
        for token in records:
            try:
                creator = self._backend.codec.combine_script_to_address(
                    token.creator_combine_script
                )
            except ValueError as exc:
                _LOG.warning("keeping raw creator script: %s", exc)
                creator = token.creator_combine_script
            entries.append(
                TokenListEntry(
                    ft_contract_id=token.contract_id,
                    ft_supply=_scaled_supply(token.supply, token.decimal),
                    ft_decimal=int(token.decimal),
                    ft_name=token.name,
                    ft_symbol=token.symbol,
                    ft_description=token.description,
                    ft_creator_address=creator,
                    ft_create_timestamp=token.create_timestamp,
                    ft_token_price=f"{token.token_price:f}",
                    ft_holders_count=token.holders_count,
                    ft_icon_url=token.icon_url,
                )
            )
        return TokenListPage(int(total), entries)