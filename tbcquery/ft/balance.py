"""Token balances of an address."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from tbcquery.core import Backend, QueryError

_LOG = logging.getLogger(__name__)

_LP_SYMBOL = "LP"
_LP_NAME = "LP Token"


@dataclass(frozen=True)
class TokenBalance:
    """Balance of one token held by one combine script."""

    combine_script: str
    ft_contract_id: str
    ft_decimal: int
    ft_balance: int


@dataclass(frozen=True)
class HeldToken:
    """A token an address holds, with its non-zero balance."""

    ft_contract_id: str
    ft_decimal: int
    ft_balance: int
    ft_name: str
    ft_symbol: str


@dataclass
class HeldTokenList:
    """Every non-LP token an address holds."""

    address: str
    token_count: int
    token_list: list[HeldToken] = field(default_factory=list)


class FtBalanceService:
    """Answers balance queries for fungible tokens."""

    def __init__(self, backend: Backend) -> None:
        self._backend = backend

    def _combine_script(self, address: str) -> str:
        try:
            pubkey_hash = self._backend.codec.address_to_public_key_hash(address)
        except ValueError as exc:
            raise QueryError(f"failed to build combine script: {exc}") from exc
        return pubkey_hash + "00"

    @staticmethod
    def _require_address(address: str) -> None:
        if not address:
            raise QueryError("invalid parameters: address is required")

    def balance(self, address: str, contract_id: str) -> TokenBalance:
        """Return the balance of one token held by ``address``."""
        self._require_address(address)
        if not contract_id:
            raise QueryError("invalid parameters: contract id is required")
        combine_script = self._combine_script(address)
        try:
            decimal = self._backend.tokens.decimal(contract_id)
        except QueryError as exc:
            raise QueryError(f"failed to read token decimals: {exc}") from exc
        try:
            amount = self._backend.txos.total_balance(combine_script, contract_id)
        except QueryError as exc:
            raise QueryError(f"failed to read token balance: {exc}") from exc
        _LOG.info("token balance of %s for %s: %d", address, contract_id, amount)
        return TokenBalance(combine_script, contract_id, int(decimal), amount)

    def balances(self, address: str, contract_ids: Iterable[str]) -> list[TokenBalance]:
        """Return balances for several tokens, skipping those that fail."""
        self._require_address(address)
        contract_ids = list(contract_ids)
        if not contract_ids:
            raise QueryError("invalid parameters: at least one contract id is required")
        combine_script = self._combine_script(address)
        results = []
        for contract_id in contract_ids:
            try:
                decimal = self._backend.tokens.decimal(contract_id)
                amount = self._backend.txos.total_balance(combine_script, contract_id)
            except QueryError as exc:
                _LOG.error("skipping contract %s: %s", contract_id, exc)
                continue
            results.append(TokenBalance(combine_script, contract_id, int(decimal), amount))
        _LOG.info("read %d token balances", len(results))
        return results

    def held_tokens(self, address: str) -> HeldTokenList:
        """Return every non-LP token with a non-zero balance at ``address``."""
        self._require_address(address)
        combine_script = self._combine_script(address)
        try:
            contract_ids = self._backend.txos.contract_ids_by_holder(combine_script)
        except QueryError as exc:
            raise QueryError(f"failed to list held contracts: {exc}") from exc

        held = []
        for contract_id in contract_ids:
            try:
                token = self._backend.tokens.get_token(contract_id)
            except QueryError as exc:
                _LOG.warning("skipping token %s: %s", contract_id, exc)
                continue
            if token.symbol == _LP_SYMBOL or token.name == _LP_NAME:
                continue
            try:
                amount = self._backend.txos.total_balance(combine_script, contract_id)
            except QueryError as exc:
                _LOG.warning("skipping token %s: %s", contract_id, exc)
                continue
            if amount == 0:
                continue
            held.append(
                HeldToken(contract_id, int(token.decimal), amount, token.name, token.symbol)
            )
        return HeldTokenList(address, len(held), held)