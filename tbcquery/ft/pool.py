"""Liquidity pools: their transaction history and listings."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from tbcquery.core import Backend, QueryError, paginate

_LOG = logging.getLogger(__name__)

TBC_ID = "TBC"
TBC_NAME = "TBC"
TBC_DECIMAL = 6
DEFAULT_TOKEN_DECIMAL = 8
UNKNOWN_TOKEN_NAME = "未知"

_SIGNATURE_PREFIX = "30"
_SCRIPT_SIG_LIMIT = 500
_PUBKEY_LENGTH = 66


@dataclass(frozen=True)
class PoolHistoryEntry:
    """One pool transaction and how it changed the pool's balances.

    A balance change of zero is reported as None.
    """

    txid: str
    pool_id: str
    exchange_address: str
    ft_lp_balance_change: Optional[int]
    token_pair_a_id: str
    token_pair_a_name: str
    token_pair_a_decimal: int
    token_pair_a_pool_balance_change: Optional[int]
    token_pair_b_id: str
    token_pair_b_name: str
    token_pair_b_decimal: int
    token_pair_b_pool_balance_change: Optional[int]


@dataclass(frozen=True)
class PoolInfo:
    """A pool pairing TBC with a token."""

    pool_id: str
    token_pair_a_id: str
    token_pair_a_name: str
    token_pair_b_id: str
    token_pair_b_name: str
    pool_create_timestamp: int


@dataclass
class PoolList:
    """A list of pools and the total number of pools."""

    pool_list: list[PoolInfo] = field(default_factory=list)
    total_pool_count: int = 0


def _change(value: int) -> Optional[int]:
    return value if value != 0 else None


def _script_pub_key(output: Any) -> Mapping[str, Any]:
    if not isinstance(output, Mapping):
        return {}
    spk = output.get("scriptPubKey")
    return spk if isinstance(spk, Mapping) else {}


def _script_sig_asm(vin: Any) -> Optional[str]:
    if not isinstance(vin, Mapping):
        return None
    script_sig = vin.get("scriptSig")
    if not isinstance(script_sig, Mapping):
        return None
    asm = script_sig.get("asm")
    return asm if isinstance(asm, str) else None


def _second_output_asm(outputs: Sequence[Any]) -> Optional[str]:
    if len(outputs) <= 1:
        return None
    asm = _script_pub_key(outputs[1]).get("asm")
    return asm if isinstance(asm, str) else None


def _as_list(value: Any) -> list[Any]:
    return list(value) if isinstance(value, list) else []


class PoolService:
    """Answers queries about liquidity pools."""

    def __init__(self, backend: Backend) -> None:
        self._backend = backend

    # -- history ---------------------------------------------------------

    def history(self, pool_id: str, page: int, size: int) -> list[PoolHistoryEntry]:
        """Return page ``page`` of ``size`` pool transactions, newest first."""
        if not pool_id:
            raise QueryError("invalid parameters: pool id is required")
        if page < 0:
            raise QueryError("invalid parameters: page must not be negative")
        if size <= 0:
            raise QueryError("invalid parameters: size must be positive")

        try:
            pool_tx = self._backend.chain.transaction(pool_id)
        except QueryError as exc:
            raise QueryError(f"failed to fetch pool transaction: {exc}") from exc
        if pool_tx is None:
            _LOG.error("pool transaction %s is empty", pool_id)
            return []
        if not isinstance(pool_tx, Mapping):
            raise QueryError("malformed pool transaction")

        script_hash = self._pool_script_hash(pool_tx)
        if not script_hash:
            return []

        try:
            history = list(self._backend.electrum.history(script_hash))
        except QueryError as exc:
            raise QueryError(f"failed to fetch script history: {exc}") from exc
        history.reverse()

        entries = []
        for item in paginate(history, page, size):
            tx_hash = item.get("tx_hash") if isinstance(item, Mapping) else None
            if not isinstance(tx_hash, str):
                _LOG.warning("skipping malformed history item")
                continue
            try:
                entries.append(self._history_entry(tx_hash, pool_id))
            except QueryError as exc:
                _LOG.warning("skipping pool transaction %s: %s", tx_hash, exc)
        _LOG.info("pool %s history: %d entries", pool_id, len(entries))
        return entries

    def _pool_script_hash(self, pool_tx: Mapping[str, Any]) -> str:
        outputs = _as_list(pool_tx.get("vout"))
        if not outputs:
            _LOG.error("pool transaction has no outputs")
            return ""
        script_hex = _script_pub_key(outputs[0]).get("hex")
        if not isinstance(script_hex, str):
            _LOG.error("pool transaction has no script hex")
            return ""
        try:
            return self._backend.codec.sha256_hex(script_hex)
        except ValueError as exc:
            raise QueryError(f"failed to hash pool script: {exc}") from exc

    def _transaction(self, txid: str) -> Mapping[str, Any]:
        try:
            tx = self._backend.chain.transaction(txid)
        except QueryError as exc:
            raise QueryError(f"failed to fetch transaction {txid}: {exc}") from exc
        if not isinstance(tx, Mapping):
            raise QueryError(f"malformed transaction {txid}")
        return tx

    def _history_entry(self, tx_hash: str, pool_id: str) -> PoolHistoryEntry:
        tx = self._transaction(tx_hash)
        inputs = _as_list(tx.get("vin"))
        outputs = _as_list(tx.get("vout"))

        exchange_address = self._exchange_address(inputs)
        last_lp, last_a, last_tbc = self._last_pool_balance(inputs)
        lp, token_a, tbc = self._tape_balance(_second_output_asm(outputs), "current")
        b_id, b_name, b_decimal = self._token_info(outputs)

        return PoolHistoryEntry(
            txid=tx_hash,
            pool_id=pool_id,
            exchange_address=exchange_address,
            ft_lp_balance_change=_change(lp - last_lp),
            token_pair_a_id=TBC_ID,
            token_pair_a_name=TBC_NAME,
            token_pair_a_decimal=TBC_DECIMAL,
            token_pair_a_pool_balance_change=_change(tbc - last_tbc),
            token_pair_b_id=b_id,
            token_pair_b_name=b_name,
            token_pair_b_decimal=b_decimal,
            token_pair_b_pool_balance_change=_change(token_a - last_a),
        )

    def _exchange_address(self, inputs: Sequence[Any]) -> str:
        for vin in inputs:
            asm = _script_sig_asm(vin)
            if not asm or not asm.startswith(_SIGNATURE_PREFIX):
                continue
            if len(asm) >= _SCRIPT_SIG_LIMIT or len(asm) < _PUBKEY_LENGTH:
                continue
            pubkey = asm[-_PUBKEY_LENGTH:]
            try:
                return self._backend.codec.address_to_public_key_hash(pubkey)
            except ValueError as exc:
                _LOG.warning("cannot convert public key: %s", exc)
        return ""

    def _tape_balance(self, asm: Optional[str], label: str) -> tuple[int, int, int]:
        if asm is None:
            return 0, 0, 0
        try:
            lp, token_a, tbc = self._backend.codec.pool_balance_from_tape(asm)
        except ValueError as exc:
            _LOG.warning("cannot parse %s pool balance: %s", label, exc)
            return 0, 0, 0
        return int(lp), int(token_a), int(tbc)

    def _last_pool_balance(self, inputs: Sequence[Any]) -> tuple[int, int, int]:
        if not inputs:
            return 0, 0, 0
        first = inputs[0]
        asm = _script_sig_asm(first)
        if not asm or not asm.startswith(_SIGNATURE_PREFIX) or len(asm) <= _SCRIPT_SIG_LIMIT:
            return 0, 0, 0
        last_txid = first.get("txid")
        if not isinstance(last_txid, str):
            return 0, 0, 0
        try:
            last_tx = self._transaction(last_txid)
        except QueryError as exc:
            _LOG.warning("cannot fetch previous pool transaction: %s", exc)
            return 0, 0, 0
        return self._tape_balance(
            _second_output_asm(_as_list(last_tx.get("vout"))), "previous"
        )

    def _token_info(self, outputs: Sequence[Any]) -> tuple[str, str, int]:
        asm = _second_output_asm(outputs)
        if asm is None:
            return "", "", DEFAULT_TOKEN_DECIMAL
        parts = asm.split(" ")
        if len(parts) <= 4:
            return "", "", DEFAULT_TOKEN_DECIMAL
        contract_id = parts[4]
        try:
            token = self._backend.tokens.get_token(contract_id)
        except QueryError as exc:
            _LOG.warning("cannot read token %s: %s", contract_id, exc)
            token = None
        if token is None:
            return contract_id, contract_id, DEFAULT_TOKEN_DECIMAL
        return contract_id, token.name, int(token.decimal)

    # -- listings --------------------------------------------------------

    def pools_for_token(self, ft_contract_id: str) -> PoolList:
        """Return every pool that trades the token ``ft_contract_id``."""
        if not ft_contract_id:
            raise QueryError("invalid parameters: contract id is required")
        try:
            pools = list(self._backend.pools.pools_for_token(ft_contract_id))
        except QueryError as exc:
            raise QueryError(f"failed to list pools: {exc}") from exc
        if not pools:
            return PoolList([], 0)

        try:
            token = self._backend.tokens.get_token(ft_contract_id)
        except QueryError as exc:
            _LOG.warning("cannot read token %s: %s", ft_contract_id, exc)
            token = None
        token_name = token.name if token is not None else UNKNOWN_TOKEN_NAME

        entries = [
            PoolInfo(
                pool_id=pool.nft_contract_id,
                token_pair_a_id=TBC_ID,
                token_pair_a_name=TBC_NAME,
                token_pair_b_id=ft_contract_id,
                token_pair_b_name=token_name,
                pool_create_timestamp=pool.create_timestamp,
            )
            for pool in pools
        ]
        return PoolList(entries, len(entries))

    def all_pools(self, page: int, size: int) -> PoolList:
        """Return one page of all pools and the total pool count."""
        if page < 0:
            raise QueryError("invalid parameters: page must not be negative")
        if size <= 0:
            raise QueryError("invalid parameters: size must be positive")
        try:
            pools, total = self._backend.pools.all_pools(page, size)
        except QueryError as exc:
            raise QueryError(f"failed to list pools: {exc}") from exc

        entries = []
        for pool in pools:
            token_name = ""
            if pool.token_contract_id:
                try:
                    token = self._backend.tokens.get_token(pool.token_contract_id)
                except QueryError as exc:
                    _LOG.warning("cannot read token %s: %s", pool.token_contract_id, exc)
                    token = None
                if token is not None:
                    token_name = token.name
            entries.append(
                PoolInfo(
                    pool_id=pool.nft_contract_id,
                    token_pair_a_id=TBC_ID,
                    token_pair_a_name=TBC_NAME,
                    token_pair_b_id=pool.token_contract_id,
                    token_pair_b_name=token_name,
                    pool_create_timestamp=pool.create_timestamp,
                )
            )
        return PoolList(entries, int(total))