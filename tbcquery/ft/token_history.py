"""Transaction history of a token contract, decoded into token movements."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from tbcquery.core import Backend, QueryError, paginate
from tbcquery.ft.tx_decode import FtTxDecode, FtTxEntry

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenHistoryItem:
    """One transaction of a token contract and its token movements."""

    txid: str
    ft_contract_id: str
    tx_info: FtTxDecode


def _number(value: Any) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    return 0


def _script_sig_asm(vin: Any) -> str:
    if not isinstance(vin, Mapping):
        return ""
    script_sig = vin.get("scriptSig")
    if not isinstance(script_sig, Mapping):
        return ""
    asm = script_sig.get("asm")
    return asm if isinstance(asm, str) else ""


class TokenHistoryService:
    """Answers history queries for a whole token contract."""

    def __init__(self, backend: Backend) -> None:
        self._backend = backend

    def history(self, ft_contract_id: str, page: int, size: int) -> list[TokenHistoryItem]:
        """Return page ``page`` of ``size`` contract transactions, newest first."""
        if not ft_contract_id:
            raise QueryError("invalid parameters: contract id is required")
        if page < 0:
            raise QueryError("invalid parameters: page must not be negative")
        if size <= 0:
            raise QueryError("invalid parameters: size must be positive")

        try:
            code_script = self._backend.tokens.code_script(ft_contract_id)
        except QueryError as exc:
            raise QueryError(f"failed to read token code script: {exc}") from exc
        if not code_script:
            _LOG.warning("token %s not found", ft_contract_id)
            return []

        try:
            script_hash = self._backend.codec.sha256_hex(code_script)
        except ValueError as exc:
            raise QueryError(f"failed to hash code script: {exc}") from exc

        try:
            history = list(self._backend.electrum.history(script_hash))
        except QueryError as exc:
            raise QueryError(f"failed to fetch script history: {exc}") from exc
        history.reverse()

        items = []
        for entry in paginate(history, page, size):
            tx_hash = entry.get("tx_hash") if isinstance(entry, Mapping) else None
            if not isinstance(tx_hash, str):
                _LOG.warning("skipping malformed history item")
                continue
            try:
                tx_info = self._decode(tx_hash)
            except QueryError as exc:
                _LOG.warning("cannot decode %s: %s", tx_hash, exc)
                continue
            items.append(TokenHistoryItem(tx_hash, ft_contract_id, tx_info))
        _LOG.info(
            "token %s history: %d of %d transactions", ft_contract_id, len(items), len(history)
        )
        return items

    def _utxo_info(self, txid: str, vout: int) -> Optional[tuple[int, str, str]]:
        try:
            balance, holder, contract_id = self._backend.txos.utxo_info(txid, vout)
        except QueryError as exc:
            _LOG.debug("no token output at %s:%d: %s", txid, vout, exc)
            return None
        if not contract_id:
            return None
        return int(balance), holder or "", contract_id

    def _decimal(self, contract_id: str) -> int:
        try:
            return int(self._backend.tokens.decimal(contract_id))
        except QueryError as exc:
            _LOG.warning("cannot read decimals of %s: %s", contract_id, exc)
            return 0

    def _unlock_address(self, holder: str, vins: Sequence[Any], index: int) -> str:
        pool = "Pool_" + holder
        if index <= 0:
            return pool
        asm = _script_sig_asm(vins[index - 1])
        if len(asm) > 2 and asm.startswith("0 "):
            try:
                return self._backend.codec.p2ms_unlock_script_to_address(asm)
            except ValueError as exc:
                _LOG.warning("cannot convert multisig unlock script: %s", exc)
        return pool

    def _decode(self, txid: str) -> FtTxDecode:
        try:
            tx = self._backend.chain.transaction(txid)
        except QueryError as exc:
            raise QueryError(f"failed to fetch transaction: {exc}") from exc
        if not isinstance(tx, Mapping):
            raise QueryError("malformed transaction data")

        codec = self._backend.codec
        vins = tx.get("vin")
        vins = list(vins) if isinstance(vins, list) else []
        inputs: list[FtTxEntry] = []
        for index, vin in enumerate(vins):
            vin_map = vin if isinstance(vin, Mapping) else {}
            prev_txid = vin_map.get("txid")
            prev_txid = prev_txid if isinstance(prev_txid, str) else ""
            prev_vout = _number(vin_map.get("vout"))
            info = self._utxo_info(prev_txid, prev_vout)
            if info is None:
                continue
            balance, holder, contract_id = info
            if holder.endswith("00"):
                try:
                    address = codec.combine_script_to_address(holder)
                except ValueError as exc:
                    _LOG.warning("cannot convert combine script: %s", exc)
                    continue
            elif holder.endswith("01"):
                address = self._unlock_address(holder, vins, index)
            else:
                address = ""
            inputs.append(
                FtTxEntry(
                    txid=prev_txid,
                    vout=prev_vout,
                    address=address,
                    contract_id=contract_id,
                    ft_balance=balance,
                    ft_decimal=self._decimal(contract_id),
                )
            )

        vouts = tx.get("vout")
        outputs: list[FtTxEntry] = []
        for vout in vouts if isinstance(vouts, list) else []:
            vout_map = vout if isinstance(vout, Mapping) else {}
            n = _number(vout_map.get("n"))
            info = self._utxo_info(txid, n)
            if info is None:
                continue
            balance, holder, contract_id = info
            if holder.endswith("00"):
                try:
                    address = codec.combine_script_to_address(holder)
                except ValueError as exc:
                    _LOG.warning("cannot convert combine script: %s", exc)
                    continue
            elif holder.endswith("01"):
                pool = "Pool_" + holder
                if any(entry.address == pool for entry in inputs):
                    address = pool
                else:
                    address = "Pool_or_MS_" + holder
            else:
                address = ""
            outputs.append(
                FtTxEntry(
                    txid=txid,
                    vout=n,
                    address=address,
                    contract_id=contract_id,
                    ft_balance=balance,
                    ft_decimal=self._decimal(contract_id),
                )
            )

        return FtTxDecode(txid, inputs, outputs)