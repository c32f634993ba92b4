"""Token movements of a single transaction."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from tbcquery.core import Backend, QueryError

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class FtTxEntry:
    """A token-carrying input or output of a transaction."""

    txid: str
    vout: int
    address: str
    contract_id: str
    ft_balance: int
    ft_decimal: int


@dataclass
class FtTxDecode:
    """Token inputs and outputs of a transaction."""

    txid: str
    input: list[FtTxEntry] = field(default_factory=list)
    output: list[FtTxEntry] = field(default_factory=list)


def _number(value: Any) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    return 0


class FtTxDecoder:
    """Decodes the token movements of transactions."""

    def __init__(self, backend: Backend) -> None:
        self._backend = backend

    def _utxo_info(self, txid: str, vout: int) -> Optional[tuple[int, str, str]]:
        try:
            balance, holder, contract_id = self._backend.txos.utxo_info(txid, vout)
        except QueryError as exc:
            _LOG.warning("token output lookup failed for %s:%d: %s", txid, vout, exc)
            return None
        if not holder or not contract_id:
            return None
        return int(balance), holder, contract_id

    def _decimal(self, contract_id: str) -> int:
        try:
            return int(self._backend.tokens.decimal(contract_id))
        except QueryError as exc:
            _LOG.warning("cannot read decimals of %s: %s", contract_id, exc)
            return 0

    def _plain_address(self, holder: str) -> str:
        try:
            return self._backend.codec.combine_script_to_address(holder)
        except ValueError as exc:
            _LOG.warning("cannot convert combine script: %s", exc)
            return ""

    def _input_address(self, holder: str, vin: Mapping[str, Any], index: int) -> str:
        if holder.endswith("00"):
            return self._plain_address(holder)
        if not holder.endswith("01"):
            return ""
        script_sig = vin.get("scriptSig")
        if not isinstance(script_sig, Mapping):
            return ""
        asm = script_sig.get("asm")
        if isinstance(asm, str) and index > 0 and len(asm) > 2 and asm.startswith("0 "):
            try:
                return self._backend.codec.p2ms_unlock_script_to_address(asm)
            except ValueError as exc:
                _LOG.warning("cannot convert multisig unlock script: %s", exc)
        return "Pool_" + holder

    def _output_address(self, holder: str, inputs: Iterable[FtTxEntry]) -> str:
        if holder.endswith("00"):
            return self._plain_address(holder)
        if not holder.endswith("01"):
            return ""
        pool = "Pool_" + holder
        if any(entry.address == pool for entry in inputs):
            return pool
        return "Pool_or_MS_" + holder

    def decode(self, txid: str) -> FtTxDecode:
        """Return the token inputs and outputs of transaction ``txid``."""
        if not txid:
            raise QueryError("invalid parameters: txid is required")
        try:
            tx = self._backend.chain.transaction(txid)
        except QueryError as exc:
            raise QueryError(f"failed to decode transaction: {exc}") from exc
        if not isinstance(tx, Mapping):
            raise QueryError("malformed transaction data")

        inputs: list[FtTxEntry] = []
        vins = tx.get("vin")
        for index, vin in enumerate(vins if isinstance(vins, list) else []):
            if not isinstance(vin, Mapping):
                continue
            prev_txid = vin.get("txid")
            if not isinstance(prev_txid, str) or not prev_txid:
                continue
            prev_vout = _number(vin.get("vout"))
            info = self._utxo_info(prev_txid, prev_vout)
            if info is None:
                continue
            balance, holder, contract_id = info
            inputs.append(
                FtTxEntry(
                    txid=prev_txid,
                    vout=prev_vout,
                    address=self._input_address(holder, vin, index),
                    contract_id=contract_id,
                    ft_balance=balance,
                    ft_decimal=self._decimal(contract_id),
                )
            )

        outputs: list[FtTxEntry] = []
        vouts = tx.get("vout")
        for vout in vouts if isinstance(vouts, list) else []:
            if not isinstance(vout, Mapping):
                continue
            n = _number(vout.get("n"))
            info = self._utxo_info(txid, n)
            if info is None:
                continue
            balance, holder, contract_id = info
            outputs.append(
                FtTxEntry(
                    txid=txid,
                    vout=n,
                    address=self._output_address(holder, inputs),
                    contract_id=contract_id,
                    ft_balance=balance,
                    ft_decimal=self._decimal(contract_id),
                )
            )

        _LOG.info("decoded %s: %d inputs, %d outputs", txid, len(inputs), len(outputs))
        return FtTxDecode(txid, inputs, outputs)