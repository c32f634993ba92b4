"""Token transaction history of an address."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from tbcquery.core import Backend, QueryError, block_time, format_utc, paginate

_LOG = logging.getLogger(__name__)

_UNITS = 1_000_000
_COINBASE_SPEND = 325
_CODE_TAIL = 12
_HOLDER_SPAN = 54
_BURN_ADDRESS = "1BitcoinEaterAddressDontSendf59kuE"

UNCONFIRMED = "unconfirmed"


@dataclass(frozen=True)
class FtHistoryRecord:
    """One transaction that moved a token for the queried address."""

    tx_id: str
    ft_contract_id: str
    ft_balance_change: int
    ft_decimal: int
    tx_fee: float
    sender_combine_script: list[str]
    recipient_combine_script: list[str]
    time_stamp: int
    utc_time: str


@dataclass
class FtHistory:
    """A page of an address's token history and the full history length."""

    address: str
    script_hash: str
    history_count: int
    result: list[FtHistoryRecord] = field(default_factory=list)


@dataclass
class _TxTally:
    total_spend: int = 0
    total_receive: int = 0
    balance_change: int = 0
    senders: dict[str, None] = field(default_factory=dict)
    recipients: dict[str, None] = field(default_factory=dict)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _units(value: Any) -> int:
    """Convert a coin amount to integer units, truncating."""
    return int(float(value) * _UNITS)


def build_address_lists(
    query_address: str,
    balance_change: int,
    senders: Iterable[str],
    recipients: Iterable[str],
) -> tuple[list[str], list[str]]:
    """Return (sender list, recipient list) as seen from ``query_address``.

    A negative change makes the address the only sender, a positive change
    the only recipient; with no change it is both.
    """
    if balance_change < 0:
        return [query_address], [r for r in dict.fromkeys(recipients) if r != query_address]
    if balance_change > 0:
        return [s for s in dict.fromkeys(senders) if s != query_address], [query_address]
    return [query_address], [query_address]


class FtHistoryService:
    """Answers token history queries for an address."""

    def __init__(self, backend: Backend) -> None:
        self._backend = backend

    def _combine_script(self, address: str) -> str:
        try:
            pubkey_hash = self._backend.codec.address_to_public_key_hash(address)
        except ValueError as exc:
            raise QueryError(f"failed to convert address to public key hash: {exc}") from exc
        return pubkey_hash + "00"

    def _locking_script(self, contract_id: str, combine_script: str) -> tuple[str, int]:
        try:
            code_script, decimal = self._backend.tokens.code_script_and_decimal(contract_id)
        except QueryError as exc:
            raise QueryError(f"failed to read token: {exc}") from exc
        if not code_script:
            raise QueryError(f"token not found, contract id={contract_id}")
        if len(code_script) < _HOLDER_SPAN:
            raise QueryError("malformed token code script")
        code_script = (
            code_script[:-_HOLDER_SPAN] + combine_script + code_script[-_CODE_TAIL:]
        )
        try:
            return self._backend.codec.sha256_hex(code_script), int(decimal)
        except ValueError as exc:
            raise QueryError(f"failed to hash locking script: {exc}") from exc

    def history(self, address: str, contract_id: str, page: int, size: int) -> FtHistory:
        """Return page ``page`` of ``size`` token transactions, newest first."""
        if not address:
            raise QueryError("invalid parameters: address is required")
        if not contract_id:
            raise QueryError("invalid parameters: contract id is required")
        if page < 0:
            raise QueryError("invalid parameters: page must not be negative")
        if size <= 0:
            raise QueryError("invalid parameters: size must be positive")

        combine_script = self._combine_script(address)
        script_hash, decimal = self._locking_script(contract_id, combine_script)

        try:
            history = list(self._backend.electrum.history(script_hash))
        except QueryError as exc:
            raise QueryError(f"failed to fetch history: {exc}") from exc
        history.reverse()

        records = []
        for number, item in enumerate(paginate(history, page, size), start=1):
            try:
                record = self._record(item, contract_id, address, combine_script, decimal)
            except QueryError as exc:
                _LOG.warning("skipping history item #%d: %s", number, exc)
                continue
            records.append(record)
        _LOG.info(
            "token history of %s for %s: %d records", address, contract_id, len(records)
        )
        return FtHistory(address, script_hash, len(history), records)

    def _time_info(self, height: float) -> tuple[int, str]:
        if height < 1:
            return 0, UNCONFIRMED
        stamp = block_time(self._backend.chain, int(height))
        if stamp is None:
            return 0, ""
        return stamp, format_utc(stamp)

    def _transaction(self, txid: str) -> Mapping[str, Any]:
        try:
            tx = self._backend.chain.transaction(txid)
        except QueryError as exc:
            raise QueryError(f"failed to fetch transaction {txid}: {exc}") from exc
        if not isinstance(tx, Mapping):
            raise QueryError(f"malformed transaction {txid}")
        return tx

    def _record(
        self,
        item: Any,
        contract_id: str,
        address: str,
        combine_script: str,
        decimal: int,
    ) -> FtHistoryRecord:
        if not isinstance(item, Mapping):
            raise QueryError("malformed history item")
        tx_hash = item.get("tx_hash")
        if not isinstance(tx_hash, str):
            raise QueryError("malformed transaction hash")
        height = item.get("height")
        if not _is_number(height):
            raise QueryError("malformed block height")

        time_stamp, utc_time = self._time_info(height)
        tx = self._transaction(tx_hash)
        tally = _TxTally()
        self._tally_inputs(tx, tally, contract_id, combine_script)
        self._tally_outputs(tx, tx_hash, tally, contract_id, combine_script)
        tally.recipients.pop(_BURN_ADDRESS, None)

        senders, recipients = build_address_lists(
            address, tally.balance_change, tally.senders, tally.recipients
        )
        return FtHistoryRecord(
            tx_id=tx_hash,
            ft_contract_id=contract_id,
            ft_balance_change=tally.balance_change,
            ft_decimal=decimal,
            tx_fee=(tally.total_spend - tally.total_receive) / _UNITS,
            sender_combine_script=senders,
            recipient_combine_script=recipients,
            time_stamp=time_stamp,
            utc_time=utc_time,
        )

    def _utxo_info(self, txid: str, vout: int) -> Optional[tuple[int, str, str]]:
        try:
            balance, holder, holder_contract = self._backend.txos.utxo_info(txid, vout)
        except QueryError as exc:
            _LOG.warning("token output lookup failed for %s:%d: %s", txid, vout, exc)
            return None
        if not holder or not holder_contract:
            return None
        return balance, holder, holder_contract

    def _tally_inputs(
        self,
        tx: Mapping[str, Any],
        tally: _TxTally,
        contract_id: str,
        combine_script: str,
    ) -> None:
        vins = tx.get("vin")
        if not isinstance(vins, list):
            raise QueryError("malformed transaction inputs")
        for index, vin in enumerate(vins):
            if not isinstance(vin, Mapping):
                continue
            if "coinbase" in vin:
                tally.total_spend += _COINBASE_SPEND
                continue
            prev_txid = vin.get("txid")
            prev_vout = vin.get("vout")
            if not isinstance(prev_txid, str) or not _is_number(prev_vout):
                continue
            prev_vout = int(prev_vout)
            try:
                prev = self._transaction(prev_txid)
            except QueryError as exc:
                _LOG.warning("skipping input %d: %s", index, exc)
                continue
            outputs = prev.get("vout")
            if not isinstance(outputs, list) or not 0 <= prev_vout < len(outputs):
                _LOG.warning("input %s:%d is out of range", prev_txid, prev_vout)
                continue
            spent = outputs[prev_vout]
            if not isinstance(spent, Mapping) or not _is_number(spent.get("value")):
                continue
            tally.total_spend += _units(spent["value"])

            info = self._utxo_info(prev_txid, prev_vout)
            if info is None:
                continue
            balance, holder, holder_contract = info
            if holder == combine_script and holder_contract == contract_id:
                tally.balance_change -= int(balance)
            self._sender_address(holder, vin, index, tally.senders)

    def _sender_address(
        self, holder: str, vin: Mapping[str, Any], index: int, senders: dict[str, None]
    ) -> None:
        codec = self._backend.codec
        if holder.endswith("00"):
            try:
                senders[codec.combine_script_to_address(holder)] = None
            except ValueError as exc:
                _LOG.warning("cannot convert combine script: %s", exc)
        elif holder.endswith("01"):
            script_sig = vin.get("scriptSig")
            if not isinstance(script_sig, Mapping):
                return
            asm = script_sig.get("asm")
            if not isinstance(asm, str):
                return
            if index > 0 and asm.startswith("0 "):
                try:
                    senders[codec.p2ms_unlock_script_to_address(asm)] = None
                except ValueError as exc:
                    _LOG.warning("cannot convert multisig unlock script: %s", exc)
            else:
                senders["Pool_" + holder] = None

    def _tally_outputs(
        self,
        tx: Mapping[str, Any],
        tx_hash: str,
        tally: _TxTally,
        contract_id: str,
        combine_script: str,
    ) -> None:
        vouts = tx.get("vout")
        if not isinstance(vouts, list):
            raise QueryError("malformed transaction outputs")
        for vout in vouts:
            if not isinstance(vout, Mapping) or not _is_number(vout.get("value")):
                continue
            tally.total_receive += _units(vout["value"])
            n = vout.get("n")
            if not _is_number(n):
                continue
            info = self._utxo_info(tx_hash, int(n))
            if info is None:
                continue
            balance, holder, holder_contract = info
            if holder == combine_script and holder_contract == contract_id:
                tally.balance_change += int(balance)
            self._recipient_address(holder, tally)

    def _recipient_address(self, holder: str, tally: _TxTally) -> None:
        if holder.endswith("00"):
            try:
                address = self._backend.codec.combine_script_to_address(holder)
            except ValueError as exc:
                _LOG.warning("cannot convert combine script: %s", exc)
                return
            tally.recipients[address] = None
        elif holder.endswith("01"):
            pool = "Pool_" + holder
            if pool in tally.senders:
                tally.recipients[pool] = None
            else:
                tally.recipients["Pool_or_MS_" + holder] = None