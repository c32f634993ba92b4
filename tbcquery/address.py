"""Coin balances, unspent outputs and transaction history of an address."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from tbcquery.core import Backend, QueryError, format_utc, paginate

_LOG = logging.getLogger(__name__)

_UNITS = 1_000_000
_COINBASE_SPEND = 325
_PAGE_SIZE = 10
_UNPAGED_LIMIT = 30

_TBC20_PREFIX = "9 OP_PICK OP_TOALTSTACK"
_POOL_SUFFIX = "01 32436f6465"
_TBC721_PREFIXES = ("OP_RETURN", "0 OP_RETURN", "1 OP_PICK")
_MULTISIG_SUFFIX = "OP_CHECKMULTISIG"

UNCONFIRMED = "unconfirmed"


@dataclass(frozen=True)
class AddressHistoryItem:
    """One transaction in an address's history."""

    balance_change: str
    tx_hash: str
    sender_addresses: list[str]
    recipient_addresses: list[str]
    fee: str
    time_stamp: int
    utc_time: str
    tx_type: str


@dataclass
class AddressHistory:
    """A slice of an address's history and the full history length."""

    address: str
    script: str
    history_count: int
    result: list[AddressHistoryItem] = field(default_factory=list)


@dataclass(frozen=True)
class AddressBalance:
    """Confirmed, unconfirmed and total coin balance of an address."""

    balance: int
    confirmed: int
    unconfirmed: int


def _to_units(value: Any) -> int:
    """Convert a coin amount to integer units, rounding half away from zero."""
    scaled = float(value) * _UNITS
    return int(math.copysign(math.floor(abs(scaled) + 0.5), scaled))


def _format_float(value: float) -> str:
    """Shortest plain decimal text of a float, never in exponent form."""
    text = format(Decimal(repr(value)).normalize(), "f")
    return text


def format_balance_change(balance_change: int) -> str:
    """Render a unit amount as a signed coin amount without trailing zeros."""
    text = f"{Decimal(balance_change).scaleb(-6):+.6f}"
    text = text.rstrip("0").rstrip(".")
    if text in ("+", ""):
        return "0"
    return text


def sort_history(items: Iterable[AddressHistoryItem]) -> list[AddressHistoryItem]:
    """Return items with unconfirmed ones first, then newest first."""
    return sorted(items, key=lambda item: (item.time_stamp != 0, -item.time_stamp))


def build_addresses_and_fee(
    address: str,
    balance_change: int,
    total_spend: int,
    total_receive: int,
    senders: Iterable[str],
    receivers: Iterable[str],
) -> tuple[list[str], list[str], str]:
    """Return (recipient addresses, sender addresses, fee text).

    When the address lost coins it is the only sender and the other receivers
    are the recipients; otherwise it is the only recipient and the other
    senders are the senders. Neither list is ever empty.
    """
    fee = _format_float((total_spend - total_receive) / _UNITS)
    if balance_change < 0:
        sender_list = [address]
        recipient_list = [r for r in dict.fromkeys(receivers) if r != address]
    else:
        recipient_list = [address]
        sender_list = [s for s in dict.fromkeys(senders) if s != address]
    if not sender_list:
        sender_list = [address]
    if not recipient_list:
        recipient_list = [address]
    return recipient_list, sender_list, fee


def _pool_id(asm: str) -> str:
    return "Pool_" + asm[-53:-11]


def _script_pub_key(output: Any) -> Mapping[str, Any]:
    if not isinstance(output, Mapping):
        return {}
    spk = output.get("scriptPubKey")
    return spk if isinstance(spk, Mapping) else {}


@dataclass
class _Tally:
    total_spend: int = 0
    total_receive: int = 0
    balance_change: int = 0
    senders: dict[str, None] = field(default_factory=dict)
    receivers: dict[str, None] = field(default_factory=dict)
    tx_type: str = "P2PKH"
    type_detected: bool = False


class AddressService:
    """Answers coin queries about a single address."""

    def __init__(self, backend: Backend) -> None:
        self._backend = backend

    def _script_hash(self, address: str) -> str:
        codec = self._backend.codec
        try:
            valid, addr_type = codec.validate_address(address)
        except ValueError as exc:
            raise QueryError(f"invalid address format: {exc}") from exc
        if not valid:
            raise QueryError(f"invalid address format: {address}")
        _LOG.info("address %s validated as %s", address, addr_type)
        try:
            return codec.address_to_script_hash(address)
        except ValueError as exc:
            raise QueryError(f"address conversion failed: {exc}") from exc

    def unspent_utxos(self, address: str) -> list[Mapping[str, Any]]:
        """Return the unspent outputs of ``address``."""
        script_hash = self._script_hash(address)
        try:
            utxos = list(self._backend.electrum.unspent(script_hash))
        except QueryError as exc:
            raise QueryError(f"failed to fetch unspent outputs: {exc}") from exc
        _LOG.info("address %s has %d unspent outputs", address, len(utxos))
        return utxos

    def history_page(self, address: str, as_page: bool, page: int) -> AddressHistory:
        """Return a page of ten, or the latest thirty, transactions of ``address``."""
        script_hash = self._script_hash(address)
        try:
            history = list(self._backend.electrum.history(script_hash))
        except QueryError as exc:
            raise QueryError(f"failed to fetch history: {exc}") from exc
        history.reverse()
        if as_page:
            if page < 0:
                raise QueryError("invalid parameters: page must not be negative")
            needed = paginate(history, page, _PAGE_SIZE)
        else:
            needed = history[:_UNPAGED_LIMIT]

        items = []
        for entry in needed:
            item = self._history_item(address, entry)
            if item is not None:
                items.append(item)
        return AddressHistory(address, script_hash, len(history), sort_history(items))

    def _transaction(self, txid: str) -> Optional[Mapping[str, Any]]:
        try:
            tx = self._backend.chain.transaction(txid)
        except QueryError as exc:
            _LOG.warning("cannot decode transaction %s: %s", txid, exc)
            return None
        if not isinstance(tx, Mapping):
            _LOG.warning("malformed transaction %s", txid)
            return None
        return tx

    def _history_item(self, address: str, entry: Mapping[str, Any]) -> Optional[AddressHistoryItem]:
        txid = entry.get("tx_hash", "")
        tx = self._transaction(txid)
        if tx is None:
            return None
        tally = _Tally()
        self._tally_outputs(address, tx, tally)
        self._tally_inputs(address, tx, tally)
        recipients, senders, fee = build_addresses_and_fee(
            address,
            tally.balance_change,
            tally.total_spend,
            tally.total_receive,
            tally.senders,
            tally.receivers,
        )
        utc_time, time_stamp = self._transaction_time(entry.get("height", 0))
        return AddressHistoryItem(
            balance_change=format_balance_change(tally.balance_change),
            tx_hash=txid,
            sender_addresses=senders,
            recipient_addresses=recipients,
            fee=fee,
            time_stamp=time_stamp,
            utc_time=utc_time,
            tx_type=tally.tx_type,
        )

    def _multisig_address(self, asm: str) -> Optional[str]:
        try:
            return self._backend.codec.p2ms_script_to_address(asm)
        except ValueError as exc:
            _LOG.warning("cannot convert multisig script: %s", exc)
            return None

    def _tally_outputs(self, address: str, tx: Mapping[str, Any], tally: _Tally) -> None:
        for output in tx.get("vout") or []:
            value = _to_units(output.get("value", 0)) if isinstance(output, Mapping) else 0
            tally.total_receive += value
            spk = _script_pub_key(output)
            asm = spk.get("asm") or ""
            if spk.get("type") == "pubkeyhash":
                for addr in spk.get("addresses") or []:
                    tally.receivers[addr] = None
                    if addr == address:
                        tally.balance_change += value
            elif asm.startswith(_TBC20_PREFIX):
                if not tally.type_detected:
                    tally.type_detected = True
                    tally.tx_type = "TBC20"
                if asm.endswith(_POOL_SUFFIX):
                    tally.receivers[_pool_id(asm)] = None
            elif asm.startswith(_TBC721_PREFIXES) and not tally.type_detected:
                tally.type_detected = True
                tally.tx_type = "TBC721"
            elif asm.endswith(_MULTISIG_SUFFIX) and not tally.type_detected:
                tally.type_detected = True
                tally.tx_type = "P2MS"
                ms_address = self._multisig_address(asm)
                if ms_address is not None:
                    tally.receivers[ms_address] = None
                    if ms_address == address:
                        tally.balance_change += value

    def _tally_inputs(self, address: str, tx: Mapping[str, Any], tally: _Tally) -> None:
        for vin in tx.get("vin") or []:
            if not isinstance(vin, Mapping):
                continue
            prev_txid = vin.get("txid") or ""
            if not prev_txid:
                tally.senders["coinbase"] = None
                tally.total_spend += _COINBASE_SPEND
                continue
            prev = self._transaction(prev_txid)
            if prev is None:
                continue
            outputs = prev.get("vout") or []
            index = int(vin.get("vout", 0))
            if not 0 <= index < len(outputs):
                _LOG.warning("input %s:%d is out of range", prev_txid, index)
                continue
            spent = outputs[index]
            value = _to_units(spent.get("value", 0)) if isinstance(spent, Mapping) else 0
            tally.total_spend += value
            spk = _script_pub_key(spent)
            asm = spk.get("asm") or ""
            if spk.get("type") == "pubkeyhash":
                for addr in spk.get("addresses") or []:
                    tally.senders[addr] = None
                    if addr == address:
                        tally.balance_change -= value
            elif asm.endswith(_MULTISIG_SUFFIX):
                ms_address = self._multisig_address(asm)
                if ms_address is not None:
                    tally.senders[ms_address] = None
                    if ms_address == address:
                        tally.balance_change -= value
            elif asm.startswith(_TBC20_PREFIX) and asm.endswith(_POOL_SUFFIX):
                tally.senders[_pool_id(asm)] = None

    def _transaction_time(self, height: Any) -> tuple[str, int]:
        if height < 1:
            return UNCONFIRMED, 0
        try:
            info = self._backend.chain.block(int(height))
        except QueryError as exc:
            _LOG.error("block lookup failed at height %s: %s", height, exc)
            return "", 0
        if not isinstance(info, Mapping):
            _LOG.error("malformed block info at height %s", height)
            return "", 0
        value = info.get("time")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            _LOG.error("block at height %s has no usable time", height)
            stamp = 0
        else:
            stamp = int(value)
        return format_utc(stamp), stamp

    def balance(self, address: str) -> AddressBalance:
        """Return the confirmed, unconfirmed and total balance of ``address``."""
        script_hash = self._script_hash(address)
        try:
            reply = self._backend.electrum.balance(script_hash)
        except QueryError as exc:
            raise QueryError(f"failed to fetch balance: {exc}") from exc
        confirmed = int(reply.get("confirmed", 0))
        unconfirmed = int(reply.get("unconfirmed", 0))
        return AddressBalance(confirmed + unconfirmed, confirmed, unconfirmed)

    def frozen_balance(self, address: str) -> dict[str, Any]:
        """Return the frozen-balance record of ``address``."""
        self._script_hash(address)
        try:
            reply = self._backend.electrum.frozen_balance(address)
        except QueryError as exc:
            raise QueryError(f"failed to fetch frozen balance: {exc}") from exc
        return dict(reply)