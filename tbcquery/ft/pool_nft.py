"""Current state of a token's liquidity-pool NFT."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from tbcquery.core import Backend, QueryError

_LOG = logging.getLogger(__name__)

_DECODE_FAILED = "decode pool NFT failed"
_BALANCE_WIDTH = 16
_PARTIAL_HASH_WIDTH = 64
_INT64_MAX = 2**63 - 1
_DIGITS = re.compile(r"-?\d+")


@dataclass(frozen=True)
class PoolNftInfo:
    """Balances, hashes and provider of a pool NFT as last recorded."""

    current_pool_nft_txid: str
    current_pool_nft_vout: int
    current_pool_nft_balance: int
    pool_service_provider: str
    pool_version: int
    pool_service_fee_rate: Optional[str]
    ft_lp_balance: int
    ft_a_balance: int
    tbc_balance: int
    ft_lp_partial_hash: str
    ft_a_partial_hash: str
    ft_a_contract_txid: str
    pool_nft_code_script: str


def _asm_token_to_hex(token: str) -> str:
    """Return the hex bytes of an ASM push; decimal tokens are script numbers."""
    if not _DIGITS.fullmatch(token):
        return token
    number = int(token)
    if number == 0:
        return ""
    negative = number < 0
    magnitude = abs(number)
    encoded = bytearray()
    while magnitude:
        encoded.append(magnitude & 0xFF)
        magnitude >>= 8
    if encoded[-1] & 0x80:
        encoded.append(0x80 if negative else 0x00)
    elif negative:
        encoded[-1] |= 0x80
    return encoded.hex()


def _little_endian_int(hex_text: str) -> int:
    try:
        raw = bytes.fromhex(hex_text)
    except ValueError as exc:
        raise ValueError(f"invalid hex balance {hex_text!r}") from exc
    value = int.from_bytes(raw, "little")
    if value > _INT64_MAX:
        raise ValueError(f"balance {hex_text!r} out of range")
    return value


def parse_pool_balances(complex_balance: str) -> tuple[int, int, int]:
    """Return the (LP, token A, TBC) balances packed as three 8-byte little-endian values."""
    needed = 3 * _BALANCE_WIDTH
    if len(complex_balance) < needed:
        raise ValueError(f"balance field needs {needed} hex digits")
    lp, token_a, tbc = (
        _little_endian_int(complex_balance[start:start + _BALANCE_WIDTH])
        for start in range(0, needed, _BALANCE_WIDTH)
    )
    return lp, token_a, tbc


def extract_pool_provider(asm: str) -> tuple[str, int]:
    """Return (service provider name, pool version) from the pool code script ASM.

    Version 2 pools carry the provider just before the final element; version 1
    pools carry ``OP_RETURN`` there and have no provider.
    """
    parts = asm.split(" ")
    if len(parts) < 2 or parts[-2] == "OP_RETURN":
        return "", 1
    provider_hex = _asm_token_to_hex(parts[-2])
    try:
        provider = bytes.fromhex(provider_hex).decode("utf-8", errors="replace")
    except ValueError:
        provider = ""
    return provider, 2


def _script_pub_key(output: Any) -> Mapping[str, Any]:
    if not isinstance(output, Mapping):
        return {}
    spk = output.get("scriptPubKey")
    return spk if isinstance(spk, Mapping) else {}


class PoolNftService:
    """Answers queries about a token's pool NFT."""

    def __init__(self, backend: Backend) -> None:
        self._backend = backend

    def _decode(self, txid: str) -> Mapping[str, Any]:
        try:
            tx = self._backend.chain.transaction(txid)
        except QueryError as exc:
            _LOG.error("cannot decode pool transaction %s: %s", txid, exc)
            raise QueryError(_DECODE_FAILED) from exc
        if not isinstance(tx, Mapping):
            raise QueryError(_DECODE_FAILED)
        return tx

    def pool_info(self, ft_contract_id: str) -> PoolNftInfo:
        """Return the pool NFT state of the token ``ft_contract_id``."""
        if not ft_contract_id:
            raise QueryError("invalid parameters: contract id is required")
        try:
            txid, code_balance = self._backend.pools.pool_nft_info(ft_contract_id)
        except QueryError as exc:
            raise QueryError(f"failed to read pool NFT: {exc}") from exc
        if not txid:
            raise QueryError("no pool NFT found")

        tx = self._decode(txid)
        outputs = tx.get("vout")
        outputs = list(outputs) if isinstance(outputs, list) else []

        first_spk = _script_pub_key(outputs[0]) if outputs else {}
        provider, version = extract_pool_provider(str(first_spk.get("asm") or ""))
        if len(outputs) < 2:
            _LOG.error("pool transaction %s has %d outputs", txid, len(outputs))
            raise QueryError(_DECODE_FAILED)

        tape = str(_script_pub_key(outputs[1]).get("asm") or "").split(" ")
        if len(tape) < 6:
            _LOG.error("pool tape has %d elements", len(tape))
            raise QueryError(_DECODE_FAILED)
        fee_rate = tape[5] if len(tape) == 7 else None

        partial_hash = tape[2]
        if len(partial_hash) < 2 * _PARTIAL_HASH_WIDTH:
            raise QueryError(_DECODE_FAILED)
        try:
            lp, token_a, tbc = parse_pool_balances(tape[3])
        except ValueError as exc:
            _LOG.error("cannot parse pool balances: %s", exc)
            raise QueryError(_DECODE_FAILED) from exc

        info = PoolNftInfo(
            current_pool_nft_txid=txid,
            current_pool_nft_vout=0,
            current_pool_nft_balance=int(code_balance),
            pool_service_provider=provider,
            pool_version=version,
            pool_service_fee_rate=fee_rate,
            ft_lp_balance=lp,
            ft_a_balance=token_a,
            tbc_balance=tbc,
            ft_lp_partial_hash=partial_hash[:_PARTIAL_HASH_WIDTH],
            ft_a_partial_hash=partial_hash[_PARTIAL_HASH_WIDTH:2 * _PARTIAL_HASH_WIDTH],
            ft_a_contract_txid=tape[4],
            pool_nft_code_script=str(first_spk.get("hex") or ""),
        )
        _LOG.info("pool NFT of %s is %s, version %d", ft_contract_id, txid, version)
        return info