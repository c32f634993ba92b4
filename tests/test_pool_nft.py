import pytest

from tbcquery.core import Backend, QueryError
from tbcquery.ft.pool_nft import (
    PoolNftService,
    extract_pool_provider,
    parse_pool_balances,
)

LP_HASH = "a" * 64
A_HASH = "b" * 64
CONTRACT_TXID = "c" * 64


def _pack(*values):
    return "".join(v.to_bytes(8, "little").hex() for v in values)


class FakePools:
    def __init__(self, answer):
        self.answer = answer

    def pool_nft_info(self, contract_id):
        if isinstance(self.answer, Exception):
            raise self.answer
        return self.answer


class FakeChain:
    def __init__(self, txs):
        self.txs = txs

    def transaction(self, txid):
        if txid not in self.txs:
            raise QueryError("unknown")
        return self.txs[txid]


def _tx(code_asm, tape_asm, code_hex="deadbeef"):
    return {
        "vout": [
            {"scriptPubKey": {"asm": code_asm, "hex": code_hex}},
            {"scriptPubKey": {"asm": tape_asm}},
        ]
    }


def _tape(balances, fee=True):
    parts = ["OP_FALSE", "OP_RETURN", LP_HASH + A_HASH, balances, CONTRACT_TXID]
    if fee:
        parts.append("0a")
    parts.append("32436f6465")
    return " ".join(parts)


def _service(tx, answer=("pooltx", 1000)):
    backend = Backend(pools=FakePools(answer), chain=FakeChain({"pooltx": tx}))
    return PoolNftService(backend)


def test_parse_pool_balances_round_trip():
    assert parse_pool_balances(_pack(7, 123456789, 5000)) == (7, 123456789, 5000)


def test_parse_pool_balances_too_short():
    with pytest.raises(ValueError):
        parse_pool_balances("00" * 10)


def test_parse_pool_balances_bad_hex():
    with pytest.raises(ValueError):
        parse_pool_balances("zz" * 24)


def test_extract_provider_version_two():
    name = "my pool"
    asm = "OP_DUP " + name.encode().hex() + " OP_CHECKSIG"
    assert extract_pool_provider(asm) == (name, 2)


def test_extract_provider_version_one():
    assert extract_pool_provider("aa OP_RETURN 00") == ("", 1)


def test_extract_provider_decimal_token():
    assert extract_pool_provider("x 65 y") == ("A", 2)


def test_pool_info_full():
    tx = _tx("OP_DUP " + "prov".encode().hex() + " OP_END", _tape(_pack(10, 20, 30)))
    info = _service(tx).pool_info("token")
    assert info.current_pool_nft_txid == "pooltx"
    assert info.current_pool_nft_vout == 0
    assert info.current_pool_nft_balance == 1000
    assert info.pool_service_provider == "prov"
    assert info.pool_version == 2
    assert info.pool_service_fee_rate == "0a"
    assert (info.ft_lp_balance, info.ft_a_balance, info.tbc_balance) == (10, 20, 30)
    assert info.ft_lp_partial_hash == LP_HASH
    assert info.ft_a_partial_hash == A_HASH
    assert info.ft_a_contract_txid == CONTRACT_TXID
    assert info.pool_nft_code_script == "deadbeef"


def test_pool_info_without_fee_rate():
    tx = _tx("aa OP_RETURN 00", _tape(_pack(1, 2, 3), fee=False))
    info = _service(tx).pool_info("token")
    assert info.pool_service_fee_rate is None
    assert info.pool_version == 1


def test_pool_info_no_pool():
    with pytest.raises(QueryError, match="no pool NFT found"):
        _service({}, answer=("", 0)).pool_info("token")


def test_pool_info_empty_contract():
    with pytest.raises(QueryError):
        _service({}).pool_info("")


def test_pool_info_store_error():
    with pytest.raises(QueryError):
        _service({}, answer=QueryError("db down")).pool_info("token")


def test_pool_info_one_output():
    tx = {"vout": [{"scriptPubKey": {"asm": "a b", "hex": "00"}}]}
    with pytest.raises(QueryError, match="decode pool NFT failed"):
        _service(tx).pool_info("token")


def test_pool_info_short_tape():
    tx = _tx("a b", "OP_FALSE OP_RETURN x")
    with pytest.raises(QueryError, match="decode pool NFT failed"):
        _service(tx).pool_info("token")


def test_pool_info_undecodable_transaction():
    backend = Backend(pools=FakePools(("missing", 1)), chain=FakeChain({}))
    with pytest.raises(QueryError, match="decode pool NFT failed"):
        PoolNftService(backend).pool_info("token")