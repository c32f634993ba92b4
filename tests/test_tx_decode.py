import pytest

from tbcquery.core import Backend, QueryError
from tbcquery.ft.tx_decode import FtTxDecoder


class FakeChain:
    def __init__(self, txs):
        self.txs = txs

    def transaction(self, txid):
        if txid not in self.txs:
            raise QueryError("unknown transaction")
        return self.txs[txid]


class FakeTxos:
    def __init__(self, outputs, failing=()):
        self.outputs = outputs
        self.failing = set(failing)

    def utxo_info(self, txid, vout):
        if (txid, vout) in self.failing:
            raise QueryError("db error")
        return self.outputs.get((txid, vout), (0, "", ""))


class FakeTokens:
    def __init__(self, decimals):
        self.decimals = decimals

    def decimal(self, contract_id):
        if contract_id not in self.decimals:
            raise QueryError("unknown token")
        return self.decimals[contract_id]


class FakeCodec:
    def combine_script_to_address(self, script):
        if script.startswith("bad"):
            raise ValueError("bad script")
        return "addr:" + script

    def p2ms_unlock_script_to_address(self, asm):
        if "broken" in asm:
            raise ValueError("bad unlock")
        return "ms:" + asm


def _decoder(tx, outputs, decimals=None, failing=()):
    backend = Backend(
        chain=FakeChain({"tx1": tx}),
        txos=FakeTxos(outputs, failing),
        tokens=FakeTokens(decimals if decimals is not None else {"tok": 6}),
        codec=FakeCodec(),
    )
    return FtTxDecoder(backend)


def test_plain_transfer():
    tx = {
        "vin": [{"txid": "prev", "vout": 1, "scriptSig": {"asm": "30ab"}}],
        "vout": [{"n": 0}, {"n": 1}],
    }
    outputs = {
        ("prev", 1): (500, "h100", "tok"),
        ("tx1", 0): (300, "h200", "tok"),
        ("tx1", 1): (200, "h100", "tok"),
    }
    result = _decoder(tx, outputs).decode("tx1")
    assert result.txid == "tx1"
    assert [(e.txid, e.vout, e.address, e.ft_balance, e.ft_decimal) for e in result.input] == [
        ("prev", 1, "addr:h100", 500, 6)
    ]
    assert [(e.vout, e.address, e.ft_balance) for e in result.output] == [
        (0, "addr:h200", 300),
        (1, "addr:h100", 200),
    ]
    assert sum(e.ft_balance for e in result.input) == sum(e.ft_balance for e in result.output)


def test_non_token_outputs_are_skipped():
    tx = {"vin": [{"txid": "prev", "vout": 0}, {"coinbase": "ff"}], "vout": [{"n": 0}]}
    result = _decoder(tx, {}).decode("tx1")
    assert result.input == []
    assert result.output == []


def test_pool_input_and_matching_output():
    tx = {
        "vin": [{"txid": "prev", "vout": 0, "scriptSig": {"asm": "0 sig"}}],
        "vout": [{"n": 0}],
    }
    outputs = {("prev", 0): (10, "p01", "tok"), ("tx1", 0): (10, "p01", "tok")}
    result = _decoder(tx, outputs).decode("tx1")
    assert result.input[0].address == "Pool_p01"
    assert result.output[0].address == "Pool_p01"


def test_multisig_input_and_unknown_output():
    tx = {
        "vin": [
            {"txid": "a", "vout": 0, "scriptSig": {"asm": "30xx"}},
            {"txid": "b", "vout": 0, "scriptSig": {"asm": "0 sig1 sig2"}},
        ],
        "vout": [{"n": 0}],
    }
    outputs = {("b", 0): (4, "m01", "tok"), ("tx1", 0): (4, "q01", "tok")}
    result = _decoder(tx, outputs).decode("tx1")
    assert result.input[0].address == "ms:0 sig1 sig2"
    assert result.output[0].address == "Pool_or_MS_q01"


def test_multisig_conversion_failure_falls_back_to_pool():
    tx = {
        "vin": [
            {"txid": "a", "vout": 0},
            {"txid": "b", "vout": 0, "scriptSig": {"asm": "0 broken"}},
        ],
        "vout": [],
    }
    outputs = {("b", 0): (4, "m01", "tok")}
    result = _decoder(tx, outputs).decode("tx1")
    assert result.input[0].address == "Pool_m01"


def test_missing_script_sig_gives_empty_address():
    tx = {"vin": [{"txid": "a", "vout": 0}], "vout": []}
    result = _decoder(tx, {("a", 0): (1, "m01", "tok")}).decode("tx1")
    assert result.input[0].address == ""


def test_unknown_decimal_defaults_to_zero():
    tx = {"vin": [], "vout": [{"n": 0}]}
    result = _decoder(tx, {("tx1", 0): (9, "h00", "other")}).decode("tx1")
    assert result.output[0].ft_decimal == 0
    assert result.output[0].contract_id == "other"


def test_bad_combine_script_gives_empty_address():
    tx = {"vin": [], "vout": [{"n": 0}]}
    result = _decoder(tx, {("tx1", 0): (9, "bad00", "tok")}).decode("tx1")
    assert result.output[0].address == ""


def test_lookup_failure_skips_entry():
    tx = {"vin": [], "vout": [{"n": 0}, {"n": 1}]}
    outputs = {("tx1", 1): (2, "h00", "tok")}
    result = _decoder(tx, outputs, failing=[("tx1", 0)]).decode("tx1")
    assert [e.vout for e in result.output] == [1]


def test_empty_txid_rejected():
    with pytest.raises(QueryError):
        _decoder({}, {}).decode("")


def test_unknown_transaction_raises():
    with pytest.raises(QueryError):
        _decoder({}, {}).decode("missing")