from dataclasses import dataclass

import pytest

from tbcquery.core import Backend, QueryError
from tbcquery.ft.catalog import FtCatalogService, FtUtxo

ADDRESS = "addr-bob"
PKH = "cd" * 20


@dataclass
class Token:
    contract_id: str
    supply: int = 1_000_000
    decimal: int = 6
    name: str = "Coin"
    symbol: str = "CN"
    code_script: str = "code"
    tape_script: str = "tape"
    description: str = "desc"
    origin_utxo: str = "origin"
    creator_combine_script: str = "aa00"
    holders_count: int = 3
    icon_url: str = "icon"
    create_timestamp: int = 1_600_000_000
    token_price: float = 0.5


@dataclass
class Utxo:
    txid: str
    vout: int
    balance: int
    contract_id: str
    ft_balance: int


@dataclass
class RankEntry:
    holder_combine_script: str
    balance: int


class FakeCodec:
    def address_to_public_key_hash(self, address):
        if address != ADDRESS:
            raise ValueError("bad address")
        return PKH

    def combine_script_to_address(self, script):
        if script.startswith("bad"):
            raise ValueError("bad script")
        return "addr:" + script


class FakeTokens:
    def __init__(self, tokens):
        self.tokens = {t.contract_id: t for t in tokens}
        self.called = []

    def get_token(self, contract_id):
        if contract_id not in self.tokens:
            raise QueryError("unknown token")
        return self.tokens[contract_id]

    def decimal(self, contract_id):
        return self.get_token(contract_id).decimal

    def tokens_by_create_time(self, page, size):
        self.called.append("create")
        return list(self.tokens.values()), 10

    def tokens_by_holders_count(self, page, size):
        self.called.append("holders")
        return list(reversed(list(self.tokens.values()))), 10


class FakeTxos:
    def __init__(self, utxos):
        self.utxos = utxos
        self.asked = []

    def unspent(self, combine_script, contract_id):
        self.asked.append((combine_script, contract_id))
        return self.utxos


class FakeBalances:
    def __init__(self, entries, count):
        self.entries = entries
        self.count = count

    def holders_count(self, contract_id):
        return self.count

    def rank(self, contract_id, page, size):
        return self.entries[page * size:(page + 1) * size]


def make(tokens=(), utxos=(), entries=(), count=0):
    tokens_store = FakeTokens(list(tokens))
    txos = FakeTxos(list(utxos))
    backend = Backend(
        tokens=tokens_store,
        txos=txos,
        balances=FakeBalances(list(entries), count),
        codec=FakeCodec(),
    )
    return FtCatalogService(backend), tokens_store, txos


def test_token_info_scales_supply():
    token = Token("c1", supply=1_234_500, decimal=2)
    service, _, _ = make([token])
    info = service.token_info("c1")
    assert info.ft_supply * 10 ** info.ft_decimal == pytest.approx(token.supply)
    assert info.ft_name == token.name
    assert info.ft_creator_combine_script == token.creator_combine_script


def test_token_info_price_has_six_decimals():
    service, _, _ = make([Token("c1", token_price=0.5)])
    assert service.token_info("c1").ft_token_price == "0.500000"


def test_token_info_unknown():
    service, _, _ = make([])
    with pytest.raises(QueryError):
        service.token_info("missing")


def test_utxos_map_records():
    utxo = Utxo("tx1", 2, 500, "c1", 900)
    service, _, txos = make([Token("c1", decimal=4)], [utxo])
    result = service.utxos(ADDRESS, "c1")
    assert result == [FtUtxo("tx1", 2, 500, "c1", 4, 900)]
    assert txos.asked == [(PKH + "00", "c1")]


def test_utxos_bad_address():
    service, _, _ = make([Token("c1")])
    with pytest.raises(QueryError):
        service.utxos("addr-unknown", "c1")


def test_holder_rank_addresses():
    entries = [
        RankEntry("ee00", 500),
        RankEntry("ff01", 300),
        RankEntry("bad00", 200),
    ]
    service, _, _ = make([Token("c1", supply=1000)], entries=entries, count=3)
    page = service.holder_rank("c1", 0, 10)
    assert [r.address for r in page.holder_rank] == ["addr:ee00", "Contract_ff01", "未知地址"]
    assert page.ft_holders_count == 3
    assert sum(r.hold_ratio for r in page.holder_rank) == pytest.approx(1.0)


def test_holder_rank_numbers_continue_across_pages():
    entries = [RankEntry(f"{i:02x}00", 100 - i) for i in range(5)]
    service, _, _ = make([Token("c1")], entries=entries, count=5)
    first = service.holder_rank("c1", "0", "2")
    second = service.holder_rank("c1", "1", "2")
    assert first.holder_rank[0].rank == 1
    ranks = [r.rank for r in first.holder_rank + second.holder_rank]
    assert ranks == list(range(ranks[0], ranks[0] + len(ranks)))


def test_holder_rank_zero_supply_gives_zero_ratio():
    service, _, _ = make([Token("c1", supply=0)], entries=[RankEntry("ee00", 5)], count=1)
    assert service.holder_rank("c1", 0, 5).holder_rank[0].hold_ratio == 0.0


def test_holder_rank_bad_page():
    service, _, _ = make([Token("c1")])
    with pytest.raises(QueryError):
        service.holder_rank("c1", "abc", 10)


def test_token_list_order_is_case_insensitive():
    tokens = [Token("c1"), Token("c2")]
    service, store, _ = make(tokens)
    by_time = service.token_list(0, 10, "FTCREATETIMESTAMP")
    by_holders = service.token_list(0, 10, "ftholderscount")
    assert store.called == ["create", "holders"]
    assert [e.ft_contract_id for e in by_time.ft_token_list] == ["c1", "c2"]
    assert [e.ft_contract_id for e in by_holders.ft_token_list] == ["c2", "c1"]
    assert by_time.ft_token_count == 10


def test_token_list_creator_fallback():
    tokens = [Token("c1", creator_combine_script="bad01"), Token("c2", creator_combine_script="aa00")]
    service, _, _ = make(tokens)
    page = service.token_list(0, 10, "ftCreateTimestamp")
    assert [e.ft_creator_address for e in page.ft_token_list] == ["bad01", "addr:aa00"]


def test_token_list_unknown_order_is_empty():
    service, store, _ = make([Token("c1")])
    page = service.token_list(0, 10, "name")
    assert page.ft_token_list == []
    assert page.ft_token_count == 0
    assert store.called == []


def test_token_list_rejects_bad_size():
    service, _, _ = make([Token("c1")])
    with pytest.raises(QueryError):
        service.token_list(0, 0, "ftCreateTimestamp")