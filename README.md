# tbcquery

Query services for a TBC chain indexer: coin balances and history of an
address, fungible-token (FT) balances, holders, transfers and liquidity
pools, the TBC exchange rate, and a YAML configuration manager.

The services hold the query logic only. Storage, node access and script
conversions are supplied by you through the protocols in `tbcquery.core`:
`TokenStore`, `TxoStore`, `BalanceStore`, `PoolStore`, `ChainRpc`,
`ElectrumRpc` and `ScriptCodec`, bundled in a `Backend` dataclass. The
stores and clients raise `QueryError` when a lookup fails and the codec
raises `ValueError` for input it cannot convert; the services report their
own failures as `QueryError`.

## Installation

```
pip install tbcquery
```

The `test` extra adds pytest for the test suite.

## Services

| Module | Entry point | What it answers |
| --- | --- | --- |
| `tbcquery.address` | `AddressService` | unspent outputs, history (a page of ten or the latest thirty), balance and frozen balance of an address |
| `tbcquery.ft.balance` | `FtBalanceService` | FT balance of an address for one or several contracts; every non-LP token it holds |
| `tbcquery.ft.catalog` | `FtCatalogService` | token info, FT unspent outputs, holder ranking, token list by creation time or holder count |
| `tbcquery.ft.history` | `FtHistoryService` | FT transfer history of an address for one token |
| `tbcquery.ft.pool` | `PoolService` | pool history, pools of a token, all pools |
| `tbcquery.ft.pool_nft` | `PoolNftService` | state of a token's pool NFT: balances, partial hashes, provider, version, fee rate |
| `tbcquery.ft.tx_decode` | `FtTxDecoder` | FT inputs and outputs of one transaction |
| `tbcquery.ft.token_history` | `TokenHistoryService` | decoded transfers of a whole token contract |
| `tbcquery.exchange` | `get_exchange_rate` | TBC price in USD and its 24-hour change, from a `TickerSource` you supply |
| `tbcquery.conf` | `ConfigManager` | YAML settings by dotted key, `${a.b}` expansion, reload on file change |

`tbcquery.core` also provides `paginate(items, page, size)`,
`format_utc(timestamp)` and `block_time(rpc, height)`.

Listings are paged from zero: page `0` with size `10` returns the ten
newest entries.

## Example

```python
from tbcquery.core import Backend
from tbcquery.ft.balance import FtBalanceService

backend = Backend(tokens=my_tokens, txos=my_txos, codec=my_codec)
service = FtBalanceService(backend)

result = service.balance("1ExampleAddressXXXXXXXXXXXXXXXXXX", "ab" * 32)
print(result.ft_balance, result.ft_decimal)
```

Exchange rate, with any object that has `ticker_price(symbol, timeout)` and
`ticker_24h_change(symbol, timeout)`:

```python
from tbcquery.exchange import get_exchange_rate

rate = get_exchange_rate(my_ticker_client)          # symbol "TBCUSDT"
print(rate.currency, rate.rate, rate.change_percent)
```

If the price cannot be fetched the result carries a rate of `0.0` instead
of raising.

## Configuration

```python
from tbcquery.conf import ConfigManager

config = ConfigManager("./conf/conf.yaml")
config.load()
print(config.get_int("server.port"))
print(config.log_path())   # "${app.home}/logs/app.log" has ${...} expanded

config.enable_watch(lambda: print("configuration reloaded"))
config.disable_watch()
```

Keys are case-insensitive. A missing configuration file is not an error:
the manager then holds no settings. A file that cannot be read or parsed
makes `load` raise `ValueError`.

## What the package does not do

It contains no database access, no node or index-server client, no market
data client and no script codec: all of these are supplied through the
protocols above. It has no HTTP server or command-line program, and it
does not set up logging; it writes through the standard `logging` module.