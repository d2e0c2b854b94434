# bdjuno

Modules that turn the state of a Cosmos SDK chain into database records.
Each module reads chain data through a *source* object and writes records
through a *db* object, both supplied by you. The package works on plain
mappings (the JSON form of chain objects) and does not depend on any node
client or database driver.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Contents

- `bdjuno.types` and `bdjuno.gov_types`: frozen dataclasses for the stored
  records, such as `Validator`, `ValidatorStatus`, `ValidatorVotingPower`,
  `ValidatorSigningInfo`, `Pool`, `Token`, `TokenUnit`, `TokenPrice`,
  `Proposal`, `ProposalUpdate`, `Deposit`, `Vote`, `TallyResult` and
  `GovParams`. `DepositParams`, `VotingParams` and `TallyParams` have a
  `from_chain` constructor; durations are stored in nanoseconds.
- `bdjuno.utils`:
  - `remove_duplicate_values`, which keeps the first occurrence of each value
  - `height_request_metadata`, which appends the `x-cosmos-block-height` gRPC header
  - `query_txs`, which fetches every page (100 per page) of a transaction search
  - `read_genesis_file` and `read_genesis`
  - `watch_method`, which runs a callable in a background thread and logs its errors
  - `Scheduler`, with `every`, `daily_at` and `run_pending`
- `bdjuno.addresses`: `bech32_encode`, `bech32_decode`,
  `account_address_from_bech32`, `filter_non_account_addresses` and
  `consensus_address` (for ed25519 public keys).
- `bdjuno.coingecko`: `get_coins_list`, `get_tokens_prices` and
  `convert_coingecko_prices`, which truncates market caps to integers.
- `bdjuno.keybase`: `get_avatar_url`, which returns an empty string for
  identities shorter than 16 bytes or without a picture, and raises
  `KeybaseError` when the lookup fails.
- Module classes, each with a `name()` method:
  - `bdjuno.pricefeed.PricefeedModule` (configured by `parse_config`)
  - `bdjuno.modules_module.EnabledModulesModule`
  - `bdjuno.mint.MintModule`
  - `bdjuno.slashing.SlashingModule`
  - `bdjuno.staking.StakingModule` and `bdjuno.staking_handlers.IndexingStakingModule`
  - `bdjuno.gov.GovModule` and `bdjuno.gov_handlers.IndexingGovModule`

The `Indexing*` classes add `handle_block`, `handle_genesis` and `handle_msg`.
`IndexingStakingModule.handle_block` runs its follow-up updates in threads
and logs their failures; `IndexingGovModule.handle_block` logs failures
instead of raising.

## Example

```python
from bdjuno.utils import remove_duplicate_values
from bdjuno.addresses import filter_non_account_addresses

remove_duplicate_values(["a", "b", "a"])   # ["a", "b"]

filter_non_account_addresses(
    [
        "cosmos1hafptm4zxy5nw8rd2pxyg83c5ls2v62tstzuv2",
        "cosmosvaloper1hafptm4zxy5nw8rd2pxyg83c5ls2v62t4lkfqe",
    ],
    "cosmos",
)
# ["cosmos1hafptm4zxy5nw8rd2pxyg83c5ls2v62tstzuv2"]
```

Setting up the price feed module:

```python
from bdjuno.pricefeed import PricefeedModule
from bdjuno.coingecko import get_tokens_prices
from bdjuno.utils import Scheduler

config_yaml = b"""
pricefeed:
  tokens:
    - name: Atom
      units:
        - denom: uatom
          exponent: 0
        - denom: atom
          exponent: 6
          price_id: cosmos
"""

module = PricefeedModule(config_data=config_yaml, db=my_db, fetch_prices=get_tokens_prices)
module.run_additional_operations()   # saves each token, plus a zero price row per unit with a price_id

scheduler = Scheduler()
module.register_periodic_operations(scheduler)
scheduler.run_pending()              # call regularly; due jobs run in background threads
```

`my_db` is your own object offering the storage methods the module calls,
such as `save_token`, `save_tokens_prices`, `get_tokens_price_id` and
`save_token_prices_history`.

## What the package does not do

- It has no command-line program and no long-running process; you drive the
  modules and call `Scheduler.run_pending` yourself.
- It has no storage layer. Every `db` method the modules call (for example
  `save_validators_data`, `save_gov_params`, `get_last_block_height`) must be
  provided by you.
- It has no node client. The `source` objects answering chain queries, and
  the block, validator and transaction data passed to the handlers, come
  from you.
- There are no modules for accounts, bank balances, distribution or fee
  grants; `GovModule` only expects objects with `refresh_accounts` and
  `update_params` for those.
- `bdjuno.coingecko` and `bdjuno.keybase` call the public web APIs directly
  over HTTP; `StakingModule` uses `get_avatar_url` unless you pass another
  `avatar_lookup`.