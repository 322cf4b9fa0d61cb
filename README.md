# exwallet

Background workers for an exchange wallet that sits in front of a
chains-union RPC backend. The workers follow the chain a set number of
confirmations behind the head. They sort each block's transactions by the
business whose addresses they touch, record deposits, withdrawals and
internal transfers, and broadcast signed withdrawals.

The package has no database and no network transport of its own. You pass
in objects that provide the storage and RPC calls it needs. Those can be a
real backend or in-memory fakes.

## Installation

```
pip install exwallet
```

To run the test suite:

```
pip install "exwallet[test]"
pytest
```

## Components

- `exwallet.models`
  - Value types: `BlockHeader` (frozen: `hash`, `parent_hash`, `number`,
    `timestamp`) and `Eip1559DynamicFeeTx`. `Eip1559DynamicFeeTx.to_json()`
    returns compact UTF-8 JSON in which `<`, `>` and `&` are escaped.
  - Enums: `TransactionType`, `AddressType`, `TxStatus` and `TokenType`.
  - `parse_transaction_type` and `parse_address_type` raise `ValueError` for
    an unknown name.
  - `hex_to_address` and `hex_to_hash` normalise loosely formatted hex to a
    lower-case, `0x`-prefixed 20-byte or 32-byte value.
- `exwallet.rpcclient`
  - `ChainsUnionRpcClient(service, chain_name)` wraps a service stub. The stub
    must provide `convert_address`, `get_block_header_by_number`,
    `get_block_by_number`, `get_tx_by_hash` and `send_tx`. Each of these takes
    a request mapping and returns a response mapping.
  - The client offers `get_block_header`, `get_block_info`,
    `get_transaction_by_hash` and `send_tx`. They raise `ChainsUnionError`
    when the response is missing or its `code` is `"ERROR"`.
  - `export_address_by_public_key` returns an empty string on failure.
- `exwallet.batch_block`
  - `BatchBlock.next_headers(max_size)` returns up to `max_size` confirmed
    headers that follow the last one traversed. It checks that each header's
    parent hash matches the hash of the header before it.
  - It raises `BlockFallbackError` on a mismatch. The offending header is
    available as `.header`.
  - It raises `BatchBlockAheadOfProviderError` when the traversal has passed
    the confirmed head.
- `exwallet.fees`: `parse_fast_fee("base|tip|*multiplier")` returns a
  `FeeInfo`.
- `exwallet.synchronizer`
  - `classify_transaction` decides the type of a transfer: deposit,
    withdrawal, collection, hot-to-cold, cold-to-hot or unknown. It goes by
    which side belongs to the business and the address type of that side.
  - `BaseSynchronizer` runs `tick()` on a timer. Each tick stores block
    headers through `db.blocks.store_blocks` and publishes a mapping of
    business id to `BatchTransactions` on `business_channel`.
    `iter_batches()` yields those mappings until the synchronizer has been
    stopped and the channel drained.
  - `create_synchronizer(...)` resumes from `db.blocks.latest_blocks()` if it
    returns a header. Otherwise it starts from the configured starting
    height, or from the chain head.
- `exwallet.finder`
  - `Finder` takes batches off the synchronizer's channel. For each
    business it stores deposits, updates deposit confirmations and
    balances, and marks withdrawals and internal transfers as
    `wallet_done`. It writes every transaction to the flow table.
  - All of these writes happen inside `db.transaction()`, which is retried
    with exponential backoff.
  - `handle_batch(batch)` can be called directly.
- `exwallet.withdraw`
  - `Withdraw` broadcasts each business's signed, unsent withdrawals on a
    timer. It marks them `broadcasted` and updates the locked balances.
  - `process_once()` runs a single pass.
- `exwallet.entry`: `WorkerEntry` starts the synchronizer, the finder and
  the withdrawal worker together, and stops them in that same order.

## Storage interface

The workers call the following on the `db` object:

| Member | Methods |
| --- | --- |
| `db` | `transaction()`, a context manager |
| `business` | `query_business_list()`, which returns mappings that have a `business_uid` |
| `address` | `address_exist(business_uid, address)`, which returns `(exists, address_type)` |
| `blocks` | `latest_blocks()`, `store_blocks(blocks)` |
| `deposits` | `store_deposits`, `update_deposits_confirms` |
| `withdraws` | `un_send_withdraws_list`, `update_withdraw_list_by_id`, `update_withdraw_status_by_tx_hash` |
| `internals` | `update_internal_status_by_tx_hash` |
| `balances` | `update_or_create`, `update_balance_list_by_two_address` |
| `transactions` | `store_transactions` |

## Example

```python
from exwallet.fees import parse_fast_fee

fee = parse_fast_fee("1000|200|*3")
print(fee.multiplied_tip)    # 600
print(fee.max_priority_fee)  # 2200
```

## What this package does not do

- It has no business-facing API. There is no call to register businesses,
  turn public keys into stored addresses, set supported tokens, or build
  unsigned or signed transactions for a business.
- It runs no server.
- It has no command-line entry point.
- It has no database implementation.
- It does not roll back reorganised blocks. The synchronizer only records
  that a fallback happened (`is_fallback`, `fallback_block_header`).
- It sends no notifications to businesses.