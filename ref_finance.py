"""
Ref Finance integration: pools, swap estimates and swaps.

Implements:
- Paged pool listing fetched through the bounded-concurrency mapper
- Constant-product swap estimate in integer minor units
- Pool discovery for a token pair and best-pool selection
- Swap execution through ft_transfer_call to the Ref contract
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from near_keystore import FileSystemKeyStore
from near_rpc import NearConfig, call_view_function
from near_token_metadata import get_ft_balance, get_ft_metadata
from near_transactions import function_call_action, sign_and_send
from near_utils import (
    ONE_YOCTO,
    TGAS,
    Err,
    Ok,
    Result,
    TokenAmount,
    external_failure,
    invalid_input,
    map_semaphore,
    not_found,
)
from near_wallet import ensure_ft_storage, load_key

logger = logging.getLogger(__name__)

REF_CONTRACTS = {
    "mainnet": "v2.ref-finance.near",
    "testnet": "ref-finance-101.testnet",
}

FEE_DIVISOR = 10_000
POOL_PAGE_SIZE = 250
POOL_FETCH_CONCURRENCY = 8
SIMPLE_POOL = "SIMPLE_POOL"

DEFAULT_SLIPPAGE_BPS = 50
SWAP_GAS = 180 * TGAS


# ---------------------------------------------------------------------------
# Pools
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Pool:
    id: int
    pool_kind: str
    token_account_ids: tuple[str, ...]
    reserves: dict[str, str] = field(hash=False)
    fee_bps: int
    shares_total_supply: str
    reference_price: str | None = None

    def reserve_of(self, token_id: str) -> int:
        return int(self.reserves.get(token_id, "0"))

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "poolKind": self.pool_kind,
            "tokenAccountIds": list(self.token_account_ids),
            "reserves": dict(self.reserves),
            "feeBps": self.fee_bps,
            "sharesTotalSupply": self.shares_total_supply,
            "referencePrice": self.reference_price,
        }


def _reference_price(tokens: list[str], amounts: list[int]) -> str | None:
    if len(tokens) != 2 or amounts[0] == 0:
        return None
    return format(Decimal(amounts[1]) / Decimal(amounts[0]), "f")


def parse_pool(pool_id: int, raw: Any) -> Result[Pool]:
    """Flatten one ``get_pools`` record into a Pool."""
    if not isinstance(raw, dict):
        return invalid_input(f"Pool {pool_id}: malformed record")
    tokens = raw.get("token_account_ids")
    amounts = raw.get("amounts")
    if not isinstance(tokens, list) or not isinstance(amounts, list):
        return invalid_input(f"Pool {pool_id}: missing token_account_ids or amounts")
    if len(tokens) != len(amounts):
        return invalid_input(
            f"Pool {pool_id}: {len(tokens)} tokens but {len(amounts)} amounts"
        )
    if len(set(tokens)) != len(tokens):
        return invalid_input(f"Pool {pool_id}: duplicate token ids {tokens}")
    try:
        reserves = [int(amount) for amount in amounts]
        fee = int(raw.get("total_fee", 0))
    except (TypeError, ValueError):
        return invalid_input(f"Pool {pool_id}: non-numeric amounts or fee")
    if any(amount < 0 for amount in reserves):
        return invalid_input(f"Pool {pool_id}: negative reserve")

    return Ok(
        Pool(
            id=pool_id,
            pool_kind=str(raw.get("pool_kind", SIMPLE_POOL)),
            token_account_ids=tuple(tokens),
            reserves={token: str(amount) for token, amount in zip(tokens, reserves)},
            fee_bps=fee,
            shares_total_supply=str(raw.get("shares_total_supply", "0")),
            reference_price=_reference_price(tokens, reserves),
        )
    )


# ---------------------------------------------------------------------------
# Swap estimate
# ---------------------------------------------------------------------------


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    # int() raises on infinities and silently truncates fractions
    if isinstance(value, float) and not value.is_integer():
        return None
    if isinstance(value, Decimal) and not (value.is_finite() and value == value.to_integral_value()):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def estimate_swap_output(
    reserve_in: int | str,
    reserve_out: int | str,
    fee_bps: int | str,
    amount_in: int | str,
) -> Result[int]:
    """
    Constant-product output for ``amount_in`` after the pool fee.

        in_after_fee = amount_in * (FEE_DIVISOR - fee_bps)
        out = in_after_fee * reserve_out // (FEE_DIVISOR * reserve_in + in_after_fee)

    All values are integer minor units; the result is rounded down.
    """
    r_in, r_out, fee, amount = (_as_int(v) for v in (reserve_in, reserve_out, fee_bps, amount_in))
    if r_in is None or r_out is None or amount is None:
        return invalid_input("Reserves and amount must be integers in minor units.")
    if fee is None or not 0 <= fee < FEE_DIVISOR:
        return invalid_input(f"Pool fee must be between 0 and {FEE_DIVISOR - 1} bps.")
    if r_in < 0 or r_out < 0 or amount < 0:
        return invalid_input("Reserves and amount cannot be negative.")
    if r_in == 0 or r_out == 0:
        return invalid_input("Pool has no liquidity.")

    in_after_fee = amount * (FEE_DIVISOR - fee)
    denominator = FEE_DIVISOR * r_in + in_after_fee
    if denominator == 0:
        return invalid_input("Swap estimate denominator is zero.")
    return Ok(in_after_fee * r_out // denominator)


# ---------------------------------------------------------------------------
# Pool listing
# ---------------------------------------------------------------------------


class PoolFetchError(Exception):
    """A page of pools could not be fetched; aborts the whole listing."""

    def __init__(self, error: Err) -> None:
        super().__init__(error.error.message)
        self.error = error


def get_number_of_pools(cfg: NearConfig, network: str) -> Result[int]:
    res = call_view_function(cfg, network, REF_CONTRACTS[network], "get_number_of_pools")
    if not res.ok:
        return res
    count = _as_int(res.value)
    if count is None or count < 0:
        return external_failure(f"Ref Finance returned an invalid pool count: {res.value!r}")
    return Ok(count)


def get_pools_page(cfg: NearConfig, network: str, from_index: int, limit: int) -> Result[list]:
    res = call_view_function(
        cfg,
        network,
        REF_CONTRACTS[network],
        "get_pools",
        {"from_index": from_index, "limit": limit},
    )
    if not res.ok:
        return res
    if not isinstance(res.value, list):
        return external_failure(f"Ref Finance get_pools({from_index}) returned {type(res.value).__name__}")
    return res


async def get_all_pools(cfg: NearConfig, network: str) -> Result[list[Pool]]:
    """
    Every Ref pool, in id order.

    Pages are fetched concurrently; each carries its start index so pool ids
    are exact. Any failed page or malformed record fails the listing.
    """
    count = await asyncio.to_thread(get_number_of_pools, cfg, network)
    if not count.ok:
        return count

    async def _fetch(start: int) -> tuple[int, list[Pool]]:
        page = await asyncio.to_thread(get_pools_page, cfg, network, start, POOL_PAGE_SIZE)
        if not page.ok:
            raise PoolFetchError(page)
        pools = []
        for offset, raw in enumerate(page.value):
            parsed = parse_pool(start + offset, raw)
            if not parsed.ok:
                raise PoolFetchError(parsed)
            pools.append(parsed.value)
        return start, pools

    try:
        pages = await map_semaphore(
            range(0, count.value, POOL_PAGE_SIZE), POOL_FETCH_CONCURRENCY, _fetch
        )
    except PoolFetchError as exc:
        return exc.error

    pages.sort(key=lambda page: page[0])
    pools = [pool for _start, page in pages for pool in page]
    logger.debug("Fetched %d Ref pools on %s", len(pools), network)
    return Ok(pools)


def find_pools(pools: list[Pool], token_a: str, token_b: str) -> list[Pool]:
    """Simple pools holding both tokens, deepest ``token_a`` reserve first."""
    matches = [
        pool
        for pool in pools
        if pool.pool_kind == SIMPLE_POOL
        and token_a in pool.reserves
        and token_b in pool.reserves
    ]
    return sorted(matches, key=lambda pool: pool.reserve_of(token_a), reverse=True)


def _check_pair(token_a: str, token_b: str) -> Result[tuple[str, str]]:
    if not token_a or not token_b:
        return invalid_input("Both token contract ids are required.")
    if token_a == token_b:
        return invalid_input("Cannot look up pools for a token paired with itself.")
    return Ok((token_a, token_b))


async def get_pools_for_pair(
    cfg: NearConfig, network: str, token_a: str, token_b: str
) -> Result[dict]:
    pair = _check_pair(token_a, token_b)
    if not pair.ok:
        return pair
    pools = await get_all_pools(cfg, network)
    if not pools.ok:
        return pools
    matches = find_pools(pools.value, token_a, token_b)
    return Ok(
        {
            "tokenA": token_a,
            "tokenB": token_b,
            "network": network,
            "count": len(matches),
            "pools": [pool.as_dict() for pool in matches],
        }
    )


# ---------------------------------------------------------------------------
# Swaps
# ---------------------------------------------------------------------------


def _best_estimate(pools: list[Pool], token_in: str, token_out: str, amount_in: int) -> Result[tuple[Pool, int]]:
    best: tuple[Pool, int] | None = None
    for pool in pools:
        out = estimate_swap_output(
            pool.reserve_of(token_in), pool.reserve_of(token_out), pool.fee_bps, amount_in
        )
        # empty pools are skipped, not fatal
        if out.ok and (best is None or out.value > best[1]):
            best = (pool, out.value)
    if best is None:
        return not_found(f"No pool with liquidity swaps {token_in} for {token_out}.")
    return Ok(best)


async def get_swap_estimate(
    cfg: NearConfig,
    network: str,
    token_in: str,
    token_out: str,
    amount: Any,
) -> Result[dict]:
    """Best simple-pool output for ``amount`` of ``token_in`` (display units)."""
    pair = _check_pair(token_in, token_out)
    if not pair.ok:
        return pair

    meta_in, meta_out, pools = await asyncio.gather(
        asyncio.to_thread(get_ft_metadata, cfg, network, token_in),
        asyncio.to_thread(get_ft_metadata, cfg, network, token_out),
        get_all_pools(cfg, network),
    )
    for res in (meta_in, meta_out, pools):
        if not res.ok:
            return res

    try:
        amount_in = TokenAmount.from_decimal(amount, meta_in.value.decimals)
    except ValueError as exc:
        return invalid_input(f"Invalid amount: {exc}")
    if amount_in.to_minor_units() == 0:
        return invalid_input(f"Amount is zero at {meta_in.value.decimals} decimals.")

    best = _best_estimate(
        find_pools(pools.value, token_in, token_out), token_in, token_out, amount_in.to_minor_units()
    )
    if not best.ok:
        return best
    pool, out_minor = best.value
    amount_out = TokenAmount(out_minor, meta_out.value.decimals)

    return Ok(
        {
            "network": network,
            "poolId": pool.id,
            "tokenIn": token_in,
            "tokenOut": token_out,
            "amountIn": amount_in.to_decimal_string(),
            "amountInMinorUnits": str(amount_in.to_minor_units()),
            "estimatedAmountOut": amount_out.to_decimal_string(),
            "estimatedAmountOutMinorUnits": str(out_minor),
            "feeBps": pool.fee_bps,
        }
    )


def min_amount_out(estimate: int, slippage_bps: int) -> int:
    return estimate * (FEE_DIVISOR - slippage_bps) // FEE_DIVISOR


async def execute_swap(
    cfg: NearConfig,
    keystore: FileSystemKeyStore,
    network: str,
    signer_id: str,
    token_in: str,
    token_out: str,
    amount: Any,
    slippage_bps: Any = DEFAULT_SLIPPAGE_BPS,
) -> Result[dict]:
    """
    Swap ``amount`` of ``token_in`` for ``token_out`` through the best pool.

    The signer is registered on ``token_out`` first if needed, then
    ``token_in`` is sent to the Ref contract with ft_transfer_call carrying
    a single swap action.
    """
    slippage = _as_int(slippage_bps)
    if slippage is None or not 0 <= slippage < FEE_DIVISOR:
        return invalid_input(f"slippageBps must be between 0 and {FEE_DIVISOR - 1}.")
    key = load_key(keystore, network, signer_id)
    if not key.ok:
        return key

    estimate = await get_swap_estimate(cfg, network, token_in, token_out, amount)
    if not estimate.ok:
        return estimate
    quote = estimate.value
    amount_in = int(quote["amountInMinorUnits"])
    minimum = min_amount_out(int(quote["estimatedAmountOutMinorUnits"]), slippage)

    balance = await asyncio.to_thread(get_ft_balance, cfg, network, token_in, signer_id)
    if not balance.ok:
        return balance
    if balance.value < amount_in:
        return invalid_input(f"Insufficient {token_in} balance for this swap.")

    registration = await asyncio.to_thread(
        ensure_ft_storage, cfg, network, signer_id, key.value, token_out, signer_id
    )
    if not registration.ok:
        return registration

    ref_contract = REF_CONTRACTS[network]
    msg = {
        "force": 0,
        "actions": [
            {
                "pool_id": quote["poolId"],
                "token_in": token_in,
                "token_out": token_out,
                "amount_in": str(amount_in),
                "min_amount_out": str(minimum),
            }
        ],
    }
    action = function_call_action(
        "ft_transfer_call",
        {"receiver_id": ref_contract, "amount": str(amount_in), "msg": json.dumps(msg)},
        SWAP_GAS,
        ONE_YOCTO,
    )
    outcome = await asyncio.to_thread(
        sign_and_send, cfg, network, signer_id, key.value, token_in, [action]
    )
    if not outcome.ok:
        return Err(outcome.error.with_context(f"Swap through Ref pool {quote['poolId']} failed."))

    return Ok(
        {
            **quote,
            "signerId": signer_id,
            "slippageBps": slippage,
            "minAmountOutMinorUnits": str(minimum),
            "storageRegistration": registration.value,
            "transaction": outcome.value,
        }
    )
