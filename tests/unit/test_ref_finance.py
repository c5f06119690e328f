"""Unit tests for Ref Finance pools, swap estimates and swaps."""

import asyncio
import json
import sys
from decimal import Decimal
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

import ref_finance as ref  # noqa: E402
from near_keys import KeyPair  # noqa: E402
from near_keystore import FileSystemKeyStore  # noqa: E402
from near_rpc import NearConfig  # noqa: E402
from near_token_metadata import FungibleTokenMetadata  # noqa: E402
from near_utils import ErrorKind, Ok, external_failure  # noqa: E402

NETWORK = "testnet"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _record(tokens, amounts, fee=30, kind="SIMPLE_POOL"):
    return {
        "pool_kind": kind,
        "token_account_ids": tokens,
        "amounts": amounts,
        "total_fee": fee,
        "shares_total_supply": "1000",
    }


def _pool(pool_id, tokens, amounts, fee=30, kind="SIMPLE_POOL"):
    res = ref.parse_pool(pool_id, _record(tokens, amounts, fee, kind))
    assert res.ok
    return res.value


def _meta(contract_id, decimals):
    return FungibleTokenMetadata(
        contract_id=contract_id, spec="ft-1.0.0", name=contract_id, symbol=contract_id.upper(), decimals=decimals
    )


# ---------------------------------------------------------------------------
# Swap estimate
# ---------------------------------------------------------------------------


def test_estimate_reference_example():
    res = ref.estimate_swap_output(1000, 2000, 30, 100)
    assert res.ok
    assert res.value == 181


def test_estimate_accepts_numeric_strings():
    assert ref.estimate_swap_output("1000", "2000", "30", "100").value == 181


def test_estimate_zero_amount_is_zero():
    assert ref.estimate_swap_output(1000, 2000, 30, 0).value == 0


def test_estimate_accepts_integral_floats():
    assert ref.estimate_swap_output(1000.0, 2000, 30, Decimal("100")).value == 181


def test_estimate_large_reserves_stay_exact():
    reserve = 10**30
    res = ref.estimate_swap_output(reserve, reserve, 0, 10**18)
    assert res.value == 10**18 * reserve // (reserve + 10**18)


@pytest.mark.parametrize(
    "args",
    [
        (0, 2000, 30, 100),
        (1000, 0, 30, 100),
        (1000, 2000, 10000, 100),
        (1000, 2000, -1, 100),
        (1000, 2000, 30, -5),
        ("abc", 2000, 30, 100),
        (1000, 2000, 30, None),
        (1000, 2000, 30, "1.5"),
        (float("inf"), 2000, 30, 100),
        (1000, 2000, 30, Decimal("Infinity")),
        (1000, Decimal("NaN"), 30, 100),
        (1000.9, 2000, 30, 100),
    ],
)
def test_estimate_invalid_inputs_are_errors(args):
    res = ref.estimate_swap_output(*args)
    assert not res.ok
    assert res.error.kind == ErrorKind.INVALID_INPUT


# ---------------------------------------------------------------------------
# Pools
# ---------------------------------------------------------------------------


def test_parse_pool_flattens_record():
    pool = _pool(7, ["a.near", "b.near"], ["1000", "2000"])
    assert pool.id == 7
    assert pool.reserves == {"a.near": "1000", "b.near": "2000"}
    assert pool.fee_bps == 30
    assert pool.reference_price == "2"
    assert pool.as_dict()["tokenAccountIds"] == ["a.near", "b.near"]


def test_parse_pool_reference_price_edge_cases():
    assert _pool(1, ["a", "b"], ["0", "5"]).reference_price is None
    assert _pool(2, ["a", "b", "c"], ["1", "2", "3"]).reference_price is None


@pytest.mark.parametrize(
    "record",
    [
        _record(["a", "a"], ["1", "2"]),
        _record(["a", "b"], ["1"]),
        _record(["a", "b"], ["1", "x"]),
        _record(["a", "b"], ["1", "-2"]),
        {"pool_kind": "SIMPLE_POOL"},
        "not a pool",
    ],
)
def test_parse_pool_rejects_bad_records(record):
    res = ref.parse_pool(3, record)
    assert res.error.kind == ErrorKind.INVALID_INPUT


def test_find_pools_sorted_by_reserve_of_first_token():
    pools = [
        _pool(0, ["a", "b"], ["100", "100"]),
        _pool(1, ["a", "c"], ["900", "100"]),
        _pool(2, ["b", "a"], ["100", "500"]),
        _pool(3, ["a", "b"], ["9999", "1"], kind="STABLE_SWAP"),
        _pool(4, ["a", "b"], ["300", "300"]),
    ]
    assert [pool.id for pool in ref.find_pools(pools, "a", "b")] == [2, 4, 0]


# ---------------------------------------------------------------------------
# Pool listing
# ---------------------------------------------------------------------------


def _stub_listing(monkeypatch, count, fail_at=None):
    requested = []

    monkeypatch.setattr(ref, "get_number_of_pools", lambda cfg, network: Ok(count))

    def _page(cfg, network, from_index, limit):
        requested.append((from_index, limit))
        if from_index == fail_at:
            return external_failure("page unavailable")
        size = min(limit, count - from_index)
        return Ok([_record([f"t{from_index + i}", "wrap.near"], ["10", "20"]) for i in range(size)])

    monkeypatch.setattr(ref, "get_pools_page", _page)
    return requested


def test_get_all_pools_recovers_ids_across_pages(monkeypatch):
    requested = _stub_listing(monkeypatch, 600)
    res = asyncio.run(ref.get_all_pools(NearConfig(), NETWORK))
    assert res.ok
    assert [pool.id for pool in res.value] == list(range(600))
    assert res.value[512].token_account_ids[0] == "t512"
    assert sorted(requested) == [(0, 250), (250, 250), (500, 250)]


def test_get_all_pools_empty(monkeypatch):
    _stub_listing(monkeypatch, 0)
    res = asyncio.run(ref.get_all_pools(NearConfig(), NETWORK))
    assert res.ok and res.value == []


def test_get_all_pools_fails_when_any_page_fails(monkeypatch):
    _stub_listing(monkeypatch, 600, fail_at=250)
    res = asyncio.run(ref.get_all_pools(NearConfig(), NETWORK))
    assert not res.ok
    assert res.error.kind == ErrorKind.EXTERNAL_DEPENDENCY_FAILURE


def test_get_all_pools_fails_on_malformed_record(monkeypatch):
    monkeypatch.setattr(ref, "get_number_of_pools", lambda cfg, network: Ok(2))
    monkeypatch.setattr(
        ref, "get_pools_page", lambda *_a: Ok([_record(["a", "b"], ["1", "2"]), _record(["a", "a"], ["1", "2"])])
    )
    res = asyncio.run(ref.get_all_pools(NearConfig(), NETWORK))
    assert res.error.kind == ErrorKind.INVALID_INPUT
    assert "Pool 1" in res.error.message


def test_get_pools_for_pair_rejects_identical_tokens():
    res = asyncio.run(ref.get_pools_for_pair(NearConfig(), NETWORK, "a.near", "a.near"))
    assert res.error.kind == ErrorKind.INVALID_INPUT


def test_get_pools_for_pair(monkeypatch):
    pools = [_pool(0, ["a", "b"], ["1", "1"]), _pool(1, ["a", "c"], ["1", "1"])]

    async def _all(cfg, network):
        return Ok(pools)

    monkeypatch.setattr(ref, "get_all_pools", _all)
    res = asyncio.run(ref.get_pools_for_pair(NearConfig(), NETWORK, "a", "b"))
    assert res.value["count"] == 1
    assert res.value["pools"][0]["id"] == 0


# ---------------------------------------------------------------------------
# Swaps
# ---------------------------------------------------------------------------


@pytest.fixture
def market(monkeypatch):
    pools = [
        _pool(0, ["in.testnet", "out.testnet"], ["1000", "2000"], fee=30),
        _pool(1, ["in.testnet", "out.testnet"], ["1000", "1000"], fee=30),
        _pool(2, ["in.testnet", "out.testnet"], ["0", "0"], fee=30),
    ]
    metadata = {"in.testnet": _meta("in.testnet", 0), "out.testnet": _meta("out.testnet", 0)}

    async def _all(cfg, network):
        return Ok(pools)

    monkeypatch.setattr(ref, "get_all_pools", _all)
    monkeypatch.setattr(ref, "get_ft_metadata", lambda cfg, network, contract_id: Ok(metadata[contract_id]))
    return pools


def test_swap_estimate_picks_best_pool(market):
    res = asyncio.run(ref.get_swap_estimate(NearConfig(), NETWORK, "in.testnet", "out.testnet", 100))
    assert res.ok
    assert res.value["poolId"] == 0
    assert res.value["estimatedAmountOutMinorUnits"] == "181"
    assert res.value["estimatedAmountOut"] == "181"


def test_swap_estimate_without_pools(market, monkeypatch):
    async def _none(cfg, network):
        return Ok([])

    monkeypatch.setattr(ref, "get_all_pools", _none)
    res = asyncio.run(ref.get_swap_estimate(NearConfig(), NETWORK, "in.testnet", "out.testnet", 100))
    assert res.error.kind == ErrorKind.NOT_FOUND


def test_swap_estimate_rejects_zero_amount(market):
    res = asyncio.run(ref.get_swap_estimate(NearConfig(), NETWORK, "in.testnet", "out.testnet", "0.4"))
    assert res.error.kind == ErrorKind.INVALID_INPUT


def test_min_amount_out():
    assert ref.min_amount_out(181, 50) == 180
    assert ref.min_amount_out(10_000, 0) == 10_000


def test_execute_swap_sends_ft_transfer_call(market, monkeypatch, tmp_path):
    keystore = FileSystemKeyStore(tmp_path)
    keystore.set_key(NETWORK, "alice.testnet", KeyPair.from_random())
    sent = []

    monkeypatch.setattr(ref, "get_ft_balance", lambda *_a: Ok(1_000))
    monkeypatch.setattr(ref, "ensure_ft_storage", lambda *_a: Ok(None))

    def _sign_and_send(cfg, network, signer_id, key_pair, receiver_id, actions):
        sent.append((signer_id, receiver_id, actions))
        return Ok({"transaction_hash": "HASH"})

    monkeypatch.setattr(ref, "sign_and_send", _sign_and_send)

    res = asyncio.run(
        ref.execute_swap(NearConfig(), keystore, NETWORK, "alice.testnet", "in.testnet", "out.testnet", 100)
    )
    assert res.ok
    assert res.value["minAmountOutMinorUnits"] == "180"
    signer_id, receiver_id, actions = sent[0]
    assert (signer_id, receiver_id) == ("alice.testnet", "in.testnet")
    expected_msg = {
        "force": 0,
        "actions": [
            {
                "pool_id": 0,
                "token_in": "in.testnet",
                "token_out": "out.testnet",
                "amount_in": "100",
                "min_amount_out": "180",
            }
        ],
    }
    expected = ref.function_call_action(
        "ft_transfer_call",
        {"receiver_id": "ref-finance-101.testnet", "amount": "100", "msg": json.dumps(expected_msg)},
        ref.SWAP_GAS,
        1,
    )
    assert actions == [expected]


def test_execute_swap_checks_balance(market, monkeypatch, tmp_path):
    keystore = FileSystemKeyStore(tmp_path)
    keystore.set_key(NETWORK, "alice.testnet", KeyPair.from_random())
    monkeypatch.setattr(ref, "get_ft_balance", lambda *_a: Ok(10))
    res = asyncio.run(
        ref.execute_swap(NearConfig(), keystore, NETWORK, "alice.testnet", "in.testnet", "out.testnet", 100)
    )
    assert res.error.kind == ErrorKind.INVALID_INPUT


@pytest.mark.parametrize("slippage", [-1, 10_000, "abc"])
def test_execute_swap_rejects_bad_slippage(tmp_path, slippage):
    res = asyncio.run(
        ref.execute_swap(
            NearConfig(), FileSystemKeyStore(tmp_path), NETWORK, "alice.testnet", "a", "b", 1, slippage
        )
    )
    assert res.error.kind == ErrorKind.INVALID_INPUT
