"""Unit tests for fungible token metadata and popular-token search."""

import asyncio
import sys
from pathlib import Path

import pytest
import requests

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

import near_token_metadata as tokens  # noqa: E402
from near_rpc import NearConfig  # noqa: E402
from near_utils import ErrorKind, Ok, external_failure, not_found  # noqa: E402

RAW_METADATA = {
    "spec": "ft-1.0.0",
    "name": "Wrapped NEAR",
    "symbol": "wNEAR",
    "decimals": 24,
    "icon": "data:image/svg+xml,...",
    "reference": None,
    "reference_hash": None,
}

LISTING = [
    {"contract": "wrap.near", "name": "Wrapped NEAR", "symbol": "wNEAR"},
    {"contract": "usdt.tether-token.near", "name": "Tether USD", "symbol": "USDt"},
    {"contract": "token.v2.ref-finance.near", "name": "Ref Finance Token", "symbol": "REF"},
    {"contract": "broken.near", "name": "Broken", "symbol": "BRK"},
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeResponse:
    def __init__(self, body, status_code=200):
        self._body = body
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._body


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        return self.response


def _stub_metadata(monkeypatch, failing=("broken.near",)):
    def _view(cfg, network, contract_id, method_name, args=None):
        assert method_name == "ft_metadata"
        if contract_id in failing:
            return external_failure(f"{contract_id} is down")
        return Ok(dict(RAW_METADATA, name=contract_id))

    monkeypatch.setattr(tokens, "call_view_function", _view)


# ---------------------------------------------------------------------------
# ft_metadata
# ---------------------------------------------------------------------------


def test_get_ft_metadata(monkeypatch):
    _stub_metadata(monkeypatch)
    res = tokens.get_ft_metadata(NearConfig(), "mainnet", "wrap.near")
    assert res.ok
    assert res.value.decimals == 24
    assert res.value.symbol == "wNEAR"
    assert "icon" not in res.value.as_dict()
    assert res.value.as_dict(include_icon=True)["icon"].startswith("data:")


@pytest.mark.parametrize("raw", [None, [], {"decimals": "6"}, {"decimals": -1}, {"decimals": True}])
def test_parse_ft_metadata_rejects_malformed(raw):
    res = tokens.parse_ft_metadata("x.near", raw)
    assert res.error.kind == ErrorKind.EXTERNAL_DEPENDENCY_FAILURE


def test_get_ft_metadata_requires_contract():
    assert tokens.get_ft_metadata(NearConfig(), "mainnet", "").error.kind == ErrorKind.INVALID_INPUT


def test_get_ft_metadata_relays_not_found(monkeypatch):
    monkeypatch.setattr(tokens, "call_view_function", lambda *_a, **_k: not_found("CodeDoesNotExist"))
    res = tokens.get_ft_metadata(NearConfig(), "mainnet", "nothing.near")
    assert res.error.kind == ErrorKind.NOT_FOUND


def test_get_ft_balance(monkeypatch):
    monkeypatch.setattr(tokens, "call_view_function", lambda *_a, **_k: Ok("123456789012345678901234567"))
    assert tokens.get_ft_balance(NearConfig(), "mainnet", "wrap.near", "a.near").value == 123456789012345678901234567
    monkeypatch.setattr(tokens, "call_view_function", lambda *_a, **_k: Ok({"odd": True}))
    bad = tokens.get_ft_balance(NearConfig(), "mainnet", "wrap.near", "a.near")
    assert bad.error.kind == ErrorKind.EXTERNAL_DEPENDENCY_FAILURE


# ---------------------------------------------------------------------------
# Popular tokens
# ---------------------------------------------------------------------------


def test_popular_tokens_listing():
    session = FakeSession(FakeResponse({"tokens": LISTING + [{"name": "no contract"}]}))
    cfg = NearConfig()
    cfg._sessions[False] = session
    res = tokens.get_popular_fungible_token_contracts(cfg, "testnet")
    assert res.ok
    assert [t["contract"] for t in res.value] == [t["contract"] for t in LISTING]
    assert session.calls[0]["url"] == "https://api-testnet.nearblocks.io/v1/fts"
    assert session.calls[0]["timeout"] == cfg.timeout


@pytest.mark.parametrize(
    "response", [FakeResponse({}, status_code=503), FakeResponse({"unexpected": 1}), FakeResponse([])]
)
def test_popular_tokens_listing_failures(response):
    cfg = NearConfig()
    cfg._sessions[False] = FakeSession(response)
    res = tokens.get_popular_fungible_token_contracts(cfg, "mainnet")
    assert res.error.kind == ErrorKind.EXTERNAL_DEPENDENCY_FAILURE


def test_search_keeps_listing_order_and_reports_failures_inline(monkeypatch):
    monkeypatch.setattr(tokens, "get_popular_fungible_token_contracts", lambda *_a: Ok(list(LISTING)))
    _stub_metadata(monkeypatch)
    res = asyncio.run(tokens.search_popular_fungible_token_contracts(NearConfig(), "mainnet"))
    assert res.ok
    assert res.value["count"] == 4
    assert [t["contract"] for t in res.value["tokens"]] == [t["contract"] for t in LISTING]
    broken = res.value["tokens"][3]
    assert "metadata" not in broken
    assert "is down" in broken["error"]
    assert res.value["tokens"][0]["metadata"]["decimals"] == 24


def test_search_filters_case_insensitively(monkeypatch):
    monkeypatch.setattr(tokens, "get_popular_fungible_token_contracts", lambda *_a: Ok(list(LISTING)))
    _stub_metadata(monkeypatch)
    res = asyncio.run(tokens.search_popular_fungible_token_contracts(NearConfig(), "mainnet", "REF"))
    assert [t["contract"] for t in res.value["tokens"]] == ["token.v2.ref-finance.near"]
    assert res.value["search_term"] == "REF"


def test_search_relays_listing_failure(monkeypatch):
    monkeypatch.setattr(
        tokens, "get_popular_fungible_token_contracts", lambda *_a: external_failure("NearBlocks down")
    )
    res = asyncio.run(tokens.search_popular_fungible_token_contracts(NearConfig(), "mainnet", "x"))
    assert res.error.message == "NearBlocks down"
