"""
NEAR fungible token (NEP-141 / NEP-148) metadata.

Implements:
- On-chain ft_metadata lookups (never cached)
- Popular token listing from the NearBlocks API
- Search across popular tokens with a bounded-concurrency metadata fan-out
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any

import requests

from near_rpc import NearConfig, call_view_function
from near_utils import (
    Err,
    Ok,
    Result,
    external_failure,
    invalid_input,
    map_semaphore,
)

logger = logging.getLogger(__name__)

NEARBLOCKS_API = {
    "mainnet": "https://api.nearblocks.io/v1",
    "testnet": "https://api-testnet.nearblocks.io/v1",
}

METADATA_CONCURRENCY = 8
POPULAR_TOKENS_PER_PAGE = 50


@dataclass(frozen=True)
class FungibleTokenMetadata:
    contract_id: str
    spec: str
    name: str
    symbol: str
    decimals: int
    icon: str | None = None
    reference: str | None = None
    reference_hash: str | None = None

    def as_dict(self, include_icon: bool = False) -> dict[str, Any]:
        data = asdict(self)
        if not include_icon:
            data.pop("icon")
        return data


def parse_ft_metadata(contract_id: str, raw: Any) -> Result[FungibleTokenMetadata]:
    if not isinstance(raw, dict):
        return external_failure(f"{contract_id} returned malformed ft_metadata: {raw!r}")
    decimals = raw.get("decimals")
    if isinstance(decimals, bool) or not isinstance(decimals, int) or not 0 <= decimals <= 255:
        return external_failure(f"{contract_id} returned invalid decimals: {decimals!r}")
    return Ok(
        FungibleTokenMetadata(
            contract_id=contract_id,
            spec=str(raw.get("spec", "")),
            name=str(raw.get("name", "")),
            symbol=str(raw.get("symbol", "")),
            decimals=decimals,
            icon=raw.get("icon"),
            reference=raw.get("reference"),
            reference_hash=raw.get("reference_hash"),
        )
    )


def get_ft_metadata(
    cfg: NearConfig, network: str, contract_id: str
) -> Result[FungibleTokenMetadata]:
    """Fetch ft_metadata from the token contract."""
    if not contract_id:
        return invalid_input("Token contract id cannot be empty.")
    res = call_view_function(cfg, network, contract_id, "ft_metadata")
    if not res.ok:
        return res
    return parse_ft_metadata(contract_id, res.value)


def get_ft_balance(cfg: NearConfig, network: str, contract_id: str, account_id: str) -> Result[int]:
    res = call_view_function(
        cfg, network, contract_id, "ft_balance_of", {"account_id": account_id}
    )
    if not res.ok:
        return res
    try:
        return Ok(int(res.value))
    except (TypeError, ValueError):
        return external_failure(f"{contract_id} returned an invalid balance: {res.value!r}")


# ---------------------------------------------------------------------------
# Popular tokens
# ---------------------------------------------------------------------------


def get_popular_fungible_token_contracts(
    cfg: NearConfig, network: str
) -> Result[list[dict[str, str]]]:
    """Top tokens by market cap from NearBlocks: [{contract, name, symbol}]."""
    url = f"{NEARBLOCKS_API[network]}/fts"
    params = {"page": 1, "per_page": POPULAR_TOKENS_PER_PAGE, "sort": "onchain_market_cap", "order": "desc"}
    try:
        resp = cfg.session().get(url, params=params, timeout=cfg.timeout)
        resp.raise_for_status()
        data = resp.json()
    except requests.exceptions.RequestException as exc:
        return external_failure(f"Failed to fetch popular tokens: {exc}")
    except ValueError as exc:
        return external_failure(f"NearBlocks returned invalid JSON: {exc}")

    tokens = data.get("tokens") if isinstance(data, dict) else None
    if not isinstance(tokens, list):
        return external_failure("NearBlocks token listing has an unexpected shape.")
    return Ok(
        [
            {
                "contract": token.get("contract", ""),
                "name": token.get("name", ""),
                "symbol": token.get("symbol", ""),
            }
            for token in tokens
            if isinstance(token, dict) and token.get("contract")
        ]
    )


def _matches(token: dict[str, str], term: str) -> bool:
    if not term:
        return True
    return any(term in (token.get(field) or "").lower() for field in ("contract", "name", "symbol"))


async def search_popular_fungible_token_contracts(
    cfg: NearConfig,
    network: str,
    search_term: str = "",
) -> Result[dict[str, Any]]:
    """
    Popular tokens whose contract, name or symbol contains ``search_term``,
    each with its on-chain metadata.

    A token whose metadata cannot be fetched is reported with an ``error``
    entry instead of failing the whole search.
    """
    listing = await asyncio.to_thread(get_popular_fungible_token_contracts, cfg, network)
    if not listing.ok:
        return listing

    term = (search_term or "").strip().lower()
    matches = [token for token in listing.value if _matches(token, term)]

    async def _fetch(token: dict[str, str]) -> tuple[dict[str, str], Result]:
        return token, await asyncio.to_thread(get_ft_metadata, cfg, network, token["contract"])

    fetched = await map_semaphore(matches, METADATA_CONCURRENCY, _fetch)

    # completion order -> listing order
    rank = {token["contract"]: i for i, token in enumerate(matches)}
    fetched.sort(key=lambda pair: rank[pair[0]["contract"]])

    results = []
    failures = 0
    for token, meta in fetched:
        if isinstance(meta, Err):
            failures += 1
            results.append({**token, "error": meta.error.message})
        else:
            results.append({**token, "metadata": meta.value.as_dict()})
    if failures:
        logger.warning("Metadata lookup failed for %d of %d tokens", failures, len(matches))

    return Ok({"search_term": search_term, "count": len(results), "tokens": results})
