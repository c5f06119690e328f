#!/usr/bin/env python3
"""
MCP server for NEAR account, key, token, contract and Ref Finance operations.

System: local keystore management, key generation, popular token search.
Account: summaries, creation and deletion, access keys, message signing.
Tokens: NEAR and NEP-141 transfers, token metadata.
Contracts: exported methods, read-only and change calls.
Ref Finance: pools for a pair, swap estimates, swaps.

Wraps near_wallet.py, near_token_metadata.py and ref_finance.py as MCP tools.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, List

from dotenv import load_dotenv
from mcp.server import Server
from mcp.server.sse import SseServerTransport
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Mount, Route

# Load .env from the working directory, then next to the server
load_dotenv(Path.cwd() / ".env")
SERVER_DIR = Path(__file__).resolve().parent
load_dotenv(SERVER_DIR / ".env")

from near_keys import SUPPORTED_CURVES
from near_keystore import FileSystemKeyStore
from near_rpc import DEFAULT_NETWORK, NETWORKS, NearConfig, validate_network
from near_token_metadata import (
    get_ft_metadata,
    search_popular_fungible_token_contracts,
)
from near_utils import MCP_SERVER_NAME, Result, stringify_bigint
from near_wallet import (
    add_access_key,
    call_function,
    call_read_only_function,
    create_account,
    delete_access_keys,
    delete_account,
    generate_key_pair,
    get_account_summary,
    import_account,
    list_access_keys,
    list_local_accounts,
    remove_local_account,
    send_ft,
    send_near,
    sign_data,
    verify_signature,
    view_contract_functions,
)
from ref_finance import (
    DEFAULT_SLIPPAGE_BPS,
    execute_swap,
    get_pools_for_pair,
    get_swap_estimate,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass
class ToolContext:
    """Per-server state handed to every tool handler."""

    cfg: NearConfig
    keystore: FileSystemKeyStore


Handler = Callable[[ToolContext, dict], Awaitable[List[TextContent]]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_schema: dict[str, Any]
    handler: Handler


class ToolRegistry:
    """Named tools with their schemas and async handlers."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, name: str, description: str, input_schema: dict[str, Any], handler: Handler) -> None:
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = ToolSpec(name, description, input_schema, handler)

    def names(self) -> list[str]:
        return list(self._tools)

    def list_tools(self) -> List[Tool]:
        return [
            Tool(name=spec.name, description=spec.description, inputSchema=spec.input_schema)
            for spec in self._tools.values()
        ]

    def catalogue(self) -> list[dict[str, Any]]:
        return [
            {"name": spec.name, "description": spec.description, "inputSchema": spec.input_schema}
            for spec in self._tools.values()
        ]

    async def call_tool(self, ctx: ToolContext, name: str, arguments: Any) -> List[TextContent]:
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            return _error_response("Invalid arguments. Expected an object.")
        spec = self._tools.get(name)
        if spec is None:
            return _error_response(f"Unknown tool: {name}")
        try:
            return await spec.handler(ctx, arguments)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Tool %s failed", name)
            return _error_response(f"Unexpected failure in {name}: {exc}")


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


def _ok_response(data: Any) -> List[TextContent]:
    return [TextContent(type="text", text=stringify_bigint(data))]


def _error_response(message: str) -> List[TextContent]:
    return [TextContent(type="text", text=f"Error: {message}")]


def _result_response(result: Result) -> List[TextContent]:
    if result.ok:
        return _ok_response(result.value)
    return _error_response(result.error.message)


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

NETWORK_PROPERTY = {
    "type": "string",
    "enum": list(NETWORKS),
    "default": DEFAULT_NETWORK,
    "description": "NEAR network",
}


def _schema(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {
        "type": "object",
        "properties": {**properties, "networkId": NETWORK_PROPERTY},
    }
    if required:
        schema["required"] = required
    return schema


def _string(description: str) -> dict[str, str]:
    return {"type": "string", "description": description}


AMOUNT_PROPERTY = {
    "type": ["number", "string"],
    "description": "Amount in display units (e.g. 1.5 NEAR)",
}


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------


def _text_arg(arguments: dict[str, Any], key: str) -> str:
    value = arguments.get(key)
    if value is None:
        return ""
    return str(value).strip()


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------


async def _handle_list_local_keypairs(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await asyncio.to_thread(list_local_accounts, ctx.keystore, network.value)
    return _result_response(result)


async def _handle_import_account(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    account_id = _text_arg(arguments, "accountId")
    if not account_id:
        return _error_response("Missing 'accountId' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await asyncio.to_thread(
        import_account,
        ctx.cfg,
        ctx.keystore,
        network.value,
        account_id,
        private_key=_text_arg(arguments, "privateKey") or None,
        seed_phrase=_text_arg(arguments, "seedPhrase") or None,
    )
    return _result_response(result)


async def _handle_remove_local_account(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    account_id = _text_arg(arguments, "accountId")
    if not account_id:
        return _error_response("Missing 'accountId' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await asyncio.to_thread(remove_local_account, ctx.keystore, network.value, account_id)
    return _result_response(result)


async def _handle_generate_keypair(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    curve = _text_arg(arguments, "keyType") or "ed25519"
    return _result_response(generate_key_pair(curve))


async def _handle_search_popular_tokens(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await search_popular_fungible_token_contracts(
        ctx.cfg, network.value, _text_arg(arguments, "searchTerm")
    )
    return _result_response(result)


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------


async def _handle_view_account_summary(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    account_id = _text_arg(arguments, "accountId")
    if not account_id:
        return _error_response("Missing 'accountId' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await asyncio.to_thread(get_account_summary, ctx.cfg, network.value, account_id)
    return _result_response(result)


async def _handle_create_account(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    signer_id = _text_arg(arguments, "signerAccountId")
    if not signer_id:
        return _error_response("Missing 'signerAccountId' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    initial_balance = arguments.get("initialBalance")
    result = await asyncio.to_thread(
        create_account,
        ctx.cfg,
        ctx.keystore,
        network.value,
        signer_id,
        _text_arg(arguments, "newAccountId") or None,
        initial_balance if initial_balance not in (None, "") else "0.1",
    )
    return _result_response(result)


async def _handle_delete_account(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    account_id = _text_arg(arguments, "accountId")
    if not account_id:
        return _error_response("Missing 'accountId' parameter.")
    beneficiary_id = _text_arg(arguments, "beneficiaryAccountId")
    if not beneficiary_id:
        return _error_response("Missing 'beneficiaryAccountId' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await asyncio.to_thread(
        delete_account, ctx.cfg, ctx.keystore, network.value, account_id, beneficiary_id
    )
    return _result_response(result)


async def _handle_list_access_keys(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    account_id = _text_arg(arguments, "accountId")
    if not account_id:
        return _error_response("Missing 'accountId' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await asyncio.to_thread(list_access_keys, ctx.cfg, network.value, account_id)
    return _result_response(result)


async def _handle_add_access_key(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    account_id = _text_arg(arguments, "accountId")
    if not account_id:
        return _error_response("Missing 'accountId' parameter.")
    public_key = _text_arg(arguments, "publicKey")
    if not public_key:
        return _error_response("Missing 'publicKey' parameter.")
    method_names = arguments.get("methodNames") or []
    if not isinstance(method_names, list):
        return _error_response("Invalid 'methodNames'. Expected a list of method names.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await asyncio.to_thread(
        add_access_key,
        ctx.cfg,
        ctx.keystore,
        network.value,
        account_id,
        public_key,
        permission=_text_arg(arguments, "permission") or "full_access",
        receiver_id=_text_arg(arguments, "contractId") or None,
        method_names=[str(name) for name in method_names],
        allowance=arguments.get("allowance"),
    )
    return _result_response(result)


async def _handle_delete_access_keys(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    account_id = _text_arg(arguments, "accountId")
    if not account_id:
        return _error_response("Missing 'accountId' parameter.")
    public_keys = arguments.get("publicKeys")
    if not isinstance(public_keys, list) or not public_keys:
        return _error_response("Missing 'publicKeys' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await asyncio.to_thread(
        delete_access_keys,
        ctx.cfg,
        ctx.keystore,
        network.value,
        account_id,
        [str(key) for key in public_keys],
    )
    return _result_response(result)


async def _handle_sign_data(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    account_id = _text_arg(arguments, "accountId")
    if not account_id:
        return _error_response("Missing 'accountId' parameter.")
    data = arguments.get("data")
    if data is None:
        return _error_response("Missing 'data' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await asyncio.to_thread(sign_data, ctx.keystore, network.value, account_id, str(data))
    return _result_response(result)


async def _handle_verify_signature(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    data = arguments.get("data")
    if data is None:
        return _error_response("Missing 'data' parameter.")
    signature = _text_arg(arguments, "signature")
    if not signature:
        return _error_response("Missing 'signature' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await asyncio.to_thread(
        verify_signature,
        ctx.cfg,
        network.value,
        str(data),
        signature,
        account_id=_text_arg(arguments, "accountId") or None,
        public_key=_text_arg(arguments, "publicKey") or None,
    )
    return _result_response(result)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


async def _handle_send_near(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    signer_id = _text_arg(arguments, "signerAccountId")
    if not signer_id:
        return _error_response("Missing 'signerAccountId' parameter.")
    receiver_id = _text_arg(arguments, "receiverAccountId")
    if not receiver_id:
        return _error_response("Missing 'receiverAccountId' parameter.")
    if arguments.get("amount") is None:
        return _error_response("Missing 'amount' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await asyncio.to_thread(
        send_near,
        ctx.cfg,
        ctx.keystore,
        network.value,
        signer_id,
        receiver_id,
        arguments["amount"],
    )
    return _result_response(result)


async def _handle_send_ft(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    signer_id = _text_arg(arguments, "signerAccountId")
    if not signer_id:
        return _error_response("Missing 'signerAccountId' parameter.")
    receiver_id = _text_arg(arguments, "receiverAccountId")
    if not receiver_id:
        return _error_response("Missing 'receiverAccountId' parameter.")
    contract_id = _text_arg(arguments, "fungibleTokenContractAccountId")
    if not contract_id:
        return _error_response("Missing 'fungibleTokenContractAccountId' parameter.")
    if arguments.get("amount") is None:
        return _error_response("Missing 'amount' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await asyncio.to_thread(
        send_ft,
        ctx.cfg,
        ctx.keystore,
        network.value,
        signer_id,
        receiver_id,
        contract_id,
        arguments["amount"],
    )
    return _result_response(result)


async def _handle_get_ft_metadata(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    contract_id = _text_arg(arguments, "fungibleTokenContractAccountId")
    if not contract_id:
        return _error_response("Missing 'fungibleTokenContractAccountId' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await asyncio.to_thread(get_ft_metadata, ctx.cfg, network.value, contract_id)
    if not result.ok:
        return _result_response(result)
    return _ok_response(result.value.as_dict(include_icon=bool(arguments.get("includeIcon"))))


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------


async def _handle_view_functions(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    contract_id = _text_arg(arguments, "contractAccountId")
    if not contract_id:
        return _error_response("Missing 'contractAccountId' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await asyncio.to_thread(view_contract_functions, ctx.cfg, network.value, contract_id)
    return _result_response(result)


async def _handle_call_read_only(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    contract_id = _text_arg(arguments, "contractAccountId")
    if not contract_id:
        return _error_response("Missing 'contractAccountId' parameter.")
    method_name = _text_arg(arguments, "methodName")
    if not method_name:
        return _error_response("Missing 'methodName' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await asyncio.to_thread(
        call_read_only_function,
        ctx.cfg,
        network.value,
        contract_id,
        method_name,
        arguments.get("args"),
    )
    return _result_response(result)


async def _handle_call_function(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    signer_id = _text_arg(arguments, "accountId")
    if not signer_id:
        return _error_response("Missing 'accountId' parameter.")
    contract_id = _text_arg(arguments, "contractAccountId")
    if not contract_id:
        return _error_response("Missing 'contractAccountId' parameter.")
    method_name = _text_arg(arguments, "methodName")
    if not method_name:
        return _error_response("Missing 'methodName' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await asyncio.to_thread(
        call_function,
        ctx.cfg,
        ctx.keystore,
        network.value,
        signer_id,
        contract_id,
        method_name,
        arguments.get("args"),
        arguments.get("gas"),
        arguments.get("attachedDeposit"),
    )
    return _result_response(result)


# ---------------------------------------------------------------------------
# Ref Finance
# ---------------------------------------------------------------------------


async def _handle_ref_get_pools(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    token_a = _text_arg(arguments, "tokenA")
    if not token_a:
        return _error_response("Missing 'tokenA' parameter.")
    token_b = _text_arg(arguments, "tokenB")
    if not token_b:
        return _error_response("Missing 'tokenB' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await get_pools_for_pair(ctx.cfg, network.value, token_a, token_b)
    return _result_response(result)


async def _handle_ref_get_swap_estimate(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    token_in = _text_arg(arguments, "tokenIn")
    if not token_in:
        return _error_response("Missing 'tokenIn' parameter.")
    token_out = _text_arg(arguments, "tokenOut")
    if not token_out:
        return _error_response("Missing 'tokenOut' parameter.")
    if arguments.get("amount") is None:
        return _error_response("Missing 'amount' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    result = await get_swap_estimate(ctx.cfg, network.value, token_in, token_out, arguments["amount"])
    return _result_response(result)


async def _handle_ref_execute_swap(ctx: ToolContext, arguments: dict[str, Any]) -> List[TextContent]:
    signer_id = _text_arg(arguments, "accountId")
    if not signer_id:
        return _error_response("Missing 'accountId' parameter.")
    token_in = _text_arg(arguments, "tokenIn")
    if not token_in:
        return _error_response("Missing 'tokenIn' parameter.")
    token_out = _text_arg(arguments, "tokenOut")
    if not token_out:
        return _error_response("Missing 'tokenOut' parameter.")
    if arguments.get("amount") is None:
        return _error_response("Missing 'amount' parameter.")
    network = validate_network(arguments.get("networkId"))
    if not network.ok:
        return _result_response(network)
    slippage = arguments.get("slippageBps")
    result = await execute_swap(
        ctx.cfg,
        ctx.keystore,
        network.value,
        signer_id,
        token_in,
        token_out,
        arguments["amount"],
        DEFAULT_SLIPPAGE_BPS if slippage is None else slippage,
    )
    return _result_response(result)


# ---------------------------------------------------------------------------
# Tool catalogue
# ---------------------------------------------------------------------------


def build_tool_registry() -> ToolRegistry:
    """A fresh registry holding every NEAR tool."""
    registry = ToolRegistry()

    # System
    registry.register(
        "system_list_local_keypairs",
        "List the accounts whose keys are stored in the local keystore.",
        _schema({}),
        _handle_list_local_keypairs,
    )
    registry.register(
        "system_import_account",
        (
            "Import an existing account into the local keystore from a private key "
            "or a seed phrase. The key must already be an access key of the account."
        ),
        _schema(
            {
                "accountId": _string("Account to import"),
                "privateKey": _string("Private key, e.g. ed25519:..."),
                "seedPhrase": _string("BIP-39 seed phrase (alternative to privateKey)"),
            },
            ["accountId"],
        ),
        _handle_import_account,
    )
    registry.register(
        "system_remove_local_account",
        "Remove an account's key from the local keystore. Nothing changes on-chain.",
        _schema({"accountId": _string("Account to remove")}, ["accountId"]),
        _handle_remove_local_account,
    )
    registry.register(
        "system_generate_keypair",
        "Generate a new key pair without storing it.",
        _schema({"keyType": {"type": "string", "enum": list(SUPPORTED_CURVES), "default": "ed25519"}}),
        _handle_generate_keypair,
    )
    registry.register(
        "system_search_popular_fungible_token_contracts",
        (
            "Search popular fungible tokens by contract id, name or symbol and "
            "return their on-chain metadata."
        ),
        _schema({"searchTerm": _string("Text to match; empty lists all popular tokens")}),
        _handle_search_popular_tokens,
    )

    # Account
    registry.register(
        "account_view_account_summary",
        "Balance, state and access keys of any account.",
        _schema({"accountId": _string("Account to inspect")}, ["accountId"]),
        _handle_view_account_summary,
    )
    registry.register(
        "account_create_account",
        (
            "Create and fund a new account with a fresh key stored locally. "
            "Sub-accounts of the signer and top-level names are supported; a random "
            "name is chosen when newAccountId is omitted."
        ),
        _schema(
            {
                "signerAccountId": _string("Funding account (must be in the local keystore)"),
                "newAccountId": _string("Account to create"),
                "initialBalance": {
                    "type": ["number", "string"],
                    "default": 0.1,
                    "description": "Initial balance in NEAR",
                },
            },
            ["signerAccountId"],
        ),
        _handle_create_account,
    )
    registry.register(
        "account_delete_account",
        "Delete an account and send its remaining balance to a beneficiary.",
        _schema(
            {
                "accountId": _string("Account to delete"),
                "beneficiaryAccountId": _string("Account receiving the balance"),
            },
            ["accountId", "beneficiaryAccountId"],
        ),
        _handle_delete_account,
    )
    registry.register(
        "account_list_access_keys",
        "List an account's access keys and their permissions.",
        _schema({"accountId": _string("Account to inspect")}, ["accountId"]),
        _handle_list_access_keys,
    )
    registry.register(
        "account_add_access_key",
        "Add a full-access or function-call access key to an account.",
        _schema(
            {
                "accountId": _string("Account to add the key to"),
                "publicKey": _string("Public key, e.g. ed25519:..."),
                "permission": {
                    "type": "string",
                    "enum": ["full_access", "function_call"],
                    "default": "full_access",
                },
                "contractId": _string("Contract a function-call key may call"),
                "methodNames": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Allowed methods; empty allows all",
                },
                "allowance": {
                    "type": ["number", "string"],
                    "description": "Gas allowance in NEAR; omit for unlimited",
                },
            },
            ["accountId", "publicKey"],
        ),
        _handle_add_access_key,
    )
    registry.register(
        "account_delete_access_keys",
        "Delete access keys from an account. The locally stored key cannot be deleted.",
        _schema(
            {
                "accountId": _string("Account to remove keys from"),
                "publicKeys": {"type": "array", "items": {"type": "string"}},
            },
            ["accountId", "publicKeys"],
        ),
        _handle_delete_access_keys,
    )
    registry.register(
        "account_sign_data",
        "Sign sha256 of the given text with the account's local key.",
        _schema(
            {"accountId": _string("Signing account"), "data": _string("Text to sign")},
            ["accountId", "data"],
        ),
        _handle_sign_data,
    )
    registry.register(
        "account_verify_signature",
        "Verify a signature made by account_sign_data against a public key or an account's keys.",
        _schema(
            {
                "data": _string("Signed text"),
                "signature": _string("Signature, e.g. ed25519:..."),
                "accountId": _string("Account whose access keys are checked"),
                "publicKey": _string("Public key to check instead of an account"),
            },
            ["data", "signature"],
        ),
        _handle_verify_signature,
    )

    # Tokens
    registry.register(
        "tokens_send_near",
        "Send NEAR from a local account to another account.",
        _schema(
            {
                "signerAccountId": _string("Sending account"),
                "receiverAccountId": _string("Receiving account"),
                "amount": AMOUNT_PROPERTY,
            },
            ["signerAccountId", "receiverAccountId", "amount"],
        ),
        _handle_send_near,
    )
    registry.register(
        "tokens_send_ft",
        (
            "Send a NEP-141 fungible token. The amount is in the token's display "
            "units; the receiver is storage-registered if needed."
        ),
        _schema(
            {
                "signerAccountId": _string("Sending account"),
                "receiverAccountId": _string("Receiving account"),
                "fungibleTokenContractAccountId": _string("Token contract"),
                "amount": AMOUNT_PROPERTY,
            },
            ["signerAccountId", "receiverAccountId", "fungibleTokenContractAccountId", "amount"],
        ),
        _handle_send_ft,
    )
    registry.register(
        "tokens_get_ft_metadata",
        "Fetch a fungible token's metadata (name, symbol, decimals) from its contract.",
        _schema(
            {
                "fungibleTokenContractAccountId": _string("Token contract"),
                "includeIcon": {"type": "boolean", "default": False},
            },
            ["fungibleTokenContractAccountId"],
        ),
        _handle_get_ft_metadata,
    )

    # Contracts
    registry.register(
        "contract_view_functions",
        "List the functions exported by a deployed contract.",
        _schema({"contractAccountId": _string("Contract account")}, ["contractAccountId"]),
        _handle_view_functions,
    )
    registry.register(
        "contract_call_raw_function_as_read_only",
        "Call a contract view method with JSON arguments.",
        _schema(
            {
                "contractAccountId": _string("Contract account"),
                "methodName": _string("View method"),
                "args": {"type": "object", "description": "JSON arguments"},
            },
            ["contractAccountId", "methodName"],
        ),
        _handle_call_read_only,
    )
    registry.register(
        "contract_call_raw_function",
        "Call a contract change method from a local account.",
        _schema(
            {
                "accountId": _string("Signing account"),
                "contractAccountId": _string("Contract account"),
                "methodName": _string("Change method"),
                "args": {"type": "object", "description": "JSON arguments"},
                "gas": {
                    "type": ["integer", "string"],
                    "description": "Gas units; default 30 TGas, max 300 TGas",
                },
                "attachedDeposit": {
                    "type": ["number", "string"],
                    "description": "Deposit in NEAR",
                },
            },
            ["accountId", "contractAccountId", "methodName"],
        ),
        _handle_call_function,
    )

    # Ref Finance
    registry.register(
        "ref_finance_get_pools",
        "Ref Finance simple pools holding both tokens, deepest first.",
        _schema(
            {"tokenA": _string("First token contract"), "tokenB": _string("Second token contract")},
            ["tokenA", "tokenB"],
        ),
        _handle_ref_get_pools,
    )
    registry.register(
        "ref_finance_get_swap_estimate",
        "Estimate a Ref Finance swap through the pool giving the best output.",
        _schema(
            {
                "tokenIn": _string("Token to sell"),
                "tokenOut": _string("Token to buy"),
                "amount": AMOUNT_PROPERTY,
            },
            ["tokenIn", "tokenOut", "amount"],
        ),
        _handle_ref_get_swap_estimate,
    )
    registry.register(
        "ref_finance_execute_swap",
        "Swap tokens on Ref Finance from a local account with a slippage limit.",
        _schema(
            {
                "accountId": _string("Signing account"),
                "tokenIn": _string("Token to sell"),
                "tokenOut": _string("Token to buy"),
                "amount": AMOUNT_PROPERTY,
                "slippageBps": {"type": "integer", "default": DEFAULT_SLIPPAGE_BPS},
            },
            ["accountId", "tokenIn", "tokenOut", "amount"],
        ),
        _handle_ref_execute_swap,
    )

    return registry


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


def create_mcp_server(
    cfg: NearConfig,
    keystore: FileSystemKeyStore,
    registry: ToolRegistry | None = None,
) -> Server:
    registry = registry or build_tool_registry()
    ctx = ToolContext(cfg, keystore)
    server = Server(MCP_SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> List[Tool]:
        return registry.list_tools()

    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: Any) -> List[TextContent]:
        return await registry.call_tool(ctx, name, arguments)

    return server


async def run_stdio(server: Server) -> None:
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def build_sse_app(server: Server) -> Starlette:
    """Starlette app serving the MCP SSE transport on /sse and /messages/."""
    sse = SseServerTransport("/messages/")

    async def handle_sse(request: Request) -> Response:
        async with sse.connect_sse(request.scope, request.receive, request._send) as streams:
            await server.run(streams[0], streams[1], server.create_initialization_options())
        return Response()

    return Starlette(
        routes=[
            Route("/sse", endpoint=handle_sse),
            Mount("/messages/", app=sse.handle_post_message),
        ],
    )


def run_sse(server: Server, host: str, port: int) -> None:
    import uvicorn

    logger.info("Serving MCP over SSE on http://%s:%d/sse", host, port)
    uvicorn.run(build_sse_app(server), host=host, port=port, log_level="warning")
