"""
NEAR JSON-RPC client.

Implements:
- NearConfig, built from environment variables / .env
- A requests session with bounded, jittered retries for transient failures
- JSON-RPC calls mapped onto Ok / Err results with classified error kinds
- Query helpers: accounts, access keys, contract code, view calls, blocks
- Signed transaction submission (send_tx)
"""

from __future__ import annotations

import base64
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from near_keys import KeyFormatError, b58decode
from near_utils import (
    ErrorKind,
    Err,
    Ok,
    Result,
    external_failure,
    invalid_input,
    not_found,
)

logger = logging.getLogger(__name__)

NearNetwork = Literal["mainnet", "testnet"]
NETWORKS: tuple[str, ...] = ("mainnet", "testnet")
DEFAULT_NETWORK: NearNetwork = "mainnet"

DEFAULT_RPC_URLS = {
    "mainnet": "https://rpc.mainnet.near.org",
    "testnet": "https://rpc.testnet.near.org",
}

DEFAULT_KEY_DIR = Path.home() / ".near-keystore"

RETRY_STATUS_CODES = (429, 502, 503, 504)
# a gateway error on send_tx may hide a transaction that already landed
SUBMIT_RETRY_STATUS_CODES = (429,)

# RPC error cause names, grouped by how they are reported to the caller
NOT_FOUND_CAUSES = {
    "UNKNOWN_ACCOUNT",
    "UNKNOWN_ACCESS_KEY",
    "NO_CONTRACT_CODE",
    "UNKNOWN_BLOCK",
    "UNKNOWN_CHUNK",
    "UNKNOWN_TRANSACTION",
    "UNKNOWN_RECEIPT",
}
INVALID_INPUT_CAUSES = {
    "INVALID_ACCOUNT",
    "PARSE_ERROR",
    "INVALID_TRANSACTION",
    "REQUEST_VALIDATION_ERROR",
}

# Markers in view-call error strings (returned inside a successful RPC result)
VIEW_NOT_FOUND_MARKERS = ("MethodNotFound", "CodeDoesNotExist", "does not exist")


class NearConfigError(Exception):
    """Invalid configuration for the NEAR MCP server."""

    pass


@dataclass
class NearConfig:
    """
    Configuration for the NEAR MCP server.

    Values are sourced from environment variables or a .env file:
    - NEAR_KEYSTORE: keystore directory (default ~/.near-keystore).
    - NEAR_RPC_URL_MAINNET / NEAR_RPC_URL_TESTNET: JSON-RPC endpoints.
    - NEAR_RPC_TIMEOUT: per-request timeout in seconds (default 10).
    - NEAR_RPC_MAX_RETRIES: retries for transient network failures (default 3).
    - NEAR_RPC_BACKOFF: exponential backoff factor in seconds (default 0.5).
    - NEAR_MCP_LOG_LEVEL: logging level (default INFO).
    """

    key_dir: Path = DEFAULT_KEY_DIR
    rpc_urls: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_RPC_URLS))
    timeout: float = 10.0
    max_retries: int = 3
    backoff_factor: float = 0.5
    log_level: str = "INFO"
    _sessions: dict[bool, requests.Session] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    @classmethod
    def from_env(cls, key_dir: str | Path | None = None) -> NearConfig:
        """Build NearConfig from environment variables. ``key_dir`` wins over NEAR_KEYSTORE."""
        if key_dir is None:
            key_dir = os.getenv("NEAR_KEYSTORE") or DEFAULT_KEY_DIR

        rpc_urls = {
            "mainnet": os.getenv("NEAR_RPC_URL_MAINNET", DEFAULT_RPC_URLS["mainnet"]),
            "testnet": os.getenv("NEAR_RPC_URL_TESTNET", DEFAULT_RPC_URLS["testnet"]),
        }

        timeout = _env_number("NEAR_RPC_TIMEOUT", "10", float)
        if timeout <= 0:
            raise NearConfigError("NEAR_RPC_TIMEOUT must be greater than zero.")
        max_retries = _env_number("NEAR_RPC_MAX_RETRIES", "3", int)
        if max_retries < 0:
            raise NearConfigError("NEAR_RPC_MAX_RETRIES cannot be negative.")
        backoff_factor = _env_number("NEAR_RPC_BACKOFF", "0.5", float)
        if backoff_factor < 0:
            raise NearConfigError("NEAR_RPC_BACKOFF cannot be negative.")

        return cls(
            key_dir=Path(key_dir).expanduser(),
            rpc_urls=rpc_urls,
            timeout=timeout,
            max_retries=max_retries,
            backoff_factor=backoff_factor,
            log_level=os.getenv("NEAR_MCP_LOG_LEVEL", "INFO").upper(),
        )

    def rpc_url(self, network: str) -> str:
        return self.rpc_urls[network]

    def session(self, submit: bool = False) -> requests.Session:
        """
        Shared HTTP session with retries.

        Submission sessions never retry after the request was sent (read
        errors or gateway statuses), only on connection failures and 429.
        """
        if submit not in self._sessions:
            self._sessions[submit] = _build_session(self, submit)
        return self._sessions[submit]


def _env_number(name: str, default: str, kind: type) -> Any:
    raw = os.getenv(name, default).strip()
    try:
        return kind(raw)
    except ValueError as exc:
        raise NearConfigError(f"{name} must be a number, got {raw!r}.") from exc


def _build_session(cfg: NearConfig, submit: bool) -> requests.Session:
    retries = Retry(
        total=cfg.max_retries,
        connect=cfg.max_retries,
        read=0 if submit else cfg.max_retries,
        status=cfg.max_retries,
        backoff_factor=cfg.backoff_factor,
        backoff_jitter=cfg.backoff_factor / 2,
        status_forcelist=SUBMIT_RETRY_STATUS_CODES if submit else RETRY_STATUS_CODES,
        allowed_methods=None,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retries)
    session = requests.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def validate_network(value: Any) -> Result[str]:
    if value is None or value == "":
        return Ok(DEFAULT_NETWORK)
    if value not in NETWORKS:
        return invalid_input(f"Invalid networkId {value!r}. Use one of: {', '.join(NETWORKS)}.")
    return Ok(value)


# ---------------------------------------------------------------------------
# JSON-RPC
# ---------------------------------------------------------------------------


def _classify_rpc_error(error: Any) -> Err:
    if not isinstance(error, dict):
        return external_failure(f"NEAR RPC error: {error}")
    cause = error.get("cause") or {}
    cause_name = cause.get("name") if isinstance(cause, dict) else None
    data = error.get("data")
    detail = data if isinstance(data, str) else json.dumps(data) if data else ""
    if not detail and isinstance(cause, dict) and cause.get("info"):
        detail = json.dumps(cause["info"])
    message = f"{cause_name or error.get('name') or 'RPC_ERROR'}: {detail or error.get('message', '')}"

    if cause_name in NOT_FOUND_CAUSES:
        return not_found(message)
    if cause_name in INVALID_INPUT_CAUSES:
        return invalid_input(message)
    return external_failure(message)


def rpc_call(
    cfg: NearConfig,
    network: str,
    method: str,
    params: Any,
    submit: bool = False,
) -> Result[Any]:
    """POST a JSON-RPC request and return its ``result``."""
    if network not in cfg.rpc_urls:
        return invalid_input(f"Unknown network: {network}")
    payload = {"jsonrpc": "2.0", "id": "near-mcp", "method": method, "params": params}
    logger.debug("RPC %s on %s", method, network)
    try:
        resp = cfg.session(submit).post(cfg.rpc_url(network), json=payload, timeout=cfg.timeout)
        resp.raise_for_status()
        body = resp.json()
    except requests.exceptions.Timeout:
        return external_failure(f"NEAR RPC {method} timed out after {cfg.timeout}s ({network})")
    except requests.exceptions.RequestException as exc:
        return external_failure(f"NEAR RPC {method} failed ({network}): {exc}")
    except ValueError as exc:
        return external_failure(f"NEAR RPC {method} returned invalid JSON: {exc}")

    if not isinstance(body, dict):
        return external_failure(f"NEAR RPC {method} returned an unexpected response")
    if body.get("error") is not None:
        return _classify_rpc_error(body["error"])
    return Ok(body.get("result"))


def _query(cfg: NearConfig, network: str, request_type: str, **params: Any) -> Result[dict]:
    res = rpc_call(
        cfg,
        network,
        "query",
        {"request_type": request_type, "finality": "final", **params},
    )
    if not res.ok:
        return res
    result = res.value
    if not isinstance(result, dict):
        return external_failure(f"Unexpected {request_type} response from NEAR RPC")
    if result.get("error"):
        message = str(result["error"])
        if any(marker in message for marker in VIEW_NOT_FOUND_MARKERS):
            return not_found(message)
        return external_failure(message)
    return res


def view_account(cfg: NearConfig, network: str, account_id: str) -> Result[dict]:
    return _query(cfg, network, "view_account", account_id=account_id)


def view_access_key(
    cfg: NearConfig, network: str, account_id: str, public_key: str
) -> Result[dict]:
    return _query(
        cfg, network, "view_access_key", account_id=account_id, public_key=public_key
    )


def view_access_key_list(cfg: NearConfig, network: str, account_id: str) -> Result[list]:
    res = _query(cfg, network, "view_access_key_list", account_id=account_id)
    if not res.ok:
        return res
    return Ok(res.value.get("keys", []))


def view_code(cfg: NearConfig, network: str, account_id: str) -> Result[bytes]:
    res = _query(cfg, network, "view_code", account_id=account_id)
    if not res.ok:
        return res
    try:
        return Ok(base64.b64decode(res.value.get("code_base64", "")))
    except ValueError as exc:
        return external_failure(f"Contract code for {account_id} is not valid base64: {exc}")


def decode_return_bytes(raw: bytes) -> Any:
    """Contract return values are usually JSON; fall back to text, then hex."""
    if not raw:
        return None
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.hex()
    try:
        return json.loads(text)
    except ValueError:
        return text


def call_view_function(
    cfg: NearConfig,
    network: str,
    contract_id: str,
    method_name: str,
    args: dict | list | None = None,
) -> Result[Any]:
    """Run a read-only contract method with JSON arguments."""
    args_bytes = json.dumps(args if args is not None else {}).encode("utf-8")
    res = _query(
        cfg,
        network,
        "call_function",
        account_id=contract_id,
        method_name=method_name,
        args_base64=base64.b64encode(args_bytes).decode("ascii"),
    )
    if not res.ok:
        if res.error.kind == ErrorKind.NOT_FOUND:
            return Err(res.error.with_context(f"{contract_id}.{method_name} is not available on {network}."))
        return res
    return Ok(decode_return_bytes(bytes(res.value.get("result", []))))


def latest_block_hash(cfg: NearConfig, network: str) -> Result[bytes]:
    res = rpc_call(cfg, network, "block", {"finality": "final"})
    if not res.ok:
        return res
    try:
        return Ok(b58decode(res.value["header"]["hash"]))
    except (KeyError, TypeError, KeyFormatError) as exc:
        return external_failure(f"Unexpected block response from NEAR RPC: {exc}")


def send_transaction(cfg: NearConfig, network: str, signed_tx: bytes) -> Result[dict]:
    """Submit a signed transaction and wait for final execution."""
    return rpc_call(
        cfg,
        network,
        "send_tx",
        {
            "signed_tx_base64": base64.b64encode(signed_tx).decode("ascii"),
            "wait_until": "FINAL",
        },
        submit=True,
    )

