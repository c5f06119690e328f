"""
NEAR transaction building, signing and submission.

Transactions are Borsh-encoded by hand:

    Transaction = signer_id: string, public_key: PublicKey, nonce: u64,
                  receiver_id: string, block_hash: [u8; 32], actions: Vec<Action>
    SignedTransaction = Transaction, Signature

Integers are little-endian, strings and vectors carry a u32 length prefix,
enums a u8 tag. The signature covers sha256(Transaction).
"""

from __future__ import annotations

import base64
import json
import logging
import struct
from typing import Any, Iterable

from near_keys import KeyPair, PublicKey, b58encode, sha256
from near_rpc import (
    NearConfig,
    latest_block_hash,
    send_transaction,
    view_access_key,
)
from near_utils import (
    ErrorKind,
    Err,
    Ok,
    Result,
    authorization_mismatch,
    external_failure,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ACTION_CREATE_ACCOUNT = 0
ACTION_FUNCTION_CALL = 2
ACTION_TRANSFER = 3
ACTION_ADD_KEY = 5
ACTION_DELETE_KEY = 6
ACTION_DELETE_ACCOUNT = 7

PERMISSION_FUNCTION_CALL = 0
PERMISSION_FULL_ACCESS = 1

MAX_U64 = 2**64 - 1
MAX_U128 = 2**128 - 1


# ---------------------------------------------------------------------------
# Borsh primitives
# ---------------------------------------------------------------------------


def _u8(value: int) -> bytes:
    return struct.pack("<B", value)


def _u32(value: int) -> bytes:
    return struct.pack("<I", value)


def _u64(value: int) -> bytes:
    if not 0 <= value <= MAX_U64:
        raise ValueError(f"Value out of u64 range: {value}")
    return struct.pack("<Q", value)


def _u128(value: int) -> bytes:
    if not 0 <= value <= MAX_U128:
        raise ValueError(f"Value out of u128 range: {value}")
    return value.to_bytes(16, "little")


def _string(value: str) -> bytes:
    encoded = value.encode("utf-8")
    return _u32(len(encoded)) + encoded


def _byte_vec(value: bytes) -> bytes:
    return _u32(len(value)) + value


def _vec(items: Iterable[bytes]) -> bytes:
    items = list(items)
    return _u32(len(items)) + b"".join(items)


def _public_key(public_key: PublicKey) -> bytes:
    return _u8(public_key.key_type) + public_key.data


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


def create_account_action() -> bytes:
    return _u8(ACTION_CREATE_ACCOUNT)


def function_call_action(
    method_name: str,
    args: bytes | dict | list,
    gas: int,
    deposit: int,
) -> bytes:
    if not isinstance(args, (bytes, bytearray)):
        args = json.dumps(args).encode("utf-8")
    return (
        _u8(ACTION_FUNCTION_CALL)
        + _string(method_name)
        + _byte_vec(bytes(args))
        + _u64(gas)
        + _u128(deposit)
    )


def transfer_action(deposit: int) -> bytes:
    return _u8(ACTION_TRANSFER) + _u128(deposit)


def full_access_key_action(public_key: PublicKey) -> bytes:
    access_key = _u64(0) + _u8(PERMISSION_FULL_ACCESS)
    return _u8(ACTION_ADD_KEY) + _public_key(public_key) + access_key


def function_call_key_action(
    public_key: PublicKey,
    receiver_id: str,
    method_names: list[str],
    allowance: int | None,
) -> bytes:
    """Add a key limited to calling ``method_names`` (all if empty) on ``receiver_id``."""
    if allowance is None:
        allowance_bytes = _u8(0)
    else:
        allowance_bytes = _u8(1) + _u128(allowance)
    permission = (
        _u8(PERMISSION_FUNCTION_CALL)
        + allowance_bytes
        + _string(receiver_id)
        + _vec(_string(name) for name in method_names)
    )
    access_key = _u64(0) + permission
    return _u8(ACTION_ADD_KEY) + _public_key(public_key) + access_key


def delete_key_action(public_key: PublicKey) -> bytes:
    return _u8(ACTION_DELETE_KEY) + _public_key(public_key)


def delete_account_action(beneficiary_id: str) -> bytes:
    return _u8(ACTION_DELETE_ACCOUNT) + _string(beneficiary_id)


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def serialize_transaction(
    signer_id: str,
    public_key: PublicKey,
    nonce: int,
    receiver_id: str,
    block_hash: bytes,
    actions: list[bytes],
) -> bytes:
    if len(block_hash) != 32:
        raise ValueError(f"Block hash must be 32 bytes, got {len(block_hash)}")
    return (
        _string(signer_id)
        + _public_key(public_key)
        + _u64(nonce)
        + _string(receiver_id)
        + block_hash
        + _vec(actions)
    )


def sign_transaction(key_pair: KeyPair, tx_bytes: bytes) -> tuple[bytes, str]:
    """Return (signed transaction bytes, base58 transaction hash)."""
    tx_hash = sha256(tx_bytes)
    signature = key_pair.sign(tx_hash)
    signed = tx_bytes + _u8(key_pair.public_key.key_type) + signature
    return signed, b58encode(tx_hash)


def _decode_success_value(value: str) -> Any:
    if not value:
        return None
    raw = base64.b64decode(value)
    try:
        return json.loads(raw)
    except ValueError:
        return raw.decode("utf-8", errors="replace")


def summarize_outcome(outcome: dict[str, Any]) -> Result[dict]:
    """Reduce a final execution outcome to what a tool caller needs."""
    transaction = outcome.get("transaction") or {}
    tx_outcome = outcome.get("transaction_outcome") or {}
    receipts = outcome.get("receipts_outcome") or []
    tx_hash = transaction.get("hash") or tx_outcome.get("id", "")

    logs: list[str] = []
    gas_burnt = 0
    receipt_failures = []
    for item in [tx_outcome, *receipts]:
        inner = item.get("outcome") or {}
        logs.extend(inner.get("logs") or [])
        gas_burnt += int(inner.get("gas_burnt") or 0)
        inner_status = inner.get("status") or {}
        if isinstance(inner_status, dict) and "Failure" in inner_status:
            receipt_failures.append({"id": item.get("id"), "failure": inner_status["Failure"]})

    status = outcome.get("status") or {}
    if isinstance(status, dict) and "Failure" in status:
        return external_failure(
            f"Transaction {tx_hash} failed: {json.dumps(status['Failure'])}"
        )

    summary: dict[str, Any] = {
        "transaction_hash": tx_hash,
        "signer_id": transaction.get("signer_id"),
        "receiver_id": transaction.get("receiver_id"),
        "status": "success",
        "gas_burnt": gas_burnt,
        "logs": logs,
    }
    if isinstance(status, dict) and "SuccessValue" in status:
        summary["return_value"] = _decode_success_value(status["SuccessValue"])
    if receipt_failures:
        summary["receipt_failures"] = receipt_failures
    return Ok(summary)


def sign_and_send(
    cfg: NearConfig,
    network: str,
    signer_id: str,
    key_pair: KeyPair,
    receiver_id: str,
    actions: list[bytes],
) -> Result[dict]:
    """Sign ``actions`` from ``signer_id`` to ``receiver_id`` and wait for the outcome."""
    public_key = str(key_pair.public_key)
    access_key = view_access_key(cfg, network, signer_id, public_key)
    if not access_key.ok:
        if access_key.error.kind == ErrorKind.NOT_FOUND:
            return authorization_mismatch(
                f"Key {public_key} is not an access key of {signer_id} on {network}: "
                f"{access_key.error.message}"
            )
        return access_key

    block_hash = latest_block_hash(cfg, network)
    if not block_hash.ok:
        return block_hash

    nonce = int(access_key.value.get("nonce", 0)) + 1
    tx_bytes = serialize_transaction(
        signer_id, key_pair.public_key, nonce, receiver_id, block_hash.value, actions
    )
    signed, tx_hash = sign_transaction(key_pair, tx_bytes)
    logger.info(
        "Submitting transaction %s: %s -> %s (%d actions, %s)",
        tx_hash, signer_id, receiver_id, len(actions), network,
    )

    outcome = send_transaction(cfg, network, signed)
    if not outcome.ok:
        return Err(outcome.error.with_context(f"Transaction {tx_hash} was not executed."))
    return summarize_outcome(outcome.value)
