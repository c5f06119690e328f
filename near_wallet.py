"""
NEAR account, key, token and contract operations.

Every public function returns an Ok / Err result. Functions that sign
transactions take the local keystore and look up the signer's key there.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import string
from typing import Any

from near_keys import (
    CURVE_ED25519,
    KeyFormatError,
    KeyPair,
    PublicKey,
    UnsupportedCurveError,
    b58encode,
    parse_signature,
    sha256,
)
from near_keystore import FileSystemKeyStore
from near_rpc import (
    NearConfig,
    call_view_function,
    view_access_key,
    view_access_key_list,
    view_account,
    view_code,
)
from near_token_metadata import get_ft_balance, get_ft_metadata
from near_transactions import (
    create_account_action,
    delete_account_action,
    delete_key_action,
    full_access_key_action,
    function_call_action,
    function_call_key_action,
    sign_and_send,
    transfer_action,
)
from near_utils import (
    DEFAULT_FUNCTION_CALL_GAS,
    DEFAULT_GAS,
    ONE_YOCTO,
    TGAS,
    ErrorKind,
    Err,
    NearToken,
    Ok,
    Result,
    TokenAmount,
    authorization_mismatch,
    external_failure,
    invalid_input,
    not_found,
    unsupported,
)
from near_wasm import WasmFormatError, list_exported_functions

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# yoctoNEAR locked per byte of account storage
STORAGE_PRICE_PER_BYTE = 10**19

TOP_LEVEL_SUFFIX = {"mainnet": ".near", "testnet": ".testnet"}
REGISTRAR_ACCOUNT = {"mainnet": "near", "testnet": "testnet"}

DEFAULT_INITIAL_BALANCE = "0.1"
MAX_GAS = 300 * TGAS

# NEP-145 registration fallback when storage_balance_bounds is unavailable
DEFAULT_FT_STORAGE_DEPOSIT = 1_250_000_000_000_000_000_000

ACCOUNT_ID_PATTERN = re.compile(r"^(([a-z\d]+[-_])*[a-z\d]+\.)*([a-z\d]+[-_])*[a-z\d]+$")
IMPLICIT_ACCOUNT_PATTERN = re.compile(r"^[0-9a-f]{64}$")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def is_valid_account_id(account_id: str) -> bool:
    return (
        isinstance(account_id, str)
        and 2 <= len(account_id) <= 64
        and ACCOUNT_ID_PATTERN.match(account_id) is not None
    )


def _check_account_id(account_id: str, field_name: str = "account id") -> Result[str]:
    if not is_valid_account_id(account_id):
        return invalid_input(f"Invalid {field_name}: {account_id!r}")
    return Ok(account_id)


def _key_error(exc: ValueError) -> Err:
    if isinstance(exc, UnsupportedCurveError):
        return unsupported(str(exc))
    return invalid_input(str(exc))


def parse_public_key(text: str) -> Result[PublicKey]:
    try:
        return Ok(PublicKey.from_string(text))
    except (KeyFormatError, UnsupportedCurveError) as exc:
        return _key_error(exc)


def parse_near_amount(value: Any, field_name: str = "amount", allow_zero: bool = False) -> Result[NearToken]:
    try:
        amount = NearToken.from_decimal(value)
    except ValueError as exc:
        return invalid_input(f"Invalid {field_name}: {exc}")
    if not allow_zero and amount.to_minor_units() == 0:
        return invalid_input(f"Invalid {field_name}. Must be greater than zero.")
    return Ok(amount)


def load_key(keystore: FileSystemKeyStore, network: str, account_id: str) -> Result[KeyPair]:
    try:
        key_pair = keystore.get_key(network, account_id)
    except (OSError, ValueError, KeyError) as exc:
        return invalid_input(f"Keystore entry for {account_id} on {network} is unreadable: {exc}")
    if key_pair is None:
        return not_found(
            f"Account {account_id} was not found in the local keystore for {network}. "
            "Import it first with system_import_account."
        )
    return Ok(key_pair)


def format_access_key(entry: dict[str, Any]) -> dict[str, Any]:
    access_key = entry.get("access_key") or {}
    permission = access_key.get("permission")
    formatted: dict[str, Any] = {
        "publicKey": entry.get("public_key"),
        "nonce": access_key.get("nonce"),
    }
    if permission == "FullAccess":
        formatted["permission"] = "full_access"
    elif isinstance(permission, dict) and "FunctionCall" in permission:
        call = permission["FunctionCall"]
        allowance = call.get("allowance")
        formatted["permission"] = "function_call"
        formatted["receiverId"] = call.get("receiver_id")
        formatted["methodNames"] = call.get("method_names") or []
        formatted["allowance"] = (
            NearToken.from_minor_units(allowance).to_decimal_string() if allowance else None
        )
    else:
        formatted["permission"] = permission
    return formatted


def compute_balance(state: dict[str, Any]) -> dict[str, str]:
    """Total / available / staked balance in NEAR from a view_account result."""
    amount = int(state.get("amount", 0))
    locked = int(state.get("locked", 0))
    state_staked = int(state.get("storage_usage", 0)) * STORAGE_PRICE_PER_BYTE
    total = amount + locked
    available = max(0, amount - max(0, state_staked - locked))
    return {
        "total": NearToken(total).to_decimal_string(),
        "available": NearToken(available).to_decimal_string(),
        "staked": NearToken(locked).to_decimal_string(),
        "stateStaked": NearToken(state_staked).to_decimal_string(),
    }


def _parse_args(args: Any) -> Result[Any]:
    if args is None or args == "":
        return Ok({})
    if isinstance(args, str):
        try:
            args = json.loads(args)
        except ValueError as exc:
            return invalid_input(f"Function args must be a JSON object: {exc}")
    if not isinstance(args, (dict, list)):
        return invalid_input("Function args must be a JSON object or array.")
    return Ok(args)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


def get_account_summary(cfg: NearConfig, network: str, account_id: str) -> Result[dict]:
    """Balance, state and access keys of any account."""
    state = view_account(cfg, network, account_id)
    if not state.ok:
        return state
    keys = view_access_key_list(cfg, network, account_id)
    if not keys.ok:
        return keys

    code_hash = state.value.get("code_hash")
    return Ok(
        {
            "accountId": account_id,
            "network": network,
            "balance": compute_balance(state.value),
            "state": {
                "blockHeight": state.value.get("block_height"),
                "codeHash": code_hash,
                "hasContract": bool(code_hash) and code_hash != "11111111111111111111111111111111",
                "storageUsage": state.value.get("storage_usage"),
            },
            "accessKeys": [format_access_key(entry) for entry in keys.value],
        }
    )


def import_account(
    cfg: NearConfig,
    keystore: FileSystemKeyStore,
    network: str,
    account_id: str,
    private_key: str | None = None,
    seed_phrase: str | None = None,
) -> Result[dict]:
    """
    Store a key for ``account_id`` after checking it is one of the
    account's on-chain access keys.
    """
    if bool(private_key) == bool(seed_phrase):
        return invalid_input("Provide exactly one of privateKey or seedPhrase.")
    try:
        if private_key:
            key_pair = KeyPair.from_string(private_key)
        else:
            key_pair = KeyPair.from_seed_phrase(seed_phrase)
    except (KeyFormatError, UnsupportedCurveError) as exc:
        return Err(_key_error(exc).error.with_context(f"Failed to import account {account_id}"))

    state = view_account(cfg, network, account_id)
    if not state.ok:
        return state

    public_key = str(key_pair.public_key)
    access_key = view_access_key(cfg, network, account_id, public_key)
    if not access_key.ok:
        if access_key.error.kind == ErrorKind.NOT_FOUND:
            return authorization_mismatch(
                f"The key {public_key} is not an access key of {account_id} on {network}. "
                "Check the account id and network."
            )
        return access_key

    try:
        keystore.set_key(network, account_id, key_pair)
    except OSError as exc:
        return external_failure(f"Failed to write the keystore: {exc}")

    return Ok(
        {
            "accountId": account_id,
            "network": network,
            "publicKey": public_key,
            "permission": format_access_key(
                {"public_key": public_key, "access_key": access_key.value}
            )["permission"],
        }
    )


def list_local_accounts(keystore: FileSystemKeyStore, network: str) -> Result[list]:
    accounts = []
    for account_id in keystore.get_accounts(network):
        key = load_key(keystore, network, account_id)
        if key.ok:
            accounts.append({"accountId": account_id, "publicKey": str(key.value.public_key)})
        else:
            accounts.append({"accountId": account_id, "error": key.error.message})
    return Ok(accounts)


def remove_local_account(keystore: FileSystemKeyStore, network: str, account_id: str) -> Result[dict]:
    try:
        removed = keystore.remove_key(network, account_id)
    except (OSError, ValueError) as exc:
        return external_failure(f"Failed to remove {account_id} from the keystore: {exc}")
    if not removed:
        return not_found(f"Account {account_id} is not in the local keystore for {network}.")
    return Ok({"accountId": account_id, "network": network, "removed": True})


def generate_key_pair(curve: str = CURVE_ED25519) -> Result[dict]:
    """A fresh key pair. Nothing is stored."""
    try:
        key_pair = KeyPair.from_random(curve)
    except UnsupportedCurveError as exc:
        return unsupported(str(exc))
    result = {
        "curve": key_pair.curve,
        "publicKey": str(key_pair.public_key),
        "privateKey": key_pair.to_string(),
    }
    if key_pair.curve == CURVE_ED25519:
        result["implicitAccountId"] = key_pair.public_key.implicit_account_id()
    return Ok(result)


def _random_account_id(network: str) -> str:
    alphabet = string.ascii_lowercase + string.digits
    name = "".join(secrets.choice(alphabet) for _ in range(8))
    return name + TOP_LEVEL_SUFFIX[network]


def _creation_plan(
    network: str,
    signer_id: str,
    new_account_id: str,
    public_key: PublicKey,
    initial_balance: int,
) -> Result[tuple[str, list[bytes]]]:
    """(receiver, actions) that create ``new_account_id`` funded by ``signer_id``."""
    if IMPLICIT_ACCOUNT_PATTERN.match(new_account_id):
        # implicit accounts exist once funded; their key is the one the id was derived from
        return Ok((new_account_id, [transfer_action(initial_balance)]))
    if new_account_id.endswith(f".{signer_id}"):
        return Ok(
            (
                new_account_id,
                [
                    create_account_action(),
                    transfer_action(initial_balance),
                    full_access_key_action(public_key),
                ],
            )
        )

    suffix = TOP_LEVEL_SUFFIX[network]
    name = new_account_id[: -len(suffix)] if new_account_id.endswith(suffix) else ""
    if not name or "." in name:
        return invalid_input(
            f"{new_account_id} must be a sub-account of {signer_id} or a top-level "
            f"account ending in {suffix} on {network}."
        )
    args = {"new_account_id": new_account_id, "new_public_key": str(public_key)}
    return Ok(
        (
            REGISTRAR_ACCOUNT[network],
            [function_call_action("create_account", args, DEFAULT_GAS, initial_balance)],
        )
    )


def _discard_key(keystore: FileSystemKeyStore, network: str, account_id: str, failure: Err) -> Err:
    """Drop the key stored for an account that was not created and return ``failure``."""
    try:
        keystore.remove_key(network, account_id)
    except OSError as exc:
        return external_failure(
            f"{failure.error.message}\n\nThe unused key for {account_id} could not be removed "
            f"from the keystore: {exc}"
        )
    return failure


def create_account(
    cfg: NearConfig,
    keystore: FileSystemKeyStore,
    network: str,
    signer_id: str,
    new_account_id: str | None = None,
    initial_balance: Any = DEFAULT_INITIAL_BALANCE,
) -> Result[dict]:
    """
    Create and fund a new account with a fresh ed25519 key.

    The key is stored before submission and removed again if the
    transaction fails.
    """
    signer_key = load_key(keystore, network, signer_id)
    if not signer_key.ok:
        return signer_key

    new_account_id = new_account_id or _random_account_id(network)
    checked = _check_account_id(new_account_id, "new account id")
    if not checked.ok:
        return checked
    balance = parse_near_amount(initial_balance, "initialBalance")
    if not balance.ok:
        return balance

    if new_account_id in keystore.get_accounts(network):
        return invalid_input(f"{new_account_id} already has a key in the local keystore.")
    existing = view_account(cfg, network, new_account_id)
    if existing.ok:
        return invalid_input(f"Account {new_account_id} already exists on {network}.")
    if existing.error.kind != ErrorKind.NOT_FOUND:
        return existing

    implicit = IMPLICIT_ACCOUNT_PATTERN.match(new_account_id) is not None
    key_pair = KeyPair.from_random(CURVE_ED25519)
    plan = _creation_plan(
        network, signer_id, new_account_id, key_pair.public_key, balance.value.to_minor_units()
    )
    if not plan.ok:
        return plan
    receiver_id, actions = plan.value

    if not implicit:
        try:
            keystore.set_key(network, new_account_id, key_pair)
        except OSError as exc:
            return external_failure(f"Failed to write the keystore: {exc}")
    outcome = sign_and_send(cfg, network, signer_id, signer_key.value, receiver_id, actions)
    if not outcome.ok:
        failure = Err(outcome.error.with_context(f"Failed to create account {new_account_id}"))
        if implicit:
            return failure
        return _discard_key(keystore, network, new_account_id, failure)
    if outcome.value.get("return_value") is False:
        # registrar reports failure through its return value and refunds the deposit
        refused = external_failure(f"The {receiver_id} registrar refused to create {new_account_id}.")
        return _discard_key(keystore, network, new_account_id, refused)

    return Ok(
        {
            "accountId": new_account_id,
            "network": network,
            "publicKey": None if implicit else str(key_pair.public_key),
            "initialBalance": balance.value.to_decimal_string(),
            "transaction": outcome.value,
        }
    )


def delete_account(
    cfg: NearConfig,
    keystore: FileSystemKeyStore,
    network: str,
    account_id: str,
    beneficiary_id: str,
) -> Result[dict]:
    """Delete ``account_id``, sending its balance to ``beneficiary_id``."""
    if account_id == beneficiary_id:
        return invalid_input("The beneficiary must be a different account.")
    key = load_key(keystore, network, account_id)
    if not key.ok:
        return key
    # tokens sent to a missing beneficiary are burnt
    beneficiary = view_account(cfg, network, beneficiary_id)
    if not beneficiary.ok:
        return Err(beneficiary.error.with_context(f"Beneficiary {beneficiary_id} must exist on {network}."))

    outcome = sign_and_send(
        cfg, network, account_id, key.value, account_id, [delete_account_action(beneficiary_id)]
    )
    if not outcome.ok:
        return outcome
    keystore.remove_key(network, account_id)
    return Ok(
        {
            "accountId": account_id,
            "beneficiaryId": beneficiary_id,
            "network": network,
            "transaction": outcome.value,
        }
    )


# ---------------------------------------------------------------------------
# Access keys
# ---------------------------------------------------------------------------


def list_access_keys(cfg: NearConfig, network: str, account_id: str) -> Result[dict]:
    keys = view_access_key_list(cfg, network, account_id)
    if not keys.ok:
        return keys
    return Ok(
        {
            "accountId": account_id,
            "network": network,
            "accessKeys": [format_access_key(entry) for entry in keys.value],
        }
    )


def add_access_key(
    cfg: NearConfig,
    keystore: FileSystemKeyStore,
    network: str,
    account_id: str,
    public_key: str,
    permission: str = "full_access",
    receiver_id: str | None = None,
    method_names: list[str] | None = None,
    allowance: Any = None,
) -> Result[dict]:
    """Attach a full-access or function-call key to ``account_id``."""
    parsed = parse_public_key(public_key)
    if not parsed.ok:
        return parsed

    if permission == "full_access":
        action = full_access_key_action(parsed.value)
    elif permission == "function_call":
        if not receiver_id:
            return invalid_input("Function-call keys require a receiverId.")
        allowance_yocto = None
        if allowance not in (None, ""):
            amount = parse_near_amount(allowance, "allowance")
            if not amount.ok:
                return amount
            allowance_yocto = amount.value.to_minor_units()
        action = function_call_key_action(
            parsed.value, receiver_id, list(method_names or []), allowance_yocto
        )
    else:
        return unsupported(f"Unknown permission type: {permission}")

    key = load_key(keystore, network, account_id)
    if not key.ok:
        return key
    outcome = sign_and_send(cfg, network, account_id, key.value, account_id, [action])
    if not outcome.ok:
        return outcome
    return Ok(
        {
            "accountId": account_id,
            "network": network,
            "publicKey": str(parsed.value),
            "permission": permission,
            "transaction": outcome.value,
        }
    )


def delete_access_keys(
    cfg: NearConfig,
    keystore: FileSystemKeyStore,
    network: str,
    account_id: str,
    public_keys: list[str],
) -> Result[dict]:
    """Remove keys from ``account_id`` in one transaction. The local signing key is kept."""
    if not public_keys:
        return invalid_input("Provide at least one public key to delete.")
    key = load_key(keystore, network, account_id)
    if not key.ok:
        return key

    parsed_keys: list[PublicKey] = []
    for text in public_keys:
        parsed = parse_public_key(text)
        if not parsed.ok:
            return parsed
        if parsed.value == key.value.public_key:
            return invalid_input(
                f"{text} is the key held in the local keystore; it cannot be deleted here."
            )
        if parsed.value not in parsed_keys:
            parsed_keys.append(parsed.value)

    outcome = sign_and_send(
        cfg,
        network,
        account_id,
        key.value,
        account_id,
        [delete_key_action(pk) for pk in parsed_keys],
    )
    if not outcome.ok:
        return outcome
    return Ok(
        {
            "accountId": account_id,
            "network": network,
            "deletedKeys": [str(pk) for pk in parsed_keys],
            "transaction": outcome.value,
        }
    )


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------


def sign_data(keystore: FileSystemKeyStore, network: str, account_id: str, data: str) -> Result[dict]:
    """Sign sha256(utf-8 data) with the account's local key."""
    key = load_key(keystore, network, account_id)
    if not key.ok:
        return key
    digest = sha256(data.encode("utf-8"))
    signature = key.value.sign(digest)
    return Ok(
        {
            "accountId": account_id,
            "network": network,
            "publicKey": str(key.value.public_key),
            "signature": f"{key.value.curve}:{b58encode(signature)}",
            "digest": "sha256",
        }
    )


def verify_signature(
    cfg: NearConfig,
    network: str,
    data: str,
    signature: str,
    account_id: str | None = None,
    public_key: str | None = None,
) -> Result[dict]:
    """
    Check a signature made by sign_data, either against one public key or
    against every access key of an account.
    """
    try:
        curve, raw_signature = parse_signature(signature)
    except (KeyFormatError, UnsupportedCurveError) as exc:
        return _key_error(exc)

    if public_key:
        parsed = parse_public_key(public_key)
        if not parsed.ok:
            return parsed
        candidates = [parsed.value]
    elif account_id:
        keys = view_access_key_list(cfg, network, account_id)
        if not keys.ok:
            return keys
        candidates = []
        for entry in keys.value:
            if (entry.get("access_key") or {}).get("permission") != "FullAccess":
                continue
            parsed = parse_public_key(entry.get("public_key", ""))
            if parsed.ok:
                candidates.append(parsed.value)
    else:
        return invalid_input("Provide an accountId or a publicKey to verify against.")

    digest = sha256(data.encode("utf-8"))
    matched = next(
        (pk for pk in candidates if pk.curve == curve and pk.verify(digest, raw_signature)),
        None,
    )
    return Ok(
        {
            "valid": matched is not None,
            "publicKey": str(matched) if matched else None,
            "accountId": account_id,
            "network": network,
        }
    )


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


def send_near(
    cfg: NearConfig,
    keystore: FileSystemKeyStore,
    network: str,
    signer_id: str,
    receiver_id: str,
    amount: Any,
) -> Result[dict]:
    checked = _check_account_id(receiver_id, "receiver account id")
    if not checked.ok:
        return checked
    near = parse_near_amount(amount)
    if not near.ok:
        return near
    key = load_key(keystore, network, signer_id)
    if not key.ok:
        return key

    outcome = sign_and_send(
        cfg, network, signer_id, key.value, receiver_id, [transfer_action(near.value.to_minor_units())]
    )
    if not outcome.ok:
        return outcome
    return Ok(
        {
            "signerId": signer_id,
            "receiverId": receiver_id,
            "amount": near.value.to_decimal_string(),
            "network": network,
            "transaction": outcome.value,
        }
    )


def ensure_ft_storage(
    cfg: NearConfig,
    network: str,
    signer_id: str,
    key_pair: KeyPair,
    token_contract: str,
    account_id: str,
) -> Result[dict | None]:
    """
    Register ``account_id`` with the token's storage (NEP-145), paid by the
    signer. Returns None when no registration was needed.
    """
    balance = call_view_function(
        cfg, network, token_contract, "storage_balance_of", {"account_id": account_id}
    )
    if not balance.ok:
        if balance.error.kind == ErrorKind.NOT_FOUND:
            # token without storage management
            return Ok(None)
        return balance
    if balance.value is not None:
        return Ok(None)

    deposit = DEFAULT_FT_STORAGE_DEPOSIT
    bounds = call_view_function(cfg, network, token_contract, "storage_balance_bounds")
    if bounds.ok and isinstance(bounds.value, dict) and bounds.value.get("min"):
        deposit = int(bounds.value["min"])

    logger.info("Registering %s with %s storage", account_id, token_contract)
    return sign_and_send(
        cfg,
        network,
        signer_id,
        key_pair,
        token_contract,
        [
            function_call_action(
                "storage_deposit",
                {"account_id": account_id, "registration_only": True},
                DEFAULT_FUNCTION_CALL_GAS,
                deposit,
            )
        ],
    )


def send_ft(
    cfg: NearConfig,
    keystore: FileSystemKeyStore,
    network: str,
    signer_id: str,
    receiver_id: str,
    token_contract: str,
    amount: Any,
) -> Result[dict]:
    """Transfer a NEP-141 token; ``amount`` is in the token's display units."""
    checked = _check_account_id(receiver_id, "receiver account id")
    if not checked.ok:
        return checked
    key = load_key(keystore, network, signer_id)
    if not key.ok:
        return key
    metadata = get_ft_metadata(cfg, network, token_contract)
    if not metadata.ok:
        return metadata

    try:
        token_amount = TokenAmount.from_decimal(amount, metadata.value.decimals)
    except ValueError as exc:
        return invalid_input(f"Invalid amount: {exc}")
    minor = token_amount.to_minor_units()
    if minor == 0:
        return invalid_input(
            f"Amount is zero at {metadata.value.decimals} decimals for {metadata.value.symbol}."
        )

    balance = get_ft_balance(cfg, network, token_contract, signer_id)
    if not balance.ok:
        return balance
    if balance.value < minor:
        available = TokenAmount(balance.value, metadata.value.decimals).to_decimal_string()
        return invalid_input(
            f"Insufficient {metadata.value.symbol} balance: {available} available."
        )

    registration = ensure_ft_storage(cfg, network, signer_id, key.value, token_contract, receiver_id)
    if not registration.ok:
        return registration

    outcome = sign_and_send(
        cfg,
        network,
        signer_id,
        key.value,
        token_contract,
        [
            function_call_action(
                "ft_transfer",
                {"receiver_id": receiver_id, "amount": str(minor)},
                DEFAULT_FUNCTION_CALL_GAS,
                ONE_YOCTO,
            )
        ],
    )
    if not outcome.ok:
        return outcome
    return Ok(
        {
            "signerId": signer_id,
            "receiverId": receiver_id,
            "tokenContract": token_contract,
            "symbol": metadata.value.symbol,
            "amount": token_amount.to_decimal_string(),
            "amountMinorUnits": str(minor),
            "network": network,
            "storageRegistration": registration.value,
            "transaction": outcome.value,
        }
    )


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------


def view_contract_functions(cfg: NearConfig, network: str, contract_id: str) -> Result[dict]:
    code = view_code(cfg, network, contract_id)
    if not code.ok:
        return code
    try:
        functions = list_exported_functions(code.value)
    except WasmFormatError as exc:
        return unsupported(f"Cannot read the contract code of {contract_id}: {exc}")
    return Ok({"contractId": contract_id, "network": network, "functions": functions})


def call_read_only_function(
    cfg: NearConfig,
    network: str,
    contract_id: str,
    method_name: str,
    args: Any = None,
) -> Result[dict]:
    parsed = _parse_args(args)
    if not parsed.ok:
        return parsed
    result = call_view_function(cfg, network, contract_id, method_name, parsed.value)
    if not result.ok:
        return result
    return Ok(
        {
            "contractId": contract_id,
            "methodName": method_name,
            "network": network,
            "result": result.value,
        }
    )


def call_function(
    cfg: NearConfig,
    keystore: FileSystemKeyStore,
    network: str,
    signer_id: str,
    contract_id: str,
    method_name: str,
    args: Any = None,
    gas: Any = None,
    attached_deposit: Any = None,
) -> Result[dict]:
    """Call a change method. ``gas`` is in gas units, ``attached_deposit`` in NEAR."""
    parsed = _parse_args(args)
    if not parsed.ok:
        return parsed
    try:
        gas_units = DEFAULT_FUNCTION_CALL_GAS if gas in (None, "") else int(gas)
    except (TypeError, ValueError):
        return invalid_input(f"Invalid gas: {gas!r}")
    if not 0 < gas_units <= MAX_GAS:
        return invalid_input(f"Gas must be between 1 and {MAX_GAS}.")
    deposit = parse_near_amount(
        attached_deposit if attached_deposit not in (None, "") else 0,
        "attachedDeposit",
        allow_zero=True,
    )
    if not deposit.ok:
        return deposit
    key = load_key(keystore, network, signer_id)
    if not key.ok:
        return key

    outcome = sign_and_send(
        cfg,
        network,
        signer_id,
        key.value,
        contract_id,
        [function_call_action(method_name, parsed.value, gas_units, deposit.value.to_minor_units())],
    )
    if not outcome.ok:
        return outcome
    return Ok(
        {
            "signerId": signer_id,
            "contractId": contract_id,
            "methodName": method_name,
            "network": network,
            "transaction": outcome.value,
        }
    )
