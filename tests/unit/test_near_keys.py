"""Unit tests for NEAR key pairs and the file-backed keystore."""

import json
import os
import stat
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

import near_keys  # noqa: E402
from near_keys import KeyFormatError, KeyPair, PublicKey, UnsupportedCurveError  # noqa: E402
from near_keystore import FileSystemKeyStore  # noqa: E402

MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)


# ---------------------------------------------------------------------------
# Key pairs
# ---------------------------------------------------------------------------


def test_ed25519_key_string_roundtrip():
    pair = KeyPair.from_random()
    text = pair.to_string()
    assert text.startswith("ed25519:")
    restored = KeyPair.from_string(text)
    assert restored.public_key == pair.public_key
    assert len(near_keys.b58decode(text.split(":", 1)[1])) == 64


def test_ed25519_accepts_bare_seed_and_unprefixed_text():
    pair = KeyPair.from_random()
    seed_only = near_keys.b58encode(pair.secret)
    assert KeyPair.from_string(seed_only).public_key == pair.public_key


def test_ed25519_rejects_mismatched_public_half():
    pair = KeyPair.from_random()
    other = KeyPair.from_random()
    forged = "ed25519:" + near_keys.b58encode(pair.secret + other.public_key.data)
    with pytest.raises(KeyFormatError):
        KeyPair.from_string(forged)


def test_ed25519_sign_and_verify():
    pair = KeyPair.from_random()
    signature = pair.sign(b"hello near")
    assert len(signature) == 64
    assert pair.public_key.verify(b"hello near", signature)
    assert not pair.public_key.verify(b"hello there", signature)


def test_secp256k1_sign_and_verify():
    pair = KeyPair.from_random("secp256k1")
    assert len(pair.public_key.data) == 64
    digest = near_keys.sha256(b"payload")
    signature = pair.sign(digest)
    assert len(signature) == 65
    assert pair.public_key.verify(digest, signature)
    assert not pair.public_key.verify(near_keys.sha256(b"other"), signature)
    restored = KeyPair.from_string(pair.to_string())
    assert restored.public_key == pair.public_key


def test_secp256k1_requires_digest():
    pair = KeyPair.from_random("secp256k1")
    with pytest.raises(ValueError):
        pair.sign(b"not a digest")


def test_unknown_curve_is_unsupported():
    with pytest.raises(UnsupportedCurveError):
        KeyPair.from_string("rsa:abc")
    with pytest.raises(UnsupportedCurveError):
        KeyPair.from_random("rsa")


@pytest.mark.parametrize("text", ["", "ed25519:0OIl", "ed25519:" + near_keys.b58encode(b"\x01" * 31)])
def test_bad_public_keys_rejected(text):
    with pytest.raises(KeyFormatError):
        PublicKey.from_string(text)


def test_public_key_text_roundtrip():
    pair = KeyPair.from_random()
    assert PublicKey.from_string(str(pair.public_key)) == pair.public_key


def test_implicit_account_id_is_hex_public_key():
    pair = KeyPair.from_random()
    account_id = pair.public_key.implicit_account_id()
    assert len(account_id) == 64
    assert bytes.fromhex(account_id) == pair.public_key.data
    with pytest.raises(UnsupportedCurveError):
        KeyPair.from_random("secp256k1").public_key.implicit_account_id()


def test_seed_phrase_derivation_is_deterministic():
    first = KeyPair.from_seed_phrase(MNEMONIC)
    second = KeyPair.from_seed_phrase("  " + MNEMONIC.replace(" ", "   ") + " ")
    assert first.curve == "ed25519"
    assert first.public_key == second.public_key
    assert KeyPair.from_seed_phrase(MNEMONIC, passphrase="x").public_key != first.public_key


def test_invalid_seed_phrase_rejected():
    with pytest.raises(KeyFormatError):
        KeyPair.from_seed_phrase("not a real seed phrase at all")


def test_parse_signature_checks_length():
    pair = KeyPair.from_random()
    signature = pair.sign(b"x")
    curve, raw = near_keys.parse_signature("ed25519:" + near_keys.b58encode(signature))
    assert curve == "ed25519"
    assert raw == signature
    with pytest.raises(KeyFormatError):
        near_keys.parse_signature("ed25519:" + near_keys.b58encode(signature[:10]))


# ---------------------------------------------------------------------------
# Keystore
# ---------------------------------------------------------------------------


def test_keystore_set_get_remove(tmp_path):
    store = FileSystemKeyStore(tmp_path)
    pair = KeyPair.from_random()
    store.set_key("testnet", "alice.testnet", pair)

    path = tmp_path / "testnet" / "alice.testnet.json"
    content = json.loads(path.read_text())
    assert content["account_id"] == "alice.testnet"
    assert content["public_key"] == str(pair.public_key)
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    assert store.get_key("testnet", "alice.testnet").public_key == pair.public_key
    assert store.get_key("mainnet", "alice.testnet") is None
    assert store.get_accounts("testnet") == ["alice.testnet"]

    assert store.remove_key("testnet", "alice.testnet") is True
    assert store.remove_key("testnet", "alice.testnet") is False
    assert store.get_accounts("testnet") == []


def test_keystore_reads_secret_key_field(tmp_path):
    pair = KeyPair.from_random()
    network_dir = tmp_path / "mainnet"
    network_dir.mkdir()
    (network_dir / "bob.near.json").write_text(
        json.dumps({"account_id": "bob.near", "secret_key": pair.to_string()})
    )
    store = FileSystemKeyStore(tmp_path)
    assert store.get_key("mainnet", "bob.near").public_key == pair.public_key


@pytest.mark.parametrize("account_id", ["", "../escape", ".hidden", "a/b"])
def test_keystore_rejects_path_like_ids(tmp_path, account_id):
    store = FileSystemKeyStore(tmp_path)
    with pytest.raises(ValueError):
        store.set_key("testnet", account_id, KeyPair.from_random())


def test_keystore_missing_directory_is_empty(tmp_path):
    store = FileSystemKeyStore(tmp_path / "nope")
    assert store.get_accounts("testnet") == []
