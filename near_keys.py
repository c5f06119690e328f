"""
NEAR key pairs: parsing, generation, seed-phrase derivation and signing.

Key strings use the NEAR text form ``<curve>:<base58>``:
- ed25519 secret keys are the 64-byte seed || public key
- ed25519 public keys are 32 bytes
- secp256k1 secret keys are 32 bytes
- secp256k1 public keys are 64 bytes (uncompressed point without 0x04)
"""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass

import coincurve
from bip_utils import (
    Base58Decoder,
    Base58Encoder,
    Bip32Slip10Ed25519,
    Bip39MnemonicValidator,
    Bip39SeedGenerator,
)
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CURVE_ED25519 = "ed25519"
CURVE_SECP256K1 = "secp256k1"
SUPPORTED_CURVES = (CURVE_ED25519, CURVE_SECP256K1)

# Borsh enum tags for PublicKey / Signature
KEY_TYPES = {CURVE_ED25519: 0, CURVE_SECP256K1: 1}

PUBLIC_KEY_LENGTHS = {CURVE_ED25519: 32, CURVE_SECP256K1: 64}
SIGNATURE_LENGTHS = {CURVE_ED25519: 64, CURVE_SECP256K1: 65}

# Path used by NEAR wallets (near-seed-phrase)
NEAR_DERIVATION_PATH = "m/44'/397'/0'"


class KeyFormatError(ValueError):
    """Key material that cannot be parsed."""

    pass


class UnsupportedCurveError(ValueError):
    """A curve prefix other than ed25519 / secp256k1."""

    pass


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------


def b58encode(data: bytes) -> str:
    return Base58Encoder.Encode(data)


def b58decode(text: str) -> bytes:
    try:
        return Base58Decoder.Decode(text)
    except (ValueError, TypeError) as exc:
        raise KeyFormatError(f"Invalid base58 data: {text[:12]}...") from exc


def _split_key_string(text: str) -> tuple[str, bytes]:
    if not isinstance(text, str) or not text.strip():
        raise KeyFormatError("Key or signature string cannot be empty")
    text = text.strip()
    if ":" in text:
        curve, encoded = text.split(":", 1)
        curve = curve.lower()
    else:
        curve, encoded = CURVE_ED25519, text
    if curve not in SUPPORTED_CURVES:
        raise UnsupportedCurveError(f"Unknown key type: {curve}")
    return curve, b58decode(encoded)


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


# ---------------------------------------------------------------------------
# Public keys
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PublicKey:
    curve: str
    data: bytes

    @property
    def key_type(self) -> int:
        return KEY_TYPES[self.curve]

    @classmethod
    def from_string(cls, text: str) -> PublicKey:
        curve, data = _split_key_string(text)
        expected = PUBLIC_KEY_LENGTHS[curve]
        if len(data) != expected:
            raise KeyFormatError(
                f"Invalid {curve} public key length: {len(data)} bytes (expected {expected})"
            )
        return cls(curve, data)

    def implicit_account_id(self) -> str:
        """Hex account id owned by this key (ed25519 only)."""
        if self.curve != CURVE_ED25519:
            raise UnsupportedCurveError("Implicit accounts require an ed25519 key")
        return self.data.hex()

    def verify(self, message: bytes, signature: bytes) -> bool:
        """
        Verify ``signature`` over ``message``.

        For secp256k1, ``message`` must be a 32-byte digest and ``signature``
        the 65-byte r || s || recovery id form.
        """
        if len(signature) != SIGNATURE_LENGTHS[self.curve]:
            return False
        if self.curve == CURVE_ED25519:
            try:
                VerifyKey(self.data).verify(message, signature)
            except BadSignatureError:
                return False
            return True

        if len(message) != 32 or signature[64] > 3:
            return False
        try:
            recovered = coincurve.PublicKey.from_signature_and_message(
                signature, message, hasher=None
            )
        except ValueError:
            return False
        return recovered.format(compressed=False)[1:] == self.data

    def __str__(self) -> str:
        return f"{self.curve}:{b58encode(self.data)}"


# ---------------------------------------------------------------------------
# Key pairs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KeyPair:
    curve: str
    secret: bytes  # 32-byte ed25519 seed or secp256k1 scalar
    public_key: PublicKey

    @classmethod
    def _from_secret(cls, curve: str, secret: bytes) -> KeyPair:
        if curve == CURVE_ED25519:
            public = SigningKey(secret).verify_key.encode()
        else:
            try:
                public = coincurve.PrivateKey(secret).public_key.format(compressed=False)[1:]
            except ValueError as exc:
                raise KeyFormatError(f"Invalid secp256k1 secret key: {exc}") from exc
        return cls(curve, secret, PublicKey(curve, public))

    @classmethod
    def from_random(cls, curve: str = CURVE_ED25519) -> KeyPair:
        if curve not in SUPPORTED_CURVES:
            raise UnsupportedCurveError(f"Unknown key type: {curve}")
        if curve == CURVE_ED25519:
            return cls._from_secret(curve, os.urandom(32))
        return cls._from_secret(curve, coincurve.PrivateKey().secret)

    @classmethod
    def from_string(cls, text: str) -> KeyPair:
        curve, data = _split_key_string(text)
        if curve == CURVE_ED25519:
            if len(data) not in (32, 64):
                raise KeyFormatError(
                    f"Invalid ed25519 secret key length: {len(data)} bytes"
                )
            pair = cls._from_secret(curve, data[:32])
            if len(data) == 64 and data[32:] != pair.public_key.data:
                raise KeyFormatError("ed25519 secret key does not match its public half")
            return pair

        if len(data) != 32:
            raise KeyFormatError(f"Invalid secp256k1 secret key length: {len(data)} bytes")
        return cls._from_secret(curve, data)

    @classmethod
    def from_seed_phrase(
        cls,
        seed_phrase: str,
        passphrase: str = "",
        derivation_path: str = NEAR_DERIVATION_PATH,
    ) -> KeyPair:
        """Derive the ed25519 key NEAR wallets use for a BIP-39 seed phrase."""
        phrase = " ".join(seed_phrase.split())
        try:
            Bip39MnemonicValidator().Validate(phrase)
        except Exception as exc:  # noqa: BLE001
            raise KeyFormatError(
                "Seed phrase is not a valid BIP-39 mnemonic. "
                "Double-check words and spacing."
            ) from exc
        seed_bytes = Bip39SeedGenerator(phrase).Generate(passphrase)
        node = Bip32Slip10Ed25519.FromSeed(seed_bytes).DerivePath(derivation_path)
        return cls._from_secret(CURVE_ED25519, node.PrivateKey().Raw().ToBytes())

    def to_string(self) -> str:
        if self.curve == CURVE_ED25519:
            return f"{self.curve}:{b58encode(self.secret + self.public_key.data)}"
        return f"{self.curve}:{b58encode(self.secret)}"

    def sign(self, message: bytes) -> bytes:
        """
        Sign ``message``.

        ed25519 signs the bytes as given. secp256k1 expects a 32-byte digest
        and returns r || s || recovery id.
        """
        if self.curve == CURVE_ED25519:
            return SigningKey(self.secret).sign(message).signature
        if len(message) != 32:
            raise ValueError("secp256k1 signing requires a 32-byte digest")
        return coincurve.PrivateKey(self.secret).sign_recoverable(message, hasher=None)

    def __repr__(self) -> str:
        return f"KeyPair({self.public_key})"


def parse_signature(text: str) -> tuple[str, bytes]:
    """Parse ``<curve>:<base58>`` signature text into (curve, raw bytes)."""
    curve, data = _split_key_string(text)
    expected = SIGNATURE_LENGTHS[curve]
    if len(data) != expected:
        raise KeyFormatError(
            f"Invalid {curve} signature length: {len(data)} bytes (expected {expected})"
        )
    return curve, data
