"""Account keys, signers and hashing for the emulated chain."""

from __future__ import annotations

import hashlib
from enum import Enum

from blake3 import blake3
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)

from .config import (
    DEFAULT_HASH_ALGORITHM,
    DEFAULT_SIGNATURE_ALGORITHM,
    TRANSACTION_DOMAIN_TAG,
)
from .errors import ErrorCode, ChainTestError
from .types import AccountKey


class SignatureAlgorithm(str, Enum):
    ECDSA_P256 = "ECDSA_P256"
    ECDSA_SECP256K1 = "ECDSA_secp256k1"


class HashAlgorithm(str, Enum):
    SHA2_256 = "SHA2_256"
    SHA3_256 = "SHA3_256"


_CURVES = {
    SignatureAlgorithm.ECDSA_P256: ec.SECP256R1,
    SignatureAlgorithm.ECDSA_SECP256K1: ec.SECP256K1,
}

_HASHES = {
    HashAlgorithm.SHA2_256: hashlib.sha256,
    HashAlgorithm.SHA3_256: hashlib.sha3_256,
}

# Both supported hashes produce 32-byte digests; signing works on the digest.
_PREHASHED = ec.ECDSA(Prehashed(hashes.SHA256()))

SCALAR_SIZE = 32


def _curve(sign_algo: str) -> ec.EllipticCurve:
    try:
        return _CURVES[SignatureAlgorithm(sign_algo)]()
    except (KeyError, ValueError) as exc:
        raise ChainTestError(
            ErrorCode.INVALID_FORMAT, f"unsupported signature algorithm: {sign_algo}"
        ) from exc


def _digest(hash_algo: str, message: bytes) -> bytes:
    try:
        hasher = _HASHES[HashAlgorithm(hash_algo)]
    except (KeyError, ValueError) as exc:
        raise ChainTestError(
            ErrorCode.INVALID_FORMAT, f"unsupported hash algorithm: {hash_algo}"
        ) from exc
    return hasher(TRANSACTION_DOMAIN_TAG + message).digest()


def _hash_name(hash_algo: str) -> str:
    try:
        return HashAlgorithm(hash_algo).value
    except ValueError as exc:
        raise ChainTestError(
            ErrorCode.INVALID_FORMAT, f"unsupported hash algorithm: {hash_algo}"
        ) from exc


def blake3_hash(data: bytes) -> bytes:
    return blake3(data).digest()


def encode_public_key(public_key: ec.EllipticCurvePublicKey) -> bytes:
    """Raw ``X || Y`` encoding (uncompressed point without the 0x04 tag)."""
    point = public_key.public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )
    return point[1:]


def decode_public_key(sign_algo: str, public_key: bytes) -> ec.EllipticCurvePublicKey:
    if len(public_key) != SCALAR_SIZE * 2:
        raise ChainTestError(ErrorCode.INVALID_FORMAT, "public key must be 64 bytes")
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(
            _curve(sign_algo), b"\x04" + public_key
        )
    except ValueError as exc:
        raise ChainTestError(ErrorCode.INVALID_FORMAT, f"invalid public key: {exc}") from exc


class InMemorySigner:
    """Signs messages with a private key held in process memory."""

    def __init__(self, private_key: ec.EllipticCurvePrivateKey, hash_algo: str):
        self._private_key = private_key
        self.hash_algo = hash_algo

    @property
    def public_key(self) -> bytes:
        return encode_public_key(self._private_key.public_key())

    def sign(self, message: bytes) -> bytes:
        der = self._private_key.sign(_digest(self.hash_algo, message), _PREHASHED)
        r, s = decode_dss_signature(der)
        return r.to_bytes(SCALAR_SIZE, "big") + s.to_bytes(SCALAR_SIZE, "big")

    def __repr__(self) -> str:
        return f"InMemorySigner(public_key={self.public_key.hex()[:16]}..)"


def verify_signature(
    public_key: bytes, sign_algo: str, hash_algo: str, message: bytes, signature: bytes
) -> bool:
    if len(signature) != SCALAR_SIZE * 2:
        return False
    key = decode_public_key(sign_algo, public_key)
    r = int.from_bytes(signature[:SCALAR_SIZE], "big")
    s = int.from_bytes(signature[SCALAR_SIZE:], "big")
    try:
        key.verify(
            encode_dss_signature(r, s),
            _digest(hash_algo, message),
            _PREHASHED,
        )
    except InvalidSignature:
        return False
    return True


def generate_key(
    sign_algo: str = DEFAULT_SIGNATURE_ALGORITHM,
    hash_algo: str = DEFAULT_HASH_ALGORITHM,
    index: int = 0,
) -> tuple[AccountKey, InMemorySigner]:
    """Generate a fresh key pair, returned as account key metadata plus its signer."""
    private_key = ec.generate_private_key(_curve(sign_algo))
    signer = InMemorySigner(private_key, _hash_name(hash_algo))
    account_key = AccountKey(
        index=index,
        public_key=signer.public_key,
        sign_algo=SignatureAlgorithm(sign_algo).value,
        hash_algo=signer.hash_algo,
    )
    return account_key, signer
