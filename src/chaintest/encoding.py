"""Canonical transaction encoding (signing messages, ids) and argument codec."""

from __future__ import annotations

from dataclasses import dataclass

from blake3 import blake3

from .config import ADDRESS_LENGTH
from .errors import ErrorCode, ChainTestError
from .types import Address, Block, ExportedValue, Transaction, TransactionSignature


@dataclass
class Writer:
    buf: bytearray

    def write_u8(self, v: int) -> None:
        self.buf.extend(int(v).to_bytes(1, "big", signed=False))

    def write_u32(self, v: int) -> None:
        self.buf.extend(int(v).to_bytes(4, "big", signed=False))

    def write_u64(self, v: int) -> None:
        self.buf.extend(int(v).to_bytes(8, "big", signed=False))

    def write_bytes(self, b: bytes) -> None:
        self.buf.extend(b)

    def write_vec(self, b: bytes) -> None:
        self.write_u32(len(b))
        self.write_bytes(b)


def _expect_len(name: str, value: bytes, size: int) -> None:
    if len(value) != size:
        raise ChainTestError(ErrorCode.INVALID_FORMAT, f"{name} must be {size} bytes")


def _write_address(w: Writer, address: Address) -> None:
    _expect_len("address", address.value, ADDRESS_LENGTH)
    w.write_bytes(address.value)


def _write_signatures(w: Writer, signatures: list[TransactionSignature]) -> None:
    w.write_u32(len(signatures))
    for sig in signatures:
        _write_address(w, sig.address)
        w.write_u32(sig.key_index)
        w.write_vec(sig.signature)


def _write_payload(w: Writer, tx: Transaction) -> None:
    if not tx.script:
        raise ChainTestError(ErrorCode.INVALID_FORMAT, "transaction script must not be empty")
    _expect_len("reference_block_id", tx.reference_block_id, 32)

    w.write_vec(tx.script)
    w.write_u32(len(tx.arguments))
    for arg in tx.arguments:
        w.write_vec(arg)
    w.write_bytes(tx.reference_block_id)
    w.write_u64(tx.gas_limit)
    _write_address(w, tx.proposal_key.address)
    w.write_u32(tx.proposal_key.key_index)
    w.write_u64(tx.proposal_key.sequence_number)
    _write_address(w, tx.payer)
    w.write_u32(len(tx.authorizers))
    for authorizer in tx.authorizers:
        _write_address(w, authorizer)


def encode_payload(tx: Transaction) -> bytes:
    """Message signed by proposers and authorizers."""
    w = Writer(bytearray())
    _write_payload(w, tx)
    return bytes(w.buf)


def encode_envelope(tx: Transaction) -> bytes:
    """Message signed by the payer: the payload plus its signatures."""
    w = Writer(bytearray())
    _write_payload(w, tx)
    _write_signatures(w, tx.payload_signatures)
    return bytes(w.buf)


def encode_transaction(tx: Transaction) -> bytes:
    w = Writer(bytearray())
    _write_payload(w, tx)
    _write_signatures(w, tx.payload_signatures)
    _write_signatures(w, tx.envelope_signatures)
    return bytes(w.buf)


def transaction_id(tx: Transaction) -> bytes:
    return blake3(encode_transaction(tx)).digest()


def block_id(height: int, parent_id: bytes, transaction_ids: list[bytes]) -> bytes:
    w = Writer(bytearray())
    w.write_u64(height)
    w.write_bytes(parent_id)
    w.write_u32(len(transaction_ids))
    for tx_id in transaction_ids:
        w.write_bytes(tx_id)
    return blake3(bytes(w.buf)).digest()


def encode_argument(value: ExportedValue) -> bytes:
    try:
        return value.encode()
    except (TypeError, ValueError) as exc:
        raise ChainTestError(
            ErrorCode.INVALID_ARGUMENT, f"cannot encode value of type {value.type_id}: {exc}"
        ) from exc


def decode_argument(data: bytes) -> ExportedValue:
    return ExportedValue.decode(data)


def genesis_block() -> Block:
    parent = bytes(32)
    return Block(height=0, id=block_id(0, parent, []), parent_id=parent)
