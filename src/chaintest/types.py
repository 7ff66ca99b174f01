"""Core types shared by the emulator, the backend and the test runner.

Ledger-side types (accounts, keys, transactions, blocks) follow the shape of
the emulated chain. `ExportedValue` is the JSON form a value takes when it
crosses from the test script's interpreter into the ledger and back.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import ACCOUNT_KEY_WEIGHT_THRESHOLD, ADDRESS_LENGTH, DEFAULT_GAS_LIMIT
from .errors import ErrorCode, ChainTestError


@dataclass(frozen=True, order=True)
class Address:
    value: bytes

    def __post_init__(self) -> None:
        if len(self.value) != ADDRESS_LENGTH:
            raise ChainTestError(
                ErrorCode.INVALID_FORMAT, f"address must be {ADDRESS_LENGTH} bytes"
            )

    @classmethod
    def from_hex(cls, text: str) -> "Address":
        raw = text[2:] if text.startswith(("0x", "0X")) else text
        if len(raw) > ADDRESS_LENGTH * 2:
            raise ChainTestError(ErrorCode.INVALID_FORMAT, f"address too long: {text}")
        try:
            value = bytes.fromhex(raw.rjust(ADDRESS_LENGTH * 2, "0"))
        except ValueError as exc:
            raise ChainTestError(ErrorCode.INVALID_FORMAT, f"invalid address: {text}") from exc
        return cls(value)

    def hex(self) -> str:
        return self.value.hex()

    def __str__(self) -> str:
        return f"0x{self.value.hex()}"


EMPTY_ADDRESS = Address(bytes(ADDRESS_LENGTH))


# --- Keys / accounts ---


@dataclass
class AccountKey:
    index: int
    public_key: bytes
    sign_algo: str
    hash_algo: str
    weight: int = ACCOUNT_KEY_WEIGHT_THRESHOLD
    sequence_number: int = 0
    revoked: bool = False


@dataclass(frozen=True)
class PublicKey:
    public_key: bytes
    sign_algo: str


@dataclass(frozen=True)
class Account:
    """Account descriptor handed back to test scripts."""
    address: Address
    public_key: PublicKey


@dataclass
class LedgerAccount:
    address: Address
    keys: List[AccountKey] = field(default_factory=list)
    contracts: Dict[str, bytes] = field(default_factory=dict)

    def key(self, index: int) -> AccountKey:
        for key in self.keys:
            if key.index == index:
                return key
        raise ChainTestError(
            ErrorCode.ACCOUNT_KEY_NOT_FOUND, f"account {self.address} has no key {index}"
        )


# --- Transactions ---


@dataclass
class ProposalKey:
    address: Address
    key_index: int
    sequence_number: int


@dataclass
class TransactionSignature:
    address: Address
    key_index: int
    signature: bytes


@dataclass
class Transaction:
    script: bytes
    proposal_key: ProposalKey
    payer: Address
    arguments: List[bytes] = field(default_factory=list)
    reference_block_id: bytes = bytes(32)
    gas_limit: int = DEFAULT_GAS_LIMIT
    authorizers: List[Address] = field(default_factory=list)
    payload_signatures: List[TransactionSignature] = field(default_factory=list)
    envelope_signatures: List[TransactionSignature] = field(default_factory=list)

    def add_argument(self, value: "ExportedValue") -> "Transaction":
        from .encoding import encode_argument

        self.arguments.append(encode_argument(value))
        return self

    def add_authorizer(self, address: Address) -> "Transaction":
        self.authorizers.append(address)
        return self

    def sign_payload(self, address: Address, key_index: int, signer) -> "Transaction":
        from .encoding import encode_payload

        signature = signer.sign(encode_payload(self))
        self.payload_signatures.append(TransactionSignature(address, key_index, signature))
        return self

    def sign_envelope(self, address: Address, key_index: int, signer) -> "Transaction":
        from .encoding import encode_envelope

        signature = signer.sign(encode_envelope(self))
        self.envelope_signatures.append(TransactionSignature(address, key_index, signature))
        return self

    @property
    def id(self) -> bytes:
        from .encoding import transaction_id

        return transaction_id(self)


# --- Chain ---


@dataclass
class ChainState:
    accounts: Dict[Address, LedgerAccount] = field(default_factory=dict)
    block_height: int = 0
    account_count: int = 0


@dataclass
class Block:
    height: int
    id: bytes
    parent_id: bytes
    transaction_ids: List[bytes] = field(default_factory=list)


@dataclass
class Event:
    type: str
    transaction_id: bytes
    payload: Any = None


# --- Values / results ---


@dataclass(frozen=True)
class ExportedValue:
    """A value in its ledger (JSON) form: ``{"type": type_id, "value": payload}``."""
    type_id: str
    payload: Any = None

    def to_json(self) -> Dict[str, Any]:
        return {"type": self.type_id, "value": self.payload}

    def encode(self) -> bytes:
        return json.dumps(self.to_json(), sort_keys=True, separators=(",", ":")).encode()

    @classmethod
    def decode(cls, data: bytes) -> "ExportedValue":
        try:
            obj = json.loads(data)
        except ValueError as exc:
            raise ChainTestError(ErrorCode.INVALID_ARGUMENT, f"malformed argument: {exc}") from exc
        if not isinstance(obj, dict) or "type" not in obj:
            raise ChainTestError(ErrorCode.INVALID_ARGUMENT, "argument must carry a type")
        return cls(type_id=str(obj["type"]), payload=obj.get("value"))


@dataclass
class ScriptResult:
    value: Any = None
    error: Optional[Exception] = None
    logs: List[str] = field(default_factory=list)


@dataclass
class TransactionResult:
    transaction_id: bytes = b""
    error: Optional[Exception] = None
    logs: List[str] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)


@dataclass
class Configuration:
    """Import path -> address table used when rewriting imports of ledger code."""
    addresses: Dict[str, Address] = field(default_factory=dict)
