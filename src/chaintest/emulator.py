"""In-process ephemeral ledger backing the test framework.

The emulator keeps a committed `ChainState` plus a pending block holding a
working copy of that state. Transactions are queued into the pending block,
executed one at a time and made durable by committing the block.

Failed-tx semantics:
- Verification failure (signatures, sequence number): state unchanged
- Execution failure: proposal key sequence number advances, body effects
  are rolled back
"""

from __future__ import annotations

import logging
from copy import deepcopy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Union

from .config import (
    ACCOUNT_KEY_WEIGHT_THRESHOLD,
    CHAIN_ID_EMULATOR,
    SERVICE_ADDRESS_HEX,
    SERVICE_KEY_INDEX,
)
from .crypto import InMemorySigner, blake3_hash, generate_key, verify_signature
from .encoding import block_id, decode_argument, encode_envelope, encode_payload, genesis_block
from .errors import ErrorCode, ChainTestError
from .runtime import VirtualMachine
from .types import (
    AccountKey,
    Address,
    Block,
    ChainState,
    Event,
    LedgerAccount,
    ScriptResult,
    Transaction,
    TransactionResult,
)

logger = logging.getLogger(__name__)

ACCOUNT_CREATED_EVENT = "flow.AccountCreated"
CONTRACT_ADDED_EVENT = "flow.AccountContractAdded"
CONTRACT_UPDATED_EVENT = "flow.AccountContractUpdated"
CONTRACT_REMOVED_EVENT = "flow.AccountContractRemoved"


@dataclass
class ServiceKey:
    address: Address
    index: int
    sequence_number: int
    public_key: bytes
    sign_algo: str
    hash_algo: str
    _signer: InMemorySigner = field(repr=False)

    def signer(self) -> InMemorySigner:
        return self._signer


class ExecutionContext:
    """View over a working ledger state handed to the virtual machine."""

    def __init__(
        self,
        state: ChainState,
        authorizers: Optional[List[Address]] = None,
        transaction_id: bytes = b"",
    ):
        self.state = state
        self.authorizers = list(authorizers or [])
        self.transaction_id = transaction_id
        self.logs: List[str] = []
        self.events: List[Event] = []

    def get_account(self, address: Address) -> LedgerAccount:
        account = self.state.accounts.get(address)
        if account is None:
            raise ChainTestError(ErrorCode.ACCOUNT_NOT_FOUND, f"account {address} not found")
        return account

    def get_contract(self, address: Address, name: str) -> bytes:
        account = self.get_account(address)
        if name not in account.contracts:
            raise ChainTestError(
                ErrorCode.CONTRACT_NOT_FOUND, f"contract {name} not found on {address}"
            )
        return account.contracts[name]

    def _require_authorizer(self, address: Address) -> LedgerAccount:
        if address not in self.authorizers:
            raise ChainTestError(
                ErrorCode.UNAUTHORIZED, f"account {address} did not authorize the transaction"
            )
        return self.get_account(address)

    def add_contract(self, address: Address, name: str, code: Union[str, bytes]) -> None:
        account = self._require_authorizer(address)
        if name in account.contracts:
            raise ChainTestError(
                ErrorCode.CONTRACT_EXISTS, f"contract {name} already exists on {address}"
            )
        account.contracts[name] = code.encode() if isinstance(code, str) else bytes(code)
        self.emit_event(CONTRACT_ADDED_EVENT, {"address": str(address), "contract": name})

    def update_contract(self, address: Address, name: str, code: Union[str, bytes]) -> None:
        account = self._require_authorizer(address)
        if name not in account.contracts:
            raise ChainTestError(
                ErrorCode.CONTRACT_NOT_FOUND, f"contract {name} not found on {address}"
            )
        account.contracts[name] = code.encode() if isinstance(code, str) else bytes(code)
        self.emit_event(CONTRACT_UPDATED_EVENT, {"address": str(address), "contract": name})

    def remove_contract(self, address: Address, name: str) -> None:
        account = self._require_authorizer(address)
        if account.contracts.pop(name, None) is None:
            raise ChainTestError(
                ErrorCode.CONTRACT_NOT_FOUND, f"contract {name} not found on {address}"
            )
        self.emit_event(CONTRACT_REMOVED_EVENT, {"address": str(address), "contract": name})

    def log(self, message: str) -> None:
        self.logs.append(message)

    def emit_event(self, event_type: str, payload: Any = None) -> None:
        self.events.append(Event(event_type, self.transaction_id, payload))


@dataclass
class PendingBlock:
    state: ChainState
    transactions: List[tuple[bytes, Transaction]] = field(default_factory=list)
    results: List[TransactionResult] = field(default_factory=list)
    executed: int = 0

    @property
    def execution_started(self) -> bool:
        return self.executed > 0

    @property
    def execution_complete(self) -> bool:
        return self.executed == len(self.transactions)

    def contains(self, tx_id: bytes) -> bool:
        return any(existing == tx_id for existing, _ in self.transactions)


def _vm_failure(code: ErrorCode, exc: Exception) -> ChainTestError:
    if isinstance(exc, ChainTestError):
        return exc
    failure = ChainTestError(code, str(exc) or type(exc).__name__)
    failure.__cause__ = exc
    return failure


def _decode_code(code: Union[str, bytes]) -> str:
    return code.decode() if isinstance(code, (bytes, bytearray)) else code


def account_address(chain_id: str, index: int) -> Address:
    data = b"\xff" + chain_id.encode() + index.to_bytes(8, "big")
    return Address(blake3_hash(data)[:8])


def _signature_weight(state: ChainState, tx: Transaction, address: Address, envelope_only: bool) -> int:
    signatures = list(tx.envelope_signatures)
    if not envelope_only:
        signatures.extend(tx.payload_signatures)

    weight = 0
    seen = set()
    for sig in signatures:
        if sig.address != address or sig.key_index in seen:
            continue
        seen.add(sig.key_index)
        weight += state.accounts[address].key(sig.key_index).weight
    return weight


def _verify_signatures(state: ChainState, tx: Transaction) -> None:
    payload = encode_payload(tx)
    envelope = encode_envelope(tx)

    for message, signatures in ((payload, tx.payload_signatures), (envelope, tx.envelope_signatures)):
        for sig in signatures:
            account = state.accounts.get(sig.address)
            if account is None:
                raise ChainTestError(ErrorCode.ACCOUNT_NOT_FOUND, f"signer {sig.address} not found")
            key = account.key(sig.key_index)
            if key.revoked:
                raise ChainTestError(
                    ErrorCode.INVALID_SIGNATURE, f"key {sig.key_index} of {sig.address} is revoked"
                )
            if not verify_signature(key.public_key, key.sign_algo, key.hash_algo, message, sig.signature):
                raise ChainTestError(
                    ErrorCode.INVALID_SIGNATURE,
                    f"invalid signature by {sig.address} key {sig.key_index}",
                )

    if tx.payer not in state.accounts:
        raise ChainTestError(ErrorCode.ACCOUNT_NOT_FOUND, f"payer {tx.payer} not found")
    if _signature_weight(state, tx, tx.payer, envelope_only=True) < ACCOUNT_KEY_WEIGHT_THRESHOLD:
        raise ChainTestError(ErrorCode.MISSING_SIGNATURE, f"payer {tx.payer} did not sign the envelope")

    required = [tx.proposal_key.address, *tx.authorizers]
    for address in required:
        if address not in state.accounts:
            raise ChainTestError(ErrorCode.ACCOUNT_NOT_FOUND, f"account {address} not found")
        if _signature_weight(state, tx, address, envelope_only=False) < ACCOUNT_KEY_WEIGHT_THRESHOLD:
            raise ChainTestError(ErrorCode.MISSING_SIGNATURE, f"missing signature for {address}")


def _require_sequence_number(key_sequence_number: int, tx_sequence_number: int) -> None:
    if tx_sequence_number != key_sequence_number:
        raise ChainTestError(
            ErrorCode.INVALID_SEQUENCE_NUMBER,
            f"invalid proposal key sequence number: expected {key_sequence_number}, "
            f"got {tx_sequence_number}",
        )


def apply_transaction(
    vm: VirtualMachine, state: ChainState, tx_id: bytes, tx: Transaction
) -> tuple[ChainState, TransactionResult]:
    """Verify and execute one transaction against ``state``."""
    try:
        _verify_signatures(state, tx)
        proposer = state.accounts[tx.proposal_key.address]
        key = proposer.key(tx.proposal_key.key_index)
        _require_sequence_number(key.sequence_number, tx.proposal_key.sequence_number)
    except ChainTestError as exc:
        return state, TransactionResult(transaction_id=tx_id, error=exc)

    base = deepcopy(state)
    base.accounts[tx.proposal_key.address].key(tx.proposal_key.key_index).sequence_number += 1

    working = deepcopy(base)
    context = ExecutionContext(working, tx.authorizers, tx_id)
    try:
        arguments = [decode_argument(arg) for arg in tx.arguments]
        vm.run_transaction(_decode_code(tx.script), arguments, context)
    except Exception as exc:
        # Execution failure: only the sequence number increment survives.
        return base, TransactionResult(
            transaction_id=tx_id,
            error=_vm_failure(ErrorCode.TRANSACTION_FAILED, exc),
            logs=context.logs,
        )

    return working, TransactionResult(
        transaction_id=tx_id, logs=context.logs, events=context.events
    )


class Emulator:
    """Ephemeral single-node chain with a pending block."""

    def __init__(
        self,
        vm: VirtualMachine,
        *,
        chain_id: str = CHAIN_ID_EMULATOR,
        service_key: Optional[tuple[AccountKey, InMemorySigner]] = None,
    ):
        self._vm = vm
        self.chain_id = chain_id

        account_key, signer = service_key if service_key is not None else generate_key()
        self._service_address = Address.from_hex(SERVICE_ADDRESS_HEX)
        self._service_signer = signer

        state = ChainState()
        state.accounts[self._service_address] = LedgerAccount(
            address=self._service_address,
            keys=[replace(account_key, index=SERVICE_KEY_INDEX)],
        )
        self._state = state
        self._blocks: List[Block] = [genesis_block()]
        self._results: Dict[bytes, TransactionResult] = {}
        self._events: List[Event] = []
        self._pending = PendingBlock(deepcopy(state))

    # --- accounts ---

    def service_key(self) -> ServiceKey:
        account = self._state.accounts[self._service_address]
        key = account.key(SERVICE_KEY_INDEX)
        return ServiceKey(
            address=self._service_address,
            index=key.index,
            sequence_number=key.sequence_number,
            public_key=key.public_key,
            sign_algo=key.sign_algo,
            hash_algo=key.hash_algo,
            _signer=self._service_signer,
        )

    def get_account(self, address: Address) -> LedgerAccount:
        account = self._state.accounts.get(address)
        if account is None:
            raise ChainTestError(ErrorCode.ACCOUNT_NOT_FOUND, f"account {address} not found")
        return deepcopy(account)

    def create_account(
        self,
        keys: List[AccountKey],
        contracts: Optional[Dict[str, Union[str, bytes]]] = None,
    ) -> Address:
        if not keys:
            raise ChainTestError(ErrorCode.INVALID_ARGUMENT, "account requires at least one key")

        index = self._state.account_count + 1
        address = account_address(self.chain_id, index)
        while address in self._state.accounts:
            index += 1
            address = account_address(self.chain_id, index)

        account = LedgerAccount(
            address=address,
            keys=[replace(key, index=i) for i, key in enumerate(keys)],
            contracts={
                name: code.encode() if isinstance(code, str) else bytes(code)
                for name, code in (contracts or {}).items()
            },
        )

        # Account creation bypasses the pending block and is visible at once.
        for state in (self._state, self._pending.state):
            state.accounts[address] = deepcopy(account)
            state.account_count = index

        self._events.append(Event(ACCOUNT_CREATED_EVENT, b"", {"address": str(address)}))
        logger.debug("created account %s", address)
        return address

    # --- scripts ---

    def execute_script(self, code: Union[str, bytes], arguments: List[bytes]) -> ScriptResult:
        context = ExecutionContext(deepcopy(self._state))
        try:
            decoded = [decode_argument(arg) for arg in arguments]
            value = self._vm.run_script(_decode_code(code), decoded, context)
        except Exception as exc:
            return ScriptResult(
                error=_vm_failure(ErrorCode.SCRIPT_FAILED, exc), logs=context.logs
            )
        return ScriptResult(value=value, logs=context.logs)

    # --- transactions ---

    def add_transaction(self, tx: Transaction) -> None:
        if self._pending.execution_started:
            raise ChainTestError(
                ErrorCode.PENDING_BLOCK_MID_EXECUTION,
                "pending block is currently being executed",
            )
        if not tx.envelope_signatures:
            raise ChainTestError(ErrorCode.MISSING_SIGNATURE, "transaction envelope is not signed")

        tx_id = tx.id
        if self._pending.contains(tx_id) or tx_id in self._results:
            raise ChainTestError(
                ErrorCode.DUPLICATE_TRANSACTION, f"transaction {tx_id.hex()} already submitted"
            )

        self._pending.transactions.append((tx_id, deepcopy(tx)))
        logger.debug("queued transaction %s", tx_id.hex())

    def execute_next_transaction(self) -> TransactionResult:
        pending = self._pending
        if pending.execution_complete:
            raise ChainTestError(
                ErrorCode.PENDING_BLOCK_TRANSACTIONS_EXHAUSTED,
                "pending block has no transactions left to execute",
            )

        tx_id, tx = pending.transactions[pending.executed]
        pending.executed += 1
        pending.state, result = apply_transaction(self._vm, pending.state, tx_id, tx)
        pending.results.append(result)
        self._results[tx_id] = result

        if result.error is not None:
            logger.debug("transaction %s failed: %s", tx_id.hex(), result.error)
        return result

    def get_transaction_result(self, tx_id: bytes) -> Optional[TransactionResult]:
        return self._results.get(tx_id)

    # --- blocks ---

    def latest_block(self) -> Block:
        return self._blocks[-1]

    def commit_block(self) -> Block:
        pending = self._pending
        if not pending.execution_complete:
            raise ChainTestError(
                ErrorCode.PENDING_BLOCK_COMMIT_BEFORE_EXECUTION,
                "pending block has unexecuted transactions",
            )

        parent = self.latest_block()
        tx_ids = [tx_id for tx_id, _ in pending.transactions]
        height = parent.height + 1
        block = Block(
            height=height,
            id=block_id(height, parent.id, tx_ids),
            parent_id=parent.id,
            transaction_ids=tx_ids,
        )

        state = pending.state
        state.block_height = height
        self._state = state
        self._blocks.append(block)
        for result in pending.results:
            self._events.extend(result.events)
        self._pending = PendingBlock(deepcopy(state))

        logger.debug("committed block %d with %d transactions", height, len(tx_ids))
        return block

    def events(self, event_type: Optional[str] = None) -> List[Event]:
        if event_type is None:
            return list(self._events)
        return [event for event in self._events if event.type == event_type]
