"""Blockchain backend exposed to test scripts, driving an emulator instance.

Every transaction is proposed and paid for by the service account. Within a
pending block the proposal sequence number is the service key's committed
sequence number plus the number of transactions already queued in the block.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from .contracts import ContractInvocation, ContractRegistry
from .crypto import InMemorySigner, generate_key
from .errors import ErrorCode, ChainTestError, internal_fault
from .locations import StringLocation
from .runtime import Blockchain, Interpreter, Runtime
from .types import (
    Account,
    AccountKey,
    Address,
    Configuration,
    Event,
    ExportedValue,
    ProposalKey,
    PublicKey,
    ScriptResult,
    Transaction,
    TransactionResult,
)

logger = logging.getLogger(__name__)

FileResolver = Callable[[str], str]

DEPLOY_CONTRACT_TRANSACTION_TEMPLATE = """\
transaction({parameters}) {{
    prepare(signer: AuthAccount) {{
        signer.contracts.add(name: "{name}", code: "{code}".decodeHex(){arguments})
    }}
}}
"""


@dataclass
class KeyInfo:
    account_key: AccountKey
    signer: InMemorySigner


class EmulatorBackend:
    """Ledger operations available to a test script."""

    def __init__(
        self,
        runtime: Runtime,
        blockchain: Blockchain,
        *,
        file_resolver: Optional[FileResolver] = None,
        contracts: Optional[ContractRegistry] = None,
    ):
        self._runtime = runtime
        self._blockchain = blockchain
        self._file_resolver = file_resolver
        self._contracts = contracts if contracts is not None else ContractRegistry()
        self._configuration: Optional[Configuration] = None

        # Transactions queued in the current block.
        self._block_offset = 0

        self._account_keys: Dict[Address, Dict[bytes, KeyInfo]] = {}

    @property
    def blockchain(self) -> Blockchain:
        return self._blockchain

    @property
    def block_offset(self) -> int:
        return self._block_offset

    @property
    def contracts(self) -> ContractRegistry:
        return self._contracts

    # --- accounts ---

    def create_account(self) -> Account:
        account_key, signer = generate_key()
        address = self._blockchain.create_account([account_key])

        self._account_keys[address] = {
            account_key.public_key: KeyInfo(account_key, signer),
        }
        logger.debug("created account %s", address)

        return Account(
            address=address,
            public_key=PublicKey(account_key.public_key, account_key.sign_algo),
        )

    def service_account(self) -> Account:
        service_key = self._blockchain.service_key()
        return Account(
            address=service_key.address,
            public_key=PublicKey(service_key.public_key, service_key.sign_algo),
        )

    # --- scripts ---

    def run_script(self, inter: Interpreter, code: str, arguments: Sequence[Any]) -> ScriptResult:
        """Execute a read-only script. Failures are reported in the result."""
        try:
            encoded = [
                self._runtime.export_value(inter, argument).encode() for argument in arguments
            ]
            result = self._blockchain.execute_script(self.replace_imports(code), encoded)
            if result.error is not None:
                return ScriptResult(error=result.error, logs=result.logs)

            value = None
            if result.value is not None:
                value = self._runtime.import_value(inter, result.value)
        except Exception as exc:
            return ScriptResult(error=internal_fault(exc))

        return ScriptResult(value=value, logs=result.logs)

    # --- transactions ---

    def add_transaction(
        self,
        inter: Interpreter,
        code: str,
        authorizers: Sequence[Address],
        signers: Sequence[Account],
        arguments: Sequence[Any],
    ) -> None:
        tx = self._new_transaction(self.replace_imports(code), authorizers)
        for argument in arguments:
            tx.add_argument(self._runtime.export_value(inter, argument))

        self._sign_transaction(tx, signers)
        self._submit(tx)

    def execute_next_transaction(self) -> Optional[TransactionResult]:
        """Execute the next queued transaction, or return None if there is none."""
        try:
            result = self._blockchain.execute_next_transaction()
        except ChainTestError as exc:
            if exc.code == ErrorCode.PENDING_BLOCK_TRANSACTIONS_EXHAUSTED:
                return None
            return TransactionResult(error=exc)

        if result.error is not None:
            return TransactionResult(
                transaction_id=result.transaction_id, error=result.error, logs=result.logs
            )
        return result

    def commit_block(self) -> None:
        # The offset restarts even if the commit is rejected.
        self._block_offset = 0
        self._blockchain.commit_block()

    def deploy_contract(
        self,
        inter: Interpreter,
        name: str,
        code: str,
        account: Account,
        arguments: Sequence[Any],
    ) -> None:
        """Deploy ``code`` as contract ``name`` to ``account`` and commit the block.

        The deployment gets a block of its own: it is rejected while transactions
        queued through this backend are still pending.
        """
        if self._block_offset > 0:
            raise ChainTestError(
                ErrorCode.PENDING_BLOCK_NOT_EMPTY,
                f"cannot deploy {name}: {self._block_offset} transaction(s) pending, commit the block first",
            )

        code = self.replace_imports(code)
        exported = [self._runtime.export_value(inter, argument) for argument in arguments]

        script = DEPLOY_CONTRACT_TRANSACTION_TEMPLATE.format(
            parameters=", ".join(
                f"arg{i}: {value.type_id}" for i, value in enumerate(exported)
            ),
            name=name,
            code=code.encode().hex(),
            arguments="".join(f", arg{i}" for i in range(len(exported))),
        )

        tx = self._new_transaction(script, [account.address])
        for value in exported:
            tx.add_argument(value)

        self._sign_transaction(tx, [account])
        self._submit(tx)

        result = self.execute_next_transaction()
        # Commit whatever happened so no deployment is left pending.
        self.commit_block()

        if result is None:
            raise ChainTestError(
                ErrorCode.TRANSACTION_FAILED, f"deployment of {name} was not executed"
            )
        if result.error is not None:
            raise result.error

        self._contracts.record(
            ContractInvocation(
                name=name,
                constructor_arguments=tuple(arguments),
                argument_types=tuple(value.type_id for value in exported),
                address=account.address,
            )
        )
        logger.debug("deployed contract %s to %s", name, account.address)

    def events(self, event_type: Optional[str] = None) -> List[Event]:
        return self._blockchain.events(event_type)

    # --- files / configuration ---

    def read_file(self, path: str) -> str:
        if self._file_resolver is None:
            raise ChainTestError(ErrorCode.FILE_RESOLVER_NOT_PROVIDED, "file resolver is not provided")
        return self._file_resolver(path)

    def use_configuration(self, configuration: Optional[Configuration]) -> None:
        self._configuration = configuration

    def replace_imports(self, code: str) -> str:
        """Rewrite source-path imports that the configuration maps to an address."""
        if self._configuration is None:
            return code

        addresses = self._configuration.addresses
        parts: List[str] = []
        position = 0

        for decl in self._runtime.parse_imports(code):
            location = decl.location
            if not isinstance(location, StringLocation) or location.path not in addresses:
                continue

            parts.append(code[position:decl.location_start])
            parts.append(str(addresses[location.path]))
            position = decl.end

        parts.append(code[position:])
        return "".join(parts)

    # --- internals ---

    def _new_transaction(self, code: str, authorizers: Sequence[Address]) -> Transaction:
        service_key = self._blockchain.service_key()
        sequence_number = service_key.sequence_number + self._block_offset

        tx = Transaction(
            script=code.encode(),
            proposal_key=ProposalKey(service_key.address, service_key.index, sequence_number),
            payer=service_key.address,
        )
        for authorizer in authorizers:
            tx.add_authorizer(authorizer)
        return tx

    def _sign_transaction(self, tx: Transaction, signers: Sequence[Account]) -> None:
        service_key = self._blockchain.service_key()

        for account in reversed(signers):
            # The service account pays, so its signature goes on the envelope.
            if account.address == service_key.address:
                continue
            key_info = self._key_info(account)
            tx.sign_payload(account.address, key_info.account_key.index, key_info.signer)

        tx.sign_envelope(service_key.address, service_key.index, service_key.signer())

    def _key_info(self, account: Account) -> KeyInfo:
        key_info = self._account_keys.get(account.address, {}).get(account.public_key.public_key)
        if key_info is None:
            raise ChainTestError(
                ErrorCode.ACCOUNT_KEY_NOT_FOUND,
                f"no signing key for account {account.address}",
            )
        return key_info

    def _submit(self, tx: Transaction) -> None:
        self._blockchain.add_transaction(tx)
        self._block_offset += 1
