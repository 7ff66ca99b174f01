"""Interfaces of the collaborators the test runner drives.

The scripting language's parser, checker and interpreter (`Runtime`) and the
ledger-side code executor (`VirtualMachine`) are supplied by the embedder.
The runner and the backend only rely on the surface declared here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Protocol, Sequence, Tuple

from .locations import Location
from .types import Address, ExportedValue

if TYPE_CHECKING:
    from .emulator import ExecutionContext
    from .framework import TestFramework


@dataclass(frozen=True)
class FunctionDeclaration:
    name: str
    parameters: Tuple[str, ...] = ()
    return_type: Optional[str] = None


@dataclass(frozen=True)
class ImportDeclaration:
    identifiers: Tuple[str, ...]
    location: Location
    # Offset of the first character of the location token.
    location_start: int
    # Offset one past the last character of the declaration.
    end: int


@dataclass(frozen=True)
class CompositeType:
    location: Location
    identifier: str
    constructor_parameter_types: Tuple[str, ...] = ()


class DeclarationKind(str, Enum):
    CONTRACT = "contract"
    STRUCTURE = "struct"
    RESOURCE = "resource"


@dataclass(frozen=True)
class CompositeDeclaration:
    name: str
    composite_type: CompositeType
    constructor_type: Any = None
    argument_labels: Tuple[str, ...] = ()
    kind: DeclarationKind = DeclarationKind.CONTRACT
    doc_string: str = ""


@dataclass(frozen=True)
class ValueDeclaration:
    """Checker-side declaration of a value the runtime should predeclare."""
    name: str
    type: Any
    kind: DeclarationKind
    argument_labels: Tuple[str, ...] = ()
    doc_string: str = ""


@dataclass
class Program:
    location: Location
    functions: List[FunctionDeclaration] = field(default_factory=list)
    imports: List[ImportDeclaration] = field(default_factory=list)
    # Checked-type metadata, opaque to the runner.
    elaboration: Any = None
    code: str = ""


class Interpreter(Protocol):
    location: Location

    def has_global(self, name: str) -> bool:
        ...

    def invoke(self, name: str, *arguments: Any) -> Any:
        ...

    def new_sub_interpreter(self, program: Program, location: Location) -> "Interpreter":
        ...

    def invoke_function_value(
        self,
        function: Any,
        arguments: Sequence[Any],
        argument_types: Sequence[str],
        parameter_types: Sequence[str],
    ) -> Any:
        ...


ConstructorGenerator = Callable[[Address], Any]


@dataclass
class Environment:
    """Handlers wired into the runtime for one parse/check/interpret pass."""
    location: Location
    logger: logging.Logger
    # Checker side: resolve an import to a checked program.
    check_import: Callable[[Location], Program]
    contract_declaration: Callable[[CompositeDeclaration], ValueDeclaration]
    # Interpreter side: resolve an import to a (sub-)interpreter.
    import_location: Optional[Callable[[Interpreter, Location], Interpreter]] = None
    contract_value: Optional[
        Callable[[Interpreter, CompositeType, ConstructorGenerator], Any]
    ] = None
    coverage_report: Any = None


class Runtime(Protocol):
    def parse_and_check(self, code: str, environment: Environment) -> Program:
        ...

    def parse_imports(self, code: str) -> List[ImportDeclaration]:
        ...

    def interpret(self, program: Program, environment: Environment) -> Interpreter:
        ...

    def builtin_program(self, location: Location) -> Program:
        ...

    def new_crypto_contract(self, interpreter: Interpreter, constructor: Any) -> Any:
        ...

    def new_test_contract(
        self, interpreter: Interpreter, framework: "TestFramework", constructor: Any
    ) -> Any:
        ...

    def export_value(self, interpreter: Interpreter, value: Any) -> ExportedValue:
        ...

    def import_value(self, interpreter: Interpreter, value: ExportedValue) -> Any:
        ...


class VirtualMachine(Protocol):
    """Executes ledger code on behalf of the emulator."""

    def run_script(
        self, code: str, arguments: List[ExportedValue], context: "ExecutionContext"
    ) -> Optional[ExportedValue]:
        ...

    def run_transaction(
        self, code: str, arguments: List[ExportedValue], context: "ExecutionContext"
    ) -> None:
        ...


class Blockchain(Protocol):
    """Ledger-facing calls the backend and the runner depend on."""

    def service_key(self) -> Any:
        ...

    def get_account(self, address: Address) -> Any:
        ...

    def create_account(self, keys: List[Any], contracts: Optional[dict] = None) -> Address:
        ...

    def execute_script(self, code: str, arguments: List[bytes]) -> Any:
        ...

    def add_transaction(self, tx: Any) -> None:
        ...

    def execute_next_transaction(self) -> Any:
        ...

    def commit_block(self) -> Any:
        ...

    def events(self, event_type: Optional[str] = None) -> List[Any]:
        ...
