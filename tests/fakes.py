"""Stand-in language runtime and ledger VM for the test suite.

Scripts are Python source extended with one declaration form:

    import Name from "./path.cdc"     string-path import
    import Name from 0x01             address import
    import Name                       built-in module

Import lines are blanked before the remainder is parsed with ``ast`` and run
with ``exec``. Top-level classes are contracts; top-level functions are what
the runner sees as the script's functions. Ledger code follows the same rules:
scripts declare ``main(*args)`` and transactions ``transaction(ctx, *args)``.
"""

from __future__ import annotations

import ast
import hashlib
import re
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Sequence

from chaintest.emulator import Emulator, ExecutionContext
from chaintest.errors import ChainTestError
from chaintest.locations import (
    BLOCKCHAIN_HELPERS_LOCATION,
    CRYPTO_LOCATION,
    TEST_CONTRACT_LOCATION,
    AddressLocation,
    IdentifierLocation,
    Location,
    StringLocation,
)
from chaintest.runtime import (
    CompositeDeclaration,
    CompositeType,
    Environment,
    FunctionDeclaration,
    ImportDeclaration,
    Program,
    ValueDeclaration,
)
from chaintest.types import Address, Configuration, ExportedValue, ProposalKey, Transaction

IMPORT = re.compile(
    r'^import[ \t]+(?P<names>\w+(?:[ \t]*,[ \t]*\w+)*)'
    r'(?:[ \t]+from[ \t]+(?P<location>"[^"\n]*"|0x[0-9a-fA-F]+))?[ \t]*$',
    re.MULTILINE,
)

DEPLOY = re.compile(
    r'signer\.contracts\.add\(name: "(?P<name>\w+)", code: "(?P<code>[0-9a-f]*)"\.decodeHex\(\)'
)

HELPERS_SOURCE = """\
def create_accounts(blockchain, count):
    return [blockchain.create_account() for _ in range(count)]
"""

_TYPE_IDS = {"int": "Int", "str": "String", "bool": "Bool", "list": "Array"}


class FakeCheckError(Exception):
    pass


class FakeRuntimeError(Exception):
    pass


class FakeExecutionError(Exception):
    pass


class AssertionFailure(Exception):
    pass


# --- values ---


def to_exported(value: Any) -> ExportedValue:
    if value is None:
        return ExportedValue("Optional", None)
    if isinstance(value, bool):
        return ExportedValue("Bool", value)
    if isinstance(value, int):
        return ExportedValue("Int", str(value))
    if isinstance(value, str):
        return ExportedValue("String", value)
    if isinstance(value, Address):
        return ExportedValue("Address", str(value))
    if isinstance(value, (list, tuple)):
        return ExportedValue("Array", [to_exported(item).to_json() for item in value])
    raise FakeRuntimeError(f"cannot export value of type {type(value).__name__}")


def from_exported(value: ExportedValue) -> Any:
    type_id, payload = value.type_id, value.payload
    if type_id in ("Optional", "Void"):
        if payload is None:
            return None
        return from_exported(ExportedValue(payload["type"], payload.get("value")))
    if type_id == "Bool":
        return bool(payload)
    if type_id == "Int":
        return int(payload)
    if type_id == "String":
        return str(payload)
    if type_id == "Address":
        return Address.from_hex(payload)
    if type_id == "Array":
        return [from_exported(ExportedValue(item["type"], item.get("value"))) for item in payload]
    raise FakeRuntimeError(f"cannot import value of type {type_id}")


# --- parsing ---


def _location(names: Sequence[str], token: Optional[str]) -> Location:
    if token is None:
        return IdentifierLocation(names[0])
    if token.startswith('"'):
        return StringLocation(token[1:-1])
    return AddressLocation(Address.from_hex(token), names[0])


def strip_imports(code: str) -> str:
    return IMPORT.sub("", code)


def _type_id(annotation: Optional[ast.expr]) -> str:
    if annotation is None:
        return "AnyStruct"
    text = ast.unparse(annotation)
    return _TYPE_IDS.get(text, text)


def _composite_type(location: Location, node: ast.ClassDef) -> CompositeType:
    parameters: tuple = ()
    for item in node.body:
        if isinstance(item, ast.FunctionDef) and item.name == "__init__":
            parameters = tuple(_type_id(arg.annotation) for arg in item.args.args[1:])
    return CompositeType(location, node.name, parameters)


def _function(node: ast.FunctionDef) -> FunctionDeclaration:
    args = node.args
    parameters = [arg.arg for arg in args.posonlyargs + args.args + args.kwonlyargs]
    if args.vararg is not None:
        parameters.append(args.vararg.arg)
    return FunctionDeclaration(
        name=node.name,
        parameters=tuple(parameters),
        return_type=ast.unparse(node.returns) if node.returns is not None else None,
    )


@dataclass
class FakeElaboration:
    composites: Dict[str, CompositeType] = field(default_factory=dict)
    globals: set = field(default_factory=set)
    declarations: Dict[str, ValueDeclaration] = field(default_factory=dict)


def _elaborate(location: Location, code: str) -> tuple:
    try:
        tree = ast.parse(strip_imports(code), filename=str(location))
    except SyntaxError as exc:
        raise FakeCheckError(f"syntax error: {exc.msg} (line {exc.lineno})") from exc

    functions = []
    elaboration = FakeElaboration()
    for node in tree.body:
        if isinstance(node, ast.FunctionDef):
            functions.append(_function(node))
            elaboration.globals.add(node.name)
        elif isinstance(node, ast.ClassDef):
            elaboration.composites[node.name] = _composite_type(location, node)
            elaboration.globals.add(node.name)
        elif isinstance(node, ast.Assign):
            for target in node.targets:
                if isinstance(target, ast.Name):
                    elaboration.globals.add(target.id)
    return functions, elaboration


# --- interpretation ---


class LazyValue:
    """Defers building a value until the script first touches it."""

    def __init__(self, factory: Callable[[], Any]):
        self._factory = factory
        self._resolved = False
        self._value: Any = None

    def resolve(self) -> Any:
        if not self._resolved:
            self._value = self._factory()
            self._resolved = True
        return self._value

    def __getattr__(self, name: str) -> Any:
        return getattr(self.resolve(), name)

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self.resolve()(*args, **kwargs)


@dataclass(frozen=True)
class BuiltinConstructor:
    name: str


class FakeInterpreter:
    def __init__(self, runtime: "FakeRuntime", program: Program, env: Optional[Environment]):
        self.runtime = runtime
        self.program = program
        self.location = program.location
        self.env = env
        self.globals: Dict[str, Any] = {"log": self._log}

    def load(self) -> "FakeInterpreter":
        for decl in self.program.imports:
            sub = self.env.import_location(self, decl.location)
            for name in decl.identifiers:
                self.globals[name] = sub.export(name)
        exec(compile(self.program.code, str(self.location), "exec"), self.globals)
        return self

    def export(self, name: str) -> Any:
        composite = self.program.elaboration.composites.get(name)
        if composite is not None:
            return LazyValue(
                lambda: self.env.contract_value(self, composite, self.constructor_generator(name))
            )
        if name in self.globals:
            return self.globals[name]
        # Whole-module import: expose every public global.
        return SimpleNamespace(
            **{key: value for key, value in self.globals.items() if not key.startswith("_")}
        )

    def constructor_generator(self, name: str) -> Callable[[Address], Any]:
        def generate(address: Address) -> Any:
            return self.globals.get(name, BuiltinConstructor(name))

        return generate

    def _log(self, value: Any) -> None:
        message = f'"{value}"' if isinstance(value, str) else repr(value)
        self.env.logger.info("LOG: %s", message)

    # --- Interpreter ---

    def has_global(self, name: str) -> bool:
        return name in self.globals

    def invoke(self, name: str, *arguments: Any) -> Any:
        function = self.globals.get(name)
        if not callable(function):
            raise FakeRuntimeError(f"cannot find function {name}")
        return function(*arguments)

    def new_sub_interpreter(self, program: Program, location: Location) -> "FakeInterpreter":
        sub = FakeInterpreter(self.runtime, program, self.env)
        sub.location = location
        return sub.load()

    def invoke_function_value(
        self,
        function: Any,
        arguments: Sequence[Any],
        argument_types: Sequence[str],
        parameter_types: Sequence[str],
    ) -> Any:
        if len(arguments) != len(parameter_types):
            raise FakeRuntimeError(
                f"incorrect number of arguments: expected {len(parameter_types)}, "
                f"got {len(arguments)}"
            )
        for argument_type, parameter_type in zip(argument_types, parameter_types):
            if parameter_type != "AnyStruct" and argument_type != parameter_type:
                raise FakeRuntimeError(
                    f"type mismatch: expected {parameter_type}, got {argument_type}"
                )
        return function(*arguments)


class FakeBlockchain:
    """Blockchain handle the fake testing module gives scripts."""

    def __init__(self, backend: Any, inter: FakeInterpreter):
        self.backend = backend
        self._inter = inter

    def create_account(self):
        return self.backend.create_account()

    def service_account(self):
        return self.backend.service_account()

    def execute_script(self, code: str, arguments: Sequence[Any] = ()):
        return self.backend.run_script(self._inter, code, list(arguments))

    def add_transaction(self, code, authorizers=(), signers=(), arguments=()):
        self.backend.add_transaction(
            self._inter, code, list(authorizers), list(signers), list(arguments)
        )

    def execute_next_transaction(self):
        return self.backend.execute_next_transaction()

    def commit_block(self):
        self.backend.commit_block()

    def execute_transaction(self, code, signers=(), arguments=()):
        self.add_transaction(code, [signer.address for signer in signers], signers, arguments)
        result = self.execute_next_transaction()
        self.commit_block()
        return result

    def deploy_contract(self, name, code, account, arguments=()):
        try:
            self.backend.deploy_contract(self._inter, name, code, account, list(arguments))
        except ChainTestError as exc:
            return exc
        return None

    def use_configuration(self, addresses: Dict[str, Any]) -> None:
        self.backend.use_configuration(
            Configuration(
                addresses={
                    path: address if isinstance(address, Address) else Address.from_hex(address)
                    for path, address in addresses.items()
                }
            )
        )

    def events(self, event_type=None):
        return self.backend.events(event_type)


class FakeTestContract:
    def __init__(self, inter: FakeInterpreter, framework: Any):
        self._inter = inter
        self._framework = framework

    def new_emulator_blockchain(self) -> FakeBlockchain:
        return FakeBlockchain(self._framework.new_emulator_backend(), self._inter)

    def read_file(self, path: str) -> str:
        return self._framework.read_file(path)

    def expect(self, condition: Any, message: str = "assertion failed") -> None:
        if not condition:
            raise AssertionFailure(message)

    def equal(self, expected: Any, actual: Any) -> None:
        if expected != actual:
            raise AssertionFailure(f"not equal: expected {expected!r}, got {actual!r}")


class FakeCrypto:
    def hash(self, data: str) -> str:
        return hashlib.sha3_256(data.encode()).hexdigest()


class FakeRuntime:
    def __init__(self) -> None:
        # Every location parsed and checked, in order.
        self.checked: List[Location] = []

    def parse_imports(self, code: str) -> List[ImportDeclaration]:
        declarations = []
        for match in IMPORT.finditer(code):
            names = tuple(name.strip() for name in match.group("names").split(","))
            token = match.group("location")
            if token is None:
                start = end = match.end("names")
            else:
                start, end = match.start("location"), match.end("location")
            declarations.append(ImportDeclaration(names, _location(names, token), start, end))
        return declarations

    def parse_and_check(self, code: str, environment: Environment) -> Program:
        self.checked.append(environment.location)
        imports = self.parse_imports(code)
        functions, elaboration = _elaborate(environment.location, code)

        for decl in imports:
            imported = environment.check_import(decl.location)
            for name in decl.identifiers:
                composite = imported.elaboration.composites.get(name)
                if composite is not None:
                    elaboration.declarations[name] = environment.contract_declaration(
                        CompositeDeclaration(name, composite, constructor_type=("constructor", name))
                    )
                elif (
                    name not in imported.elaboration.globals
                    and decl.location != IdentifierLocation(name)
                ):
                    raise FakeCheckError(f"cannot find declaration `{name}` in {decl.location}")

        return Program(
            location=environment.location,
            functions=functions,
            imports=imports,
            elaboration=elaboration,
            code=strip_imports(code),
        )

    def interpret(self, program: Program, environment: Environment) -> FakeInterpreter:
        return FakeInterpreter(self, program, environment).load()

    def builtin_program(self, location: Location) -> Program:
        if location == BLOCKCHAIN_HELPERS_LOCATION:
            functions, elaboration = _elaborate(location, HELPERS_SOURCE)
            return Program(location, functions, [], elaboration, HELPERS_SOURCE)
        if location in (TEST_CONTRACT_LOCATION, CRYPTO_LOCATION):
            name = location.identifier
            elaboration = FakeElaboration(composites={name: CompositeType(location, name)})
            return Program(location, elaboration=elaboration)
        raise FakeCheckError(f"no built-in program at {location}")

    def new_crypto_contract(self, interpreter: FakeInterpreter, constructor: Any) -> FakeCrypto:
        return FakeCrypto()

    def new_test_contract(
        self, interpreter: FakeInterpreter, framework: Any, constructor: Any
    ) -> FakeTestContract:
        return FakeTestContract(interpreter, framework)

    def export_value(self, interpreter: Any, value: Any) -> ExportedValue:
        return to_exported(value)

    def import_value(self, interpreter: Any, value: ExportedValue) -> Any:
        return from_exported(value)


class FakeVM:
    """Runs ledger scripts and transactions written in the fake language."""

    def run_script(
        self, code: str, arguments: List[ExportedValue], context: ExecutionContext
    ) -> Optional[ExportedValue]:
        namespace = self._load(code, context)
        main = namespace.get("main")
        if not callable(main):
            raise FakeExecutionError("script does not declare main")
        value = main(*[from_exported(argument) for argument in arguments])
        return None if value is None else to_exported(value)

    def run_transaction(
        self, code: str, arguments: List[ExportedValue], context: ExecutionContext
    ) -> None:
        deploy = DEPLOY.search(code)
        if deploy is not None:
            source = bytes.fromhex(deploy.group("code")).decode()
            self._deploy(deploy.group("name"), source, arguments, context)
            return

        namespace = self._load(code, context)
        transaction = namespace.get("transaction")
        if not callable(transaction):
            raise FakeExecutionError("transaction does not declare transaction")
        transaction(context, *[from_exported(argument) for argument in arguments])

    def _deploy(
        self, name: str, source: str, arguments: List[ExportedValue], context: ExecutionContext
    ) -> None:
        contract = self._load(source, context).get(name)
        if not isinstance(contract, type):
            raise FakeExecutionError(f"contract {name} is not declared")
        contract(*[from_exported(argument) for argument in arguments])
        context.add_contract(context.authorizers[0], name, source)

    def _load(self, code: str, context: ExecutionContext) -> Dict[str, Any]:
        namespace: Dict[str, Any] = {"log": context.log}
        for match in IMPORT.finditer(code):
            token = match.group("location")
            if token is None or not token.startswith("0x"):
                raise FakeExecutionError(f"cannot import {match.group(0).strip()} on the ledger")
            address = Address.from_hex(token)
            for name in (n.strip() for n in match.group("names").split(",")):
                source = context.get_contract(address, name).decode()
                namespace[name] = self._load(source, context)[name]

        exec(compile(strip_imports(code), "<ledger>", "exec"), namespace)
        return namespace


class FakeCoverageReport:
    def __init__(self) -> None:
        self.excluded: set = set()

    def exclude_location(self, location: Location) -> None:
        self.excluded.add(location)


class RecordingEmulator(Emulator):
    """Emulator that keeps every transaction submitted to it."""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.submitted: List[Transaction] = []

    def add_transaction(self, tx: Transaction) -> None:
        super().add_transaction(tx)
        self.submitted.append(tx)


def service_transaction(
    emulator: Emulator,
    code: str,
    *,
    sequence_number: Optional[int] = None,
    authorizers: Sequence[Address] = (),
    arguments: Sequence[bytes] = (),
    payload_signers: Sequence[tuple] = (),
) -> Transaction:
    """Build a transaction proposed and paid for by the service account."""
    key = emulator.service_key()
    tx = Transaction(
        script=code.encode(),
        proposal_key=ProposalKey(
            key.address,
            key.index,
            key.sequence_number if sequence_number is None else sequence_number,
        ),
        payer=key.address,
        arguments=list(arguments),
        authorizers=list(authorizers),
    )
    for address, key_index, signer in payload_signers:
        tx.sign_payload(address, key_index, signer)
    tx.sign_envelope(key.address, key.index, key.signer())
    return tx
