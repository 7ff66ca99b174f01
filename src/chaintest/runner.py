"""Test runner: loads a test script and runs its test functions.

Test functions are the top-level functions whose name starts with ``test``;
they take no arguments and return nothing. Optional lifecycle hooks:

- ``setup``: once, before any test function
- ``beforeEach`` / ``afterEach``: around every test function
- ``tearDown``: once, after the last test function

Usage:
    runner = TestRunner(runtime, blockchain_factory).with_import_resolver(resolve)
    results, error = runner.run_tests(code)
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .config import (
    AFTER_EACH_FUNCTION_NAME,
    BEFORE_EACH_FUNCTION_NAME,
    SETUP_FUNCTION_NAME,
    TEAR_DOWN_FUNCTION_NAME,
    TEST_FUNCTION_PREFIX,
)
from .backend import FileResolver
from .contracts import ContractRegistry, ContractValueFactory, contract_declaration
from .errors import ErrorCode, ChainTestError, internal_fault
from .framework import BlockchainFactory, TestFramework
from .locations import (
    CRYPTO_LOCATION,
    TEST_CONTRACT_LOCATION,
    TEST_SCRIPT_LOCATION,
    AddressLocation,
    Location,
    is_reserved,
)
from .logs import LogCollectionHandler, new_program_logger
from .runtime import (
    CompositeType,
    ConstructorGenerator,
    Environment,
    Interpreter,
    Program,
    Runtime,
)
from .types import EMPTY_ADDRESS, Configuration

logger = logging.getLogger(__name__)

ImportResolver = Callable[[Location], str]


@dataclass
class Result:
    """Outcome of one test function."""
    test_name: str
    error: Optional[Exception] = None

    @property
    def passed(self) -> bool:
        return self.error is None


def shuffle_test_cases(cases: Sequence[str], seed: int) -> List[str]:
    """Return ``cases`` shuffled by ``seed``; seeds <= 0 keep declaration order."""
    ordered = list(cases)
    if seed > 0:
        random.Random(seed).shuffle(ordered)
    return ordered


def _first_error(
    hook_error: Optional[Exception], tear_down_error: Optional[Exception]
) -> Optional[Exception]:
    if hook_error is None:
        return tear_down_error
    if tear_down_error is not None:
        logger.warning("tearDown failed after an earlier error: %s", tear_down_error)
    return hook_error


class TestRunner:
    """Runs the test functions of test scripts against emulator backends."""

    __test__ = False

    def __init__(
        self,
        runtime: Runtime,
        blockchain_factory: BlockchainFactory,
        *,
        logger: Optional[logging.Logger] = None,
    ):
        self._runtime = runtime
        self._blockchain_factory = blockchain_factory

        # Ledger holding system contracts for import resolution.
        self._blockchain = blockchain_factory()
        self._contracts = ContractRegistry()

        self._import_resolver: Optional[ImportResolver] = None
        self._file_resolver: Optional[FileResolver] = None
        self._coverage_report: Any = None
        self._configuration: Optional[Configuration] = None
        self._random_seed = 0

        self._log_collection = LogCollectionHandler()
        self.logger = logger if logger is not None else new_program_logger()
        self.logger.addHandler(self._log_collection)

    # --- configuration ---

    def with_import_resolver(self, resolver: ImportResolver) -> "TestRunner":
        self._import_resolver = resolver
        return self

    def with_file_resolver(self, resolver: FileResolver) -> "TestRunner":
        self._file_resolver = resolver
        return self

    def with_coverage_report(self, report: Any) -> "TestRunner":
        self._coverage_report = report
        return self

    def with_random_seed(self, seed: int) -> "TestRunner":
        self._random_seed = seed
        return self

    def with_configuration(self, configuration: Optional[Configuration]) -> "TestRunner":
        self._configuration = configuration
        return self

    @property
    def contracts(self) -> ContractRegistry:
        return self._contracts

    def logs(self) -> List[str]:
        """Every program log line captured since this runner was created."""
        return list(self._log_collection.logs)

    def close(self) -> None:
        """Detach the log collector from the program logger."""
        self.logger.removeHandler(self._log_collection)

    def __enter__(self) -> "TestRunner":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # --- running ---

    def run_test(self, script: str, func_name: str) -> Tuple[Optional[Result], Optional[Exception]]:
        """Run a single test function, with the lifecycle hooks around it."""
        try:
            return self._run_test(script, func_name)
        except Exception as exc:
            return None, internal_fault(exc)

    def run_tests(self, script: str) -> Tuple[List[Result], Optional[Exception]]:
        """Run every test function of ``script``."""
        try:
            return self._run_tests(script)
        except Exception as exc:
            return [], internal_fault(exc)

    def _run_test(self, script: str, func_name: str) -> Tuple[Optional[Result], Optional[Exception]]:
        try:
            _, inter = self.parse_check_and_interpret(script)
        except ChainTestError as exc:
            return None, exc

        error = self._run_hook(inter, SETUP_FUNCTION_NAME)
        if error is not None:
            return None, error

        result = None
        hook_error = self._run_hook(inter, BEFORE_EACH_FUNCTION_NAME)
        if hook_error is None:
            test_error = self.invoke_test_function(inter, func_name)
            hook_error = self._run_hook(inter, AFTER_EACH_FUNCTION_NAME)
            if hook_error is None:
                result = Result(func_name, test_error)

        tear_down_error = self._run_hook(inter, TEAR_DOWN_FUNCTION_NAME)
        return result, _first_error(hook_error, tear_down_error)

    def _run_tests(self, script: str) -> Tuple[List[Result], Optional[Exception]]:
        try:
            program, inter = self.parse_check_and_interpret(script)
        except ChainTestError as exc:
            return [], exc

        error = self._run_hook(inter, SETUP_FUNCTION_NAME)
        if error is not None:
            return [], error

        cases = shuffle_test_cases(
            [decl.name for decl in program.functions if decl.name.startswith(TEST_FUNCTION_PREFIX)],
            self._random_seed,
        )
        logger.debug("running %d test functions", len(cases))

        results: List[Result] = []
        hook_error: Optional[Exception] = None
        for name in cases:
            hook_error = self._run_hook(inter, BEFORE_EACH_FUNCTION_NAME)
            if hook_error is not None:
                break

            test_error = self.invoke_test_function(inter, name)

            hook_error = self._run_hook(inter, AFTER_EACH_FUNCTION_NAME)
            if hook_error is not None:
                break

            results.append(Result(name, test_error))

        tear_down_error = self._run_hook(inter, TEAR_DOWN_FUNCTION_NAME)
        return results, _first_error(hook_error, tear_down_error)

    def invoke_test_function(self, inter: Interpreter, func_name: str) -> Optional[Exception]:
        """Invoke ``func_name`` and return the error it raised, if any."""
        try:
            inter.invoke(func_name)
        except Exception as exc:
            logger.debug("%s failed: %s", func_name, exc)
            return exc
        return None

    def _run_hook(self, inter: Interpreter, name: str) -> Optional[Exception]:
        if not inter.has_global(name):
            return None
        return self.invoke_test_function(inter, name)

    # --- loading ---

    def parse_check_and_interpret(self, script: str) -> Tuple[Program, Interpreter]:
        imports: Dict[Location, Program] = {}
        contract_values = ContractValueFactory(self._contracts)
        framework = TestFramework(
            self._runtime,
            self._blockchain_factory,
            file_resolver=self._file_resolver,
            contracts=self._contracts,
            configuration=self._configuration,
        )

        def check_import(location: Location) -> Program:
            return self._check_import(location, imports)

        def import_location(inter: Interpreter, location: Location) -> Interpreter:
            return inter.new_sub_interpreter(self._check_import(location, imports), location)

        def contract_value(
            inter: Interpreter,
            composite_type: CompositeType,
            constructor_generator: ConstructorGenerator,
        ) -> Any:
            location = composite_type.location
            if location == CRYPTO_LOCATION:
                return self._runtime.new_crypto_contract(inter, constructor_generator(EMPTY_ADDRESS))
            if location == TEST_CONTRACT_LOCATION:
                return self._runtime.new_test_contract(
                    inter, framework, constructor_generator(EMPTY_ADDRESS)
                )
            return contract_values.value(inter, composite_type, constructor_generator)

        env = Environment(
            location=TEST_SCRIPT_LOCATION,
            logger=self.logger,
            check_import=check_import,
            contract_declaration=contract_declaration,
            import_location=import_location,
            contract_value=contract_value,
            coverage_report=self._coverage_report,
        )

        if self._coverage_report is not None:
            for location in (CRYPTO_LOCATION, TEST_CONTRACT_LOCATION, TEST_SCRIPT_LOCATION):
                self._coverage_report.exclude_location(location)

        program = self._parse_and_check(script, env)
        _check_test_functions(program)

        try:
            inter = self._runtime.interpret(program, env)
        except ChainTestError:
            raise
        except Exception as exc:
            raise internal_fault(exc) from exc

        return program, inter

    def _parse_and_check(self, code: str, env: Environment) -> Program:
        try:
            return self._runtime.parse_and_check(code, env)
        except ChainTestError:
            raise
        except Exception as exc:
            raise ChainTestError(
                ErrorCode.PARSE_CHECK_FAILED, f"{env.location}: {exc}"
            ) from exc

    def _check_import(self, location: Location, imports: Dict[Location, Program]) -> Program:
        program = imports.get(location)
        if program is None:
            if is_reserved(location):
                program = self._runtime.builtin_program(location)
            else:
                program = self._parse_and_check_import(location, imports)
            imports[location] = program
        return program

    def _parse_and_check_import(
        self, location: Location, imports: Dict[Location, Program]
    ) -> Program:
        if self._import_resolver is None:
            raise ChainTestError(
                ErrorCode.IMPORT_RESOLVER_NOT_PROVIDED, "import resolver is not provided"
            )

        try:
            code = self._import_resolver(location)
        except Exception as exc:
            if not isinstance(location, AddressLocation):
                raise
            # Fall back to contracts deployed on the runner's ledger.
            logger.debug("resolving %s from the ledger", location)
            try:
                code = self._deployed_contract_code(location)
            except ChainTestError as fallback_error:
                raise fallback_error from exc

        return self._parse_and_check_dependency(code, location, imports)

    def _parse_and_check_dependency(
        self, code: str, location: Location, imports: Dict[Location, Program]
    ) -> Program:
        env = Environment(
            location=location,
            logger=self.logger,
            check_import=self._nested_import_handler(location, imports),
            contract_declaration=contract_declaration,
        )
        return self._parse_and_check(code, env)

    def _nested_import_handler(
        self, parent: Location, imports: Dict[Location, Program]
    ) -> Callable[[Location], Program]:
        def check_nested_import(location: Location) -> Program:
            if not is_reserved(location) and not (
                isinstance(parent, AddressLocation) and isinstance(location, AddressLocation)
            ):
                raise ChainTestError(
                    ErrorCode.NESTED_IMPORT_UNSUPPORTED,
                    f"nested imports are not supported: {location} imported by {parent}",
                )

            program = imports.get(location)
            if program is None:
                if is_reserved(location):
                    program = self._runtime.builtin_program(location)
                else:
                    program = self._parse_and_check_dependency(
                        self._deployed_contract_code(location), location, imports
                    )
                imports[location] = program
            return program

        return check_nested_import

    def _deployed_contract_code(self, location: AddressLocation) -> str:
        account = self._blockchain.get_account(location.address)
        code = account.contracts.get(location.name)
        if code is None:
            raise ChainTestError(
                ErrorCode.CONTRACT_NOT_FOUND,
                f"contract {location.name} not found on {location.address}",
            )
        return code.decode() if isinstance(code, (bytes, bytearray)) else code


def _check_test_functions(program: Program) -> None:
    for decl in program.functions:
        if not decl.name.startswith(TEST_FUNCTION_PREFIX):
            continue
        if decl.parameters:
            raise ChainTestError(
                ErrorCode.INVALID_TEST_FUNCTION,
                f"test function {decl.name} should have no arguments",
            )
        if decl.return_type is not None:
            raise ChainTestError(
                ErrorCode.INVALID_TEST_FUNCTION,
                f"test function {decl.name} should have no return values",
            )
