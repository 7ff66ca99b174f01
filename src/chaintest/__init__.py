"""Test runner and emulated blockchain backend for smart-contract test scripts."""

from .backend import EmulatorBackend
from .config import RunnerConfig
from .contracts import ContractInvocation, ContractRegistry
from .emulator import Emulator
from .errors import ChainTestError, ErrorCode
from .framework import TestFramework
from .locations import (
    BLOCKCHAIN_HELPERS_LOCATION,
    CRYPTO_LOCATION,
    TEST_CONTRACT_LOCATION,
    TEST_SCRIPT_LOCATION,
    AddressLocation,
    IdentifierLocation,
    ScriptLocation,
    StringLocation,
)
from .logs import LogCollectionHandler
from .reporter import pretty_print_result, pretty_print_results
from .runner import Result, TestRunner, shuffle_test_cases
from .types import Account, Address, Configuration, ExportedValue, ScriptResult, TransactionResult

__all__ = [
    "Account",
    "Address",
    "AddressLocation",
    "BLOCKCHAIN_HELPERS_LOCATION",
    "CRYPTO_LOCATION",
    "ChainTestError",
    "Configuration",
    "ContractInvocation",
    "ContractRegistry",
    "Emulator",
    "EmulatorBackend",
    "ErrorCode",
    "ExportedValue",
    "IdentifierLocation",
    "LogCollectionHandler",
    "Result",
    "RunnerConfig",
    "ScriptLocation",
    "ScriptResult",
    "StringLocation",
    "TEST_CONTRACT_LOCATION",
    "TEST_SCRIPT_LOCATION",
    "TestFramework",
    "TestRunner",
    "TransactionResult",
    "pretty_print_result",
    "pretty_print_results",
    "shuffle_test_cases",
]
