"""chaintest error codes and exceptions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ErrorCategory(IntEnum):
    SUCCESS = 0x00
    VALIDATION = 0x01
    STATE = 0x02
    BLOCK = 0x03
    EXECUTION = 0x04
    LOADING = 0x05
    INTERNAL = 0xFF


class ErrorCode(IntEnum):
    # Success
    SUCCESS = 0x0000

    # Validation
    INVALID_FORMAT = 0x0100
    INVALID_SIGNATURE = 0x0101
    MISSING_SIGNATURE = 0x0102
    INVALID_SEQUENCE_NUMBER = 0x0103
    DUPLICATE_TRANSACTION = 0x0104
    INVALID_ARGUMENT = 0x0105
    UNAUTHORIZED = 0x0106

    # State
    ACCOUNT_NOT_FOUND = 0x0200
    ACCOUNT_KEY_NOT_FOUND = 0x0201
    CONTRACT_NOT_FOUND = 0x0202
    CONTRACT_EXISTS = 0x0203

    # Block
    PENDING_BLOCK_TRANSACTIONS_EXHAUSTED = 0x0300
    PENDING_BLOCK_MID_EXECUTION = 0x0301
    PENDING_BLOCK_COMMIT_BEFORE_EXECUTION = 0x0302
    PENDING_BLOCK_NOT_EMPTY = 0x0303

    # Execution
    SCRIPT_FAILED = 0x0400
    TRANSACTION_FAILED = 0x0401
    INTERNAL_FAULT = 0x0402

    # Loading
    PARSE_CHECK_FAILED = 0x0500
    INVALID_TEST_FUNCTION = 0x0501
    IMPORT_RESOLVER_NOT_PROVIDED = 0x0502
    FILE_RESOLVER_NOT_PROVIDED = 0x0503
    NESTED_IMPORT_UNSUPPORTED = 0x0504
    CONTRACT_INVOCATION_NOT_FOUND = 0x0505

    # Internal
    INTERNAL_ERROR = 0xFF00

    @property
    def category(self) -> ErrorCategory:
        return ErrorCategory(self.value >> 8)


@dataclass(frozen=True)
class ChainTestError(Exception):
    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.name}({self.code:#06x}): {self.message}"


# Allow Python's Exception machinery to set __traceback__/__context__/__cause__
# while keeping dataclass fields frozen (Python 3.13 contextlib compat).
_EXCEPTION_ATTRS = frozenset(("__traceback__", "__context__", "__cause__", "__suppress_context__"))
_frozen_setattr = ChainTestError.__setattr__


def _chain_test_error_setattr(self: ChainTestError, name: str, value: object) -> None:
    if name in _EXCEPTION_ATTRS:
        object.__setattr__(self, name, value)
    else:
        _frozen_setattr(self, name, value)


ChainTestError.__setattr__ = _chain_test_error_setattr  # type: ignore[method-assign]


def err(code: ErrorCode, message: str) -> ChainTestError:
    return ChainTestError(code=code, message=message)


def internal_fault(exc: BaseException) -> ChainTestError:
    """Convert an arbitrary fault raised by a collaborator into an error value."""
    if isinstance(exc, ChainTestError):
        return exc
    message = str(exc) or type(exc).__name__
    fault = ChainTestError(ErrorCode.INTERNAL_FAULT, f"{type(exc).__name__}: {message}")
    fault.__cause__ = exc
    return fault
