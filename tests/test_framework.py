"""Backends and files handed to the built-in testing module."""

from __future__ import annotations

import pytest

from chaintest.contracts import ContractInvocation, ContractRegistry
from chaintest.emulator import Emulator
from chaintest.errors import ChainTestError, ErrorCode
from chaintest.framework import TestFramework
from chaintest.types import Address, Configuration


def test_new_backends_are_independent(runtime, vm) -> None:
    framework = TestFramework(runtime, lambda: Emulator(vm))

    first = framework.new_emulator_backend()
    second = framework.new_emulator_backend()

    assert first.blockchain is not second.blockchain
    assert framework.backend_count == 2


def test_backends_share_contract_registry(runtime, vm) -> None:
    registry = ContractRegistry()
    framework = TestFramework(runtime, lambda: Emulator(vm), contracts=registry)
    registry.record(ContractInvocation("Counter"))

    assert "Counter" in framework.new_emulator_backend().contracts


def test_configuration_applied_to_new_backends(runtime, vm) -> None:
    address = Address.from_hex("ab")
    configuration = Configuration(addresses={"./foo.cdc": address})
    framework = TestFramework(runtime, lambda: Emulator(vm), configuration=configuration)

    backend = framework.new_emulator_backend()

    assert backend.replace_imports('import Foo from "./foo.cdc"\n') == f"import Foo from {address}\n"


def test_read_file(runtime, vm) -> None:
    framework = TestFramework(
        runtime, lambda: Emulator(vm), file_resolver={"data.txt": "contents"}.__getitem__
    )
    assert framework.read_file("data.txt") == "contents"


def test_read_file_without_resolver(runtime, vm) -> None:
    with pytest.raises(ChainTestError) as exc_info:
        TestFramework(runtime, lambda: Emulator(vm)).read_file("data.txt")
    assert exc_info.value.code == ErrorCode.FILE_RESOLVER_NOT_PROVIDED
