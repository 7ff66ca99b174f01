"""Shared fixtures: fake runtime and VM, emulator, backend and runner factories."""

from __future__ import annotations

from typing import Callable, Dict, Optional

import pytest

from chaintest.backend import EmulatorBackend
from chaintest.emulator import Emulator
from chaintest.locations import TEST_SCRIPT_LOCATION, Location
from chaintest.runner import TestRunner
from chaintest.runtime import Program
from fakes import FakeInterpreter, FakeRuntime, FakeVM


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def vm() -> FakeVM:
    return FakeVM()


@pytest.fixture
def emulator(vm: FakeVM) -> Emulator:
    return Emulator(vm)


@pytest.fixture
def backend(runtime: FakeRuntime, emulator: Emulator) -> EmulatorBackend:
    return EmulatorBackend(runtime, emulator)


@pytest.fixture
def inter(runtime: FakeRuntime) -> FakeInterpreter:
    """Interpreter handle for value export; never executes code."""
    return FakeInterpreter(runtime, Program(TEST_SCRIPT_LOCATION), None)


@pytest.fixture
def make_runner(runtime: FakeRuntime, vm: FakeVM) -> Callable[..., TestRunner]:
    """Build a runner whose resolvers serve the given source and file tables."""

    def make(
        sources: Optional[Dict[Location, str]] = None,
        files: Optional[Dict[str, str]] = None,
        blockchain_factory: Optional[Callable[[], Emulator]] = None,
    ) -> TestRunner:
        runner = TestRunner(runtime, blockchain_factory or (lambda: Emulator(vm)))
        if sources is not None:
            runner.with_import_resolver(lambda location: sources[location])
        if files is not None:
            runner.with_file_resolver(lambda path: files[path])
        return runner

    return make
