"""Capabilities the built-in testing module hands to test scripts."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .backend import EmulatorBackend, FileResolver
from .contracts import ContractRegistry
from .errors import ErrorCode, ChainTestError
from .runtime import Blockchain, Runtime
from .types import Configuration

logger = logging.getLogger(__name__)

BlockchainFactory = Callable[[], Blockchain]


class TestFramework:
    """Creates fresh emulator backends and resolves files for a test script."""

    __test__ = False

    def __init__(
        self,
        runtime: Runtime,
        blockchain_factory: BlockchainFactory,
        *,
        file_resolver: Optional[FileResolver] = None,
        contracts: Optional[ContractRegistry] = None,
        configuration: Optional[Configuration] = None,
    ):
        self._runtime = runtime
        self._blockchain_factory = blockchain_factory
        self._file_resolver = file_resolver
        self._contracts = contracts if contracts is not None else ContractRegistry()
        self._configuration = configuration
        self.backend_count = 0

    def new_emulator_backend(self) -> EmulatorBackend:
        backend = EmulatorBackend(
            self._runtime,
            self._blockchain_factory(),
            file_resolver=self._file_resolver,
            contracts=self._contracts,
        )
        if self._configuration is not None:
            backend.use_configuration(self._configuration)

        self.backend_count += 1
        logger.debug("created emulator backend #%d", self.backend_count)
        return backend

    def read_file(self, path: str) -> str:
        if self._file_resolver is None:
            raise ChainTestError(ErrorCode.FILE_RESOLVER_NOT_PROVIDED, "file resolver is not provided")
        return self._file_resolver(path)
