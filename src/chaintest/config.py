"""chaintest configuration constants and runner configuration.

Constants mirror the emulator chain the test framework runs against. The
`RunnerConfig` dataclass is loaded from the environment, then optionally
overlaid with a YAML file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

import yaml

if TYPE_CHECKING:
    from .types import Configuration

# Test script conventions
TEST_FUNCTION_PREFIX = "test"
SETUP_FUNCTION_NAME = "setup"
TEAR_DOWN_FUNCTION_NAME = "tearDown"
BEFORE_EACH_FUNCTION_NAME = "beforeEach"
AFTER_EACH_FUNCTION_NAME = "afterEach"

# Chain
CHAIN_ID_EMULATOR = "flow-emulator"
ADDRESS_LENGTH = 8
SERVICE_ADDRESS_HEX = "f8d6e0586b0a20c7"
SERVICE_KEY_INDEX = 0
DEFAULT_GAS_LIMIT = 9999
ACCOUNT_KEY_WEIGHT_THRESHOLD = 1000

# Signing
TRANSACTION_DOMAIN_TAG = b"FLOW-V0.0-transaction".ljust(32, b"\x00")
DEFAULT_SIGNATURE_ALGORITHM = "ECDSA_P256"
DEFAULT_HASH_ALGORITHM = "SHA3_256"

# Log capture
LOG_PREFIX = "LOG:"

_TRUTHY = ("true", "1", "yes")


@dataclass
class RunnerConfig:
    """Configuration for a test run."""
    # Case ordering; 0 keeps declaration order
    random_seed: int = 0

    # Import path -> hex address, used to rewrite imports of ledger code
    contracts: Dict[str, str] = field(default_factory=dict)

    verbose: bool = False
    result_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "RunnerConfig":
        """Load configuration from environment variables."""
        config = cls()

        config.random_seed = int(os.environ.get("CHAINTEST_SEED", "0") or 0)
        config.verbose = os.environ.get("CHAINTEST_VERBOSE", "").lower() in _TRUTHY
        config.result_dir = os.environ.get("CHAINTEST_RESULT_DIR") or None

        return config

    @classmethod
    def from_yaml(cls, path: str | Path, base: Optional["RunnerConfig"] = None) -> "RunnerConfig":
        """Overlay the values of a YAML file on top of ``base`` (or the environment)."""
        config = base if base is not None else cls.from_env()

        with open(path) as f:
            data: Dict[str, Any] = yaml.safe_load(f) or {}

        if "seed" in data:
            config.random_seed = int(data["seed"])
        if "contracts" in data:
            contracts = data["contracts"] or {}
            if not isinstance(contracts, dict):
                raise ValueError(f"{path}: 'contracts' must be a mapping")
            config.contracts = {str(k): str(v) for k, v in contracts.items()}
        if "verbose" in data:
            config.verbose = bool(data["verbose"])
        if "result_dir" in data:
            config.result_dir = data["result_dir"]

        return config

    def configuration(self) -> Optional[Configuration]:
        """Build the backend's import address mapping, or None when empty."""
        from .types import Address, Configuration

        if not self.contracts:
            return None
        return Configuration(
            addresses={
                location: Address.from_hex(address)
                for location, address in self.contracts.items()
            }
        )
