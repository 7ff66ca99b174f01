"""Locations identify importable units of code."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .types import Address


@dataclass(frozen=True)
class ScriptLocation:
    name: str

    def __str__(self) -> str:
        return f"s.{self.name}"


@dataclass(frozen=True)
class IdentifierLocation:
    identifier: str

    def __str__(self) -> str:
        return self.identifier


@dataclass(frozen=True)
class StringLocation:
    path: str

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True)
class AddressLocation:
    address: Address
    name: str

    def __str__(self) -> str:
        return f"{self.address}.{self.name}"


Location = Union[ScriptLocation, IdentifierLocation, StringLocation, AddressLocation]

# The test script being run.
TEST_SCRIPT_LOCATION = ScriptLocation("test")

# Built-in modules, resolved in process without the import resolver.
CRYPTO_LOCATION = IdentifierLocation("Crypto")
TEST_CONTRACT_LOCATION = IdentifierLocation("Test")
BLOCKCHAIN_HELPERS_LOCATION = IdentifierLocation("BlockchainHelpers")

RESERVED_LOCATIONS = frozenset({
    CRYPTO_LOCATION,
    TEST_CONTRACT_LOCATION,
    BLOCKCHAIN_HELPERS_LOCATION,
})


def is_reserved(location: Location) -> bool:
    return location in RESERVED_LOCATIONS
