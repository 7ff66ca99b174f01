"""Contract invocations and the construction of contract values.

A contract imported by a test script is materialised in one of two ways:

- Imported from a source path: the contract never lives on the ledger, so
  its value is the composite constructor itself and the script instantiates
  it like any other composite.
- Imported from an address: the contract was deployed through the backend
  and its value is built by re-running the constructor with the arguments
  recorded at deployment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from .errors import ErrorCode, ChainTestError
from .locations import AddressLocation, StringLocation
from .runtime import (
    CompositeDeclaration,
    CompositeType,
    ConstructorGenerator,
    Interpreter,
    ValueDeclaration,
)
from .types import EMPTY_ADDRESS, Address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContractInvocation:
    """Constructor arguments a contract was deployed with."""
    name: str
    constructor_arguments: Tuple[Any, ...] = ()
    argument_types: Tuple[str, ...] = ()
    address: Optional[Address] = None


class ContractRegistry:
    """Deployed contract invocations, keyed by contract name."""

    def __init__(self) -> None:
        self._invocations: Dict[str, ContractInvocation] = {}

    def record(self, invocation: ContractInvocation) -> None:
        self._invocations[invocation.name] = invocation
        logger.debug(
            "recorded invocation of %s at %s", invocation.name, invocation.address
        )

    def lookup(self, name: str) -> ContractInvocation:
        invocation = self._invocations.get(name)
        if invocation is None:
            raise ChainTestError(
                ErrorCode.CONTRACT_INVOCATION_NOT_FOUND,
                f"contract invocation not found: {name}",
            )
        return invocation

    def __contains__(self, name: object) -> bool:
        return name in self._invocations

    def __len__(self) -> int:
        return len(self._invocations)


@dataclass(frozen=True)
class LocalContract:
    composite_type: CompositeType

    def value(self, inter: Interpreter, constructor_generator: ConstructorGenerator) -> Any:
        return constructor_generator(EMPTY_ADDRESS)


@dataclass(frozen=True)
class DeployedContract:
    composite_type: CompositeType
    invocation: ContractInvocation

    def value(self, inter: Interpreter, constructor_generator: ConstructorGenerator) -> Any:
        constructor = constructor_generator(EMPTY_ADDRESS)
        return inter.invoke_function_value(
            constructor,
            self.invocation.constructor_arguments,
            self.invocation.argument_types,
            self.composite_type.constructor_parameter_types,
        )


ContractKind = Union[LocalContract, DeployedContract]


class ContractValueFactory:
    """Builds contract values, deciding the kind of each composite type once."""

    def __init__(self, registry: ContractRegistry):
        self._registry = registry
        self._kinds: Dict[CompositeType, ContractKind] = {}

    def kind(self, composite_type: CompositeType) -> ContractKind:
        kind = self._kinds.get(composite_type)
        if kind is None:
            if isinstance(composite_type.location, AddressLocation):
                invocation = self._registry.lookup(composite_type.identifier)
                kind = DeployedContract(composite_type, invocation)
            else:
                kind = LocalContract(composite_type)
            self._kinds[composite_type] = kind
        return kind

    def value(
        self,
        inter: Interpreter,
        composite_type: CompositeType,
        constructor_generator: ConstructorGenerator,
    ) -> Any:
        return self.kind(composite_type).value(inter, constructor_generator)


def contract_declaration(declaration: CompositeDeclaration) -> ValueDeclaration:
    """Checker-side declaration of an imported contract.

    Contracts imported from a source path are declared with their constructor
    type so scripts can instantiate them; all others with the composite type.
    """
    if isinstance(declaration.composite_type.location, StringLocation):
        declared_type = declaration.constructor_type
    else:
        declared_type = declaration.composite_type

    return ValueDeclaration(
        name=declaration.name,
        type=declared_type,
        kind=declaration.kind,
        argument_labels=declaration.argument_labels,
        doc_string=declaration.doc_string,
    )
