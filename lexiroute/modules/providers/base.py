"""
Base classes for Provider abstraction
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from lexiroute.modules.api.models import Operation, ProviderDescriptor, ProviderKind
from lexiroute.modules.errors import UnsupportedOperationError


class Provider(ABC):
    """Abstract base class for all providers"""

    kind: ProviderKind

    def __init__(self, descriptor: ProviderDescriptor):
        self.descriptor = descriptor

    @property
    def id(self) -> str:
        return self.descriptor.id

    async def invoke(self, operation: Operation, payload: Dict[str, Any]) -> Any:
        """
        Run one operation.

        The declared operation set is checked before any work is done, so an
        undeclared operation fails fast as unsupported.
        """
        if not self.descriptor.supports(operation):
            raise UnsupportedOperationError(
                f"{self.id} does not support {operation.value}", provider_id=self.id
            )
        return await self._invoke(operation, payload)

    @abstractmethod
    async def _invoke(self, operation: Operation, payload: Dict[str, Any]) -> Any:
        """Provider specific implementation"""
        pass

    async def probe(self, operation: Operation) -> bool:
        """
        Check whether the provider can currently serve an operation.

        This should be fast and must not perform the operation itself.
        """
        return self.descriptor.supports(operation)

    async def close(self) -> None:
        """Release any held resources"""
        return None
