"""Protocol for the storage transaction boundary."""

from abc import abstractmethod
from typing import Any, AsyncContextManager, Protocol, runtime_checkable


@runtime_checkable
class TransactionManager(Protocol):
    """Opens atomic units of work, optionally serialised by lock keys."""

    @abstractmethod
    def transaction(self, *lock_keys: int) -> AsyncContextManager[Any]:
        """Open a transaction holding the given advisory lock keys until it ends.

        Nested calls join the outer transaction.
        """
        ...
