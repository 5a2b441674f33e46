"""Named strategy lookup.

Formatters and ordering strategies are registered under string names so that
configuration (``output_format="markdown"``, ``ordering="sandwich"``) can pick
an implementation without branching at call sites.
"""

import logging
from typing import Generic, TypeVar

from ragkit.errors import InvalidInputError, RegistryError, RegistryErrorCode

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Registry(Generic[T]):
    """Mapping from name to implementation with explicit registration.

    Registering a name twice fails instead of overwriting the first entry.
    """

    def __init__(self, kind: str):
        """Initialize an empty registry.

        Args:
            kind: What the registry holds, used in error messages (e.g. "formatter")
        """
        self.kind = kind
        self._items: dict[str, T] = {}

    def register(self, name: str, item: T) -> None:
        """Register an implementation under a name.

        Args:
            name: Lookup key
            item: Implementation to register

        Raises:
            InvalidInputError: If name is empty
            RegistryError: If name is already registered
        """
        if not name or not name.strip():
            raise InvalidInputError(f"{self.kind} name cannot be empty")
        if name in self._items:
            raise RegistryError(RegistryErrorCode.ALREADY_REGISTERED, self.kind, name)
        self._items[name] = item
        logger.debug(f"Registered {self.kind} '{name}'")

    def unregister(self, name: str) -> bool:
        """Remove a registration. Returns True if something was removed."""
        if name not in self._items:
            return False
        del self._items[name]
        logger.debug(f"Unregistered {self.kind} '{name}'")
        return True

    def get(self, name: str) -> T | None:
        return self._items.get(name)

    def get_or_raise(self, name: str) -> T:
        """Look up a registration.

        Raises:
            RegistryError: If name is not registered
        """
        try:
            return self._items[name]
        except KeyError:
            raise RegistryError(RegistryErrorCode.NOT_FOUND, self.kind, name) from None

    def has(self, name: str) -> bool:
        return name in self._items

    def names(self) -> list[str]:
        """Registered names in registration order."""
        return list(self._items)

    def __contains__(self, name: object) -> bool:
        return name in self._items

    def __len__(self) -> int:
        return len(self._items)
