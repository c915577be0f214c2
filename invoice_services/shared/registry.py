"""Name-to-class registry behind the configuration-driven factories.

Both the extraction provider and the document store are picked by a name
from Settings; each keeps one Registry mapping those names to classes.

Based on Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22
"""

import logging
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Registry(Generic[T]):
    """Mapping from configuration names to implementation classes.

    Attributes:
        kind: What the entries are, used in log and error messages (e.g. 'extraction provider')
    """

    def __init__(self, kind: str, entries: dict[str, type[T]] | None = None) -> None:
        self.kind = kind
        self._entries: dict[str, type[T]] = dict(entries or {})

    def register(self, name: str, entry: type[T]) -> None:
        """Register or replace the class for a name."""
        self._entries[name] = entry
        logger.info(f"Registered {self.kind}: {name}")

    def unregister(self, name: str) -> None:
        self._entries.pop(name, None)

    def get(self, name: str) -> type[T]:
        """Get the class registered for a name.

        Raises:
            ValueError: If nothing is registered under name
        """
        if name not in self._entries:
            available = ", ".join(self._entries)
            raise ValueError(f"Unknown {self.kind}: '{name}'. Available: {available}")
        return self._entries[name]

    def names(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries
