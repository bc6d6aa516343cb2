"""
Registry of every entity known to a store.

Resolved once when operations are mounted and read-only afterwards; the
operation context exposes it to hooks as ``models``.
"""

from typing import Dict, Iterator, List, Optional, Union

from .models import EntityDescriptor
from ..exceptions import ConfigurationError


EntityRef = Union[str, EntityDescriptor]


class EntityRegistry:
    """Name-indexed collection of entity descriptors."""

    def __init__(self, descriptors: Optional[List[EntityDescriptor]] = None):
        self._entities: Dict[str, EntityDescriptor] = {}
        for descriptor in descriptors or []:
            self.register(descriptor)

    def register(self, descriptor: EntityDescriptor) -> None:
        if descriptor.name in self._entities:
            raise ConfigurationError(
                f"Entity '{descriptor.name}' is registered twice",
                context={"entity": descriptor.name}
            )
        self._entities[descriptor.name] = descriptor

    def get(self, name: str) -> EntityDescriptor:
        """
        Get a descriptor by name.

        Raises:
            ConfigurationError: If no entity with that name is registered
        """
        try:
            return self._entities[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown entity '{name}'",
                context={"known_entities": sorted(self._entities)}
            ) from None

    def resolve(self, ref: Optional[EntityRef]) -> Optional[EntityDescriptor]:
        """Resolve a name or descriptor reference, or None if it is unknown."""
        if ref is None:
            return None
        if isinstance(ref, EntityDescriptor):
            return self._entities.get(ref.name)
        if isinstance(ref, str):
            if ref in self._entities:
                return self._entities[ref]
            # Table names resolve too
            for descriptor in self._entities.values():
                if descriptor.table_name == ref:
                    return descriptor
        return None

    @property
    def names(self) -> List[str]:
        return list(self._entities)

    def __contains__(self, name: str) -> bool:
        return name in self._entities

    def __iter__(self) -> Iterator[EntityDescriptor]:
        return iter(self._entities.values())

    def __len__(self) -> int:
        return len(self._entities)

    def __getitem__(self, name: str) -> EntityDescriptor:
        return self.get(name)
