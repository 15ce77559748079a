"""
Prototype registry boundary.

The engine only ever reads from a caller-owned registry through
`get(category, lookup_id) -> {"entries": {...}} | None`. PrototypeRepository
wraps that duck-typed lookup in a typed interface and is injected into the
components that need prototypes.
"""

import json
import logging
from copy import deepcopy
from typing import Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

from .config import REGISTRY_CATEGORY, PROTOTYPE_LOOKUP_IDS
from .types import Prototype

logger = logging.getLogger(__name__)


@runtime_checkable
class Registry(Protocol):
    """Read-only key/value lookup supplying prototype tables."""

    def get(self, category: str, lookup_id: str) -> Optional[Mapping[str, Any]]:
        ...


class InMemoryRegistry:
    """
    Dict-backed registry.

    Example:
        registry = InMemoryRegistry.from_prototype_tables(
            emotions={'fear': {'weights': {'threat': 1.0}, 'gates': ['threat >= 0.30']}},
        )
        registry.get('lookups', 'core:emotion_prototypes')
        # {'entries': {'fear': {...}}}
    """

    def __init__(self, data: Optional[Dict[str, Dict[str, Any]]] = None):
        self._data = deepcopy(data) if data else {}

    @classmethod
    def from_prototype_tables(
        cls,
        emotions: Optional[Mapping[str, Any]] = None,
        sexual: Optional[Mapping[str, Any]] = None,
    ) -> 'InMemoryRegistry':
        lookups = {}
        if emotions is not None:
            lookups[PROTOTYPE_LOOKUP_IDS['emotion']] = {'entries': dict(emotions)}
        if sexual is not None:
            lookups[PROTOTYPE_LOOKUP_IDS['sexual']] = {'entries': dict(sexual)}
        return cls({REGISTRY_CATEGORY: lookups})

    @classmethod
    def from_json(cls, path: str) -> 'InMemoryRegistry':
        """
        Load a registry from JSON file.

        Expected format (either form):
        {"lookups": {"core:emotion_prototypes": {"entries": {...}}, ...}}
        {"emotions": {...}, "sexual": {...}}
        """
        with open(path, 'r') as f:
            data = json.load(f)

        if REGISTRY_CATEGORY in data:
            return cls(data)
        return cls.from_prototype_tables(
            emotions=data.get('emotions'),
            sexual=data.get('sexual'),
        )

    def get(self, category: str, lookup_id: str) -> Optional[Dict[str, Any]]:
        table = self._data.get(category, {}).get(lookup_id)
        return deepcopy(table) if table is not None else None


def validate_registry(registry: Any) -> None:
    """
    Fail fast on a missing or malformed registry dependency.

    Raises:
        ValueError: If registry is None or has no callable get()
    """
    if registry is None:
        raise ValueError("A prototype registry is required (got None)")
    if not callable(getattr(registry, 'get', None)):
        raise ValueError(
            f"Registry {type(registry).__name__} must provide a callable "
            f"get(category, lookup_id) method"
        )


class PrototypeRepository:
    """
    Typed view over a registry: lookup(type, id) -> Optional[Prototype].

    Tables are read lazily once per repository and cached; the registry
    itself is never mutated.
    """

    def __init__(self, registry: Registry):
        validate_registry(registry)
        self._registry = registry
        self._tables: Dict[str, Dict[str, Prototype]] = {}

    def _load_table(self, prototype_type: str) -> Dict[str, Prototype]:
        lookup_id = PROTOTYPE_LOOKUP_IDS.get(prototype_type)
        if lookup_id is None:
            return {}
        table = self._registry.get(REGISTRY_CATEGORY, lookup_id)
        entries = (table or {}).get('entries') or {}
        prototypes = {}
        for prototype_id, entry in entries.items():
            if not isinstance(entry, Mapping):
                logger.warning(
                    "Skipping malformed %s prototype entry '%s'", prototype_type, prototype_id
                )
                continue
            prototypes[prototype_id] = Prototype.from_entry(prototype_id, prototype_type, entry)
        return prototypes

    def table(self, prototype_type: str) -> Dict[str, Prototype]:
        if prototype_type not in self._tables:
            self._tables[prototype_type] = self._load_table(prototype_type)
        return self._tables[prototype_type]

    def lookup(self, prototype_type: str, prototype_id: str) -> Optional[Prototype]:
        return self.table(prototype_type).get(prototype_id)

    def ids(self, prototype_type: str) -> List[str]:
        return list(self.table(prototype_type).keys())
