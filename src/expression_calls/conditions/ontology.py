"""Ontology collaborator contract and an in-memory implementation.

The condition graph only needs element lookup and ancestor/descendant
closures over ISA_PARTOF relations. Ontology loading and file parsing live
outside this package; callers wrap whatever service they use in an object
satisfying the Ontology protocol.
"""

from collections import defaultdict
from collections.abc import Iterable, Mapping
from typing import Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)


@runtime_checkable
class Ontology(Protocol):
    """Read-only view of an ontology restricted to ISA_PARTOF relations."""

    def get_element(self, element_id: str) -> str | None:
        ...

    def get_elements(self) -> set[str]:
        ...

    def get_ancestors(self, element_id: str, direct_only: bool = False) -> set[str]:
        ...

    def get_descendants(self, element_id: str, direct_only: bool = False) -> set[str]:
        ...


class DictOntology:
    """
    Ontology backed by a child -> parents mapping.

    Every ID appearing as a child or as a parent is an element. Transitive
    closures are computed on first request and memoized.

    Args:
        parents: Mapping of element ID to the IDs of its direct parents
        name: Label used in log events

    Raises:
        ValueError: If the relations contain a cycle
    """

    def __init__(self, parents: Mapping[str, Iterable[str]], name: str = "ontology"):
        self.name = name
        self._parents: dict[str, frozenset[str]] = {
            child: frozenset(p) for child, p in parents.items()
        }
        children: dict[str, set[str]] = defaultdict(set)
        for child, direct_parents in self._parents.items():
            for parent in direct_parents:
                children[parent].add(child)
        self._children = {k: frozenset(v) for k, v in children.items()}
        self._elements = frozenset(self._parents) | frozenset(self._children)

        self._ancestor_cache: dict[str, frozenset[str]] = {}
        self._descendant_cache: dict[str, frozenset[str]] = {}

        for element_id in self._elements:
            if element_id in self._closure(element_id, self._parents, self._ancestor_cache):
                raise ValueError(f"Cycle detected in {name} involving {element_id}")

        logger.debug("ontology_loaded", ontology=name, element_count=len(self._elements))

    def get_element(self, element_id: str) -> str | None:
        return element_id if element_id in self._elements else None

    def get_elements(self) -> set[str]:
        return set(self._elements)

    def get_ancestors(self, element_id: str, direct_only: bool = False) -> set[str]:
        if direct_only:
            return set(self._parents.get(element_id, ()))
        return set(self._closure(element_id, self._parents, self._ancestor_cache))

    def get_descendants(self, element_id: str, direct_only: bool = False) -> set[str]:
        if direct_only:
            return set(self._children.get(element_id, ()))
        return set(self._closure(element_id, self._children, self._descendant_cache))

    @staticmethod
    def _closure(
        element_id: str,
        edges: Mapping[str, frozenset[str]],
        cache: dict[str, frozenset[str]],
    ) -> frozenset[str]:
        if element_id in cache:
            return cache[element_id]

        # Iterative walk, ontologies can be deep
        seen: set[str] = set()
        stack = list(edges.get(element_id, ()))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(edges.get(current, ()))

        result = frozenset(seen)
        cache[element_id] = result
        return result
