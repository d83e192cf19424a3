"""Precision partial order over a fixed set of conditions.

A condition is more precise than another when, for every parameter, both
are set (or both unset) and each set value is equal to or an ontology
descendant of the other's value. The graph is built once for a condition
universe and is read-only afterwards, so it can be shared between threads
aggregating different genes of the same species.
"""

import heapq
from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from expression_calls.conditions.models import Condition, ConditionParameter
from expression_calls.conditions.ontology import Ontology

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ParameterRelations:
    """Ontology relations of the entities referenced for one condition parameter.

    Attributes:
        ancestors: Entity ID -> all ontology ancestors
        descendants: Entity ID -> all ontology descendants
        direct_ancestors: Entity ID -> direct parents
        direct_descendants: Entity ID -> direct children
    """
    ancestors: dict[str, frozenset[str]]
    descendants: dict[str, frozenset[str]]
    direct_ancestors: dict[str, frozenset[str]]
    direct_descendants: dict[str, frozenset[str]]

    @classmethod
    def from_ontology(
        cls,
        parameter: ConditionParameter,
        entity_ids: Iterable[str],
        ontology: Ontology,
    ) -> "ParameterRelations":
        """
        Fetch relations once per referenced entity.

        Entities the ontology no longer knows are kept with no relations: a
        condition using one only compares equal to itself.
        """
        ancestors, descendants = {}, {}
        direct_ancestors, direct_descendants = {}, {}
        for entity_id in entity_ids:
            if ontology.get_element(entity_id) is None:
                logger.warning(
                    "ontology_entity_missing",
                    parameter=parameter.name,
                    entity_id=entity_id,
                )
                empty = frozenset()
                ancestors[entity_id] = descendants[entity_id] = empty
                direct_ancestors[entity_id] = direct_descendants[entity_id] = empty
                continue
            ancestors[entity_id] = frozenset(ontology.get_ancestors(entity_id, direct_only=False))
            descendants[entity_id] = frozenset(ontology.get_descendants(entity_id, direct_only=False))
            direct_ancestors[entity_id] = frozenset(ontology.get_ancestors(entity_id, direct_only=True))
            direct_descendants[entity_id] = frozenset(ontology.get_descendants(entity_id, direct_only=True))

        return cls(ancestors, descendants, direct_ancestors, direct_descendants)

    def related(self, entity_id: str, towards_ancestors: bool, direct_only: bool) -> frozenset[str]:
        if towards_ancestors:
            source = self.direct_ancestors if direct_only else self.ancestors
        else:
            source = self.direct_descendants if direct_only else self.descendants
        return source[entity_id]


class ConditionGraph:
    """
    Ancestor/descendant relations among a fixed set of conditions.

    All relations are computed at construction, query methods only read.

    Args:
        conditions: Conditions of the graph, all from the same species
        anat_entity_ontology: Ontology for anatomical entities
        dev_stage_ontology: Ontology for developmental stages
        cell_type_ontology: Ontology for cell types, defaults to the
            anatomical entity ontology
        sex_ontology: Ontology for sexes
        strain_ontology: Ontology for strains

    Raises:
        ValueError: If no condition is provided, a condition is None,
            conditions span several species, or a parameter used by some
            condition has no ontology
    """

    def __init__(
        self,
        conditions: Iterable[Condition],
        anat_entity_ontology: Ontology | None = None,
        dev_stage_ontology: Ontology | None = None,
        cell_type_ontology: Ontology | None = None,
        sex_ontology: Ontology | None = None,
        strain_ontology: Ontology | None = None,
    ):
        conditions = list(conditions) if conditions is not None else []
        if not conditions:
            raise ValueError("Some conditions must be provided")
        if any(c is None for c in conditions):
            raise ValueError("No condition can be None")

        species_ids = {c.species_id for c in conditions}
        if len(species_ids) != 1:
            raise ValueError(f"Conditions should be in the same species, got {sorted(species_ids)}")
        self.species_id = species_ids.pop()
        self._conditions = frozenset(conditions)

        ontologies = {
            ConditionParameter.ANAT_ENTITY: anat_entity_ontology,
            ConditionParameter.DEV_STAGE: dev_stage_ontology,
            ConditionParameter.CELL_TYPE: cell_type_ontology or anat_entity_ontology,
            ConditionParameter.SEX: sex_ontology,
            ConditionParameter.STRAIN: strain_ontology,
        }
        self._relations: dict[ConditionParameter, ParameterRelations] = {}
        for parameter in ConditionParameter:
            entity_ids = {c.parameter_value(parameter) for c in self._conditions} - {None}
            if not entity_ids:
                continue
            ontology = ontologies[parameter]
            if ontology is None:
                raise ValueError(f"An ontology must be provided for {parameter.name}")
            self._relations[parameter] = ParameterRelations.from_ontology(parameter, entity_ids, ontology)

        self._ancestors = {c: self._find_relatives(c, towards_ancestors=True) for c in self._conditions}
        self._descendants = {c: self._find_relatives(c, towards_ancestors=False) for c in self._conditions}
        self._direct_ancestors = {c: self._find_direct_relatives(c, towards_ancestors=True) for c in self._conditions}
        self._direct_descendants = {c: self._find_direct_relatives(c, towards_ancestors=False) for c in self._conditions}
        self._bottom_up = self._sort_bottom_up()

        logger.info(
            "condition_graph_built",
            species_id=self.species_id,
            condition_count=len(self._conditions),
            parameters=[p.name for p in self._relations],
            root_count=len(self.get_root_conditions()),
        )

    def get_conditions(self) -> frozenset[Condition]:
        return self._conditions

    def is_condition_more_precise(self, first: Condition, second: Condition) -> bool:
        """
        Check whether second is strictly more precise than first.

        Args:
            first: Member condition
            second: Member condition

        Returns:
            True if second is a descendant condition of first. Always False
            for equal conditions.

        Raises:
            ValueError: If either condition is not a member of the graph
        """
        self._check_members(first, second)
        return second in self._descendants[first]

    def get_ancestor_conditions(self, condition: Condition, direct_only: bool = False) -> set[Condition]:
        """
        Get the member conditions less precise than condition.

        With direct_only, conditions separated from condition by another
        member are left out, unless they are one ontology edge away on every
        differing parameter. A condition whose parent condition is not a
        member therefore reports the nearest member above it.

        Raises:
            ValueError: If condition is not a member of the graph
        """
        self._check_members(condition)
        source = self._direct_ancestors if direct_only else self._ancestors
        return set(source[condition])

    def get_descendant_conditions(self, condition: Condition, direct_only: bool = False) -> set[Condition]:
        """
        Get the member conditions more precise than condition.

        Raises:
            ValueError: If condition is not a member of the graph
        """
        self._check_members(condition)
        source = self._direct_descendants if direct_only else self._descendants
        return set(source[condition])

    def get_root_conditions(self) -> set[Condition]:
        """Conditions with no ancestor condition in the graph."""
        return {c for c, ancestors in self._ancestors.items() if not ancestors}

    def conditions_bottom_up(self) -> list[Condition]:
        """Conditions ordered so that each comes after all of its descendant conditions."""
        return list(self._bottom_up)

    def _check_members(self, *conditions: Condition) -> None:
        for condition in conditions:
            if condition not in self._conditions:
                raise ValueError(f"Condition not in the graph: {condition}")

    def _candidate_values(
        self,
        condition: Condition,
        parameter: ConditionParameter,
        towards_ancestors: bool,
        direct_only: bool,
    ) -> frozenset[str | None]:
        value = condition.parameter_value(parameter)
        if value is None:
            return frozenset([None])
        related = self._relations[parameter].related(value, towards_ancestors, direct_only)
        return related | {value}

    def _matching_members(self, condition: Condition, towards_ancestors: bool, direct_only: bool) -> frozenset[Condition]:
        candidates = {
            parameter: self._candidate_values(condition, parameter, towards_ancestors, direct_only)
            for parameter in ConditionParameter
        }
        return frozenset(
            other for other in self._conditions
            if other != condition
            and all(other.parameter_value(p) in values for p, values in candidates.items())
        )

    def _find_relatives(self, condition: Condition, towards_ancestors: bool) -> frozenset[Condition]:
        return self._matching_members(condition, towards_ancestors, direct_only=False)

    def _find_direct_relatives(self, condition: Condition, towards_ancestors: bool) -> frozenset[Condition]:
        closure = self._ancestors if towards_ancestors else self._descendants
        relatives = closure[condition]
        one_edge_away = self._matching_members(condition, towards_ancestors, direct_only=True)

        # Relatives of relatives are indirect, unless a single ontology edge links them
        indirect: set[Condition] = set()
        for relative in relatives:
            indirect |= closure[relative]

        return frozenset(r for r in relatives if r in one_edge_away or r not in indirect)

    def _sort_bottom_up(self) -> tuple[Condition, ...]:
        pending = {c: len(self._descendants[c]) for c in self._conditions}
        heap = [(c.sort_key(), c) for c, count in pending.items() if count == 0]
        heapq.heapify(heap)

        ordered = []
        while heap:
            _, condition = heapq.heappop(heap)
            ordered.append(condition)
            for ancestor in self._ancestors[condition]:
                pending[ancestor] -= 1
                if pending[ancestor] == 0:
                    heapq.heappush(heap, (ancestor.sort_key(), ancestor))

        if len(ordered) < len(self._conditions):
            # Ancestor and descendant closures from the ontology disagree
            remaining = sorted(set(self._conditions) - set(ordered), key=Condition.sort_key)
            logger.warning(
                "condition_order_incomplete",
                unordered_count=len(remaining),
            )
            ordered.extend(remaining)

        return tuple(ordered)
