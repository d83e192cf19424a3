"""Biological conditions and their ontology-derived precision order."""

from expression_calls.conditions.graph import ConditionGraph, ParameterRelations
from expression_calls.conditions.models import Condition, ConditionParameter
from expression_calls.conditions.ontology import DictOntology, Ontology

__all__ = [
    "Condition",
    "ConditionParameter",
    "ConditionGraph",
    "ParameterRelations",
    "Ontology",
    "DictOntology",
]
