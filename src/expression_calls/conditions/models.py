"""Data models for biological conditions."""

from dataclasses import dataclass
from enum import Enum


class ConditionParameter(Enum):
    """Condition parameters, each backed by an ontology.

    The value is the name of the matching Condition attribute.
    """

    ANAT_ENTITY = "anat_entity_id"
    DEV_STAGE = "dev_stage_id"
    CELL_TYPE = "cell_type_id"
    SEX = "sex_id"
    STRAIN = "strain_id"


@dataclass(frozen=True)
class Condition:
    """A biological context in which expression is observed.

    Any parameter may be None, meaning the condition is not refined on it.
    Species is mandatory.

    Attributes:
        species_id: NCBI taxonomy ID of the species
        anat_entity_id: Anatomical entity ID (e.g. UBERON:0000955)
        dev_stage_id: Developmental stage ID
        cell_type_id: Cell type ID (from the anatomical ontology, e.g. CL terms)
        sex_id: Sex ID
        strain_id: Strain ID
    """
    species_id: int
    anat_entity_id: str | None = None
    dev_stage_id: str | None = None
    cell_type_id: str | None = None
    sex_id: str | None = None
    strain_id: str | None = None

    def __post_init__(self):
        if self.species_id is None:
            raise ValueError("A condition requires a species ID")

    def parameter_value(self, parameter: ConditionParameter) -> str | None:
        return getattr(self, parameter.value)

    def sort_key(self) -> tuple:
        """Total ordering key, unset parameters sort first."""
        key = [self.species_id]
        for parameter in ConditionParameter:
            value = self.parameter_value(parameter)
            key.append((value is not None, value or ""))
        return tuple(key)
