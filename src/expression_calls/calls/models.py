"""Data models for raw and aggregated expression calls."""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from expression_calls.conditions.models import Condition


class DataType(str, Enum):
    """Experimental data types producing raw calls.

    Trusted data types are the quantitative ones whose p-values are reliable
    enough to support absence of expression; they feed the trusted p-value.
    """

    def __new__(cls, value: str, trusted: bool):
        obj = str.__new__(cls, value)
        obj._value_ = value
        obj.trusted = trusted
        return obj

    AFFYMETRIX = ("AFFYMETRIX", True)
    EST = ("EST", False)
    IN_SITU = ("IN_SITU", False)
    RNA_SEQ = ("RNA_SEQ", True)
    SC_RNA_SEQ = ("SC_RNA_SEQ", True)


class DataQuality(str, Enum):
    HIGH = "HIGH"
    LOW = "LOW"


class ExclusionReason(str, Enum):
    """Why a raw call was excluded from call generation."""

    NOT_EXCLUDED = "NOT_EXCLUDED"
    PRE_FILTERING = "PRE_FILTERING"
    UNDEFINED = "UNDEFINED"
    NO_EXPRESSION_CONFLICT = "NO_EXPRESSION_CONFLICT"


class DetectionFlag(str, Enum):
    UNDEFINED = "UNDEFINED"
    ABSENT = "ABSENT"
    MARGINAL = "MARGINAL"
    PRESENT = "PRESENT"


class PropagationState(str, Enum):
    """Origin of the evidence supporting an aggregated call."""

    SELF = "SELF"
    DESCENDANT = "DESCENDANT"
    SELF_AND_DESCENDANT = "SELF_AND_DESCENDANT"


@dataclass(frozen=True)
class Gene:
    """A gene of a given species.

    Attributes:
        gene_id: Ensembl (or source-specific) gene ID
        species_id: NCBI taxonomy ID of the species
    """
    gene_id: str
    species_id: int

    def sort_key(self) -> tuple[int, str]:
        return (self.species_id, self.gene_id)


@dataclass(frozen=True)
class Assay:
    """The assay that produced raw calls (probeset chip, RNA-Seq sample, in-situ evidence, EST library).

    Attributes:
        assay_id: Identifier of the assay
        raw_condition_id: Identifier of the fine-grained condition the assay is annotated to
        max_rank: Highest rank produced by the assay's processing pipeline
    """
    assay_id: str
    raw_condition_id: str
    max_rank: Decimal


@dataclass(frozen=True)
class RawCall:
    """A single raw measurement of a gene in an assay.

    Attributes:
        gene: Measured gene
        p_value: P-value of the expression test
        quality: Data quality flag
        exclusion_reason: Why the call is excluded from aggregation, if it is
        rank: Expression rank in the assay (1 = highest expression), None if not ranked
        detection_flag: Detection call produced by the assay pipeline
    """
    gene: Gene
    p_value: Decimal
    quality: DataQuality = DataQuality.HIGH
    exclusion_reason: ExclusionReason = ExclusionReason.NOT_EXCLUDED
    rank: Decimal | None = None
    detection_flag: DetectionFlag = DetectionFlag.UNDEFINED


@dataclass(frozen=True)
class RawCallSource:
    """A raw call together with the assay that produced it."""

    assay: Assay
    raw_call: RawCall


@dataclass(frozen=True)
class ExpressionCall:
    """
    Aggregated expression call of a gene in a condition.

    P-values and scores are None where no evidence supports them, e.g. the
    trusted p-value when no trusted data type contributed, or the
    best-descendant values of a call without descendant evidence.

    Attributes:
        gene: Gene of the call
        condition: Condition of the call
        supporting_data_types: Data types with evidence, own or propagated
        trusted_data_type_p_value: Combined p-value from trusted data types
        all_data_type_p_value: Combined p-value from all data types
        best_descendant_trusted_data_type_p_value: Lowest trusted p-value among descendant calls
        best_descendant_all_data_type_p_value: Lowest all-data-type p-value among descendant calls
        expression_score_weight: Total weight behind expression_score
        expression_score: Weighted expression score, in (0, 100], higher is better
        best_descendant_expression_score_weight: Weight of the best descendant score
        best_descendant_expression_score: Highest expression score among descendant calls
        propagation_state: Whether evidence is own, propagated, or both
        mean_rank: Rank used for ordering and clustering, lower is better
    """
    gene: Gene
    condition: Condition
    supporting_data_types: frozenset[DataType] = field(default_factory=frozenset)
    trusted_data_type_p_value: Decimal | None = None
    all_data_type_p_value: Decimal | None = None
    best_descendant_trusted_data_type_p_value: Decimal | None = None
    best_descendant_all_data_type_p_value: Decimal | None = None
    expression_score_weight: Decimal | None = None
    expression_score: Decimal | None = None
    best_descendant_expression_score_weight: Decimal | None = None
    best_descendant_expression_score: Decimal | None = None
    propagation_state: PropagationState | None = None
    mean_rank: Decimal | None = None
