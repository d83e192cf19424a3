"""Raw and aggregated expression calls, their ordering and clustering."""

from expression_calls.calls.clustering import (
    DEFAULT_CLUSTERING_METHOD,
    DEFAULT_DISTANCE_THRESHOLD,
    ClusteringMethod,
    bgee_rank_distance,
    canberra_distance,
    generate_mean_rank_score_clustering,
)
from expression_calls.calls.frames import expression_calls_to_frame, raw_call_sources_from_frame
from expression_calls.calls.models import (
    Assay,
    DataQuality,
    DataType,
    DetectionFlag,
    ExclusionReason,
    ExpressionCall,
    Gene,
    PropagationState,
    RawCall,
    RawCallSource,
)
from expression_calls.calls.ranking import filter_and_order_calls_by_rank, identify_redundant_calls

__all__ = [
    "Assay",
    "DataQuality",
    "DataType",
    "DetectionFlag",
    "ExclusionReason",
    "ExpressionCall",
    "Gene",
    "PropagationState",
    "RawCall",
    "RawCallSource",
    "filter_and_order_calls_by_rank",
    "identify_redundant_calls",
    "ClusteringMethod",
    "DEFAULT_CLUSTERING_METHOD",
    "DEFAULT_DISTANCE_THRESHOLD",
    "bgee_rank_distance",
    "canberra_distance",
    "generate_mean_rank_score_clustering",
    "raw_call_sources_from_frame",
    "expression_calls_to_frame",
]
