"""On-the-fly aggregation of raw calls into expression calls."""

from expression_calls.aggregation.batch import GeneCallSummary, aggregate_genes, summarize_gene_calls
from expression_calls.aggregation.load import load_otf_expression_call, load_otf_expression_calls
from expression_calls.aggregation.statistics import (
    EXPRESSION_SCORE_MAX_VALUE,
    EXPRESSION_SCORE_MIN_VALUE,
    compute_expression_score,
    compute_fdr_corrected_p_value,
    compute_median,
)
from expression_calls.aggregation.transform import (
    split_raw_data_by_gene,
    transform_to_raw_data_per_condition,
)

__all__ = [
    "EXPRESSION_SCORE_MAX_VALUE",
    "EXPRESSION_SCORE_MIN_VALUE",
    "compute_expression_score",
    "compute_median",
    "compute_fdr_corrected_p_value",
    "transform_to_raw_data_per_condition",
    "split_raw_data_by_gene",
    "load_otf_expression_call",
    "load_otf_expression_calls",
    "GeneCallSummary",
    "aggregate_genes",
    "summarize_gene_calls",
]
