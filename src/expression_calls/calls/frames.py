"""Conversion between polars DataFrames and call records.

Raw-data providers commonly hand over one table of raw calls for a batch
of genes; aggregated calls are handed back as a table for downstream
consumers. Decimal values travel as strings so that their scale survives.
"""

from collections import defaultdict
from collections.abc import Iterable
from decimal import Decimal

import polars as pl
import structlog

from expression_calls.calls.models import (
    Assay,
    DataQuality,
    DataType,
    DetectionFlag,
    ExclusionReason,
    ExpressionCall,
    Gene,
    RawCall,
    RawCallSource,
)

logger = structlog.get_logger(__name__)

RAW_CALL_REQUIRED_COLUMNS = [
    "data_type",
    "assay_id",
    "raw_condition_id",
    "max_rank",
    "gene_id",
    "species_id",
    "p_value",
]

RAW_CALL_OPTIONAL_COLUMNS = {
    "quality": DataQuality.HIGH.value,
    "exclusion_reason": ExclusionReason.NOT_EXCLUDED.value,
    "rank": None,
    "detection_flag": DetectionFlag.UNDEFINED.value,
}

EXPRESSION_CALL_SCHEMA = {
    "gene_id": pl.Utf8,
    "species_id": pl.Int64,
    "anat_entity_id": pl.Utf8,
    "dev_stage_id": pl.Utf8,
    "cell_type_id": pl.Utf8,
    "sex_id": pl.Utf8,
    "strain_id": pl.Utf8,
    "supporting_data_types": pl.List(pl.Utf8),
    "trusted_data_type_p_value": pl.Utf8,
    "all_data_type_p_value": pl.Utf8,
    "best_descendant_trusted_data_type_p_value": pl.Utf8,
    "best_descendant_all_data_type_p_value": pl.Utf8,
    "expression_score_weight": pl.Utf8,
    "expression_score": pl.Utf8,
    "best_descendant_expression_score_weight": pl.Utf8,
    "best_descendant_expression_score": pl.Utf8,
    "propagation_state": pl.Utf8,
    "mean_rank": pl.Utf8,
}


def _to_decimal(value) -> Decimal | None:
    # str() first so floats keep their printed value, not their binary one
    if value is None:
        return None
    return Decimal(str(value))


def _to_str(value) -> str | None:
    return None if value is None else str(value)


def raw_call_sources_from_frame(
    df: pl.DataFrame,
    kept_exclusion_reasons: Iterable[ExclusionReason] | None = None,
) -> dict[DataType, list[RawCallSource]]:
    """
    Build raw call sources grouped by data type from a DataFrame.

    Expected columns: data_type, assay_id, raw_condition_id, max_rank,
    gene_id, species_id, p_value, and optionally quality, exclusion_reason,
    rank and detection_flag. Decimal columns may hold strings or numbers.

    Args:
        df: Raw calls, one row per assay and gene
        kept_exclusion_reasons: Rows with another exclusion reason are
            dropped (default: only NOT_EXCLUDED rows are kept)

    Returns:
        Dict mapping data type to its raw call sources, in row order

    Raises:
        ValueError: If a required column is missing, or a value is not a
            valid data type, quality, exclusion reason or detection flag
    """
    missing = [col for col in RAW_CALL_REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(f"Raw call frame is missing columns: {missing}")

    df = df.with_columns([
        pl.lit(default).alias(col)
        for col, default in RAW_CALL_OPTIONAL_COLUMNS.items()
        if col not in df.columns
    ])

    kept = [r.value for r in (kept_exclusion_reasons or [ExclusionReason.NOT_EXCLUDED])]
    filtered = df.filter(pl.col("exclusion_reason").is_in(kept))
    if filtered.height < df.height:
        logger.info(
            "raw_calls_excluded",
            excluded_count=df.height - filtered.height,
            kept_count=filtered.height,
        )

    sources: dict[DataType, list[RawCallSource]] = defaultdict(list)
    for row in filtered.iter_rows(named=True):
        assay = Assay(
            assay_id=str(row["assay_id"]),
            raw_condition_id=str(row["raw_condition_id"]),
            max_rank=_to_decimal(row["max_rank"]),
        )
        raw_call = RawCall(
            gene=Gene(gene_id=str(row["gene_id"]), species_id=int(row["species_id"])),
            p_value=_to_decimal(row["p_value"]),
            quality=DataQuality(row["quality"]),
            exclusion_reason=ExclusionReason(row["exclusion_reason"]),
            rank=_to_decimal(row["rank"]),
            detection_flag=DetectionFlag(row["detection_flag"]),
        )
        sources[DataType(row["data_type"])].append(RawCallSource(assay=assay, raw_call=raw_call))

    logger.debug(
        "raw_call_frame_converted",
        row_count=filtered.height,
        data_types=sorted(dt.value for dt in sources),
    )
    return dict(sources)


def expression_calls_to_frame(calls: Iterable[ExpressionCall]) -> pl.DataFrame:
    """
    Convert expression calls to a DataFrame, one row per call.

    Decimal values are rendered as strings, NULL where absent. Supporting
    data types are listed in sorted order.

    Args:
        calls: Calls to convert

    Returns:
        DataFrame with EXPRESSION_CALL_SCHEMA columns, in input order
    """
    rows = []
    for call in calls:
        condition = call.condition
        rows.append({
            "gene_id": call.gene.gene_id,
            "species_id": call.gene.species_id,
            "anat_entity_id": condition.anat_entity_id,
            "dev_stage_id": condition.dev_stage_id,
            "cell_type_id": condition.cell_type_id,
            "sex_id": condition.sex_id,
            "strain_id": condition.strain_id,
            "supporting_data_types": sorted(dt.value for dt in call.supporting_data_types),
            "trusted_data_type_p_value": _to_str(call.trusted_data_type_p_value),
            "all_data_type_p_value": _to_str(call.all_data_type_p_value),
            "best_descendant_trusted_data_type_p_value": _to_str(call.best_descendant_trusted_data_type_p_value),
            "best_descendant_all_data_type_p_value": _to_str(call.best_descendant_all_data_type_p_value),
            "expression_score_weight": _to_str(call.expression_score_weight),
            "expression_score": _to_str(call.expression_score),
            "best_descendant_expression_score_weight": _to_str(call.best_descendant_expression_score_weight),
            "best_descendant_expression_score": _to_str(call.best_descendant_expression_score),
            "propagation_state": call.propagation_state.value if call.propagation_state else None,
            "mean_rank": _to_str(call.mean_rank),
        })

    return pl.DataFrame(rows, schema=EXPRESSION_CALL_SCHEMA)
