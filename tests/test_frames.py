"""Unit tests for polars DataFrame conversions of raw and aggregated calls."""

from decimal import Decimal

import polars as pl
import pytest

from expression_calls.calls import (
    DataQuality,
    DataType,
    ExclusionReason,
    ExpressionCall,
    Gene,
    PropagationState,
    expression_calls_to_frame,
    raw_call_sources_from_frame,
)
from expression_calls.conditions import Condition


@pytest.fixture
def raw_frame():
    return pl.DataFrame({
        "data_type": ["AFFYMETRIX", "AFFYMETRIX", "RNA_SEQ", "RNA_SEQ"],
        "assay_id": ["chip1", "chip1", "lib1", "lib2"],
        "raw_condition_id": ["raw1", "raw1", "raw2", "raw2"],
        "max_rank": ["20000.5", "20000.5", "35000", "35000"],
        "gene_id": ["ENSG00000001", "ENSG00000002", "ENSG00000001", "ENSG00000001"],
        "species_id": [9606, 9606, 9606, 9606],
        "p_value": ["0.0001", "0.02", "0.3", "0.00005"],
        "rank": ["12.5", "1500", None, "3"],
        "quality": ["HIGH", "LOW", "HIGH", "HIGH"],
        "exclusion_reason": ["NOT_EXCLUDED", "NOT_EXCLUDED", "NOT_EXCLUDED", "PRE_FILTERING"],
    })


def test_raw_call_sources_from_frame(raw_frame):
    """Rows are grouped by data type, excluded rows dropped, decimals exact."""
    sources = raw_call_sources_from_frame(raw_frame)

    assert set(sources) == {DataType.AFFYMETRIX, DataType.RNA_SEQ}
    assert len(sources[DataType.AFFYMETRIX]) == 2
    assert len(sources[DataType.RNA_SEQ]) == 1

    first = sources[DataType.AFFYMETRIX][0]
    assert first.assay.assay_id == "chip1"
    assert first.assay.max_rank == Decimal("20000.5")
    assert first.raw_call.gene == Gene("ENSG00000001", 9606)
    assert first.raw_call.p_value == Decimal("0.0001")
    assert first.raw_call.rank == Decimal("12.5")
    assert sources[DataType.AFFYMETRIX][1].raw_call.quality == DataQuality.LOW
    assert sources[DataType.RNA_SEQ][0].raw_call.rank is None


def test_raw_call_sources_keep_exclusion_reasons(raw_frame):
    sources = raw_call_sources_from_frame(
        raw_frame,
        kept_exclusion_reasons=[ExclusionReason.NOT_EXCLUDED, ExclusionReason.PRE_FILTERING],
    )
    assert len(sources[DataType.RNA_SEQ]) == 2


def test_raw_call_sources_optional_columns_defaulted():
    df = pl.DataFrame({
        "data_type": ["EST"],
        "assay_id": ["est1"],
        "raw_condition_id": ["raw1"],
        "max_rank": [10.0],
        "gene_id": ["ENSG00000001"],
        "species_id": [9606],
        "p_value": [0.01],
    })

    sources = raw_call_sources_from_frame(df)

    raw_call = sources[DataType.EST][0].raw_call
    assert raw_call.p_value == Decimal("0.01")
    assert raw_call.rank is None
    assert raw_call.exclusion_reason == ExclusionReason.NOT_EXCLUDED


def test_raw_call_sources_missing_column(raw_frame):
    with pytest.raises(ValueError, match="p_value"):
        raw_call_sources_from_frame(raw_frame.drop("p_value"))


def test_expression_calls_to_frame():
    call = ExpressionCall(
        gene=Gene("ENSG00000001", 9606),
        condition=Condition(9606, "UBERON:0000955", "UBERON:0000104"),
        supporting_data_types=frozenset({DataType.RNA_SEQ, DataType.AFFYMETRIX}),
        all_data_type_p_value=Decimal("0.00010"),
        expression_score_weight=Decimal(3),
        expression_score=Decimal("59.46847"),
        propagation_state=PropagationState.SELF,
        mean_rank=Decimal("41.53153"),
    )

    df = expression_calls_to_frame([call])

    assert df.height == 1
    row = df.row(0, named=True)
    assert row["anat_entity_id"] == "UBERON:0000955"
    assert row["cell_type_id"] is None
    assert row["supporting_data_types"] == ["AFFYMETRIX", "RNA_SEQ"]
    # Scale preserved
    assert row["all_data_type_p_value"] == "0.00010"
    assert row["trusted_data_type_p_value"] is None
    assert row["propagation_state"] == "SELF"


def test_expression_calls_to_frame_empty():
    df = expression_calls_to_frame([])
    assert df.height == 0
    assert "mean_rank" in df.columns
