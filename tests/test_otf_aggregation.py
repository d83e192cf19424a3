"""Unit tests for on-the-fly aggregation of raw calls into expression calls.

All data is synthetic: raw calls are built in memory, no raw-data service.
"""

from decimal import Decimal

import pytest

from expression_calls.aggregation import (
    load_otf_expression_call,
    load_otf_expression_calls,
    split_raw_data_by_gene,
    transform_to_raw_data_per_condition,
)
from expression_calls.calls import (
    Assay,
    DataType,
    ExclusionReason,
    ExpressionCall,
    Gene,
    PropagationState,
    RawCall,
    RawCallSource,
)
from expression_calls.conditions import Condition, ConditionGraph, DictOntology

SPECIES_ID = 9606
GENE = Gene("ENSG00000001", SPECIES_ID)


def make_source(
    rank: str | None,
    p_value: str,
    max_rank: str = "1000",
    gene: Gene = GENE,
    assay_id: str = "assay1",
    raw_condition_id: str = "raw1",
    exclusion_reason: ExclusionReason = ExclusionReason.NOT_EXCLUDED,
) -> RawCallSource:
    return RawCallSource(
        assay=Assay(assay_id=assay_id, raw_condition_id=raw_condition_id, max_rank=Decimal(max_rank)),
        raw_call=RawCall(
            gene=gene,
            p_value=Decimal(p_value),
            rank=Decimal(rank) if rank is not None else None,
            exclusion_reason=exclusion_reason,
        ),
    )


@pytest.fixture
def condition():
    return Condition(SPECIES_ID, "anat1", "stage1")


def test_self_call_single_data_type(condition):
    """P-values combine as twice the median, scores average over raw calls."""
    raw_data = {
        DataType.AFFYMETRIX: [
            make_source("1", "0.01", max_rank="50"),
            make_source("50", "0.03", max_rank="50", assay_id="assay2"),
        ],
    }

    call = load_otf_expression_call(GENE, condition, raw_data, [])

    assert call.gene == GENE
    assert call.condition == condition
    assert call.supporting_data_types == frozenset({DataType.AFFYMETRIX})
    assert call.all_data_type_p_value == Decimal("0.04")
    assert call.trusted_data_type_p_value == Decimal("0.04")
    assert call.expression_score == Decimal("50.50000")
    assert call.expression_score_weight == Decimal(2)
    assert call.mean_rank == Decimal("50.50000")
    assert call.propagation_state == PropagationState.SELF
    assert call.best_descendant_all_data_type_p_value is None
    assert call.best_descendant_expression_score is None


def test_self_call_several_data_types(condition):
    """Data types are weighted by their raw call count."""
    raw_data = {
        DataType.AFFYMETRIX: [make_source("200", "0.01")],
        DataType.RNA_SEQ: [
            make_source("1000", "0.2", assay_id="lib1"),
            make_source("30", "0.02", assay_id="lib2"),
        ],
    }

    call = load_otf_expression_call(GENE, condition, raw_data, [])

    # Scores 80.27928, 1.00000 and 97.12613
    assert call.expression_score == Decimal("59.46847")
    assert call.expression_score_weight == Decimal(3)
    # Affymetrix 0.01, RNA-Seq 2 * 0.11
    assert call.all_data_type_p_value == Decimal("0.23")
    assert call.trusted_data_type_p_value == Decimal("0.23")
    assert call.supporting_data_types == frozenset({DataType.AFFYMETRIX, DataType.RNA_SEQ})

    only_affymetrix = load_otf_expression_call(
        GENE, condition, raw_data, [], trusted_data_types=[DataType.AFFYMETRIX]
    )
    assert only_affymetrix.trusted_data_type_p_value == Decimal("0.01")
    assert only_affymetrix.all_data_type_p_value == Decimal("0.23")


def test_untrusted_data_type_only(condition):
    """No trusted data type means no trusted p-value."""
    raw_data = {DataType.IN_SITU: [make_source("3", "0.001", max_rank="5")]}

    call = load_otf_expression_call(GENE, condition, raw_data, [])

    assert call.trusted_data_type_p_value is None
    assert call.all_data_type_p_value == Decimal("0.001")


def test_descendant_only_call(condition):
    """Child evidence is propagated, the best descendant score is the highest one."""
    child_a = ExpressionCall(
        gene=GENE,
        condition=Condition(SPECIES_ID, "anat2", "stage1"),
        supporting_data_types=frozenset({DataType.RNA_SEQ}),
        trusted_data_type_p_value=Decimal("0.02"),
        all_data_type_p_value=Decimal("0.01"),
        expression_score_weight=Decimal(2),
        expression_score=Decimal("90"),
        propagation_state=PropagationState.SELF,
        mean_rank=Decimal("11"),
    )
    child_b = ExpressionCall(
        gene=GENE,
        condition=Condition(SPECIES_ID, "anat3", "stage1"),
        supporting_data_types=frozenset({DataType.EST}),
        all_data_type_p_value=Decimal("0.5"),
        expression_score_weight=Decimal(1),
        expression_score=Decimal("40"),
        propagation_state=PropagationState.SELF,
        mean_rank=Decimal("61"),
    )

    call = load_otf_expression_call(GENE, condition, {}, [child_a, child_b])

    assert call.propagation_state == PropagationState.DESCENDANT
    assert call.supporting_data_types == frozenset({DataType.RNA_SEQ, DataType.EST})
    # Benjamini-Hochberg over 0.01 and 0.5
    assert call.all_data_type_p_value == Decimal("0.02")
    assert call.trusted_data_type_p_value == Decimal("0.02")
    assert call.best_descendant_all_data_type_p_value == Decimal("0.01")
    assert call.best_descendant_trusted_data_type_p_value == Decimal("0.02")
    assert call.best_descendant_expression_score == Decimal("90")
    assert call.best_descendant_expression_score_weight == Decimal(2)
    assert call.expression_score == Decimal("73.33333")
    assert call.expression_score_weight == Decimal(3)


def test_best_descendant_values_looked_up_in_grandchildren(condition):
    """Best values already found below a child are carried up."""
    child = ExpressionCall(
        gene=GENE,
        condition=Condition(SPECIES_ID, "anat2", "stage1"),
        supporting_data_types=frozenset({DataType.RNA_SEQ}),
        all_data_type_p_value=Decimal("0.1"),
        best_descendant_all_data_type_p_value=Decimal("0.001"),
        expression_score_weight=Decimal(4),
        expression_score=Decimal("20"),
        best_descendant_expression_score=Decimal("95"),
        best_descendant_expression_score_weight=Decimal(1),
        mean_rank=Decimal("81"),
    )
    raw_data = {DataType.RNA_SEQ: [make_source("1", "0.3")]}

    call = load_otf_expression_call(GENE, condition, raw_data, [child])

    assert call.propagation_state == PropagationState.SELF_AND_DESCENDANT
    assert call.best_descendant_all_data_type_p_value == Decimal("0.001")
    assert call.best_descendant_expression_score == Decimal("95")
    assert call.best_descendant_expression_score_weight == Decimal(1)
    # (100 * 1 + 20 * 4) / 5
    assert call.expression_score == Decimal("36.00000")


def test_no_data_raises(condition):
    with pytest.raises(ValueError, match="cannot be both empty"):
        load_otf_expression_call(GENE, condition, {}, [])


def test_data_type_without_ranked_call_raises(condition):
    """A data type with no usable raw call is a caller error, not silently skipped."""
    raw_data = {
        DataType.AFFYMETRIX: [make_source("1", "0.01")],
        DataType.EST: [make_source(None, "0.01")],
    }
    with pytest.raises(ValueError, match="EST"):
        load_otf_expression_call(GENE, condition, raw_data, [])

    with pytest.raises(ValueError):
        load_otf_expression_call(GENE, condition, {DataType.RNA_SEQ: []}, [])


def test_raw_call_of_other_gene_raises(condition):
    other = Gene("ENSG00000002", SPECIES_ID)
    raw_data = {DataType.AFFYMETRIX: [make_source("1", "0.01", gene=other)]}
    with pytest.raises(ValueError, match="ENSG00000002"):
        load_otf_expression_call(GENE, condition, raw_data, [])


def test_excluded_raw_calls_skipped(condition):
    """Only raw calls with a kept exclusion reason feed the p-value and score."""
    raw_data = {
        DataType.RNA_SEQ: [
            make_source("1", "0.9", exclusion_reason=ExclusionReason.PRE_FILTERING),
            make_source("500", "0.01", assay_id="lib2"),
        ],
    }

    call = load_otf_expression_call(GENE, condition, raw_data, [])

    assert call.all_data_type_p_value == Decimal("0.01")
    assert call.expression_score == Decimal("50.54955")
    assert call.expression_score_weight == Decimal(1)

    with_pre_filtered = load_otf_expression_call(
        GENE,
        condition,
        raw_data,
        [],
        kept_exclusion_reasons=[ExclusionReason.NOT_EXCLUDED, ExclusionReason.PRE_FILTERING],
    )
    assert with_pre_filtered.all_data_type_p_value == Decimal("0.91")
    assert with_pre_filtered.expression_score == Decimal("75.27478")
    assert with_pre_filtered.expression_score_weight == Decimal(2)


def test_all_raw_calls_excluded(condition):
    """A data type emptied by exclusion is dropped from the supporting data types."""
    excluded = make_source("1", "0.001", exclusion_reason=ExclusionReason.NO_EXPRESSION_CONFLICT)

    with pytest.raises(ValueError, match="cannot be both empty"):
        load_otf_expression_call(GENE, condition, {DataType.RNA_SEQ: [excluded]}, [])

    call = load_otf_expression_call(
        GENE,
        condition,
        {DataType.RNA_SEQ: [excluded], DataType.AFFYMETRIX: [make_source("10", "0.02")]},
        [],
    )
    assert call.supporting_data_types == frozenset({DataType.AFFYMETRIX})
    assert call.all_data_type_p_value == Decimal("0.02")


def test_transform_to_raw_data_per_condition():
    """Raw conditions mapping to a same condition are merged, no record dropped."""
    cond_a = Condition(SPECIES_ID, "anat1")
    cond_b = Condition(SPECIES_ID, "anat2")
    mapping = {"raw1": cond_a, "raw2": cond_a, "raw3": cond_b}

    s1 = make_source("1", "0.01", raw_condition_id="raw1")
    s2 = make_source("1", "0.01", raw_condition_id="raw1")
    s3 = make_source("5", "0.02", raw_condition_id="raw2", assay_id="assay2")
    s4 = make_source("7", "0.03", raw_condition_id="raw3", assay_id="lib1")

    grouped = transform_to_raw_data_per_condition(
        mapping,
        {DataType.AFFYMETRIX: [s1, s2, s3], DataType.RNA_SEQ: [s4]},
    )

    assert grouped == {
        cond_a: {DataType.AFFYMETRIX: [s1, s2, s3]},
        cond_b: {DataType.RNA_SEQ: [s4]},
    }


def test_transform_unmapped_raw_condition():
    with pytest.raises(ValueError, match="raw9"):
        transform_to_raw_data_per_condition(
            {"raw1": Condition(SPECIES_ID, "anat1")},
            {DataType.AFFYMETRIX: [make_source("1", "0.01", raw_condition_id="raw9")]},
        )


def test_split_raw_data_by_gene():
    other = Gene("ENSG00000002", SPECIES_ID)
    s1 = make_source("1", "0.01")
    s2 = make_source("2", "0.01", gene=other)

    split = split_raw_data_by_gene({DataType.AFFYMETRIX: [s1, s2]})

    assert split == {
        GENE: {DataType.AFFYMETRIX: [s1]},
        other: {DataType.AFFYMETRIX: [s2]},
    }


@pytest.fixture
def graph():
    """anat1 -> (anat2, anat3), anat3 -> anat4, all at stage1."""
    anat = DictOntology({"anat2": {"anat1"}, "anat3": {"anat1"}, "anat4": {"anat3"}})
    stages = DictOntology({"stage1": set()}, name="stages")
    conditions = [Condition(SPECIES_ID, name, "stage1") for name in ("anat1", "anat2", "anat3", "anat4")]
    return ConditionGraph(conditions, anat, stages)


def test_load_otf_expression_calls_bottom_up(graph):
    """Evidence flows from the leaf up to the root, conditions without data get no call."""
    root = Condition(SPECIES_ID, "anat1", "stage1")
    mid = Condition(SPECIES_ID, "anat3", "stage1")
    leaf = Condition(SPECIES_ID, "anat4", "stage1")
    raw_data = {
        leaf: {DataType.RNA_SEQ: [make_source("1", "0.01", max_rank="10")]},
        root: {DataType.AFFYMETRIX: [make_source("10", "0.5", max_rank="10")]},
    }

    calls = load_otf_expression_calls(GENE, graph, raw_data)

    assert [c.condition for c in calls] == [mid, leaf, root]
    by_condition = {c.condition: c for c in calls}

    assert by_condition[leaf].propagation_state == PropagationState.SELF
    assert by_condition[mid].propagation_state == PropagationState.DESCENDANT
    assert by_condition[mid].expression_score == Decimal("100.00000")
    assert by_condition[mid].all_data_type_p_value == Decimal("0.01")

    root_call = by_condition[root]
    assert root_call.propagation_state == PropagationState.SELF_AND_DESCENDANT
    assert root_call.expression_score == Decimal("50.50000")
    assert root_call.all_data_type_p_value == Decimal("0.51")
    assert root_call.best_descendant_all_data_type_p_value == Decimal("0.01")
    assert root_call.best_descendant_expression_score == Decimal("100.00000")
    assert root_call.supporting_data_types == frozenset({DataType.AFFYMETRIX, DataType.RNA_SEQ})


def test_load_otf_expression_calls_rejects_unknown_condition(graph):
    outsider = Condition(SPECIES_ID, "anat9", "stage1")
    raw_data = {outsider: {DataType.RNA_SEQ: [make_source("1", "0.01")]}}
    with pytest.raises(ValueError, match="not in the graph"):
        load_otf_expression_calls(GENE, graph, raw_data)


def test_load_otf_expression_calls_skips_excluded_data(graph):
    """A condition whose raw calls are all excluded gets no call of its own."""
    root = Condition(SPECIES_ID, "anat1", "stage1")
    leaf = Condition(SPECIES_ID, "anat4", "stage1")
    raw_data = {
        leaf: {DataType.RNA_SEQ: [make_source("1", "0.01", exclusion_reason=ExclusionReason.PRE_FILTERING)]},
        root: {DataType.AFFYMETRIX: [make_source("10", "0.5", max_rank="10")]},
    }

    calls = load_otf_expression_calls(GENE, graph, raw_data)

    assert [c.condition for c in calls] == [root]
    assert calls[0].propagation_state == PropagationState.SELF

    kept = load_otf_expression_calls(
        GENE,
        graph,
        raw_data,
        kept_exclusion_reasons=[ExclusionReason.NOT_EXCLUDED, ExclusionReason.PRE_FILTERING],
    )
    assert {c.condition for c in kept} == {root, Condition(SPECIES_ID, "anat3", "stage1"), leaf}
