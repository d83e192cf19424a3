"""On-the-fly aggregation of raw calls into expression calls.

A call for a gene in a condition combines the raw calls observed in the
condition itself with the calls already computed for its child conditions.
Walking the condition graph from the most precise conditions up therefore
propagates evidence to every ancestor condition.
"""

from collections.abc import Iterable, Mapping, Sequence
from decimal import ROUND_HALF_UP, Decimal

import structlog

from expression_calls.aggregation.statistics import (
    EXPRESSION_SCORE_MAX_VALUE,
    SCORE_QUANTUM,
    clamp_expression_score,
    compute_expression_score,
    compute_fdr_corrected_p_value,
    compute_median,
)
from expression_calls.calls.models import (
    DataType,
    ExclusionReason,
    ExpressionCall,
    Gene,
    PropagationState,
    RawCallSource,
)
from expression_calls.conditions.graph import ConditionGraph
from expression_calls.conditions.models import Condition

logger = structlog.get_logger(__name__)


def _lowest(current: Decimal | None, *candidates: Decimal | None) -> Decimal | None:
    for candidate in candidates:
        if candidate is not None and (current is None or candidate < current):
            current = candidate
    return current


def _drop_excluded(
    gene: Gene,
    raw_data: Mapping[DataType, Sequence[RawCallSource]],
    kept_exclusion_reasons: frozenset[ExclusionReason],
) -> dict[DataType, list[RawCallSource]]:
    # A data type emptied by exclusion is dropped, one given empty is kept
    filtered: dict[DataType, list[RawCallSource]] = {}
    for data_type, sources in raw_data.items():
        retained = [s for s in sources if s.raw_call.exclusion_reason in kept_exclusion_reasons]
        if len(retained) < len(sources):
            logger.warning(
                "raw_calls_excluded",
                gene_id=gene.gene_id,
                data_type=data_type.value,
                excluded_count=len(sources) - len(retained),
            )
        if retained or not sources:
            filtered[data_type] = retained
    return filtered


def _check_descendant_call(gene: Gene, call: ExpressionCall) -> None:
    if call.gene != gene:
        raise ValueError(f"Descendant call is for gene {call.gene.gene_id}, expected {gene.gene_id}")
    if call.all_data_type_p_value is None or call.expression_score is None \
            or call.expression_score_weight is None:
        raise ValueError(f"Descendant call lacks p-value or expression score: {call}")


def load_otf_expression_call(
    gene: Gene,
    condition: Condition,
    raw_data: Mapping[DataType, Sequence[RawCallSource]],
    descendant_calls: Iterable[ExpressionCall],
    trusted_data_types: Iterable[DataType] | None = None,
    kept_exclusion_reasons: Iterable[ExclusionReason] | None = None,
) -> ExpressionCall:
    """
    Aggregate the raw data of a gene in a condition with its child calls.

    Per data type, p-values are combined with compute_median, and the
    expression scores of the raw calls are averaged, weighted by the
    number of raw calls. Data type p-values are then combined with
    compute_median, over all data types and over trusted data types only.
    Child calls contribute one more p-value, the FDR-corrected combination
    of their own p-values, and their expression score weighted by their
    score weight.

    Args:
        gene: Gene of the call
        condition: Condition of the call
        raw_data: Raw call sources of the gene in the condition, per data type
        descendant_calls: Calls of the gene in child conditions
        trusted_data_types: Data types feeding the trusted p-value
            (default: data types flagged as trusted)
        kept_exclusion_reasons: Exclusion reasons of the raw calls to use, others
            are skipped (default: NOT_EXCLUDED only)

    Returns:
        The aggregated ExpressionCall

    Raises:
        ValueError: If there is neither raw data nor descendant call, if a
            data type has no raw call with a rank, or if a raw or descendant
            call belongs to another gene
    """
    if kept_exclusion_reasons is None:
        kept_exclusion_reasons = [ExclusionReason.NOT_EXCLUDED]
    raw_data = _drop_excluded(gene, raw_data or {}, frozenset(kept_exclusion_reasons))
    descendant_calls = list(descendant_calls or [])
    if not raw_data and not descendant_calls:
        raise ValueError(f"Raw data and descendant calls cannot be both empty for {gene.gene_id} in {condition}")
    if trusted_data_types is None:
        trusted = frozenset(dt for dt in DataType if dt.trusted)
    else:
        trusted = frozenset(trusted_data_types)

    all_p_values: list[Decimal] = []
    trusted_p_values: list[Decimal] = []
    score_by_weight_sum = Decimal(0)
    weight_sum = Decimal(0)
    supporting_data_types: set[DataType] = set()

    for data_type, sources in raw_data.items():
        p_values = []
        scores = []
        for source in sources:
            raw_call = source.raw_call
            if raw_call.gene != gene:
                raise ValueError(f"Raw call for gene {raw_call.gene.gene_id} given for {gene.gene_id}")
            if raw_call.rank is None:
                logger.warning(
                    "raw_call_without_rank",
                    gene_id=gene.gene_id,
                    data_type=data_type.value,
                    assay_id=source.assay.assay_id,
                )
                continue
            p_values.append(raw_call.p_value)
            scores.append(compute_expression_score(raw_call.rank, source.assay.max_rank))

        if not p_values:
            raise ValueError(f"No raw call with a rank for data type {data_type.value} in {condition}")

        data_type_p_value = compute_median(p_values)
        all_p_values.append(data_type_p_value)
        if data_type in trusted:
            trusted_p_values.append(data_type_p_value)
        supporting_data_types.add(data_type)
        # Mean score of the data type, weighted by its raw call count
        score_by_weight_sum += sum(scores, Decimal(0))
        weight_sum += len(scores)

    best_all_p_value = None
    best_trusted_p_value = None
    best_score = None
    best_score_weight = None
    if descendant_calls:
        child_all_p_values = []
        child_trusted_p_values = []
        for child in descendant_calls:
            _check_descendant_call(gene, child)
            supporting_data_types |= child.supporting_data_types
            child_all_p_values.append(child.all_data_type_p_value)
            if child.trusted_data_type_p_value is not None:
                child_trusted_p_values.append(child.trusted_data_type_p_value)
            score_by_weight_sum += child.expression_score * child.expression_score_weight
            weight_sum += child.expression_score_weight

            best_all_p_value = _lowest(
                best_all_p_value,
                child.all_data_type_p_value,
                child.best_descendant_all_data_type_p_value,
            )
            best_trusted_p_value = _lowest(
                best_trusted_p_value,
                child.trusted_data_type_p_value,
                child.best_descendant_trusted_data_type_p_value,
            )
            for score, weight in (
                (child.expression_score, child.expression_score_weight),
                (child.best_descendant_expression_score, child.best_descendant_expression_score_weight),
            ):
                if score is not None and (best_score is None or score > best_score):
                    best_score, best_score_weight = score, weight

        all_p_values.append(compute_fdr_corrected_p_value(child_all_p_values))
        if child_trusted_p_values:
            trusted_p_values.append(compute_fdr_corrected_p_value(child_trusted_p_values))

    if weight_sum == 0:
        raise ValueError(f"Expression score weight is null for {gene.gene_id} in {condition}")

    expression_score = clamp_expression_score(
        (score_by_weight_sum / weight_sum).quantize(SCORE_QUANTUM, rounding=ROUND_HALF_UP)
    )
    if raw_data and descendant_calls:
        propagation_state = PropagationState.SELF_AND_DESCENDANT
    elif raw_data:
        propagation_state = PropagationState.SELF
    else:
        propagation_state = PropagationState.DESCENDANT

    return ExpressionCall(
        gene=gene,
        condition=condition,
        supporting_data_types=frozenset(supporting_data_types),
        trusted_data_type_p_value=compute_median(trusted_p_values) if trusted_p_values else None,
        all_data_type_p_value=compute_median(all_p_values),
        best_descendant_trusted_data_type_p_value=best_trusted_p_value,
        best_descendant_all_data_type_p_value=best_all_p_value,
        expression_score_weight=weight_sum,
        expression_score=expression_score,
        best_descendant_expression_score_weight=best_score_weight,
        best_descendant_expression_score=best_score,
        propagation_state=propagation_state,
        # Lower is better, from 1 for the maximum score
        mean_rank=EXPRESSION_SCORE_MAX_VALUE + 1 - expression_score,
    )


def load_otf_expression_calls(
    gene: Gene,
    graph: ConditionGraph,
    raw_data_per_condition: Mapping[Condition, Mapping[DataType, Sequence[RawCallSource]]],
    trusted_data_types: Iterable[DataType] | None = None,
    kept_exclusion_reasons: Iterable[ExclusionReason] | None = None,
) -> list[ExpressionCall]:
    """
    Compute the calls of a gene in every condition of the graph supported by data.

    Conditions are visited from the most precise up, each one aggregating
    its own raw data with the calls of its direct child conditions.
    Conditions with no raw data and no child call get no call.

    Args:
        gene: Gene to aggregate
        graph: Graph of the conditions to produce calls for
        raw_data_per_condition: Raw call sources of the gene, per condition
            and data type (see transform_to_raw_data_per_condition)
        trusted_data_types: Data types feeding the trusted p-value
        kept_exclusion_reasons: Exclusion reasons of the raw calls to use
            (default: NOT_EXCLUDED only). A condition whose raw calls are
            all excluded is treated as having no raw data

    Returns:
        Calls sorted by decreasing expression score, then by condition

    Raises:
        ValueError: If raw data refer to conditions outside the graph, or
            if aggregating a condition fails
    """
    if gene.species_id != graph.species_id:
        raise ValueError(f"Gene {gene.gene_id} is from species {gene.species_id}, graph from {graph.species_id}")
    members = graph.get_conditions()
    unknown = [c for c in raw_data_per_condition if c not in members]
    if unknown:
        raise ValueError(f"{len(unknown)} conditions with raw data are not in the graph, e.g. {unknown[0]}")
    if trusted_data_types is not None:
        trusted_data_types = frozenset(trusted_data_types)
    if kept_exclusion_reasons is None:
        kept_exclusion_reasons = [ExclusionReason.NOT_EXCLUDED]
    kept_exclusion_reasons = frozenset(kept_exclusion_reasons)

    calls_by_condition: dict[Condition, ExpressionCall] = {}
    for condition in graph.conditions_bottom_up():
        child_calls = [
            calls_by_condition[child]
            for child in sorted(graph.get_descendant_conditions(condition, direct_only=True), key=Condition.sort_key)
            if child in calls_by_condition
        ]
        raw_data = _drop_excluded(gene, raw_data_per_condition.get(condition) or {}, kept_exclusion_reasons)
        if not raw_data and not child_calls:
            continue
        calls_by_condition[condition] = load_otf_expression_call(
            gene, condition, raw_data, child_calls, trusted_data_types, kept_exclusion_reasons
        )

    logger.info(
        "otf_calls_loaded",
        gene_id=gene.gene_id,
        condition_count=len(members),
        call_count=len(calls_by_condition),
    )
    return sorted(
        calls_by_condition.values(),
        key=lambda c: (-c.expression_score, c.condition.sort_key()),
    )
