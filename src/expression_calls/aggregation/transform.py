"""Regroup raw call sources by aggregated condition and by gene."""

from collections import defaultdict
from collections.abc import Iterable, Mapping

import structlog

from expression_calls.calls.models import DataType, Gene, RawCallSource
from expression_calls.conditions.models import Condition

logger = structlog.get_logger(__name__)


def transform_to_raw_data_per_condition(
    raw_condition_to_condition: Mapping[str, Condition],
    raw_data_by_data_type: Mapping[DataType, Iterable[RawCallSource]],
) -> dict[Condition, dict[DataType, list[RawCallSource]]]:
    """
    Group raw call sources by the condition their raw condition maps to.

    Several raw conditions can map to the same condition, their sources are
    then merged. Every source is kept, in input order, including identical
    ones coming from distinct assays.

    Args:
        raw_condition_to_condition: Raw condition ID -> aggregated condition
        raw_data_by_data_type: Raw call sources per data type

    Returns:
        Dict mapping condition to a dict of data type -> raw call sources

    Raises:
        ValueError: If an assay is annotated to an unmapped raw condition
    """
    per_condition: dict[Condition, dict[DataType, list[RawCallSource]]] = defaultdict(dict)
    source_count = 0

    for data_type, sources in raw_data_by_data_type.items():
        for source in sources:
            raw_condition_id = source.assay.raw_condition_id
            if raw_condition_id not in raw_condition_to_condition:
                raise ValueError(
                    f"Raw condition {raw_condition_id} of assay {source.assay.assay_id} "
                    f"is not mapped to a condition"
                )
            condition = raw_condition_to_condition[raw_condition_id]
            per_condition[condition].setdefault(data_type, []).append(source)
            source_count += 1

    logger.debug(
        "raw_data_grouped_by_condition",
        source_count=source_count,
        condition_count=len(per_condition),
    )
    return dict(per_condition)


def split_raw_data_by_gene(
    raw_data_by_data_type: Mapping[DataType, Iterable[RawCallSource]],
) -> dict[Gene, dict[DataType, list[RawCallSource]]]:
    """Split multi-gene raw call sources into one data type mapping per gene, keeping order."""
    per_gene: dict[Gene, dict[DataType, list[RawCallSource]]] = defaultdict(dict)
    for data_type, sources in raw_data_by_data_type.items():
        for source in sources:
            per_gene[source.raw_call.gene].setdefault(data_type, []).append(source)
    return dict(per_gene)
