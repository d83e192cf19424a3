"""Ordering of expression calls and detection of redundant calls.

Calls are ordered so that, for a same gene, a call in a more precise
condition always comes before a call in a less precise one; among calls
free to go next, the lowest mean rank wins. A call is redundant when a
more precise condition of the same gene already reports an equal or better
rank.
"""

import heapq
from collections import defaultdict
from collections.abc import Iterable

import structlog

from expression_calls.calls.models import ExpressionCall, Gene
from expression_calls.conditions.graph import ConditionGraph
from expression_calls.conditions.models import Condition

logger = structlog.get_logger(__name__)


def _rank_key(call: ExpressionCall) -> tuple:
    return (call.mean_rank, call.gene.sort_key(), call.condition.sort_key())


def _check_ranks(calls: Iterable[ExpressionCall]) -> None:
    missing = [c for c in calls if c.mean_rank is None]
    if missing:
        raise ValueError(f"All calls must have a mean rank, {len(missing)} do not: {missing[0]}")


def _check_conditions(calls: Iterable[ExpressionCall], graph: ConditionGraph) -> None:
    members = graph.get_conditions()
    for call in calls:
        if call.condition not in members:
            raise ValueError(f"Condition not in the graph: {call.condition}")


def _group_by_gene(calls: Iterable[ExpressionCall]) -> dict[Gene, list[ExpressionCall]]:
    by_gene: dict[Gene, list[ExpressionCall]] = defaultdict(list)
    for call in calls:
        by_gene[call.gene].append(call)
    return by_gene


def filter_and_order_calls_by_rank(
    calls: Iterable[ExpressionCall],
    graph: ConditionGraph | None = None,
    propagate_rank: bool = False,
) -> list[ExpressionCall]:
    """
    Deduplicate calls and order them by precision and mean rank.

    Without a graph, calls are sorted by (mean rank, gene, condition). With
    a graph, calls of a same gene are topologically ordered along the
    precision order: a call is emitted only once all same-gene calls in
    more precise conditions were emitted, and among emittable calls the one
    with the lowest (mean rank, gene, condition) goes first.

    Args:
        calls: Calls to order, possibly with duplicates
        graph: Graph containing the conditions of all calls
        propagate_rank: Reverse the precision constraint so that broader
            conditions come first, as wanted for absence of expression calls

    Returns:
        Distinct calls in ranking order

    Raises:
        ValueError: If a call has no mean rank or its condition is not in graph
    """
    calls = list(calls)
    distinct = list(dict.fromkeys(calls))
    _check_ranks(distinct)

    if graph is None:
        return sorted(distinct, key=_rank_key)

    _check_conditions(distinct, graph)

    # Count, for each call, the same-gene calls that must come before it
    blockers: dict[ExpressionCall, int] = {call: 0 for call in distinct}
    followers: dict[ExpressionCall, list[ExpressionCall]] = defaultdict(list)
    for gene_calls in _group_by_gene(distinct).values():
        for call in gene_calls:
            for other in gene_calls:
                if other.condition == call.condition:
                    continue
                # other.condition more precise than call.condition
                if graph.is_condition_more_precise(call.condition, other.condition):
                    first, then = (call, other) if propagate_rank else (other, call)
                    blockers[then] += 1
                    followers[first].append(then)

    heap = [(_rank_key(c), idx, c) for idx, c in enumerate(distinct) if blockers[c] == 0]
    heapq.heapify(heap)
    index_of = {c: idx for idx, c in enumerate(distinct)}

    ordered = []
    while heap:
        _, _, call = heapq.heappop(heap)
        ordered.append(call)
        for follower in followers[call]:
            blockers[follower] -= 1
            if blockers[follower] == 0:
                heapq.heappush(heap, (_rank_key(follower), index_of[follower], follower))

    logger.debug(
        "calls_ordered",
        call_count=len(ordered),
        duplicate_count=len(calls) - len(distinct),
        propagate_rank=propagate_rank,
    )
    return ordered


def identify_redundant_calls(
    calls: Iterable[ExpressionCall],
    graph: ConditionGraph,
) -> set[ExpressionCall]:
    """
    Find calls whose information is already carried by a more precise call.

    A call is redundant if a call of the same gene exists in one of its
    descendant conditions with a mean rank lower than or equal to its own.
    Ranks are compared as exact decimals.

    Args:
        calls: Calls to inspect
        graph: Graph containing the conditions of all calls

    Returns:
        The redundant calls

    Raises:
        ValueError: If a call has no mean rank or its condition is not in graph
    """
    distinct = list(dict.fromkeys(calls))
    _check_ranks(distinct)

    redundant: set[ExpressionCall] = set()
    for gene_calls in _group_by_gene(distinct).values():
        by_condition: dict[Condition, list[ExpressionCall]] = defaultdict(list)
        for call in gene_calls:
            by_condition[call.condition].append(call)

        for call in gene_calls:
            descendants = graph.get_descendant_conditions(call.condition)
            if any(
                other.mean_rank <= call.mean_rank
                for condition in descendants
                for other in by_condition.get(condition, ())
            ):
                redundant.add(call)

    logger.debug("redundant_calls_identified", call_count=len(distinct), redundant_count=len(redundant))
    return redundant
