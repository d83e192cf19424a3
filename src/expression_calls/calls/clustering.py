"""One-dimensional clustering of a gene's expression calls by mean rank.

Calls of one gene, taken by ascending mean rank, are split into groups of
similar expression level. A new group starts whenever the distance between
the current rank and a reference rank of the open group exceeds a
threshold. Methods differ by distance measure and reference.
"""

import math
import statistics
from collections.abc import Iterable
from enum import Enum

import structlog

from expression_calls.calls.models import ExpressionCall

logger = structlog.get_logger(__name__)

# Ranks at or below this value are rejected by the Bgee rank distance
MIN_DISTANCE_VALUE = 0.000001
FIXED_CANBERRA_TOLERANCE = 0.000001


class DistanceReference(Enum):
    MIN = "MIN"
    MAX = "MAX"
    MEAN = "MEAN"
    MEDIAN = "MEDIAN"


class ClusteringMethod(str, Enum):
    """
    Clustering methods for mean rank scores.

    distance_measure_above_one tells how to read the distance threshold:
    True for measures whose values are always above 1 (threshold > 1), False
    for relative measures bounded by 1 (0 < threshold <= 1).
    """

    def __new__(cls, value: str, distance_measure_above_one: bool):
        obj = str.__new__(cls, value)
        obj._value_ = value
        obj.distance_measure_above_one = distance_measure_above_one
        return obj

    FIXED_CANBERRA_DIST_TO_MAX = ("FIXED_CANBERRA_DIST_TO_MAX", False)
    CANBERRA_DIST_TO_MAX = ("CANBERRA_DIST_TO_MAX", False)
    CANBERRA_DBSCAN = ("CANBERRA_DBSCAN", False)
    CANBERRA_DIST_TO_MEAN = ("CANBERRA_DIST_TO_MEAN", False)
    CANBERRA_DIST_TO_MEDIAN = ("CANBERRA_DIST_TO_MEDIAN", False)
    CANBERRA_DIST_TO_MIN = ("CANBERRA_DIST_TO_MIN", False)
    BGEE_DIST_TO_MAX = ("BGEE_DIST_TO_MAX", True)


DEFAULT_CLUSTERING_METHOD = ClusteringMethod.BGEE_DIST_TO_MAX
DEFAULT_DISTANCE_THRESHOLD = 1.9


def bgee_rank_distance(a: float, b: float) -> float:
    """
    Distance between two mean ranks: max^1.03 / min.

    The exponent makes a same absolute difference count more between good
    (low) ranks than between bad (high) ones.

    Raises:
        ValueError: If a value is negative or too close to 0
    """
    if a <= MIN_DISTANCE_VALUE or b <= MIN_DISTANCE_VALUE:
        raise ValueError(f"Bgee rank distance requires strictly positive values, got {a} and {b}")
    low, high = (a, b) if a <= b else (b, a)
    return high ** 1.03 / low


def canberra_distance(a: float, b: float) -> float:
    """Canberra distance between two scalars, |a - b| / (|a| + |b|)."""
    denominator = abs(a) + abs(b)
    if denominator == 0:
        return 0.0
    return abs(a - b) / denominator


def _check_input(calls: list[ExpressionCall]) -> None:
    for call in calls:
        if call.mean_rank is None:
            raise ValueError(f"Call without mean rank cannot be clustered: {call}")
        if call.gene != calls[0].gene:
            raise ValueError("A clustering can only be performed one gene at a time")


def _check_threshold(method: ClusteringMethod, distance_threshold: float) -> None:
    if method.distance_measure_above_one:
        if distance_threshold <= 1:
            raise ValueError(f"{method.value} requires a distance threshold greater than 1, got {distance_threshold}")
    elif not 0 < distance_threshold <= 1:
        raise ValueError(f"{method.value} requires a distance threshold between 0 and 1, got {distance_threshold}")


def _reference_score(members: list[float], current: float, reference: DistanceReference) -> float:
    if reference is DistanceReference.MIN:
        return members[0]
    if reference is DistanceReference.MAX:
        return members[-1]
    if reference is DistanceReference.MEAN:
        return (sum(members) + current) / (len(members) + 1)
    return statistics.median(members + [current])


def _distance_based_clustering(
    calls: list[ExpressionCall],
    distance_threshold: float,
    measure,
    reference: DistanceReference,
) -> dict[ExpressionCall, int]:
    clustering: dict[ExpressionCall, int] = {}
    group_index = -1
    members: list[float] = []

    for call in calls:
        current = float(call.mean_rank)
        create_group = not members
        if members and current != members[-1]:
            ref = _reference_score(members, current, reference)
            if measure(ref, current) > distance_threshold:
                create_group = True
            # For mean and median, adding the call must not push the
            # reference too far from the group minimum either
            elif reference in (DistanceReference.MEAN, DistanceReference.MEDIAN) \
                    and measure(ref, members[0]) > distance_threshold:
                create_group = True

        if create_group:
            group_index += 1
            members = []
        members.append(current)
        clustering[call] = group_index

    return clustering


def _fixed_canberra_clustering(
    calls: list[ExpressionCall],
    distance_threshold: float,
) -> dict[ExpressionCall, int]:
    clustering: dict[ExpressionCall, int] = {}
    group_index = -1
    allowed_diff = 0.0
    previous = 0.0

    for call in calls:
        current = float(call.mean_rank)
        if group_index == -1 or (
            current != previous
            and current - previous - allowed_diff >= -FIXED_CANBERRA_TOLERANCE
        ):
            group_index += 1
            # Largest increase keeping the Canberra distance to the group
            # opener under the threshold
            if distance_threshold >= 1:
                # Canberra distances between positive ranks never exceed 1
                allowed_diff = math.inf
            else:
                allowed_diff = -current * ((1 + distance_threshold) / (distance_threshold - 1) + 1)
        clustering[call] = group_index
        previous = current

    return clustering


def _single_linkage_clustering(
    calls: list[ExpressionCall],
    distance_threshold: float,
    measure,
) -> dict[ExpressionCall, int]:
    # DBSCAN with a minimum cluster size of 1 over sorted scalars: points
    # within epsilon of their predecessor share its cluster
    clustering: dict[ExpressionCall, int] = {}
    group_index = -1
    previous = None

    for call in calls:
        current = float(call.mean_rank)
        if previous is None or measure(previous, current) > distance_threshold:
            group_index += 1
        clustering[call] = group_index
        previous = current

    return clustering


def generate_mean_rank_score_clustering(
    calls: Iterable[ExpressionCall],
    method: ClusteringMethod = DEFAULT_CLUSTERING_METHOD,
    distance_threshold: float = DEFAULT_DISTANCE_THRESHOLD,
) -> dict[ExpressionCall, int]:
    """
    Cluster the calls of one gene based on their mean rank.

    Args:
        calls: Calls of a single gene, in any order
        method: Clustering method
        distance_threshold: Distance above which a new cluster starts, read
            according to method.distance_measure_above_one

    Returns:
        Mapping of call to cluster index. Indices start at 0 and increase
        with mean rank; calls with equal mean ranks share a cluster.

    Raises:
        ValueError: If calls span several genes, lack a mean rank, or if
            the threshold does not suit the method
    """
    calls = list(calls)
    _check_input(calls)
    calls.sort(key=lambda c: (c.mean_rank, c.condition.sort_key()))
    _check_threshold(method, distance_threshold)

    if method is ClusteringMethod.CANBERRA_DBSCAN:
        clustering = _single_linkage_clustering(calls, distance_threshold, canberra_distance)
    elif method is ClusteringMethod.FIXED_CANBERRA_DIST_TO_MAX:
        clustering = _fixed_canberra_clustering(calls, distance_threshold)
    elif method is ClusteringMethod.BGEE_DIST_TO_MAX:
        clustering = _distance_based_clustering(
            calls, distance_threshold, bgee_rank_distance, DistanceReference.MAX
        )
    else:
        reference = {
            ClusteringMethod.CANBERRA_DIST_TO_MAX: DistanceReference.MAX,
            ClusteringMethod.CANBERRA_DIST_TO_MIN: DistanceReference.MIN,
            ClusteringMethod.CANBERRA_DIST_TO_MEAN: DistanceReference.MEAN,
            ClusteringMethod.CANBERRA_DIST_TO_MEDIAN: DistanceReference.MEDIAN,
        }[method]
        clustering = _distance_based_clustering(calls, distance_threshold, canberra_distance, reference)

    logger.debug(
        "calls_clustered",
        method=method.value,
        call_count=len(calls),
        cluster_count=max(clustering.values(), default=-1) + 1,
    )
    return clustering
