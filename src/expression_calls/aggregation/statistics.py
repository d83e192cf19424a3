"""Decimal statistics used to aggregate raw calls into expression calls.

All computations use decimal arithmetic with half-up rounding, so that
results do not depend on binary floating point representation.
"""

from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal, localcontext

import structlog

logger = structlog.get_logger(__name__)

EXPRESSION_SCORE_MIN_VALUE = Decimal("0.01")
EXPRESSION_SCORE_MAX_VALUE = Decimal("100")
# Expression scores are rounded to 5 fractional digits
SCORE_QUANTUM = Decimal("0.00001")
MEDIAN_PRECISION = 50
# FDR values are floored to avoid meaningless precision
MIN_FDR = Decimal("0.00000000000001")
# Replaces null p-values before FDR correction
ABOVE_ZERO = Decimal("1E-30")


def clamp_expression_score(score: Decimal) -> Decimal:
    """Bound an expression score to [EXPRESSION_SCORE_MIN_VALUE, EXPRESSION_SCORE_MAX_VALUE]."""
    if score < EXPRESSION_SCORE_MIN_VALUE:
        logger.warning("expression_score_clamped", score=str(score), bound=str(EXPRESSION_SCORE_MIN_VALUE))
        return EXPRESSION_SCORE_MIN_VALUE.quantize(SCORE_QUANTUM)
    if score > EXPRESSION_SCORE_MAX_VALUE:
        logger.warning("expression_score_clamped", score=str(score), bound=str(EXPRESSION_SCORE_MAX_VALUE))
        return EXPRESSION_SCORE_MAX_VALUE.quantize(SCORE_QUANTUM)
    return score


def compute_expression_score(rank: Decimal | None, max_rank: Decimal | None) -> Decimal | None:
    """
    Transform a rank into an expression score between 0 and 100.

    The transform is linear, from 100 for rank 1 down to 1 for max_rank:
    score = 100 - (rank - 1) * 99 / (max_rank - 1)

    Args:
        rank: Rank of the gene in the assay, 1 being the highest expression
        max_rank: Highest rank of the assay

    Returns:
        Score rounded half-up to 5 fractional digits, or None if rank is None

    Raises:
        ValueError: If max_rank is None, rank or max_rank is below 1, or
            rank is greater than max_rank
    """
    if max_rank is None:
        raise ValueError("Max rank must be provided")
    if rank is None:
        logger.debug("expression_score_skipped", reason="rank is None")
        return None

    rank = Decimal(rank)
    max_rank = Decimal(max_rank)
    if rank < 1 or max_rank < 1:
        raise ValueError(f"Rank and max rank must be at least 1, got rank {rank} and max rank {max_rank}")
    if rank > max_rank:
        raise ValueError(f"Rank cannot be greater than max rank. Rank: {rank} - max rank: {max_rank}")

    if max_rank == 1:
        score = EXPRESSION_SCORE_MAX_VALUE
    else:
        score = EXPRESSION_SCORE_MAX_VALUE - (rank - 1) * 99 / (max_rank - 1)

    return clamp_expression_score(score.quantize(SCORE_QUANTUM, rounding=ROUND_HALF_UP))


def compute_median(p_values: Sequence[Decimal]) -> Decimal:
    """
    Combine p-values as twice their median, capped at 1.

    Doubling the median of one-sided p-values approximates a two-sided
    significance. A single p-value is returned unchanged.

    Args:
        p_values: P-values to combine, not modified

    Returns:
        min(2 * median, 1), or the only p-value

    Raises:
        ValueError: If p_values is empty
    """
    if not p_values:
        raise ValueError("Cannot compute the median of an empty list of p-values")
    if len(p_values) == 1:
        return p_values[0]

    ordered = sorted(p_values)
    size = len(ordered)
    with localcontext() as ctx:
        ctx.prec = MEDIAN_PRECISION
        ctx.rounding = ROUND_HALF_UP
        if size % 2 == 0:
            median = (ordered[size // 2 - 1] + ordered[size // 2]) / 2
        else:
            median = ordered[size // 2]
        doubled = median * 2

    return min(doubled, Decimal(1))


def compute_fdr_corrected_p_value(p_values: Sequence[Decimal]) -> Decimal:
    """
    Combine p-values as the smallest Benjamini-Hochberg adjusted p-value.

    Null p-values are replaced with a tiny positive value before correction,
    and the result is floored at MIN_FDR.

    Args:
        p_values: P-values to combine, not modified

    Returns:
        Smallest FDR-adjusted p-value

    Raises:
        ValueError: If p_values is empty
    """
    if not p_values:
        raise ValueError("Cannot compute an FDR from an empty list of p-values")

    ordered = sorted(ABOVE_ZERO if p == 0 else Decimal(p) for p in p_values)
    m = len(ordered)
    adjusted = [Decimal(0)] * m
    # Step-up from the largest p-value
    adjusted[m - 1] = ordered[m - 1]
    for i in range(m - 2, -1, -1):
        adjusted[i] = min(adjusted[i + 1], ordered[i] * m / (i + 1))

    fdr = min(adjusted)
    if fdr < MIN_FDR:
        fdr = MIN_FDR
    return fdr
