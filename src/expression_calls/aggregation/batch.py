"""Parallel per-gene aggregation over a shared condition graph.

Each gene is an independent task: fetch its raw data, aggregate it over the
graph, then rank, deduplicate and cluster its calls. The graph is only read,
so a single instance serves every task of a species.
"""

from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

import structlog

from expression_calls.aggregation.load import load_otf_expression_calls
from expression_calls.calls.clustering import generate_mean_rank_score_clustering
from expression_calls.calls.models import DataType, ExpressionCall, Gene, RawCallSource
from expression_calls.calls.ranking import filter_and_order_calls_by_rank, identify_redundant_calls
from expression_calls.conditions.graph import ConditionGraph
from expression_calls.conditions.models import Condition
from expression_calls.config.schema import EngineConfig, RankingConfig

logger = structlog.get_logger(__name__)

RawDataProvider = Callable[[Gene], Mapping[Condition, Mapping[DataType, Sequence[RawCallSource]]]]


@dataclass
class GeneCallSummary:
    """Aggregated calls of a gene, ready for reporting.

    Attributes:
        gene: Gene the calls belong to
        calls: Calls in ranking order, more precise conditions first
        redundant_calls: Calls whose information is carried by a more precise call
        clusters: Call -> expression level cluster index, 0 being the highest expression
    """
    gene: Gene
    calls: list[ExpressionCall] = field(default_factory=list)
    redundant_calls: set[ExpressionCall] = field(default_factory=set)
    clusters: dict[ExpressionCall, int] = field(default_factory=dict)


def summarize_gene_calls(
    gene: Gene,
    calls: Iterable[ExpressionCall],
    graph: ConditionGraph,
    ranking: RankingConfig | None = None,
) -> GeneCallSummary:
    """
    Order, flag redundant and cluster the calls of one gene.

    Args:
        gene: Gene of the calls
        calls: Calls of the gene, in conditions of graph
        graph: Condition graph of the calls
        ranking: Clustering settings (default: RankingConfig defaults)

    Returns:
        GeneCallSummary for the gene
    """
    ranking = ranking or RankingConfig()
    calls = list(calls)

    return GeneCallSummary(
        gene=gene,
        calls=filter_and_order_calls_by_rank(calls, graph),
        redundant_calls=identify_redundant_calls(calls, graph),
        clusters=generate_mean_rank_score_clustering(
            calls, ranking.clustering_method, ranking.distance_threshold
        ),
    )


def aggregate_genes(
    genes: Iterable[Gene],
    graph: ConditionGraph,
    raw_data_provider: RawDataProvider,
    config: EngineConfig | None = None,
) -> dict[Gene, GeneCallSummary]:
    """
    Aggregate and summarize the calls of several genes in parallel.

    Args:
        genes: Genes to process, all from the graph's species
        graph: Condition graph shared by all tasks
        raw_data_provider: Returns the raw data of a gene per condition and
            data type; called from worker threads
        config: Engine configuration (default: EngineConfig defaults)

    Returns:
        Dict mapping each gene to its summary, in input order

    Raises:
        ValueError: If a gene is not from the graph's species
        RuntimeError: If processing a gene fails, chained to the original error
    """
    config = config or EngineConfig()
    genes = list(dict.fromkeys(genes))
    other_species = [g for g in genes if g.species_id != graph.species_id]
    if other_species:
        raise ValueError(
            f"{len(other_species)} genes are not from species {graph.species_id}, "
            f"e.g. {other_species[0].gene_id}"
        )
    trusted_data_types = config.aggregation.trusted_data_types
    kept_exclusion_reasons = config.aggregation.kept_exclusion_reasons

    def process_gene(gene: Gene) -> GeneCallSummary:
        raw_data = raw_data_provider(gene)
        calls = load_otf_expression_calls(
            gene, graph, raw_data, trusted_data_types, kept_exclusion_reasons
        )
        return summarize_gene_calls(gene, calls, graph, config.ranking)

    logger.info(
        "batch_aggregation_start",
        gene_count=len(genes),
        max_workers=config.batch.max_workers,
        config_hash=config.config_hash()[:16],
    )

    summaries: dict[Gene, GeneCallSummary] = {}
    with ThreadPoolExecutor(max_workers=config.batch.max_workers) as executor:
        futures = {executor.submit(process_gene, gene): gene for gene in genes}
        for future in as_completed(futures):
            gene = futures[future]
            try:
                summaries[gene] = future.result()
            except Exception as e:
                logger.error("gene_aggregation_failed", gene_id=gene.gene_id, error=str(e))
                for pending in futures:
                    pending.cancel()
                raise RuntimeError(f"Aggregation failed for gene {gene.gene_id}") from e

    logger.info(
        "batch_aggregation_complete",
        gene_count=len(summaries),
        call_count=sum(len(s.calls) for s in summaries.values()),
    )
    return {gene: summaries[gene] for gene in genes}
