from .loader import load_config, load_config_with_overrides
from .schema import AggregationConfig, BatchConfig, EngineConfig, RankingConfig

__all__ = [
    "load_config",
    "load_config_with_overrides",
    "EngineConfig",
    "RankingConfig",
    "AggregationConfig",
    "BatchConfig",
]
