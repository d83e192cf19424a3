"""Pydantic models for engine configuration."""

import hashlib
import json

from pydantic import BaseModel, Field, field_validator, model_validator

from expression_calls.calls.clustering import (
    DEFAULT_CLUSTERING_METHOD,
    DEFAULT_DISTANCE_THRESHOLD,
    ClusteringMethod,
)
from expression_calls.calls.models import DataType, ExclusionReason


class RankingConfig(BaseModel):
    """Settings for mean-rank clustering of expression calls."""

    clustering_method: ClusteringMethod = Field(
        default=DEFAULT_CLUSTERING_METHOD,
        description="Clustering method used to group calls by mean rank",
    )
    distance_threshold: float = Field(
        default=DEFAULT_DISTANCE_THRESHOLD,
        gt=0.0,
        description="Distance above which a new cluster is started",
    )

    @model_validator(mode="after")
    def check_threshold_matches_method(self) -> "RankingConfig":
        """
        Validate the threshold against the method's distance interpretation.

        Raises:
            ValueError: If an above-one method gets a threshold <= 1, or a
                relative method gets a threshold above 1
        """
        above_one = self.clustering_method.distance_measure_above_one
        if above_one and self.distance_threshold <= 1.0:
            raise ValueError(
                f"{self.clustering_method.value} requires a distance threshold "
                f"greater than 1, got {self.distance_threshold}"
            )
        if not above_one and self.distance_threshold > 1.0:
            raise ValueError(
                f"{self.clustering_method.value} requires a distance threshold "
                f"between 0 and 1, got {self.distance_threshold}"
            )
        return self


class AggregationConfig(BaseModel):
    """Settings for on-the-fly call aggregation."""

    trusted_data_types: list[DataType] = Field(
        default_factory=lambda: [dt for dt in DataType if dt.trusted],
        description="Data types contributing to the trusted p-value",
    )
    kept_exclusion_reasons: list[ExclusionReason] = Field(
        default_factory=lambda: [ExclusionReason.NOT_EXCLUDED],
        description="Raw calls with any other exclusion reason are filtered out",
    )

    @field_validator("kept_exclusion_reasons")
    @classmethod
    def require_kept_reason(cls, v: list[ExclusionReason]) -> list[ExclusionReason]:
        """At least one exclusion reason must be kept, otherwise no raw call survives."""
        if not v:
            raise ValueError("kept_exclusion_reasons cannot be empty")
        return v


class BatchConfig(BaseModel):
    """Worker pool settings for per-gene batch aggregation."""

    max_workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Number of genes aggregated concurrently",
    )


class EngineConfig(BaseModel):
    """Main engine configuration."""

    ranking: RankingConfig = Field(
        default_factory=RankingConfig,
        description="Call ranking and clustering settings",
    )
    aggregation: AggregationConfig = Field(
        default_factory=AggregationConfig,
        description="On-the-fly aggregation settings",
    )
    batch: BatchConfig = Field(
        default_factory=BatchConfig,
        description="Batch execution settings",
    )

    def config_hash(self) -> str:
        """
        Compute SHA-256 hash of the configuration.

        Returns a deterministic hash based on all config values,
        useful for tagging aggregated calls with the settings that produced them.
        """
        config_dict = self.model_dump(mode="json")
        config_json = json.dumps(
            config_dict,
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(config_json.encode()).hexdigest()
