"""Expression call aggregation over ontology-ordered biological conditions."""

__version__ = "0.1.0"
