"""Time-partitioned resource change feed for a FHIR server."""

__version__ = "0.1.0"
