"""Country resolution and ingestion pipeline for geotagged map notes."""

__version__ = "0.1.0"
