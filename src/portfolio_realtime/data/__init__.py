"""Data access API client."""

from .rest import DataApi, QueryResult, RestDataClient, eq

__all__ = ["DataApi", "QueryResult", "RestDataClient", "eq"]
