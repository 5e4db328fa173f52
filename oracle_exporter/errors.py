from typing import Optional


class ExporterError(Exception):
    """Base exception for the exporter."""


class ConfigError(ExporterError):
    """Operator configuration is contradictory or cannot be satisfied."""


class UpstreamError(ExporterError):
    """The node could not be reached or returned malformed data."""

    def __init__(self, message: str, endpoint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.endpoint = endpoint

    def __str__(self):
        if self.endpoint:
            return f"{self.message} [endpoint={self.endpoint}]"
        return self.message


class QueryError(ExporterError):
    """A single node query failed during a scrape."""

    def __init__(self, query: str, target: str, cause: Exception):
        super().__init__(f"query {query} for {target} failed: {cause}")
        self.query = query
        self.target = target
        self.cause = cause
