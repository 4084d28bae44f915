from __future__ import annotations


class RevenueRadarError(Exception):
    """Base error for the analysis pipeline."""


class ConfigurationError(RevenueRadarError):
    """Missing credentials or an unusable provider configuration."""


class DegenerateVectorError(RevenueRadarError, ValueError):
    """Numeric input that would silently corrupt similarity or ranking."""


class EmbeddingUnavailable(RevenueRadarError):
    """The embedding provider could not produce a vector."""


class ProviderError(RevenueRadarError):
    """A summarization, extraction or advisor call failed."""


class PersistenceError(RevenueRadarError):
    """The store rejected a read or write."""


class OpportunityNotFound(PersistenceError):
    pass
