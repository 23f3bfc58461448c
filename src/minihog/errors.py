"""Error taxonomy shared by the analytical core.

``InvalidInput`` subclasses are caller mistakes (4xx, never retried). ``StoreUnavailable``
wraps failures of the underlying SQL engine (5xx, retry is the caller's business).
Empty result sets are never errors.
"""
from __future__ import annotations


class AnalyticsError(Exception):
    pass


class InvalidInput(AnalyticsError, ValueError):
    pass


class InvalidPeriodFormat(InvalidInput):
    def __init__(self, period: str):
        super().__init__(f"Invalid period format: {period}")
        self.period = period


class InvalidTimeRange(InvalidInput):
    pass


class InvalidFunnelDefinition(InvalidInput):
    pass


class InvalidRetentionQuery(InvalidInput):
    pass


class InvalidEvent(InvalidInput):
    pass


class UnsafeQuery(InvalidInput):
    pass


class FlagNotFound(AnalyticsError, LookupError):
    def __init__(self, key: str):
        super().__init__(f"Feature flag with key '{key}' not found")
        self.key = key


class FlagAlreadyExists(AnalyticsError):
    def __init__(self, key: str):
        super().__init__(f"Feature flag with key '{key}' already exists")
        self.key = key


class StoreUnavailable(AnalyticsError):
    pass


class TextGenerationFailed(AnalyticsError):
    pass
