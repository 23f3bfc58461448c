"""
Analytics Package

- Funnel conversion (strict and any-order)
- Cohort retention
- Trends, active users, top events and raw event listings
"""

from .funnel import FunnelEngine, format_duration
from .retention import RetentionEngine, summarize
from .insights import InsightsService

__all__ = [
    "FunnelEngine",
    "RetentionEngine",
    "InsightsService",
    "format_duration",
    "summarize",
]
