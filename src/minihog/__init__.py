"""minihog: product analytics backend (event store, funnels, retention, feature flags)."""

__version__ = "0.1.0"

__all__ = ["analytics", "config", "flags", "infrastructure", "ingest", "models"]
