"""Feature flag providers (flagd, ConfigCat), caches, and metrics, trace and validation hooks."""

__version__ = "0.1.0"