"""Core module - shared plumbing for the integration hub.

Configuration, error taxonomy, SQLite helpers, caching, observability and
encryption of integration config at rest. Nothing in here knows about
integrations, webhooks or mapping rules.
"""

__version__ = "1.0.0"
