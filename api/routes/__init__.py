"""API Routes Package."""

from api.routes import health, integrations, mappings, webhooks

__all__ = [
    "health",
    "integrations",
    "mappings",
    "webhooks",
]
