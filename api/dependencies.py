"""Request dependencies."""

from fastapi import Request

from hub import Hub


def get_hub(request: Request) -> Hub:
    """The Hub built by the app lifespan (or injected by create_app)."""
    return request.app.state.hub
