"""FastAPI dependencies."""

from fastapi import Request

from wagate.gateway import Gateway


def get_gateway(request: Request) -> Gateway:
    """Gateway built by the app lifespan (or injected by tests)."""
    return request.app.state.gateway
