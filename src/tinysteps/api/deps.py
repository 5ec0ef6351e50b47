"""FastAPI dependencies."""
from fastapi import Request

from tinysteps.layer import DurabilityLayer


def get_layer(request: Request) -> DurabilityLayer:
    """The DurabilityLayer attached to the app at startup."""
    return request.app.state.layer
