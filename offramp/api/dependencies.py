from fastapi import Request

from ..container import OffRampServices


def get_services(request: Request) -> OffRampServices:
    """Services built by the application lifespan."""
    return request.app.state.services
