from __future__ import annotations

from fastapi import Request

from .ad import ADClient


def get_ad_client(request: Request) -> ADClient:
    """The process-wide client built at startup (see ``main.lifespan``)."""
    return request.app.state.ad_client
