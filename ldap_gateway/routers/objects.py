from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status

from ..ad import ADClient
from ..deps import get_ad_client
from ..errors import AlreadyExistsError
from ..webui import json_with_trace_id

router = APIRouter(prefix="/ldap")


@router.get("/healthz")
def healthz(request: Request, client: ADClient = Depends(get_ad_client)):
    client.healthz()
    return json_with_trace_id(request, status.HTTP_200_OK, 0, "ok", {})


@router.get("/availability")
def check_availability(request: Request, name: str = "", client: ADClient = Depends(get_ad_client)):
    request.state.opt = "check name availability"
    ok, obj = client.check_availability(name)
    if ok:
        return json_with_trace_id(request, status.HTTP_200_OK, 0, "ok", {})
    return json_with_trace_id(
        request,
        status.HTTP_409_CONFLICT,
        AlreadyExistsError.code,
        "name has been used",
        {"object": obj.to_dict() if obj else None},
    )
