from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status

from ..ad import ADClient
from ..deps import get_ad_client
from ..schemas import NewUserIn, PasswordIn, UserUpdateIn
from ..webui import json_with_trace_id

router = APIRouter(prefix="/ldap/user")


@router.get("/{user_id}")
def get_user(
    request: Request,
    user_id: str,
    user_id_type: str = "sAMAccountName",
    search_base: str = "",
    client: ADClient = Depends(get_ad_client),
):
    request.state.opt = "get user"
    user = client.get_user(user_id, user_id_type, search_base or None)
    return json_with_trace_id(request, status.HTTP_200_OK, 0, "ok", {"user": user.to_dict()})


@router.post("")
def create_user(request: Request, body: NewUserIn, client: ADClient = Depends(get_ad_client)):
    request.state.opt = "create enabled user"
    client.create_enabled_user(
        body.sam_account_name,
        body.display_name,
        body.ou,
        body.password,
        body.primary_domain,
    )
    user = client.get_user(body.sam_account_name, "sAMAccountName")
    return json_with_trace_id(request, status.HTTP_200_OK, 0, "ok", {"user": user.to_dict()})


@router.patch("/{user_id}")
def update_user(
    request: Request,
    user_id: str,
    body: UserUpdateIn,
    user_id_type: str = "sAMAccountName",
    search_base: str = "",
    client: ADClient = Depends(get_ad_client),
):
    request.state.opt = "update user"
    user = client.update_user(user_id, user_id_type, body.replace_fields(), body.ou, search_base or None)
    return json_with_trace_id(request, status.HTTP_200_OK, 0, "ok", {"user": user.to_dict()})


@router.post("/{user_id}/password")
def set_password(
    request: Request,
    user_id: str,
    body: PasswordIn,
    user_id_type: str = "sAMAccountName",
    search_base: str = "",
    client: ADClient = Depends(get_ad_client),
):
    request.state.opt = "set user password"
    client.set_user_password(user_id, user_id_type, body.password, search_base or None)
    return json_with_trace_id(request, status.HTTP_200_OK, 0, "ok", None)
