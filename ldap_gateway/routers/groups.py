from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status

from ..ad import ADClient
from ..deps import get_ad_client
from ..schemas import GroupMembersIn, GroupUpdateIn, NewGroupIn
from ..webui import json_with_trace_id

router = APIRouter(prefix="/ldap/group")


@router.get("/{group_id}")
def get_group(
    request: Request,
    group_id: str,
    group_id_type: str = "sAMAccountName",
    search_base: str = "",
    client: ADClient = Depends(get_ad_client),
):
    request.state.opt = "get group"
    group = client.get_group(group_id, group_id_type, search_base or None)
    return json_with_trace_id(request, status.HTTP_200_OK, 0, "ok", {"group": group.to_dict()})


@router.post("")
def create_group(request: Request, body: NewGroupIn, client: ADClient = Depends(get_ad_client)):
    request.state.opt = "create group"
    client.create_group(
        body.sam_account_name,
        body.ou,
        body.display_name,
        body.description,
        body.group_type,
    )
    group = client.get_group(body.sam_account_name, "sAMAccountName")
    return json_with_trace_id(request, status.HTTP_200_OK, 0, "ok", {"group": group.to_dict()})


@router.patch("/{group_id}")
def update_group(
    request: Request,
    group_id: str,
    body: GroupUpdateIn,
    group_id_type: str = "sAMAccountName",
    search_base: str = "",
    client: ADClient = Depends(get_ad_client),
):
    request.state.opt = "update group"
    group = client.update_group(group_id, group_id_type, body.replace_fields(), search_base or None)
    return json_with_trace_id(request, status.HTTP_200_OK, 0, "ok", {"group": group.to_dict()})


@router.put("/{group_id}/member")
def update_group_members(
    request: Request,
    group_id: str,
    body: GroupMembersIn,
    group_id_type: str = "sAMAccountName",
    member_id_type: str = "sAMAccountName",
    search_base: str = "",
    client: ADClient = Depends(get_ad_client),
):
    request.state.opt = "update group members"
    group, message = client.update_group_members(
        group_id,
        group_id_type,
        add=body.add_members,
        remove=body.remove_members,
        member_id_type=member_id_type,
        search_base=search_base or None,
    )
    return json_with_trace_id(request, status.HTTP_200_OK, 0, message, {"group": group.to_dict()})
