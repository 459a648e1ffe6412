import pytest
from sqlalchemy import func, select

from app.db.models import AuditLog, Channel, ChannelMessage, GroupMember, Role

pytestmark = pytest.mark.integration


@pytest.mark.anyio
async def test_create_group_seeds_roles_owner_and_general(client, group, owner, headers_for, test_session):
    gid = group["id"]
    assert group["owner_id"] == owner.id

    roles = (await client.get(f"/api/groups/{gid}/roles", headers=headers_for(owner))).json()
    assert [r["name"] for r in roles] == ["Admin", "Moderator", "Technical", "Non-Technical", "Everyone"]
    by_name = {r["name"]: r for r in roles}
    assert by_name["Everyone"]["is_default"] is True
    assert all(by_name["Admin"]["permissions"].values())
    assert by_name["Technical"]["permissions"]["USE_AI_FEATURES"] is True

    members = (await client.get(f"/api/groups/{gid}/members", headers=headers_for(owner))).json()
    assert len(members) == 1
    assert members[0]["user_id"] == owner.id
    assert members[0]["is_owner"] is True
    assert set(members[0]["role_ids"]) == {by_name["Admin"]["id"], by_name["Everyone"]["id"]}
    assert members[0]["display_role"]["name"] == "Admin"

    channels = (await client.get(f"/api/groups/{gid}/channels", headers=headers_for(owner))).json()
    assert [c["name"] for c in channels] == ["general"]
    assert channels[0]["type"] == "text"
    assert channels[0]["allowed_role_ids"] == [by_name["Everyone"]["id"]]

    created = await test_session.scalar(
        select(func.count(AuditLog.id)).where(AuditLog.group_id == gid, AuditLog.action == "group.create")
    )
    assert created == 1


@pytest.mark.anyio
async def test_list_groups_only_returns_memberships(client, group, make_user, headers_for, add_member):
    outsider = await make_user("outsider")
    joined = await make_user("joined")
    await add_member(joined)

    assert (await client.get("/api/groups/", headers=headers_for(outsider))).json() == []
    assert [g["id"] for g in (await client.get("/api/groups/", headers=headers_for(joined))).json()] == [group["id"]]


@pytest.mark.anyio
async def test_non_member_gets_404(client, group, make_user, headers_for):
    outsider = await make_user("outsider")
    resp = await client.get(f"/api/groups/{group['id']}", headers=headers_for(outsider))
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "db/record-not-found"


@pytest.mark.anyio
async def test_requires_token(client, group):
    resp = await client.get(f"/api/groups/{group['id']}")
    assert resp.status_code in (401, 403)


@pytest.mark.anyio
async def test_only_owner_edits_group(client, group, owner, make_user, headers_for, add_member, roles_by_name):
    admin = await make_user("admin2")
    await add_member(admin, [roles_by_name["Admin"]["id"]])

    resp = await client.patch(f"/api/groups/{group['id']}", json={"name": "Renamed"}, headers=headers_for(admin))
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "permission/denied"

    resp = await client.patch(f"/api/groups/{group['id']}", json={"name": "Renamed"}, headers=headers_for(owner))
    assert resp.status_code == 200
    assert resp.json()["name"] == "Renamed"


@pytest.mark.anyio
async def test_delete_group_cascades(client, group, owner, headers_for, test_session):
    gid = group["id"]
    channel_id = (await client.get(f"/api/groups/{gid}/channels", headers=headers_for(owner))).json()[0]["id"]
    resp = await client.post(f"/api/channels/{channel_id}/messages", json={"content": "hello"}, headers=headers_for(owner))
    assert resp.status_code == 201

    resp = await client.delete(f"/api/groups/{gid}", headers=headers_for(owner))
    assert resp.status_code == 204

    for model, column in (
        (Role, Role.group_id),
        (GroupMember, GroupMember.group_id),
        (Channel, Channel.group_id),
    ):
        assert await test_session.scalar(select(func.count(model.id)).where(column == gid)) == 0
    assert await test_session.scalar(select(func.count(ChannelMessage.id))) == 0
    assert (await client.get(f"/api/groups/{gid}", headers=headers_for(owner))).status_code == 404


@pytest.mark.anyio
async def test_my_permissions(client, group, owner, make_user, headers_for, add_member):
    me = (await client.get(f"/api/groups/{group['id']}/permissions/me", headers=headers_for(owner))).json()
    assert me["is_owner"] is True
    assert all(me["permissions"].values())

    plain = await make_user("plain")
    await add_member(plain)
    me = (await client.get(f"/api/groups/{group['id']}/permissions/me", headers=headers_for(plain))).json()
    assert me["is_owner"] is False
    assert me["display_role"]["name"] == "Everyone"
    assert me["permissions"]["SEND_MESSAGES"] is True
    assert me["permissions"]["USE_AI_FEATURES"] is False
    assert me["permissions"]["MANAGE_ROLES"] is False


@pytest.mark.anyio
async def test_audit_log_listing(client, group, owner, make_user, headers_for, add_member):
    plain = await make_user("plain")
    await add_member(plain)

    resp = await client.get(f"/api/groups/{group['id']}/audit", headers=headers_for(owner))
    assert resp.status_code == 200
    actions = [e["action"] for e in resp.json()["items"]]
    assert "group.create" in actions
    assert "member.add" in actions

    assert (await client.get(f"/api/groups/{group['id']}/audit", headers=headers_for(plain))).status_code == 403
