import anyio
import pytest
from sqlalchemy import func, select

from app.db.enums import FeedEvent
from app.db.models import AuditLog

pytestmark = pytest.mark.integration


@pytest.fixture
async def general(client, group, owner, headers_for):
    channels = (await client.get(f"/api/groups/{group['id']}/channels", headers=headers_for(owner))).json()
    return channels[0]


@pytest.mark.anyio
async def test_send_message_publishes_to_channel_subscribers(client, general, owner, headers_for, feed):
    async with feed.subscribe("channel_messages", "channel_id", general["id"]) as sub:
        async with feed.subscribe("channel_messages", "channel_id", general["id"] + 1000) as elsewhere:
            resp = await client.post(
                f"/api/channels/{general['id']}/messages", json={"content": "hello"}, headers=headers_for(owner)
            )
            assert resp.status_code == 201, resp.text
            body = resp.json()
            assert body["author_id"] == owner.id

            with anyio.fail_after(1):
                change = await sub.get()
            assert change.event is FeedEvent.insert
            assert change.row["id"] == body["id"]
            assert change.row["content"] == "hello"
            assert elsewhere.pending() == 0


@pytest.mark.anyio
async def test_restricted_channel_blocks_send_and_read(
    client, group, owner, make_user, add_member, headers_for, roles_by_name, feed
):
    tech_id = roles_by_name["Technical"]["id"]
    dev = (
        await client.post(
            f"/api/groups/{group['id']}/channels",
            json={"name": "dev", "allowed_role_ids": [tech_id]},
            headers=headers_for(owner),
        )
    ).json()
    plain = await make_user("plain")
    await add_member(plain)

    resp = await client.post(f"/api/channels/{dev['id']}/messages", json={"content": "hi"}, headers=headers_for(plain))
    assert resp.status_code == 403
    assert (await client.get(f"/api/channels/{dev['id']}/messages", headers=headers_for(plain))).status_code == 403
    assert feed.subscription_count() == 0


@pytest.mark.anyio
async def test_non_member_gets_404(client, general, make_user, headers_for):
    stranger = await make_user("stranger")
    resp = await client.get(f"/api/channels/{general['id']}/messages", headers=headers_for(stranger))
    assert resp.status_code == 404


@pytest.mark.anyio
async def test_send_requires_send_messages(client, group, general, owner, make_user, add_member, headers_for, roles_by_name):
    everyone_id = roles_by_name["Everyone"]["id"]
    resp = await client.patch(
        f"/api/groups/{group['id']}/roles/{everyone_id}",
        json={"permissions": {"SEND_MESSAGES": False}},
        headers=headers_for(owner),
    )
    assert resp.status_code == 200
    muted = await make_user("muted")
    await add_member(muted)

    resp = await client.post(f"/api/channels/{general['id']}/messages", json={"content": "x"}, headers=headers_for(muted))
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "permission/denied"


@pytest.mark.anyio
async def test_pagination_with_before(client, general, owner, headers_for):
    url = f"/api/channels/{general['id']}/messages"
    ids = []
    for i in range(5):
        resp = await client.post(url, json={"content": f"m{i}"}, headers=headers_for(owner))
        ids.append(resp.json()["id"])

    page = (await client.get(url, params={"limit": 2}, headers=headers_for(owner))).json()
    assert [m["content"] for m in page] == ["m4", "m3"]

    older = (await client.get(url, params={"limit": 10, "before": page[-1]["id"]}, headers=headers_for(owner))).json()
    assert [m["id"] for m in older] == list(reversed(ids[:3]))


@pytest.mark.anyio
async def test_author_deletes_own_message(client, general, make_user, add_member, headers_for, feed, test_session):
    author = await make_user("author")
    await add_member(author)
    url = f"/api/channels/{general['id']}/messages"
    mid = (await client.post(url, json={"content": "oops"}, headers=headers_for(author))).json()["id"]

    async with feed.subscribe("channel_messages", "channel_id", general["id"]) as sub:
        assert (await client.delete(f"{url}/{mid}", headers=headers_for(author))).status_code == 204
        with anyio.fail_after(1):
            change = await sub.get()
        assert change.event is FeedEvent.delete
        assert change.row["id"] == mid

    assert (await client.get(url, headers=headers_for(author))).json() == []
    audited = await test_session.scalar(select(func.count(AuditLog.id)).where(AuditLog.action == "message.delete"))
    assert audited == 0


@pytest.mark.anyio
async def test_deleting_others_message_needs_manage_messages(
    client, general, owner, make_user, add_member, headers_for, roles_by_name, test_session
):
    url = f"/api/channels/{general['id']}/messages"
    mid = (await client.post(url, json={"content": "mine"}, headers=headers_for(owner))).json()["id"]

    plain = await make_user("plain")
    await add_member(plain)
    assert (await client.delete(f"{url}/{mid}", headers=headers_for(plain))).status_code == 403

    mod = await make_user("mod")
    await add_member(mod, [roles_by_name["Moderator"]["id"], roles_by_name["Everyone"]["id"]])
    assert (await client.delete(f"{url}/{mid}", headers=headers_for(mod))).status_code == 204

    audited = await test_session.scalar(select(func.count(AuditLog.id)).where(AuditLog.action == "message.delete"))
    assert audited == 1


@pytest.mark.anyio
async def test_unknown_message_is_not_found(client, general, owner, headers_for):
    resp = await client.delete(f"/api/channels/{general['id']}/messages/424242", headers=headers_for(owner))
    assert resp.status_code == 404
