import anyio
import pytest

from app.db.enums import FeedEvent

pytestmark = pytest.mark.integration


async def _start(client, headers, other_user_id):
    return await client.post("/api/conversations/", json={"other_user_id": other_user_id}, headers=headers)


@pytest.mark.anyio
async def test_start_conversation_is_idempotent_per_pair(client, owner, make_user, headers_for):
    friend = await make_user("friend")

    resp = await _start(client, headers_for(owner), friend.id)
    assert resp.status_code == 201, resp.text
    conv = resp.json()
    assert {conv["user1_id"], conv["user2_id"]} == {owner.id, friend.id}

    again = await _start(client, headers_for(friend), owner.id)
    assert again.status_code == 200
    assert again.json()["id"] == conv["id"]


@pytest.mark.anyio
async def test_cannot_message_yourself(client, owner, headers_for):
    resp = await _start(client, headers_for(owner), owner.id)
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "general/validation-error"


@pytest.mark.anyio
async def test_unknown_user_is_not_found(client, owner, headers_for):
    resp = await _start(client, headers_for(owner), 98765)
    assert resp.status_code == 404


@pytest.mark.anyio
async def test_outsider_cannot_read_or_post(client, owner, make_user, headers_for):
    friend = await make_user("friend")
    outsider = await make_user("outsider")
    conv = (await _start(client, headers_for(owner), friend.id)).json()

    url = f"/api/conversations/{conv['id']}"
    assert (await client.get(url, headers=headers_for(outsider))).status_code == 404
    assert (await client.get(f"{url}/messages", headers=headers_for(outsider))).status_code == 404
    resp = await client.post(f"{url}/messages", json={"content": "hi"}, headers=headers_for(outsider))
    assert resp.status_code == 404


@pytest.mark.anyio
async def test_send_publishes_and_updates_preview(client, owner, make_user, headers_for, feed):
    friend = await make_user("friend", "Friendly Person")
    conv = (await _start(client, headers_for(owner), friend.id)).json()

    async with feed.subscribe("direct_messages", "conversation_id", conv["id"]) as sub:
        async with feed.subscribe("notifications", "user_id", owner.id) as sender_inbox:
            async with feed.subscribe("notifications", "user_id", friend.id) as inbox:
                resp = await client.post(
                    f"/api/conversations/{conv['id']}/messages", json={"content": "hello there"}, headers=headers_for(owner)
                )
                assert resp.status_code == 201, resp.text
                body = resp.json()
                assert body["sender_id"] == owner.id

                with anyio.fail_after(1):
                    change = await sub.get()
                    note = await inbox.get()
                assert change.event is FeedEvent.insert
                assert change.row["id"] == body["id"]
                assert note.row["type"] == "message"
                assert note.row["sender_id"] == owner.id
                assert note.row["entity_id"] == conv["id"]
                assert sender_inbox.pending() == 0

    listed = (await client.get("/api/conversations/", headers=headers_for(friend))).json()
    assert [c["id"] for c in listed] == [conv["id"]]
    assert listed[0]["last_message"] == "hello there"


@pytest.mark.anyio
async def test_message_history_pages_with_before(client, owner, make_user, headers_for):
    friend = await make_user("friend")
    conv = (await _start(client, headers_for(owner), friend.id)).json()
    url = f"/api/conversations/{conv['id']}/messages"
    ids = []
    for i in range(4):
        sender = owner if i % 2 == 0 else friend
        ids.append((await client.post(url, json={"content": f"m{i}"}, headers=headers_for(sender))).json()["id"])

    page = (await client.get(url, params={"limit": 2}, headers=headers_for(friend))).json()
    assert [m["content"] for m in page] == ["m3", "m2"]
    older = (await client.get(url, params={"before": page[-1]["id"]}, headers=headers_for(friend))).json()
    assert [m["id"] for m in older] == list(reversed(ids[:2]))


@pytest.mark.anyio
async def test_conversations_are_listed_per_user(client, owner, make_user, headers_for):
    a = await make_user("alpha")
    b = await make_user("beta")
    await _start(client, headers_for(owner), a.id)
    await _start(client, headers_for(owner), b.id)

    assert len((await client.get("/api/conversations/", headers=headers_for(owner))).json()) == 2
    assert len((await client.get("/api/conversations/", headers=headers_for(a))).json()) == 1
