import asyncio

import anyio
import pytest
from fastapi import WebSocketDisconnect

from app.api import ws as ws_api
from app.core.security import create_access_token

pytestmark = pytest.mark.integration


class FakeWS:
    """Stands in for a WebSocket; the endpoints are driven directly."""

    def __init__(self):
        self.received = []
        self.accepted = False
        self.closed = False
        self.close_code = None
        self._incoming = asyncio.Queue()

    async def accept(self):
        self.accepted = True

    async def send_json(self, obj):
        self.received.append(obj)

    async def receive_text(self):
        item = await self._incoming.get()
        if item is None:
            raise WebSocketDisconnect(code=1000)
        return item

    async def close(self, code=1000):
        self.closed = True
        self.close_code = code

    def disconnect(self):
        self._incoming.put_nowait(None)


def _token(user) -> str:
    return create_access_token({"sub": str(user.id)})


async def _wait_for(predicate, timeout: float = 2.0):
    with anyio.fail_after(timeout):
        while not predicate():
            await anyio.sleep(0.01)


async def _finish(task, timeout: float = 2.0):
    with anyio.fail_after(timeout):
        await task


@pytest.fixture
async def general(client, group, owner, headers_for):
    channels = (await client.get(f"/api/groups/{group['id']}/channels", headers=headers_for(owner))).json()
    return channels[0]


@pytest.fixture
async def dev(client, group, owner, headers_for, roles_by_name):
    resp = await client.post(
        f"/api/groups/{group['id']}/channels",
        json={"name": "dev", "allowed_role_ids": [roles_by_name["Technical"]["id"]]},
        headers=headers_for(owner),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.fixture
def open_channel_stream(feed, session_factory):
    def _open(ws, channel_id, user):
        return asyncio.create_task(
            ws_api.channel_stream(ws, channel_id, token=_token(user), feed=feed, session_factory=session_factory)
        )

    return _open


@pytest.mark.anyio
@pytest.mark.parametrize("token", ["", "not-a-jwt"])
async def test_invalid_token_is_refused(general, feed, session_factory, token):
    ws = FakeWS()
    await ws_api.channel_stream(ws, general["id"], token=token, feed=feed, session_factory=session_factory)
    assert ws.close_code == ws_api.CLOSE_FORBIDDEN
    assert ws.accepted is False
    assert feed.subscription_count() == 0


@pytest.mark.anyio
async def test_non_member_is_closed_with_not_found(general, make_user, feed, session_factory):
    stranger = await make_user("stranger")
    ws = FakeWS()
    await ws_api.channel_stream(ws, general["id"], token=_token(stranger), feed=feed, session_factory=session_factory)
    assert ws.close_code == ws_api.CLOSE_NOT_FOUND
    assert ws.accepted is False


@pytest.mark.anyio
async def test_unknown_channel_is_closed_with_not_found(owner, feed, session_factory):
    ws = FakeWS()
    await ws_api.channel_stream(ws, 424242, token=_token(owner), feed=feed, session_factory=session_factory)
    assert ws.close_code == ws_api.CLOSE_NOT_FOUND


@pytest.mark.anyio
async def test_restricted_channel_is_closed_with_forbidden(dev, make_user, add_member, feed, session_factory):
    plain = await make_user("plain")
    await add_member(plain)
    ws = FakeWS()
    await ws_api.channel_stream(ws, dev["id"], token=_token(plain), feed=feed, session_factory=session_factory)
    assert ws.close_code == ws_api.CLOSE_FORBIDDEN
    assert feed.subscription_count() == 0


@pytest.mark.anyio
async def test_member_receives_messages_until_disconnect(
    client, general, owner, make_user, add_member, headers_for, feed, open_channel_stream
):
    reader = await make_user("reader")
    await add_member(reader)
    ws = FakeWS()
    task = open_channel_stream(ws, general["id"], reader)
    await _wait_for(lambda: feed.subscription_count("channel_messages") == 1)
    assert ws.accepted is True

    resp = await client.post(
        f"/api/channels/{general['id']}/messages", json={"content": "hello"}, headers=headers_for(owner)
    )
    assert resp.status_code == 201
    await _wait_for(lambda: len(ws.received) == 1)
    assert ws.received[0]["table"] == "channel_messages"
    assert ws.received[0]["eventType"] == "INSERT"
    assert ws.received[0]["new"]["content"] == "hello"

    ws.disconnect()
    await _finish(task)
    assert feed.subscription_count() == 0
    assert ws.closed is False


@pytest.mark.anyio
async def test_kicked_member_stops_receiving(
    client, group, general, owner, make_user, add_member, headers_for, feed, open_channel_stream
):
    reader = await make_user("reader")
    member = await add_member(reader)
    ws = FakeWS()
    task = open_channel_stream(ws, general["id"], reader)
    await _wait_for(lambda: feed.subscription_count("channel_messages") == 1)

    resp = await client.delete(f"/api/groups/{group['id']}/members/{member['id']}", headers=headers_for(owner))
    assert resp.status_code == 204
    await client.post(f"/api/channels/{general['id']}/messages", json={"content": "secret"}, headers=headers_for(owner))

    await _finish(task)
    assert ws.received == []
    assert ws.close_code == ws_api.CLOSE_NOT_FOUND
    assert feed.subscription_count() == 0


@pytest.mark.anyio
async def test_member_losing_allowed_role_stops_receiving(
    client, group, dev, owner, make_user, add_member, headers_for, roles_by_name, feed, open_channel_stream
):
    tech = await make_user("tech")
    member = await add_member(tech, [roles_by_name["Technical"]["id"]])
    ws = FakeWS()
    task = open_channel_stream(ws, dev["id"], tech)
    await _wait_for(lambda: feed.subscription_count("channel_messages") == 1)

    url = f"/api/channels/{dev['id']}/messages"
    await client.post(url, json={"content": "before"}, headers=headers_for(owner))
    await _wait_for(lambda: len(ws.received) == 1)

    resp = await client.put(
        f"/api/groups/{group['id']}/members/{member['id']}/roles",
        json={"role_ids": [roles_by_name["Everyone"]["id"]]},
        headers=headers_for(owner),
    )
    assert resp.status_code == 200
    await client.post(url, json={"content": "after"}, headers=headers_for(owner))

    await _finish(task)
    assert [e["new"]["content"] for e in ws.received] == ["before"]
    assert ws.close_code == ws_api.CLOSE_FORBIDDEN


@pytest.mark.anyio
async def test_conversation_stream(client, owner, make_user, headers_for, feed, session_factory):
    friend = await make_user("friend")
    outsider = await make_user("outsider")
    conv = (
        await client.post("/api/conversations/", json={"other_user_id": friend.id}, headers=headers_for(owner))
    ).json()

    refused = FakeWS()
    await ws_api.conversation_stream(
        refused, conv["id"], token=_token(outsider), feed=feed, session_factory=session_factory
    )
    assert refused.close_code == ws_api.CLOSE_NOT_FOUND

    ws = FakeWS()
    task = asyncio.create_task(
        ws_api.conversation_stream(ws, conv["id"], token=_token(friend), feed=feed, session_factory=session_factory)
    )
    await _wait_for(lambda: feed.subscription_count("direct_messages") == 1)
    await client.post(f"/api/conversations/{conv['id']}/messages", json={"content": "hey"}, headers=headers_for(owner))
    await _wait_for(lambda: len(ws.received) == 1)
    assert ws.received[0]["new"]["conversation_id"] == conv["id"]
    assert ws.received[0]["new"]["sender_id"] == owner.id

    ws.disconnect()
    await _finish(task)
    assert feed.subscription_count() == 0


@pytest.mark.anyio
async def test_notification_stream_only_carries_own_notifications(
    make_user, add_member, feed, session_factory
):
    invited = await make_user("invited")
    bystander = await make_user("bystander")
    ws = FakeWS()
    task = asyncio.create_task(
        ws_api.notification_stream(ws, token=_token(invited), feed=feed, session_factory=session_factory)
    )
    await _wait_for(lambda: feed.subscription_count("notifications") == 1)

    await add_member(bystander)
    await add_member(invited)
    await _wait_for(lambda: len(ws.received) == 1)
    event = ws.received[0]
    assert event["table"] == "notifications"
    assert event["new"]["user_id"] == invited.id
    assert event["new"]["type"] == "group_invite"

    ws.disconnect()
    await _finish(task)
    assert len(ws.received) == 1
