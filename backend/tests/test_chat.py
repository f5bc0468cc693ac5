"""Tests for the WebSocket chat protocol with multi-client support.

Every client receives {type: "connected", connectionId} first. Frames that
a step produces are read in the exact order the server sends them, so the
tests also pin the broadcast order.
"""
import pytest


def receive_connected(ws):
    """Helper to receive and validate the server-assigned connection id."""
    connected = ws.receive_json()
    assert connected["type"] == "connected"
    assert connected["connectionId"]
    return connected["connectionId"]


def receive_types(ws, *types):
    """Receive len(types) frames and check they arrive in that order."""
    frames = [ws.receive_json() for _ in types]
    assert [f["type"] for f in frames] == list(types)
    return frames


def join_first(ws, name):
    """Join as the only client; returns the frames the joiner receives."""
    ws.send_json({"type": "join", "displayName": name})
    return receive_types(ws, "online_users", "user_joined", "room_history", "room_users")


def join_second(ws_new, ws_existing, name):
    """Join while one other client is online in the default room."""
    ws_new.send_json({"type": "join", "displayName": name})
    receive_types(ws_existing, "online_users", "user_joined", "room_users")
    return receive_types(ws_new, "online_users", "user_joined", "room_history", "room_users")


def test_connected_frame_assigns_unique_ids(api_client):
    with api_client.websocket_connect("/ws/chat") as ws1, \
         api_client.websocket_connect("/ws/chat") as ws2:
        id1 = receive_connected(ws1)
        id2 = receive_connected(ws2)
        assert id1 != id2


def test_join_places_session_in_default_room(api_client, hub):
    with api_client.websocket_connect("/ws/chat") as ws:
        conn_id = receive_connected(ws)
        online, joined, history, members = join_first(ws, "Alice")

        assert online["users"] == [{"id": conn_id, "displayName": "Alice", "room": "global"}]
        assert joined["user"]["displayName"] == "Alice"
        assert history["room"] == "global"
        assert history["messages"] == []
        assert members["room"] == "global"
        assert [u["id"] for u in members["users"]] == [conn_id]
        assert hub.rooms.list_members("global") == {conn_id}


def test_two_clients_scenario_rooms_and_private(api_client, hub):
    """A and B share global; A moves to tech; private messages stay private."""
    with api_client.websocket_connect("/ws/chat") as ws_a, \
         api_client.websocket_connect("/ws/chat") as ws_b:
        id_a = receive_connected(ws_a)
        id_b = receive_connected(ws_b)
        join_first(ws_a, "A")
        join_second(ws_b, ws_a, "B")

        # A says hi: both receive the identical message
        ws_a.send_json({"type": "message", "content": "hi"})
        (msg_a,) = receive_types(ws_a, "message")
        (msg_b,) = receive_types(ws_b, "message")
        assert msg_a == msg_b
        assert msg_a["content"] == "hi"
        assert msg_a["room"] == "global"
        assert msg_a["senderId"] == id_a

        # A switches to tech
        ws_a.send_json({"type": "switch_room", "room": "tech"})
        history, tech_members = receive_types(ws_a, "room_history", "room_users")
        assert history["room"] == "tech"
        assert history["messages"] == []
        assert [u["id"] for u in tech_members["users"]] == [id_a]
        (global_members,) = receive_types(ws_b, "room_users")
        assert global_members["room"] == "global"
        assert [u["id"] for u in global_members["users"]] == [id_b]

        # B talks in global; A must not see it
        ws_b.send_json({"type": "message", "content": "still here?"})
        receive_types(ws_b, "message")
        ws_a.send_json({"type": "message", "content": "tech talk"})
        (next_for_a,) = receive_types(ws_a, "message")
        assert next_for_a["content"] == "tech talk"
        assert next_for_a["room"] == "tech"

        # A privately messages B
        ws_a.send_json({"type": "private_message", "to": id_b, "content": "psst"})
        (priv_a,) = receive_types(ws_a, "message")
        (priv_b,) = receive_types(ws_b, "message")
        assert priv_a == priv_b
        assert priv_a["isPrivate"] is True
        assert priv_a["room"] is None
        assert priv_a["recipientId"] == id_b

        global_contents = [m.content for m in hub.rooms.history("global")]
        assert global_contents == ["hi", "still here?"]
        page = hub.page("global", None, 50)
        assert "psst" not in [m["content"] for m in page["messages"]]


def test_fetch_older_reconstructs_full_history(api_client):
    """25 messages, page size 10: three pages rebuild the log exactly."""
    with api_client.websocket_connect("/ws/chat") as ws:
        receive_connected(ws)
        join_first(ws, "Writer")

        sent_ids = []
        for i in range(25):
            ws.send_json({"type": "message", "content": f"msg {i}"})
            (msg,) = receive_types(ws, "message")
            sent_ids.append(msg["id"])

        collected = []
        cursor = None
        for n in range(3):
            request = {"type": "fetch_older", "room": "global", "limit": 10, "requestId": f"r{n}"}
            if cursor is not None:
                request["before"] = cursor
            ws.send_json(request)
            (page,) = receive_types(ws, "older_messages")
            assert page["requestId"] == f"r{n}"
            ids = [m["id"] for m in page["messages"]]
            assert ids == sorted(ids)
            collected = page["messages"] + collected
            cursor = ids[0]

        assert page["hasMore"] is False
        assert len(page["messages"]) == 5
        assert [m["id"] for m in collected] == sent_ids
        assert [m["content"] for m in collected] == [f"msg {i}" for i in range(25)]


def test_reaction_and_read_receipt_broadcast_to_room(api_client):
    with api_client.websocket_connect("/ws/chat") as ws_a, \
         api_client.websocket_connect("/ws/chat") as ws_b:
        receive_connected(ws_a)
        id_b = receive_connected(ws_b)
        join_first(ws_a, "A")
        join_second(ws_b, ws_a, "B")

        ws_a.send_json({"type": "message", "content": "react to me"})
        (msg,) = receive_types(ws_a, "message")
        receive_types(ws_b, "message")

        ws_b.send_json({"type": "react", "messageId": msg["id"], "reaction": "👍"})
        for ws in (ws_a, ws_b):
            (reaction,) = receive_types(ws, "reaction_added")
            assert reaction == {
                "type": "reaction_added",
                "messageId": msg["id"],
                "reaction": "👍",
                "userId": id_b,
            }

        ws_b.send_json({"type": "read", "messageId": msg["id"]})
        for ws in (ws_a, ws_b):
            (receipt,) = receive_types(ws, "read_receipt")
            assert receipt["readers"] == ["B"]

        # Second read by the same reader is a no-op: the next frame B sees
        # comes from the message that follows.
        ws_b.send_json({"type": "read", "messageId": msg["id"]})
        ws_b.send_json({"type": "message", "content": "after"})
        (after,) = receive_types(ws_b, "message")
        assert after["content"] == "after"


def test_typing_list_scoped_to_room(api_client):
    with api_client.websocket_connect("/ws/chat") as ws_a, \
         api_client.websocket_connect("/ws/chat") as ws_b:
        receive_connected(ws_a)
        receive_connected(ws_b)
        join_first(ws_a, "A")
        join_second(ws_b, ws_a, "B")

        ws_a.send_json({"type": "typing", "isTyping": True})
        for ws in (ws_a, ws_b):
            (typing,) = receive_types(ws, "typing_users")
            assert typing == {"type": "typing_users", "room": "global", "users": ["A"]}

        ws_a.send_json({"type": "typing", "isTyping": False})
        for ws in (ws_a, ws_b):
            (typing,) = receive_types(ws, "typing_users")
            assert typing["users"] == []


def test_disconnect_broadcasts_leave_and_retracts_session(api_client, hub):
    with api_client.websocket_connect("/ws/chat") as ws_a:
        receive_connected(ws_a)
        join_first(ws_a, "A")

        with api_client.websocket_connect("/ws/chat") as ws_b:
            id_b = receive_connected(ws_b)
            join_second(ws_b, ws_a, "B")
            ws_b.send_json({"type": "typing", "isTyping": True})
            receive_types(ws_b, "typing_users")
            receive_types(ws_a, "typing_users")

        left, online, members, typing = receive_types(
            ws_a, "user_left", "online_users", "room_users", "typing_users"
        )
        assert left["user"]["id"] == id_b
        assert [u["displayName"] for u in online["users"]] == ["A"]
        assert [u["displayName"] for u in members["users"]] == ["A"]
        assert typing["users"] == []

        assert id_b not in hub.sessions
        assert id_b not in hub.presence
        assert all(id_b not in room.members for room in hub.rooms)


def test_attachment_message(api_client, hub):
    with api_client.websocket_connect("/ws/chat") as ws:
        receive_connected(ws)
        join_first(ws, "Uploader")

        ws.send_json({"type": "attachment", "ref": "https://files/x.png", "name": "x.png"})
        (msg,) = receive_types(ws, "message")
        assert msg["attachment"] == {"ref": "https://files/x.png", "name": "x.png"}
        assert msg["content"] == ""
        assert hub.rooms.history("global")[-1].attachment.name == "x.png"


# =============================================================================
# Validation and lenient handling
# =============================================================================


@pytest.mark.parametrize(
    "payload, request_type",
    [
        ({"type": "message", "content": ""}, "message"),
        ({"type": "message"}, "message"),
        ({"type": "message", "content": "   "}, "message"),
        ({"type": "join"}, "join"),
        ({"type": "react", "messageId": "abc", "reaction": "x"}, "react"),
        ({"type": "fetch_older", "room": "global", "limit": 0}, "fetch_older"),
        ({"type": "teleport"}, "teleport"),
        ({"content": "no type"}, None),
    ],
)
def test_invalid_payload_reports_error_to_sender(api_client, hub, payload, request_type):
    with api_client.websocket_connect("/ws/chat") as ws:
        receive_connected(ws)
        join_first(ws, "Strict")

        ws.send_json(payload)
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["requestType"] == request_type
        assert error["error"].startswith("Invalid")
        assert hub.rooms.history("global") == []


def test_invalid_json_reports_error(api_client):
    with api_client.websocket_connect("/ws/chat") as ws:
        receive_connected(ws)
        ws.send_text("{not json")
        error = ws.receive_json()
        assert error == {"type": "error", "error": "Invalid JSON", "requestType": None}


def test_rejoin_is_rejected(api_client, hub):
    with api_client.websocket_connect("/ws/chat") as ws:
        conn_id = receive_connected(ws)
        join_first(ws, "Once")

        ws.send_json({"type": "join", "displayName": "Twice"})
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["requestType"] == "join"
        assert hub.sessions.get(conn_id).displayName == "Once"


def test_private_message_to_unknown_recipient_is_rejected(api_client):
    with api_client.websocket_connect("/ws/chat") as ws:
        receive_connected(ws)
        join_first(ws, "Lonely")

        ws.send_json({"type": "private_message", "to": "nobody", "content": "hello?"})
        error = ws.receive_json()
        assert error["type"] == "error"
        assert "Unknown recipient" in error["error"]


def test_events_before_join_are_ignored(api_client, hub):
    with api_client.websocket_connect("/ws/chat") as ws:
        receive_connected(ws)

        ws.send_json({"type": "message", "content": "too early"})
        ws.send_json({"type": "typing", "isTyping": True})
        ws.send_json({"type": "switch_room", "room": "elsewhere"})

        # The first frames after joining are the join broadcasts themselves.
        join_first(ws, "Late")
        assert hub.rooms.history("global") == []
        assert hub.rooms.get("elsewhere") is None


def test_reaction_on_unknown_message_is_dropped(api_client):
    with api_client.websocket_connect("/ws/chat") as ws:
        receive_connected(ws)
        join_first(ws, "Reactor")

        ws.send_json({"type": "react", "messageId": 999, "reaction": "🔥"})
        ws.send_json({"type": "message", "content": "next"})
        (msg,) = receive_types(ws, "message")
        assert msg["content"] == "next"
