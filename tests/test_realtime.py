import asyncio
import json
import threading
import time
from types import SimpleNamespace

from tabletop.services.events import change_frame, parse_frame
from tabletop.services.realtime import RealtimeGateway


class FakeWebSocket:
    def __init__(self):
        self.accepted = False
        self.sent = []
        self.client = None

    async def accept(self):
        self.accepted = True

    async def send_text(self, data):
        self.sent.append(json.loads(data))


class BrokenWebSocket(FakeWebSocket):
    async def send_text(self, data):
        raise RuntimeError("connection reset")


USERS = {"token-keeper": 1, "token-alice": 2, "token-bob": 3}
MEMBERS = {("s1", 1), ("s1", 2), ("s2", 3)}


def make_gateway(queue_size=16):
    async def verify(token):
        user_id = USERS.get(token)
        return SimpleNamespace(id=user_id) if user_id is not None else None

    async def is_participant(token, session_id, user_id):
        return (session_id, user_id) in MEMBERS

    return RealtimeGateway(verify_token=verify, is_participant=is_participant, send_queue_size=queue_size)


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


def subscribe_frame(session_id, token):
    return json.dumps({"type": "subscribe", "session_id": session_id, "token": token})


async def subscribed(gateway, session_id, token):
    websocket = FakeWebSocket()
    connection = await gateway.connect(websocket)
    await gateway.handle_message(connection, subscribe_frame(session_id, token))
    await settle()
    return websocket, connection


def test_welcome_then_subscribed():
    async def scenario():
        gateway = make_gateway()
        websocket, connection = await subscribed(gateway, "s1", "token-alice")
        assert websocket.accepted
        assert websocket.sent == [{"type": "welcome"}, {"type": "subscribed", "session_id": "s1"}]
        assert connection.session_id == "s1"
        assert connection.user_id == 2
        assert gateway.connection_count("s1") == 1
        await gateway.disconnect(connection)

    asyncio.run(scenario())


def test_subscribe_errors_leave_connection_unscoped():
    async def scenario():
        gateway = make_gateway()
        websocket = FakeWebSocket()
        connection = await gateway.connect(websocket)
        await gateway.handle_message(connection, json.dumps({"type": "subscribe", "session_id": "s1"}))
        await gateway.handle_message(connection, json.dumps({"type": "subscribe", "session_id": "", "token": "x"}))
        await gateway.handle_message(connection, subscribe_frame("s1", "token-unknown"))
        await gateway.handle_message(connection, subscribe_frame("s1", "token-bob"))
        await settle()

        assert websocket.sent[1:] == [
            {"type": "error", "message": "invalid payload"},
            {"type": "error", "message": "invalid payload"},
            {"type": "error", "message": "unauthorized"},
            {"type": "error", "message": "forbidden"},
        ]
        assert not connection.subscribed
        assert gateway.connection_count("s1") == 0
        await gateway.disconnect(connection)

    asyncio.run(scenario())


def test_second_subscribe_is_rejected():
    async def scenario():
        gateway = make_gateway()
        websocket, connection = await subscribed(gateway, "s1", "token-keeper")
        await gateway.handle_message(connection, subscribe_frame("s1", "token-keeper"))
        await settle()
        assert websocket.sent[-1] == {"type": "error", "message": "already subscribed"}
        assert gateway.connection_count("s1") == 1
        await gateway.disconnect(connection)

    asyncio.run(scenario())


def test_malformed_and_unknown_frames_are_ignored():
    async def scenario():
        gateway = make_gateway()
        websocket = FakeWebSocket()
        connection = await gateway.connect(websocket)
        for raw in ("not json", "[1, 2]", json.dumps({"type": "ping"}), b"\xff\xfe", None):
            await gateway.handle_message(connection, raw)
        await settle()
        assert websocket.sent == [{"type": "welcome"}]
        await gateway.disconnect(connection)

    asyncio.run(scenario())


def test_bytes_frames_are_accepted():
    async def scenario():
        gateway = make_gateway()
        websocket = FakeWebSocket()
        connection = await gateway.connect(websocket)
        await gateway.handle_message(connection, subscribe_frame("s2", "token-bob").encode("utf-8"))
        await settle()
        assert websocket.sent[-1] == {"type": "subscribed", "session_id": "s2"}
        await gateway.disconnect(connection)

    asyncio.run(scenario())


def test_broadcast_reaches_only_its_session():
    async def scenario():
        gateway = make_gateway()
        keeper_ws, keeper = await subscribed(gateway, "s1", "token-keeper")
        bob_ws, bob = await subscribed(gateway, "s2", "token-bob")
        unscoped_ws = FakeWebSocket()
        unscoped = await gateway.connect(unscoped_ws)

        payload = change_frame("tokens", "insert", {"id": "t1", "session_id": "s1"})
        assert gateway.broadcast(payload) == 1
        await settle()

        assert keeper_ws.sent[-1] == payload
        assert payload not in bob_ws.sent
        assert unscoped_ws.sent == [{"type": "welcome"}]
        for connection in (keeper, bob, unscoped):
            await gateway.disconnect(connection)

    asyncio.run(scenario())


def test_broadcast_without_session_is_dropped():
    gateway = make_gateway()
    assert gateway.broadcast(change_frame("users", "update", {"id": 1})) == 0
    assert gateway.broadcast_to("", {"type": "change"}) == 0


def test_audience_and_exclusions_filter_recipients():
    async def scenario():
        gateway = make_gateway()
        keeper_ws, keeper = await subscribed(gateway, "s1", "token-keeper")
        alice_ws, alice = await subscribed(gateway, "s1", "token-alice")

        secret = change_frame("session_logs", "insert", {"id": "m1", "session_id": "s1"})
        ghost = change_frame("session_logs", "insert", {"id": "m2", "session_id": "s1"})
        assert gateway.broadcast_to("s1", secret, audience=[1]) == 1
        assert gateway.broadcast_to("s1", ghost, excluded=[1]) == 1
        await settle()

        assert keeper_ws.sent[-1] == secret
        assert alice_ws.sent[-1] == ghost
        assert ghost not in keeper_ws.sent
        assert secret not in alice_ws.sent
        await gateway.disconnect(keeper)
        await gateway.disconnect(alice)

    asyncio.run(scenario())


def test_frames_arrive_in_emit_order():
    async def scenario():
        gateway = make_gateway()
        websocket, connection = await subscribed(gateway, "s1", "token-keeper")
        for index in range(5):
            gateway.broadcast_to("s1", change_frame("tokens", "update", {"id": str(index), "session_id": "s1"}))
        await settle()
        await settle()
        ids = [frame["record"]["id"] for frame in websocket.sent if frame["type"] == "change"]
        assert ids == ["0", "1", "2", "3", "4"]
        await gateway.disconnect(connection)

    asyncio.run(scenario())


def test_full_queue_drops_frames_for_that_connection_only():
    async def scenario():
        gateway = make_gateway(queue_size=1)
        websocket, connection = await subscribed(gateway, "s1", "token-keeper")
        before = len(websocket.sent)
        for index in range(3):
            gateway.broadcast_to("s1", change_frame("tokens", "update", {"id": str(index), "session_id": "s1"}))
        await settle()
        assert len(websocket.sent) == before + 1
        assert websocket.sent[-1]["record"]["id"] == "0"
        await gateway.disconnect(connection)

    asyncio.run(scenario())


def test_failed_send_closes_connection():
    async def scenario():
        gateway = make_gateway()
        connection = await gateway.connect(BrokenWebSocket())
        await settle()
        assert connection.closed
        assert not connection.enqueue("{}")
        await gateway.disconnect(connection)

    asyncio.run(scenario())


def test_disconnect_unregisters():
    async def scenario():
        gateway = make_gateway()
        _, connection = await subscribed(gateway, "s1", "token-keeper")
        await gateway.disconnect(connection)
        assert gateway.connection_count() == 0
        assert gateway.connection_count("s1") == 0
        assert gateway.broadcast_to("s1", {"type": "change"}) == 0

    asyncio.run(scenario())


def test_parse_frame_only_accepts_objects():
    assert parse_frame('{"type": "subscribe"}') == {"type": "subscribe"}
    assert parse_frame(b'{"type": "x"}') == {"type": "x"}
    assert parse_frame("42") is None
    assert parse_frame("{") is None


def test_broadcast_from_worker_thread_while_connections_come_and_go():
    async def scenario():
        gateway = make_gateway(queue_size=256)
        websocket, connection = await subscribed(gateway, "s1", "token-keeper")

        def send_all():
            for index in range(100):
                gateway.broadcast_to("s1", change_frame("tokens", "update", {"id": str(index), "session_id": "s1"}))
                if index % 10 == 0:
                    time.sleep(0.001)

        sender = threading.Thread(target=send_all)
        sender.start()
        while sender.is_alive():
            _, passerby = await subscribed(gateway, "s1", "token-alice")
            await gateway.disconnect(passerby)
        sender.join()

        for _ in range(200):
            if len([frame for frame in websocket.sent if frame["type"] == "change"]) >= 100:
                break
            await asyncio.sleep(0)
        ids = [frame["record"]["id"] for frame in websocket.sent if frame["type"] == "change"]
        assert ids == [str(index) for index in range(100)]
        assert gateway.connection_count("s1") == 1
        await gateway.disconnect(connection)

    asyncio.run(scenario())
