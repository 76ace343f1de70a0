import asyncio
import secrets

from events import (
    CREATE_ROOM,
    ERROR,
    JOIN_ROOM,
    JOINED_ROOM,
    NEW_MESSAGE,
    ROOM_CREATED,
    SEND_MESSAGE,
    USER_JOINED,
    USER_LEFT,
    USERS_UPDATE,
)

from conftest import GRACE, FakeClock, FakeGateway, make_service, system_messages

_real_token_hex = secrets.token_hex


def join(name: str, user_id: str, code: str) -> dict:
    return {"roomId": code, "name": name, "userId": user_id}


def test_create_join_send_and_quick_reconnect(monkeypatch) -> None:
    monkeypatch.setattr(secrets, "token_hex", lambda n: "a1b2c3" if n == 3 else _real_token_hex(n))

    async def scenario():
        service, transport = make_service()
        await service.dispatch("creator", CREATE_ROOM, {})
        assert transport.received("creator", ROOM_CREATED) == ["A1B2C3"]

        await service.dispatch("h1", JOIN_ROOM, join("Ann", "u1", "a1b2c3"))
        joined = transport.received("h1", JOINED_ROOM)[0]
        assert joined["code"] == "A1B2C3"
        assert joined["messages"] == []
        assert transport.received("h1", USER_JOINED)[0]["userCount"] == 1

        await service.dispatch("h1", SEND_MESSAGE, {"roomCode": "A1B2C3", "content": "hi", "userId": "u1", "name": "Ann"})
        sent = transport.received("h1", NEW_MESSAGE)[-1]
        assert (sent["kind"], sent["content"], sent["sender"]) == ("text", "hi", "Ann")

        room = service.registry.get("A1B2C3")
        before = len(room.messages)
        await service.handle_disconnect("h1")
        assert len(room.messages) == before
        await asyncio.sleep(GRACE / 2)
        await service.dispatch("h2", JOIN_ROOM, join("Ann", "u1", "A1B2C3"))
        await asyncio.sleep(GRACE * 3)

        assert system_messages(service, "A1B2C3") == ["Ann joined the room"]
        assert len(room.messages) == before

    asyncio.run(scenario())


def test_repeated_reconnects_within_grace_produce_no_churn() -> None:
    async def scenario():
        service, transport = make_service()
        code = service.registry.create()
        for i in range(4):
            await service.dispatch(f"h{i}", JOIN_ROOM, join("Ann", "u1", code))
            await service.handle_disconnect(f"h{i}")
            await asyncio.sleep(GRACE / 5)
        await service.dispatch("final", JOIN_ROOM, join("Ann", "u1", code))
        await asyncio.sleep(GRACE * 3)

        assert system_messages(service, code) == ["Ann joined the room"]
        assert service.timers.pending == 0
        assert service.registry.get(code).user_count == 1

    asyncio.run(scenario())


def test_grace_expiry_announces_left_once_then_rejoin_is_first_join() -> None:
    async def scenario():
        service, transport = make_service()
        code = service.registry.create()
        await service.dispatch("a", JOIN_ROOM, join("Ann", "u1", code))
        await service.dispatch("b", JOIN_ROOM, join("Bob", "u2", code))
        first_joined_at = service.registry.get(code).find_by_user("u1").joined_at

        await service.handle_disconnect("a")
        # Roster updates at once, departure is not announced yet
        assert [u["id"] for u in transport.received("b", USERS_UPDATE)[-1]["users"]] == ["u2"]
        assert transport.received("b", USER_LEFT) == []

        await asyncio.sleep(GRACE * 3)
        assert system_messages(service, code) == ["Ann joined the room", "Bob joined the room", "Ann left the room"]
        left = transport.received("b", USER_LEFT)
        assert len(left) == 1
        assert left[0]["userCount"] == 1

        await asyncio.sleep(GRACE)
        await service.dispatch("a2", JOIN_ROOM, join("Ann", "u1", code))
        assert system_messages(service, code)[-1] == "Ann joined the room"
        assert system_messages(service, code).count("Ann left the room") == 1
        assert service.registry.get(code).find_by_user("u1").joined_at > first_joined_at

    asyncio.run(scenario())


def test_joined_at_survives_reconnect() -> None:
    async def scenario():
        service, _ = make_service()
        code = service.registry.create()
        await service.dispatch("a", JOIN_ROOM, join("Ann", "u1", code))
        joined_at = service.registry.get(code).find_by_user("u1").joined_at
        await service.handle_disconnect("a")
        await service.dispatch("a2", JOIN_ROOM, join("Ann", "u1", code))
        participant = service.registry.get(code).find_by_user("u1")
        assert participant.handle == "a2"
        assert participant.joined_at == joined_at

    asyncio.run(scenario())


def test_reconnect_race_replaces_older_roster_entry() -> None:
    async def scenario():
        service, transport = make_service()
        code = service.registry.create()
        await service.dispatch("old", JOIN_ROOM, join("Ann", "u1", code))
        await service.dispatch("new", JOIN_ROOM, join("Ann", "u1", code))

        room = service.registry.get(code)
        assert list(room.roster) == ["new"]
        assert transport.received("new", USER_JOINED)[-1]["userCount"] == 1
        assert "old" not in transport.subscribers[code]

        # The stale connection closing afterwards changes nothing
        await service.handle_disconnect("old")
        await asyncio.sleep(GRACE * 3)
        assert list(room.roster) == ["new"]
        assert system_messages(service, code) == ["Ann joined the room"]

    asyncio.run(scenario())


def test_connection_rejoining_as_another_user_starts_grace_for_the_first() -> None:
    async def scenario():
        service, transport = make_service()
        code = service.registry.create()
        await service.dispatch("h1", JOIN_ROOM, join("Ann", "u1", code))
        await service.dispatch("h1", JOIN_ROOM, join("Bob", "u2", code))

        room = service.registry.get(code)
        assert [p.user_id for p in room.roster.values()] == ["u2"]
        assert "u1" in room.grace_timers

        await asyncio.sleep(GRACE * 3)
        assert "u1" not in room.known_users
        assert "Ann left the room" in system_messages(service, code)

        await service.dispatch("h9", JOIN_ROOM, join("Ann", "u1", code))
        assert system_messages(service, code).count("Ann joined the room") == 2
        assert room.user_count == 2

    asyncio.run(scenario())


def test_timer_that_fires_during_reconnect_is_a_no_op() -> None:
    async def scenario():
        service, _ = make_service()
        code = service.registry.create()
        await service.dispatch("a", JOIN_ROOM, join("Ann", "u1", code))
        await service.handle_disconnect("a")
        room = service.registry.get(code)
        timer = room.grace_timers["u1"]

        async with room.lock:
            await asyncio.sleep(GRACE * 2)
            # The callback is now running and waiting for the lock
            assert timer.fired
            await service.presence.join(room, "a2", "u1", "Ann")
        await asyncio.sleep(GRACE)

        assert timer.cancelled
        assert room.grace_timers == {}
        assert system_messages(service, code) == ["Ann joined the room"]

    asyncio.run(scenario())


def test_eviction_cancels_pending_grace_timers() -> None:
    async def scenario():
        clock = FakeClock()
        service, _ = make_service(clock=clock, grace_period_s=10.0)
        code = service.registry.create()
        await service.dispatch("a", JOIN_ROOM, join("Ann", "u1", code))
        await service.handle_disconnect("a")
        timer = service.registry.get(code).grace_timers["u1"]

        clock.advance(4000)
        assert await service.reaper.sweep() == [code]
        assert timer.cancelled
        assert service.timers.pending == 0

    asyncio.run(scenario())


def test_join_unknown_room_yields_one_error_and_no_state() -> None:
    async def scenario():
        gateway = FakeGateway()
        service, transport = make_service(gateway=gateway)
        await service.dispatch("h1", JOIN_ROOM, join("Ann", "u1", "ABCDEF"))

        assert transport.inbox["h1"] == [(ERROR, "Room not found")]
        assert len(service.registry) == 0
        assert transport.broadcasts == []
        assert transport.subscribers == {}

    asyncio.run(scenario())


def test_join_restores_room_from_store_and_replays_history() -> None:
    async def scenario():
        gateway = FakeGateway()
        service, transport = make_service(gateway=gateway)
        code = service.registry.create("Book club")
        await service.dispatch("a", JOIN_ROOM, join("Ann", "u1", code))
        await service.persistence.drain()

        # Simulate a restart: same store, fresh process
        restarted, transport = make_service(gateway=gateway)
        await restarted.dispatch("a", JOIN_ROOM, join("Ann", "u1", code))
        joined = transport.received("a", JOINED_ROOM)[0]
        assert joined["name"] == "Book club"
        assert [m["content"] for m in joined["messages"]] == ["Ann joined the room"]
        # Unknown user to the restored room, so it is a first join again
        assert system_messages(restarted, code) == ["Ann joined the room", "Ann joined the room"]

    asyncio.run(scenario())


def test_join_defaults_name_and_user_id() -> None:
    async def scenario():
        service, transport = make_service()
        code = service.registry.create()
        await service.dispatch("conn-1", JOIN_ROOM, {"roomId": code})
        user = transport.received("conn-1", USER_JOINED)[0]["user"]
        assert user == {"id": "conn-1", "name": "Anonymous", "status": "online", "avatar": None}

    asyncio.run(scenario())
