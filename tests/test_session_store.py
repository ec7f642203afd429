"""Session store and resolver behavior against a real SQLite file."""

import asyncio

import pytest

from agent_relay.core.errors import AgentNotFound, SessionNotFound
from agent_relay.core.types import Role


async def _session_count(relay, agent_id: str) -> int:
    cursor = await relay.db.conn.execute(
        "SELECT COUNT(*) FROM chat_sessions WHERE agent_id = ?", (agent_id,)
    )
    row = await cursor.fetchone()
    return row[0]


async def test_resolve_or_create_is_stable_for_a_user(relay):
    first = await relay.resolver.resolve_or_create("support", "telegram_1", "telegram")
    second = await relay.resolver.resolve_or_create("support", "telegram_1", "telegram")

    assert first.session_id == second.session_id
    assert first.metadata == {"platform": "telegram", "userInfo": {}}
    assert await _session_count(relay, "support") == 1


async def test_sessions_are_isolated_per_agent_and_user(relay):
    a = await relay.resolver.resolve_or_create("support", "telegram_1", "telegram")
    b = await relay.resolver.resolve_or_create("support", "telegram_2", "telegram")
    c = await relay.resolver.resolve_or_create("sales", "telegram_1", "telegram")

    assert len({a.session_id, b.session_id, c.session_id}) == 3


async def test_concurrent_first_contact_creates_one_session(relay):
    sessions = await asyncio.gather(
        *[relay.resolver.resolve_or_create("support", "discord_9", "discord") for _ in range(5)]
    )

    assert len({s.session_id for s in sessions}) == 1
    assert await _session_count(relay, "support") == 1
    assert relay.resolver._locks == {}


async def test_first_contact_locks_are_released(relay):
    for n in range(50):
        await relay.resolver.resolve_or_create("support", f"whatsapp_{n}", "whatsapp")

    assert relay.resolver._locks == {}
    assert await _session_count(relay, "support") == 50


async def test_unknown_agent_creates_nothing(relay):
    with pytest.raises(AgentNotFound):
        await relay.resolver.resolve_or_create("ghost", "telegram_1", "telegram")

    assert await _session_count(relay, "ghost") == 0


async def test_create_new_becomes_the_latest_session(relay):
    old = await relay.resolver.resolve_or_create("support", "widget-user", "widget")
    new = await relay.resolver.create_new("support", "widget-user", "widget")

    latest = await relay.sessions.get_latest("support", "widget-user")
    assert new.session_id != old.session_id
    assert latest.session_id == new.session_id


async def test_messages_come_back_in_creation_order(relay):
    session = await relay.resolver.resolve_or_create("support", "telegram_1", "telegram")
    for index in range(3):
        await relay.sessions.append_message(session.session_id, "user", f"q{index}")
        await relay.sessions.append_message(session.session_id, "assistant", f"a{index}")

    messages = await relay.sessions.get_messages(session.session_id)
    assert [m.content for m in messages] == ["q0", "a0", "q1", "a1", "q2", "a2"]
    assert [m.id for m in messages] == sorted(m.id for m in messages)

    newest = await relay.sessions.get_messages(session.session_id, limit=3)
    assert [m.content for m in newest] == ["a1", "q2", "a2"]


async def test_append_message_returns_stored_record(relay):
    session = await relay.resolver.resolve_or_create("support", "telegram_1", "telegram")

    message = await relay.sessions.append_message(
        session.session_id, "user", "hello", {"source": "telegram"}
    )

    assert message.id is not None
    assert message.role == "user"
    assert message.metadata == {"source": "telegram"}


async def test_merge_user_info_keeps_existing_keys(relay):
    session = await relay.resolver.resolve_or_create("support", "widget-user", "widget")

    await relay.resolver.merge_user_info(session.session_id, {"name": "Ada"})
    updated = await relay.resolver.merge_user_info(session.session_id, {"email": "ada@example.com"})

    assert updated.user_info == {"name": "Ada", "email": "ada@example.com"}
    stored = await relay.resolver.get(session.session_id)
    assert stored.metadata["platform"] == "widget"
    assert stored.user_info == {"name": "Ada", "email": "ada@example.com"}


async def test_merge_user_info_unknown_session(relay):
    with pytest.raises(SessionNotFound):
        await relay.resolver.merge_user_info("missing", {"name": "Ada"})


async def test_touch_moves_last_active_forward(relay):
    session = await relay.resolver.resolve_or_create("support", "telegram_1", "telegram")
    await asyncio.sleep(0.01)

    await relay.resolver.touch(session.session_id)

    touched = await relay.resolver.get(session.session_id)
    assert touched.last_active_at >= session.last_active_at


def test_stored_roles_are_user_and_assistant():
    assert [role.value for role in Role] == ["user", "assistant"]
