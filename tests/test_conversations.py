from types import SimpleNamespace

from conversations import (
    ROLE_MODEL,
    ROLE_USER,
    Part,
    SessionStore,
    Turn,
    conversation_started_at,
    new_conversation_id,
    resolve_conversation_id,
)

BOT_ID = 999


def _turn(i: int) -> Turn:
    role = ROLE_USER if i % 2 == 0 else ROLE_MODEL
    return Turn(role=role, parts=(Part.from_text(f"turn {i}"),))


def _message(user_id=42, chat_id=7, message_id=1, reply_to=None):
    return SimpleNamespace(
        from_user=SimpleNamespace(id=user_id),
        chat_id=chat_id,
        message_id=message_id,
        reply_to_message=reply_to,
    )


def test_history_is_capped_at_twenty_turns():
    store = SessionStore()
    store.append_turns("42_1", [_turn(i) for i in range(18)])
    store.append_turns("42_1", [_turn(18), _turn(19), _turn(20), _turn(21)])

    history = store.get_history("42_1")
    assert len(history) == 20
    assert history[0].parts[0].text == "turn 2"
    assert history[-1].parts[0].text == "turn 21"


def test_get_history_returns_a_copy():
    store = SessionStore()
    store.append_turns("42_1", [_turn(0)])
    store.get_history("42_1").append(_turn(1))
    assert len(store.get_history("42_1")) == 1
    assert store.get_history("unknown") == []


def test_reset_only_touches_the_requesting_user():
    store = SessionStore()
    for cid in ("42_1", "42_2", "421_3", "7_4"):
        store.ensure_conversation(cid)

    assert store.reset_user(42) == 2
    assert not store.has_conversation("42_1")
    assert not store.has_conversation("42_2")
    assert store.has_conversation("421_3")
    assert store.has_conversation("7_4")


def test_reply_to_known_bot_message_continues_conversation():
    store = SessionStore()
    store.link_message(7, 10, "42_555")
    replied = SimpleNamespace(from_user=SimpleNamespace(id=BOT_ID), message_id=10)

    cid = resolve_conversation_id(store, _message(reply_to=replied), BOT_ID, now_ms=1000)
    assert cid == "42_555"


def test_reply_to_unknown_bot_message_starts_new_conversation():
    store = SessionStore()
    replied = SimpleNamespace(from_user=SimpleNamespace(id=BOT_ID), message_id=11)

    cid = resolve_conversation_id(store, _message(reply_to=replied), BOT_ID, now_ms=1000)
    assert cid == "42_1000"
    assert store.has_conversation(cid)
    assert store.get_history(cid) == []


def test_reply_to_someone_else_starts_new_conversation():
    store = SessionStore()
    store.link_message(7, 10, "42_555")
    replied = SimpleNamespace(from_user=SimpleNamespace(id=42), message_id=10)

    cid = resolve_conversation_id(store, _message(reply_to=replied), BOT_ID, now_ms=2000)
    assert cid == "42_2000"


def test_message_links_are_scoped_per_chat():
    store = SessionStore()
    store.link_message(7, 10, "42_555")
    assert store.conversation_for_message(7, 10) == "42_555"
    assert store.conversation_for_message(8, 10) is None


def test_conversation_id_timestamp_round_trip():
    cid = new_conversation_id(42, now_ms=1_700_000_000_000)
    assert cid == "42_1700000000000"
    assert conversation_started_at(cid) == 1_700_000_000.0
    assert conversation_started_at("garbage") is None
    assert conversation_started_at("42_abc") is None
