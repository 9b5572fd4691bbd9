from datetime import datetime, timedelta

import pytest

from tabletop.core.errors import Forbidden
from tabletop.models.chat import ChatTab, SessionLog
from tabletop.services import chat
from tabletop.services.chat import ChatPost, filter_visible_logs, list_logs, post_message
from tabletop.services.visibility import DefaultTab, ExplicitTab


@pytest.fixture
def emitted(monkeypatch):
    events = []

    def record(table, action, record, exclude_user_ids=None, audience_user_ids=None):
        events.append((table, action, record, exclude_user_ids, audience_user_ids))

    monkeypatch.setattr(chat, "emit_change", record)
    return events


@pytest.fixture
def table(make_user, make_session, add_participant):
    owner = make_user("keeper")
    alice = make_user("alice")
    bob = make_user("bob")
    session = make_session(owner)
    add_participant(session, alice)
    add_participant(session, bob)
    return session, owner, alice, bob


def test_public_message_has_no_audience(db, table, emitted):
    session, owner, _, _ = table
    row = post_message(db, session.id, owner.id, DefaultTab(), ChatPost(message="hello", redact_for_others=True))

    assert row.visible_user_ids is None
    assert db.query(SessionLog).count() == 1
    assert len(emitted) == 1


def test_audience_always_contains_author_and_only_participants(db, table, make_user, emitted):
    session, owner, alice, _ = table
    outsider = make_user("outsider")
    row = post_message(
        db,
        session.id,
        alice.id,
        DefaultTab(),
        ChatPost(message="psst", visible_user_ids=[owner.id, str(outsider.id)]),
    )
    assert set(row.visible_user_ids) == {alice.id, owner.id}

    assert emitted[0][4] is None


def test_empty_or_unusable_recipients_mean_public(db, table, emitted):
    session, _, alice, _ = table
    for requested in ([], ["nobody", True, None]):
        row = post_message(
            db,
            session.id,
            alice.id,
            DefaultTab(),
            ChatPost(message="hello all", visible_user_ids=requested, redact_for_others=True),
        )
        assert row.visible_user_ids is None

    assert db.query(SessionLog).count() == 2
    assert all(row.message_type == "chat" for row in db.query(SessionLog).all())
    assert len(emitted) == 2


def test_redacted_message_leaves_a_ghost(db, table, emitted):
    session, owner, alice, _ = table
    real = post_message(
        db,
        session.id,
        owner.id,
        DefaultTab(),
        ChatPost(
            message="the butler did it",
            message_type="dice",
            speaker_type="character",
            speaker_name="Inspector",
            speaker_image_url="https://img/inspector.png",
            dice_result={"total": 12},
            visible_user_ids=[alice.id],
            redact_for_others=True,
        ),
    )

    rows = db.query(SessionLog).all()
    assert len(rows) == 2
    ghost = next(row for row in rows if row.id != real.id)
    assert ghost.message_type == "redacted"
    assert ghost.redacted_for_id == real.id
    assert ghost.visible_user_ids is None
    assert ghost.dice_result is None
    assert ghost.speaker_image_url is None
    assert ghost.speaker_name == "Inspector"
    assert ghost.tab_id == real.tab_id
    assert set(ghost.message) == {"■"}
    assert 6 <= len(ghost.message) <= 18

    real_event, ghost_event = emitted
    assert real_event[2].id == real.id
    assert ghost_event[2].id == ghost.id
    assert set(ghost_event[3]) == {owner.id, alice.id}


def test_speaker_image_kept_only_for_characters(db, table, emitted):
    session, owner, _, _ = table
    row = post_message(
        db,
        session.id,
        owner.id,
        DefaultTab(),
        ChatPost(message="hi", speaker_type="custom", speaker_image_url="https://img/x.png", message_type="shout"),
    )
    assert row.speaker_image_url is None
    assert row.message_type == "chat"
    assert row.speaker_type == "custom"


def test_ghost_failure_keeps_real_message(db, table, emitted, monkeypatch):
    session, owner, alice, _ = table

    def broken_ghost(real):
        return SessionLog(session_id=real.session_id, user_id=real.user_id, message=None)

    monkeypatch.setattr(chat, "_ghost_for", broken_ghost)
    real = post_message(
        db,
        session.id,
        owner.id,
        DefaultTab(),
        ChatPost(message="secret", visible_user_ids=[alice.id], redact_for_others=True),
    )

    assert db.query(SessionLog).count() == 1
    assert real.message == "secret"
    assert len(emitted) == 1


def test_log_reads_follow_audience(db, table, emitted):
    session, owner, alice, bob = table
    post_message(db, session.id, owner.id, DefaultTab(), ChatPost(message="welcome"))
    post_message(
        db,
        session.id,
        owner.id,
        DefaultTab(),
        ChatPost(message="secret", visible_user_ids=[alice.id], redact_for_others=True),
    )

    alice_sees = [row.message for row in list_logs(db, session.id, alice.id, DefaultTab())]
    assert alice_sees == ["welcome", "secret"]

    bob_rows = list_logs(db, session.id, bob.id, DefaultTab())
    assert bob_rows[0].message == "welcome"
    assert [row.message_type for row in bob_rows] == ["chat", "redacted"]


def test_filter_hides_ghost_next_to_its_original():
    real = SessionLog(id="m1", message="x", visible_user_ids=[1])
    ghost = SessionLog(id="m2", message="■■■■■■", redacted_for_id="m1")
    assert filter_visible_logs([real, ghost], 1) == [real]
    assert filter_visible_logs([real, ghost], 2) == [ghost]


def test_posting_to_hidden_tab_is_forbidden(db, table, emitted):
    session, owner, alice, _ = table
    secret = ChatTab(session_id=session.id, name="keeper", allowed_roles=["owner"])
    db.add(secret)
    db.commit()

    with pytest.raises(Forbidden):
        post_message(db, session.id, alice.id, ExplicitTab(secret.id), ChatPost(message="let me in"))
    row = post_message(db, session.id, owner.id, ExplicitTab(secret.id), ChatPost(message="notes"))
    assert row.tab_id == secret.id


def test_non_member_cannot_read_or_post(db, table, make_user, emitted):
    session, _, _, _ = table
    stranger = make_user("stranger")
    with pytest.raises(Forbidden):
        list_logs(db, session.id, stranger.id, DefaultTab())
    with pytest.raises(Forbidden):
        post_message(db, session.id, stranger.id, DefaultTab(), ChatPost(message="hi"))


def test_restricted_tab_events_reach_only_tab_viewers(db, table, emitted):
    session, owner, alice, bob = table
    secret = ChatTab(session_id=session.id, name="keeper and alice", allowed_roles=["owner"], allowed_users=[alice.id])
    db.add(secret)
    db.commit()

    post_message(db, session.id, owner.id, ExplicitTab(secret.id), ChatPost(message="notes"))
    assert emitted[0][4] == {owner.id, alice.id}

    post_message(
        db,
        session.id,
        owner.id,
        ExplicitTab(secret.id),
        ChatPost(message="for me", visible_user_ids=[owner.id], redact_for_others=True),
    )
    _, _, real_record, _, real_viewers = emitted[1]
    _, _, ghost_record, ghost_excluded, ghost_viewers = emitted[2]
    assert real_record.visible_user_ids == [owner.id]
    assert real_viewers == {owner.id, alice.id}
    assert ghost_record.message_type == "redacted"
    assert set(ghost_excluded) == {owner.id}
    assert ghost_viewers == {owner.id, alice.id}
    assert bob.id not in ghost_viewers


def test_log_page_holds_the_newest_messages(db, table):
    session, owner, _, _ = table
    tab = db.query(ChatTab).filter(ChatTab.session_id == session.id).one()
    start = datetime(2024, 1, 1, 12, 0, 0)
    for index in range(5):
        db.add(
            SessionLog(
                session_id=session.id,
                tab_id=tab.id,
                user_id=owner.id,
                message=f"line {index}",
                created_at=start + timedelta(minutes=index),
            )
        )
    db.commit()

    rows = list_logs(db, session.id, owner.id, DefaultTab(), limit=3)
    assert [row.message for row in rows] == ["line 2", "line 3", "line 4"]
