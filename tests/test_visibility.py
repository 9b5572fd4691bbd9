from datetime import datetime, timedelta

import pytest

from tabletop.core.errors import Forbidden, NotFound
from tabletop.models.chat import ChatTab
from tabletop.services.visibility import (
    DefaultTab,
    ExplicitTab,
    can_view_tab,
    fetch_default_tab,
    normalize_allowed_roles,
    normalize_allowed_users,
    normalize_visibility,
    resolve_chat_tab,
    tab_request,
)


def _tab(**kwargs):
    return ChatTab(session_id="s", name="tab", **kwargs)


def test_unrestricted_tab_is_visible_to_everyone():
    tab = _tab(allowed_roles=None, allowed_users=[])
    assert can_view_tab(tab, "participant", 7)
    assert can_view_tab(tab, None, None)


def test_restricted_tab_needs_matching_role_or_user():
    tab = _tab(allowed_roles=["owner"], allowed_users=[7])
    assert can_view_tab(tab, "owner", 1)
    assert can_view_tab(tab, "participant", 7)
    assert not can_view_tab(tab, "participant", 8)


def test_user_only_restriction_ignores_role():
    tab = _tab(allowed_roles=[], allowed_users=[3])
    assert not can_view_tab(tab, "owner", 1)
    assert can_view_tab(tab, "participant", 3)


def test_normalize_allowed_users_keeps_plausible_ids():
    assert normalize_allowed_users([3, "4", " 5 ", "x", True, None, 3, 4.0]) == [3, 4, 5]
    assert normalize_allowed_users("3") == []


def test_normalize_allowed_roles_strips_and_drops_blanks():
    assert normalize_allowed_roles([" owner ", "", 5, "participant"]) == ["owner", "participant"]
    assert normalize_allowed_roles(None) == []


def test_unknown_visibility_is_private():
    assert normalize_visibility("public") == "public"
    assert normalize_visibility("secret") == "private"
    assert normalize_visibility(None) == "private"


def test_tab_request_distinguishes_default():
    assert tab_request(None) == DefaultTab()
    assert tab_request("") == DefaultTab()
    assert tab_request("abc") == ExplicitTab("abc")


def _add_tab(db, session_id, name, created_at, is_default=False, **kwargs):
    tab = ChatTab(session_id=session_id, name=name, is_default=is_default, created_at=created_at, **kwargs)
    db.add(tab)
    db.commit()
    return tab


def test_default_tab_prefers_flag_then_age(db, make_user, make_session):
    owner = make_user()
    session = make_session(owner)
    # create_session already added a default tab; start from a clean slate
    db.query(ChatTab).filter(ChatTab.session_id == session.id).delete()
    db.commit()

    base = datetime(2024, 1, 1)
    oldest = _add_tab(db, session.id, "oldest", base)
    assert fetch_default_tab(db, session.id).id == oldest.id

    flagged = _add_tab(db, session.id, "flagged", base + timedelta(hours=1), is_default=True)
    _add_tab(db, session.id, "newer flagged", base + timedelta(hours=2), is_default=True)
    assert fetch_default_tab(db, session.id).id == flagged.id


def test_resolve_explicit_tab_from_other_session_is_not_found(db, make_user, make_session):
    owner = make_user()
    mine = make_session(owner)
    theirs = make_session(owner, name="Other")
    foreign = fetch_default_tab(db, theirs.id)

    with pytest.raises(NotFound):
        resolve_chat_tab(db, mine.id, ExplicitTab(foreign.id), "owner", owner.id)
    with pytest.raises(NotFound):
        resolve_chat_tab(db, mine.id, ExplicitTab("missing"), "owner", owner.id)


def test_resolve_tab_checks_visibility(db, make_user, make_session):
    owner = make_user()
    session = make_session(owner)
    secret = _add_tab(db, session.id, "gm only", datetime.now(), allowed_roles=["owner"])

    assert resolve_chat_tab(db, session.id, ExplicitTab(secret.id), "owner", owner.id).id == secret.id
    with pytest.raises(Forbidden):
        resolve_chat_tab(db, session.id, ExplicitTab(secret.id), "participant", 999)

    default = resolve_chat_tab(db, session.id, DefaultTab(), "participant", 999)
    assert default.is_default


def test_resolve_default_tab_when_session_has_none(db, make_user, make_session):
    owner = make_user()
    session = make_session(owner)
    db.query(ChatTab).filter(ChatTab.session_id == session.id).delete()
    db.commit()

    with pytest.raises(NotFound):
        resolve_chat_tab(db, session.id, DefaultTab(), "owner", owner.id)
