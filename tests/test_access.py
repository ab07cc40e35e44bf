"""
tests/test_access.py
"""
from __future__ import annotations

import uuid
from types import SimpleNamespace

import pytest

from diarist.spoiler import (
    Access,
    authorize,
    authorize_share,
    extract_id,
    is_owner,
    owner_of,
)

OWNER = {"id": "u1", "username": "alice"}
OTHER = {"id": "u2", "username": "bob"}


def _entry(*, public: bool, owner="u1") -> dict:
    return {"id": 10, "user_id": owner, "is_public": public, "content": "x"}


# ───────────────────────── the matrix ───────────────────────────────
@pytest.mark.parametrize("public, viewer, expected", [
    (False, None,  Access.DENY),
    (False, OWNER, Access.FULL),
    (False, OTHER, Access.DENY),
    (True,  None,  Access.REDACTED),
    (True,  OWNER, Access.FULL),
    (True,  OTHER, Access.REDACTED),
])
def test_authorize_matrix(public, viewer, expected):
    assert authorize(viewer, _entry(public=public)) is expected


@pytest.mark.parametrize("public, expected", [
    (False, Access.DENY),
    (True,  Access.REDACTED),
])
def test_share_never_reveals(public, expected):
    assert authorize_share(_entry(public=public)) is expected


def test_access_flags():
    assert Access.FULL.allowed and Access.FULL.reveals_secrets
    assert Access.REDACTED.allowed and not Access.REDACTED.reveals_secrets
    assert not Access.DENY.allowed and not Access.DENY.reveals_secrets


# ───────────────────────── id normalisation ─────────────────────────
def test_owner_shape_does_not_matter():
    """A bare id and an expanded owner compare equal."""
    bare = _entry(public=False, owner="u1")
    expanded = {"id": 10, "user": {"id": "u1", "username": "alice"},
                "is_public": False}
    assert authorize(OWNER, bare) is Access.FULL
    assert authorize(OWNER, expanded) is Access.FULL
    assert owner_of(bare) == owner_of(expanded) == "u1"


def test_int_and_string_ids_match():
    assert is_owner({"id": 7}, {"user_id": "7"})
    assert is_owner("7", {"user_id": 7})


@pytest.mark.parametrize("ref, expected", [
    (None, None),
    ("abc", "abc"),
    (42, "42"),
    ({"id": 3}, "3"),
    ({"_id": "mongo"}, "mongo"),
    ({"name": "no id"}, None),
    (SimpleNamespace(id=5), "5"),
    (SimpleNamespace(name="no id"), None),
])
def test_extract_id(ref, expected):
    assert extract_id(ref) == expected


def test_extract_id_uuid():
    u = uuid.uuid4()
    assert extract_id(u) == str(u)


def test_absent_ids_never_match():
    assert not is_owner(None, {"user_id": None})
    assert not is_owner({"name": "ghost"}, {"is_public": False})
    assert authorize({"name": "ghost"}, {"is_public": False}) is Access.DENY


def test_object_entries():
    entry = SimpleNamespace(user_id=1, is_public=False)
    assert authorize(SimpleNamespace(id=1), entry) is Access.FULL
    assert authorize(SimpleNamespace(id=2), entry) is Access.DENY


def test_sqlite_rows(client, alice):
    """Rows straight from the DB work as viewer and entry."""
    from diarist.diary import create_diary, get_db, get_diary, get_user

    db = get_db()
    diary_id = create_diary(alice["id"], title="row", content="c",
                            is_public=False, db=db)
    row = get_diary(diary_id, db=db)
    me = get_user(alice["id"], db=db)
    assert authorize(me, row) is Access.FULL
    assert authorize(None, row) is Access.DENY
