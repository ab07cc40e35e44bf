"""
tests/conftest.py
"""
from __future__ import annotations

import datetime as _dt
import itertools
import os
from pathlib import Path
from typing import Callable, Generator

import pytest
from flask.testing import FlaskClient
from pytest import MonkeyPatch

# keep the test run from writing diarist/.secret_key
os.environ.setdefault("DIARIST_SECRET_KEY", "test-secret-key")

# The single-file app lives here:
from diarist.diary import app, create_user, get_db, init_db, issue_token  # noqa: E402

PASSWORD = "correct-horse"
CSRF = "test-csrf-token"


@pytest.fixture(scope="session")
def _tmp_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """One temp file for the whole test session (faster than per-test)."""
    db_file = tmp_path_factory.mktemp("data") / "test.sqlite3"
    return db_file


@pytest.fixture(scope="session", autouse=True)
def _configure_app(_tmp_db_path: Path) -> None:
    """
    Configure the Flask app *once* before the first test is collected.
    """
    app.config.update(
        TESTING=True,
        DATABASE=str(_tmp_db_path),
        # the test client speaks plain http
        SESSION_COOKIE_SECURE=False,
    )
    with app.app_context():
        init_db()


@pytest.fixture
def client() -> Generator[FlaskClient, None, None]:
    """
    Gives each test an isolated application context *and* test client.

    Yields:
        `flask.testing.FlaskClient`
    """
    with app.test_client() as client:
        with app.app_context():
            yield client


@pytest.fixture(autouse=True, scope="session")
def _fast_clock():
    """
    Patch diarist.diary.utc_now for the whole test session so every call
    returns an ever-increasing timestamp.  No need for time.sleep().
    """
    from diarist import diary  # import here to avoid early import

    counter = itertools.count()         # 0, 1, 2, …

    base = _dt.datetime(2099, 1, 1, tzinfo=_dt.timezone.utc)
    def _fake_now():
        return base + _dt.timedelta(seconds=next(counter))

    mp = MonkeyPatch()
    mp.setattr(diary, "utc_now", _fake_now)

    yield                               # tests run here

    mp.undo()                           # clean up at session end


# ───────────────────────── users ──────────────────────────────────────
_user_seq = itertools.count(1)


def _make_user(prefix: str) -> dict:
    """
    Create a fresh account (the DB is shared by the whole session, so
    every name is unique) and return its id, names, password and token.
    """
    n = next(_user_seq)
    row = create_user(
        get_db(),
        username=f"{prefix}{n}",
        email=f"{prefix}{n}@example.com",
        password=PASSWORD,
    )
    token = issue_token(row["id"])
    return {
        "id": row["id"],
        "username": row["username"],
        "email": row["email"],
        "password": PASSWORD,
        "token": token,
        "headers": {"Authorization": f"Bearer {token}"},
    }


@pytest.fixture
def alice(client) -> dict:
    return _make_user("alice")


@pytest.fixture
def bob(client) -> dict:
    return _make_user("bob")


@pytest.fixture
def login_as(client) -> Callable[[dict], str]:
    """
    Put *user* into the client's session and return the CSRF token that
    every non-GET form post must carry.
    """
    def _login(user: dict) -> str:
        with client.session_transaction() as sess:
            sess["user_id"] = user["id"]
            sess["csrf"] = CSRF
        return CSRF

    return _login
