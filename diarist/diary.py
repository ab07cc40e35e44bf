#!/usr/bin/env python3
"""
A single-file shared diary with secret spoilers.
"""

import os
import re
import secrets
import sqlite3
from collections import defaultdict, deque
from datetime import date, datetime, timedelta, timezone
from functools import wraps
from html import unescape
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from time import time
from typing import DefaultDict

import bleach
import click
import markdown
from flask import (
    Flask,
    Response,
    abort,
    flash,
    g,
    jsonify,
    redirect,
    render_template_string,
    request,
    session,
    url_for,
)
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from markupsafe import Markup, escape
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.security import check_password_hash, generate_password_hash

from diarist.spoiler import (
    authorize,
    authorize_share,
    has_secrets,
    is_owner,
    redact,
)

################################################################################
# Imports & constants
################################################################################

ROOT = Path(__file__).parent
DB_FILE = Path(os.environ.get("DIARIST_DB", str(ROOT / "diary.sqlite3")))

SECRET_FILE = ROOT / ".secret_key"
SECRET_KEY = os.environ.get("DIARIST_SECRET_KEY", "")
if not SECRET_KEY:
    SECRET_KEY = (
        SECRET_FILE.read_text().strip()
        if SECRET_FILE.exists()
        else secrets.token_hex(32)
    )
    SECRET_FILE.write_text(SECRET_KEY)

TOKEN_MAX_AGE = int(os.environ.get("DIARIST_TOKEN_MAX_AGE", str(30 * 24 * 3600)))
SECURE_COOKIES = os.environ.get("DIARIST_SECURE_COOKIES", "1") != "0"
PAGE_DEFAULT = int(os.environ.get("DIARIST_PAGE_SIZE", "20"))
SITE_NAME = os.environ.get("DIARIST_SITE_NAME", "diarist")

TITLE_MAX = 200
PASSWORD_MIN = 6
CONTRIB_DAYS = 365
USERNAME_RE = re.compile(r"[\w.-]{3,30}")
EMAIL_RE = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")
_SAFE_TOKEN_RE = re.compile(r"^\w+$", re.UNICODE)
SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}

MD_EXTENSIONS = [
    "pymdownx.extra",
    "pymdownx.magiclink",
    "pymdownx.tilde",
    "pymdownx.mark",
    "pymdownx.superfences",
    "pymdownx.highlight",
    "pymdownx.betterem",
    "pymdownx.saneheaders",
]
MD_EXTENSION_CONFIGS = {
    "pymdownx.highlight": {"use_pygments": False},
}

# authors don't trust each other: everything rendered goes through bleach
ALLOWED_TAGS = frozenset(
    {
        "a", "abbr", "blockquote", "br", "code", "dd", "del", "div", "dl",
        "dt", "em", "h1", "h2", "h3", "h4", "h5", "h6", "hr", "img", "ins",
        "li", "mark", "ol", "p", "pre", "span", "strong", "sub", "sup",
        "table", "tbody", "td", "th", "thead", "tr", "ul",
    }
)
ALLOWED_ATTRS = {
    "*": ["class", "id"],
    "a": ["href", "title", "rel"],
    "abbr": ["title"],
    "img": ["src", "alt", "title"],
    "td": ["align"],
    "th": ["align"],
}
ALLOWED_PROTOCOLS = ["http", "https", "mailto"]

try:
    __version__ = version("diarist")
except PackageNotFoundError:
    __version__ = "0.1.0-dev"


################################################################################
# App + template filters
################################################################################
app = Flask(__name__)
app.url_map.strict_slashes = False
app.config.update(
    SECRET_KEY=SECRET_KEY,
    DATABASE=str(DB_FILE),
    TOKEN_MAX_AGE=TOKEN_MAX_AGE,
    PAGE_SIZE=PAGE_DEFAULT,
    SITE_NAME=SITE_NAME,
)
app.config.update(
    SESSION_COOKIE_SAMESITE="Lax",  # blocks most CSRF on simple links
    SESSION_COOKIE_HTTPONLY=True,  # mitigate XSS → cookie theft
    SESSION_COOKIE_SECURE=SECURE_COOKIES,  # only if you serve over HTTPS
)
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

def _markdown_renderer():
    # Markdown instances keep per-document state; one per render
    return markdown.Markdown(
        extensions=MD_EXTENSIONS,
        extension_configs=MD_EXTENSION_CONFIGS,
    )


def sanitize_html(html: str) -> str:
    return bleach.clean(
        html,
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRS,
        protocols=ALLOWED_PROTOCOLS,
        strip=True,
    )


def render_diary_html(content: str | None, *, reveal: bool) -> Markup:
    """
    Redact secret blocks for this viewer, render Markdown, sanitise.
    """
    html = _markdown_renderer().convert(redact(content, reveal))
    return Markup(sanitize_html(html))


def plain_text(content: str | None, *, reveal: bool = False) -> str:
    """Rendered text without any markup, whitespace collapsed."""
    html = str(render_diary_html(content, reveal=reveal))
    text = bleach.clean(html, tags=set(), strip=True)
    return " ".join(unescape(text).split())


def excerpt(content: str | None, *, length: int = 160, reveal: bool = False) -> str:
    text = plain_text(content, reveal=reveal)
    if len(text) <= length:
        return text
    return text[: length - 1].rstrip() + "…"


@app.template_filter("ts")
def ts_filter(iso: str | None) -> str:
    if not iso:
        return ""
    try:
        dt = datetime.fromisoformat(iso)
    except ValueError:
        return iso
    return dt.strftime("%Y.%m.%d %H:%M")


###############################################################################
# Database helpers
###############################################################################
def get_db():
    if "db" not in g:
        g.db = sqlite3.connect(app.config["DATABASE"])
        g.db.execute("PRAGMA foreign_keys = ON;")
        g.db.row_factory = sqlite3.Row
    return g.db


@app.teardown_appcontext
def close_db(error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    db.executescript(
        """
        ------------------------------------------------------------
        -- 1.  Accounts
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS user (
            id            INTEGER PRIMARY KEY AUTOINCREMENT,
            username      TEXT NOT NULL UNIQUE COLLATE NOCASE,
            email         TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            created_at    TEXT NOT NULL
        );

        ------------------------------------------------------------
        -- 2.  Diaries
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS diary (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id     INTEGER NOT NULL,
            title       TEXT NOT NULL,
            content     TEXT NOT NULL,
            is_public   INTEGER NOT NULL DEFAULT 0,
            created_at  TEXT NOT NULL,
            updated_at  TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES user(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_diary_user   ON diary(user_id);
        CREATE INDEX IF NOT EXISTS idx_diary_public ON diary(is_public, created_at);

        ------------------------------------------------------------
        -- 3.  Full-text search
        ------------------------------------------------------------
        CREATE VIRTUAL TABLE IF NOT EXISTS diary_fts USING fts5(
            title, content,
            content='diary',
            content_rowid='id',
            tokenize = 'trigram'
        );

        CREATE TRIGGER IF NOT EXISTS diary_ai AFTER INSERT ON diary BEGIN
            INSERT INTO diary_fts(rowid, title, content)
                VALUES (new.id, new.title, new.content);
        END;

        CREATE TRIGGER IF NOT EXISTS diary_au AFTER UPDATE ON diary BEGIN
            INSERT INTO diary_fts(diary_fts, rowid, title, content)
                VALUES ('delete', old.id, old.title, old.content);
            INSERT INTO diary_fts(rowid, title, content)
                VALUES (new.id, new.title, new.content);
        END;

        CREATE TRIGGER IF NOT EXISTS diary_ad AFTER DELETE ON diary BEGIN
            INSERT INTO diary_fts(diary_fts, rowid, title, content)
                VALUES ('delete', old.id, old.title, old.content);
        END;
        """
    )
    db.commit()


# -------------------------------------------------------------------------
# Time helpers
# -------------------------------------------------------------------------
def utc_now() -> datetime:
    """Return an *aware* datetime in UTC."""
    return datetime.now(timezone.utc)


def _stamp() -> str:
    return utc_now().isoformat(timespec="seconds")


###############################################################################
# Accounts
###############################################################################
def _error(field: str, message: str) -> dict[str, str]:
    return {"field": field, "message": message}


def validate_registration(data) -> tuple[dict, list[dict]]:
    username = str(data.get("username") or "").strip()
    email = str(data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    errors = []
    if not USERNAME_RE.fullmatch(username):
        errors.append(
            _error("username", "Username must be 3-30 letters, digits, '.', '_' or '-'")
        )
    if not EMAIL_RE.fullmatch(email):
        errors.append(_error("email", "Please provide a valid email"))
    if not isinstance(password, str) or len(password) < PASSWORD_MIN:
        errors.append(
            _error("password", f"Password must be at least {PASSWORD_MIN} characters")
        )
    return {"username": username, "email": email, "password": password}, errors


def get_user(user_id, *, db):
    return db.execute(
        "SELECT id, username, email, created_at FROM user WHERE id=?", (user_id,)
    ).fetchone()


def user_exists(*, username: str, email: str, db) -> bool:
    row = db.execute(
        "SELECT 1 FROM user WHERE username=? OR email=? LIMIT 1",
        (username, email.lower()),
    ).fetchone()
    return row is not None


def create_user(db, *, username: str, email: str, password: str):
    """
    Insert a new account and return its row.

    Raises ``ValueError`` when the username or email is already taken.
    """
    if user_exists(username=username, email=email, db=db):
        raise ValueError("User already exists")
    cur = db.execute(
        """
        INSERT INTO user (username, email, password_hash, created_at)
             VALUES (?,?,?,?)
        """,
        (username, email.lower(), generate_password_hash(password), _stamp()),
    )
    db.commit()
    app.logger.info("Created user %s (id=%s)", username, cur.lastrowid)
    return get_user(cur.lastrowid, db=db)


def check_credentials(email: str, password: str, *, db):
    """Return the user row when *email* / *password* match, else ``None``."""
    row = db.execute(
        "SELECT id, password_hash FROM user WHERE email=?",
        ((email or "").strip().lower(),),
    ).fetchone()
    if row is None or not check_password_hash(row["password_hash"], password or ""):
        return None
    return get_user(row["id"], db=db)


def user_json(row) -> dict:
    return {
        "id": row["id"],
        "username": row["username"],
        "email": row["email"],
        "created_at": row["created_at"],
    }


###############################################################################
# Diaries
###############################################################################
DIARY_SQL = """
    SELECT d.id, d.user_id, d.title, d.content, d.is_public,
           d.created_at, d.updated_at, u.username
      FROM diary d
      JOIN user  u ON u.id = d.user_id
"""


def validate_diary(data, *, partial: bool = False) -> tuple[dict, list[dict]]:
    """
    Check a create (all fields) or update (*partial*, only given fields)
    payload.  Returns the cleaned fields and a list of field errors.
    """
    clean: dict = {}
    errors: list[dict] = []

    if "title" in data or not partial:
        title = data.get("title")
        title = title.strip() if isinstance(title, str) else ""
        if not title:
            errors.append(_error("title", "Title is required"))
        elif len(title) > TITLE_MAX:
            errors.append(
                _error("title", f"Title cannot exceed {TITLE_MAX} characters")
            )
        clean["title"] = title

    if "content" in data or not partial:
        content = data.get("content")
        if not isinstance(content, str) or not content.strip():
            errors.append(_error("content", "Content is required"))
        clean["content"] = content

    if "is_public" in data:
        if not isinstance(data["is_public"], bool):
            errors.append(_error("is_public", "is_public must be a boolean value"))
        clean["is_public"] = data["is_public"]
    elif not partial:
        clean["is_public"] = False

    return clean, errors


def get_diary(diary_id, *, db):
    return db.execute(f"{DIARY_SQL} WHERE d.id = ?", (diary_id,)).fetchone()


def create_diary(user_id, *, title: str, content: str, is_public: bool, db) -> int:
    now = _stamp()
    cur = db.execute(
        """
        INSERT INTO diary (user_id, title, content, is_public, created_at, updated_at)
             VALUES (?,?,?,?,?,?)
        """,
        (user_id, title, content, int(bool(is_public)), now, now),
    )
    db.commit()
    return cur.lastrowid


def update_diary(diary_id, changes: dict, *, db) -> None:
    fields = {k: changes[k] for k in ("title", "content", "is_public") if k in changes}
    if "is_public" in fields:
        fields["is_public"] = int(bool(fields["is_public"]))
    fields["updated_at"] = _stamp()

    assignments = ", ".join(f"{col}=?" for col in fields)
    db.execute(
        f"UPDATE diary SET {assignments} WHERE id=?", (*fields.values(), diary_id)
    )
    db.commit()


def delete_diary(diary_id, *, db) -> None:
    db.execute("DELETE FROM diary WHERE id=?", (diary_id,))
    db.commit()


def user_diaries(user_id, *, db):
    return db.execute(
        f"{DIARY_SQL} WHERE d.user_id = ? ORDER BY d.created_at DESC, d.id DESC",
        (user_id,),
    ).fetchall()


def page_size() -> int:
    try:
        return max(int(app.config.get("PAGE_SIZE", PAGE_DEFAULT)), 1)
    except (TypeError, ValueError):
        return PAGE_DEFAULT


def paginate(base_sql: str, params: tuple, *, page: int, per_page: int, db):
    total = db.execute(f"SELECT COUNT(*) FROM ({base_sql})", params).fetchone()[0]
    pages = (total + per_page - 1) // per_page
    rows = db.execute(
        f"{base_sql} LIMIT ? OFFSET ?", params + (per_page, (page - 1) * per_page)
    ).fetchall()
    return rows, pages


PUBLIC_SQL = f"{DIARY_SQL} WHERE d.is_public = 1 ORDER BY d.created_at DESC, d.id DESC"


def public_diaries(*, db, page: int | None = None, per_page: int = PAGE_DEFAULT):
    """
    Public diaries, newest first.  With *page* → ``(rows, pages)``;
    without → every row.
    """
    if page is None:
        return db.execute(PUBLIC_SQL).fetchall()
    return paginate(PUBLIC_SQL, (), page=page, per_page=per_page, db=db)


def diary_json(row, *, content: str | None = None) -> dict:
    data = {
        "id": row["id"],
        "title": row["title"],
        "is_public": bool(row["is_public"]),
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }
    if "username" in row.keys():
        data["user"] = {"id": row["user_id"], "username": row["username"]}
    if content is not None:
        data["content"] = content
    return data


def contribution_counts(
    user_id, *, db, days: int = CONTRIB_DAYS, today: date | None = None
) -> list[dict]:
    """
    Diaries written per day for the last *days* days, oldest first,
    every day present (zero-filled).
    """
    today = today or utc_now().date()
    start = today - timedelta(days=days - 1)
    rows = db.execute(
        """
        SELECT substr(created_at,1,10) AS day,
               COUNT(*)                AS cnt
          FROM diary
         WHERE user_id = ?
           AND substr(created_at,1,10) BETWEEN ? AND ?
      GROUP BY day
        """,
        (user_id, start.isoformat(), today.isoformat()),
    ).fetchall()
    counts = {r["day"]: r["cnt"] for r in rows}

    out = []
    for offset in range(days):
        day = (start + timedelta(days=offset)).isoformat()
        out.append({"date": day, "count": counts.get(day, 0)})
    return out


def contribution_level(count: int) -> int:
    """0–4 shading bucket for the activity graph."""
    return min(count, 4)


# ------------------------------------------------------------------
# Full-text / LIKE search
# ------------------------------------------------------------------
def _auto_quote(q: str) -> str:
    """Wrap every token that contains punctuation in double quotes."""
    out = []
    for tok in q.split():
        # leave trailing * outside the quotes so prefix-search still works
        star = tok.endswith("*")
        core = tok[:-1] if star else tok
        if not _SAFE_TOKEN_RE.fullmatch(core):
            core = core.replace('"', '""')  # escape embedded quotes
            tok = f'"{core}"' + ("*" if star else "")
        out.append(tok)
    return " ".join(out)


def _like_search(q: str, *, user_id, db, page: int, per_page: int, sort: str):
    like = f"%{q}%"
    order_sql = {"old": "d.created_at ASC"}.get(sort, "d.created_at DESC")
    base_sql = f"""
        {DIARY_SQL}
         WHERE d.user_id = ?
           AND (d.title LIKE ? OR d.content LIKE ?)
      ORDER BY {order_sql}
    """
    rows, _ = paginate(
        base_sql, (user_id, like, like), page=page, per_page=per_page, db=db
    )
    total = db.execute(
        f"SELECT COUNT(*) FROM ({base_sql})", (user_id, like, like)
    ).fetchone()[0]
    return rows, total


def search_diaries(
    q: str,
    *,
    user_id,
    db,
    page: int = 1,
    per_page: int = PAGE_DEFAULT,
    sort: str = "rel",  #  rel | new | old
):
    """
    Search one user's diaries.  Return (rows_on_page, total_hits).

    * “rel” = relevance (bm25 rank) – default
    * “new” = newest first
    * “old” = oldest first
    """
    q = (q or "").strip().lower()
    if not q:
        return [], 0

    # ─── 1-2 characters → simple LIKE ---------------------------------
    if len(q) < 3:
        return _like_search(
            q, user_id=user_id, db=db, page=page, per_page=per_page, sort=sort
        )

    # ─── ≥3 chars → FTS5 trigram index --------------------------------
    match = _auto_quote(q)
    order_sql = {"new": "d.created_at DESC", "old": "d.created_at ASC"}.get(
        sort, "score"
    )
    try:
        rows = db.execute(
            f"""
            SELECT d.id, d.user_id, d.title, d.content, d.is_public,
                   d.created_at, d.updated_at, u.username,
                   bm25(diary_fts) AS score
              FROM diary_fts
              JOIN diary d ON d.id = diary_fts.rowid
              JOIN user  u ON u.id = d.user_id
             WHERE diary_fts MATCH ?
               AND d.user_id = ?
          ORDER BY {order_sql}
             LIMIT ? OFFSET ?
            """,
            (match, user_id, per_page, (page - 1) * per_page),
        ).fetchall()
        total = db.execute(
            """
            SELECT COUNT(*)
              FROM diary_fts
              JOIN diary d ON d.id = diary_fts.rowid
             WHERE diary_fts MATCH ?
               AND d.user_id = ?
            """,
            (match, user_id),
        ).fetchone()[0]
    except sqlite3.OperationalError:
        app.logger.warning("FTS query %r rejected, falling back to LIKE", match)
        return _like_search(
            q, user_id=user_id, db=db, page=page, per_page=per_page, sort=sort
        )
    return rows, total


def _snippet(text: str, term: str, *, width: int = 80) -> str:
    pos = text.lower().find(term.lower())
    if pos < 0:
        return text[: 2 * width]
    start = max(pos - width, 0)
    end = pos + len(term) + width
    return ("…" if start else "") + text[start:end] + ("…" if end < len(text) else "")


def _highlight(text: str | None, terms: list[str]) -> Markup:
    """
    Wrap every occurrence of *terms* in <mark>, escaping the rest of *text*.
    Terms are matched against the raw text, never inside an entity.
    """
    if not text:
        return Markup("")
    terms = sorted({t for t in terms if t}, key=len, reverse=True)
    if not terms:
        return escape(text)
    pattern = re.compile("(" + "|".join(re.escape(t) for t in terms) + ")", re.I)
    out = []
    for i, part in enumerate(pattern.split(text)):
        # odd positions hold the captured hits
        out.append(f"<mark>{escape(part)}</mark>" if i % 2 else str(escape(part)))
    return Markup("".join(out))


###############################################################################
# Authentication
###############################################################################
def _token_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(app.config["SECRET_KEY"], salt="api-token")


def issue_token(user_id) -> str:
    """Signed bearer token for the JSON API."""
    return _token_serializer().dumps({"id": user_id})


def user_id_from_token(token: str):
    """
    • Unsign + age-check in *one* step (``TOKEN_MAX_AGE`` seconds).
    • Return the user id it carries, or ``None`` if it is not valid.
    """
    try:
        data = _token_serializer().loads(token, max_age=app.config["TOKEN_MAX_AGE"])
    except SignatureExpired:
        return None  # too old ➜ invalid
    except BadSignature:
        return None  # forged ➜ invalid
    return data.get("id") if isinstance(data, dict) else None


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header[len("Bearer ") :].strip() or None


def api_viewer(*, required: bool):
    """
    The user behind the ``Authorization: Bearer`` header.

    No header → ``None`` (anonymous) unless *required*.  A header that is
    present but invalid is always an error, never a silent downgrade.
    """
    token = _bearer_token()
    if token is None:
        if required:
            abort(401, description="Authentication required. No token provided.")
        return None

    user_id = user_id_from_token(token)
    if user_id is None:
        app.logger.warning("Rejected API token from %s", client_ip())
        abort(401, description="Invalid or expired token")

    user = get_user(user_id, db=get_db())
    if user is None:
        abort(404, description="User not found")
    return user


def current_user():
    """Logged-in user of the browser session, or ``None``."""
    uid = session.get("user_id")
    return get_user(uid, db=get_db()) if uid is not None else None


def login_required():
    user = current_user()
    if user is None:
        abort(redirect(url_for("login", next=request.path)))
    return user


def _login_session(user) -> None:
    session.clear()
    session.permanent = True
    session["user_id"] = user["id"]
    session["csrf"] = secrets.token_hex(16)


def _safe_next(target: str | None) -> str:
    if target and target.startswith("/") and not target.startswith("//"):
        return target
    return url_for("dashboard")


def client_ip() -> str:
    """Return best-effort client IP after ProxyFix."""
    return (
        request.access_route[0] if request.access_route else request.remote_addr
    ) or "unknown"


def rate_limit(max_requests: int, window: int = 60):
    hits: DefaultDict[str, deque] = defaultdict(deque)

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            now = time()
            ip = client_ip()

            dq = hits[ip]
            while dq and now - dq[0] > window:
                dq.popleft()

            if len(dq) >= max_requests:
                retry_after = int(window - (now - dq[0]))
                app.logger.warning("Rate limit hit on %s from %s", request.path, ip)
                if request.path.startswith("/api/"):
                    resp = jsonify(message="Too many requests – try again later.")
                    resp.status_code = 429
                    resp.headers["Retry-After"] = str(retry_after)
                    return resp
                return Response(
                    "Too many requests – try again later.",
                    status=429,
                    headers={"Retry-After": str(retry_after)},
                )

            dq.append(now)
            return view(*args, **kwargs)

        return wrapped

    return decorator


def _csrf_token() -> str:
    """One token per session (rotates when the cookie does)."""
    return session.get("csrf", "")


@app.before_request
def csrf_protect():
    # ➊ read-only verbs ⇒ always allowed
    if request.method in SAFE_METHODS:
        return

    # ➋ the API authenticates with bearer tokens, not cookies
    if request.path.startswith("/api/"):
        return

    # ➌ no session yet ⇒ allow (covers /login and /register POST)
    if not session.get("user_id"):
        return

    token = session.get("csrf", "")
    sent = request.form.get("csrf") or request.headers.get("X-CSRFToken", "")
    if not token or not secrets.compare_digest(token, sent):
        abort(403)


@app.after_request
def sec_headers(resp):
    resp.headers.update(
        {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
        }
    )
    return resp


def site_name() -> str:
    return app.config.get("SITE_NAME") or SITE_NAME


# Expose helpers to templates
app.jinja_env.globals.update(
    csrf_token=_csrf_token,
    current_user=current_user,
    site_name=site_name,
    excerpt=excerpt,
    has_secrets=has_secrets,
    contribution_level=contribution_level,
    version=__version__,
)


###############################################################################
# Templates
###############################################################################
def wrap(body: str) -> str:
    """Glue prolog + page-specific body + epilog."""
    return TEMPL_PROLOG + body + TEMPL_EPILOG


TEMPL_PROLOG = """
<!doctype html>
<html lang="en">
<title>{{ title or site_name() }}</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta charset="utf-8">
{% if og %}
<meta property="og:type" content="article">
<meta property="og:title" content="{{ og.title }}">
<meta property="og:description" content="{{ og.description }}">
<meta property="og:url" content="{{ og.url }}">
{% endif %}
<style>
html{font-size:62.5%;font-family:-apple-system,BlinkMacSystemFont,"Segoe UI",Roboto,"Helvetica Neue",Arial,sans-serif}
body{font-size:1.8rem;line-height:1.618;max-width:40em;margin:auto;color:#c9c9c9;background:#222;padding:13px}
a{color:#fff;text-decoration-color:transparent}a:hover{text-decoration-color:#c9c9c9}
h1,h2,h3{line-height:1.1;margin-top:2.5rem;margin-bottom:1.2rem}
pre,code{background:#4a4a4a;font-size:.9em}pre{padding:1em;overflow-x:auto}
blockquote{margin:0 0 2rem;padding:.8em 1em;border-left:5px solid #fff;background:#4a4a4a}
input,textarea,select{color:#c9c9c9;padding:6px 10px;margin-bottom:10px;background:#4a4a4a;border:1px solid #4a4a4a;border-radius:4px;box-sizing:border-box}
textarea{width:100%;min-height:18em}input[type=text],input[type=email],input[type=password],input[type=search]{width:100%}
button{padding:5px 12px;background:#fff;color:#222;border:1px solid #fff;border-radius:1px;cursor:pointer}
nav{display:flex;gap:1.25rem;flex-wrap:wrap;font-size:.9em;margin-bottom:1rem}nav .right{margin-left:auto}
.flash{background:#553;padding:.5rem 1rem;margin:.5rem 0;border-radius:4px}
.meta{color:#888;font-size:.8em}
.pill{display:inline-block;padding:.05em .6em;margin-left:.4em;background:#444;color:#fff;border-radius:1em;font-size:.7em;vertical-align:middle}
.secret-spoiler{border:1px dashed #A5BA93;border-radius:6px;padding:.75rem 1rem;margin:1.5rem 0;background:#2a2f27}
.secret-spoiler-header{font-size:.75em;font-weight:700;letter-spacing:.05em;text-transform:uppercase;color:#A5BA93;margin:0 0 .5rem}
.secret-spoiler--hidden p:last-child{color:#888;font-style:italic;margin:0}
.graph{display:grid;grid-template-rows:repeat(7,10px);grid-auto-flow:column;grid-auto-columns:10px;gap:2px;overflow-x:auto;margin:1rem 0}
.graph span{border-radius:2px}.lvl0{background:#333}.lvl1{background:#4e5f45}.lvl2{background:#6b8260}.lvl3{background:#88a07c}.lvl4{background:#A5BA93}
mark{background:#A5BA93;color:#000;padding:0 .15em}
ul.diaries{list-style:none;padding:0}ul.diaries li{margin-bottom:1.5rem}
</style>
<div class="container">
<nav>
  <a href="{{ url_for('index') }}"><strong>{{ site_name() }}</strong></a>
  {% set nav_user = current_user() %}
  {% if nav_user %}
    <a href="{{ url_for('dashboard') }}">Dashboard</a>
    <a href="{{ url_for('new_diary') }}">New</a>
    <a href="{{ url_for('search') }}">Search</a>
    <span class="right">{{ nav_user['username'] }} · <a href="{{ url_for('logout') }}">Logout</a></span>
  {% else %}
    <span class="right"><a href="{{ url_for('login') }}">Login</a> · <a href="{{ url_for('register') }}">Register</a></span>
  {% endif %}
</nav>
{% with messages = get_flashed_messages() %}
  {% for m in messages %}<div class="flash">{{ m }}</div>{% endfor %}
{% endwith %}
"""

TEMPL_EPILOG = """
<hr>
<footer class="meta">{{ site_name() }} · v{{ version }}</footer>
</div> <!-- container -->
</html>
"""

TEMPL_INDEX = wrap("""
{% block body %}
<h2>Public diaries</h2>
{% if rows %}
<ul class="diaries">
  {% for d in rows %}
  <li>
    <a href="{{ url_for('diary_detail', diary_id=d['id']) }}">{{ d['title'] }}</a>
    <div class="meta">{{ d['username'] }} · {{ d['created_at']|ts }}</div>
    <div>{{ excerpt(d['content']) }}</div>
  </li>
  {% endfor %}
</ul>
{% if pages > 1 %}
<p class="meta">
  {% if page > 1 %}<a href="{{ url_for('index', page=page-1) }}">← newer</a>{% endif %}
  page {{ page }} / {{ pages }}
  {% if page < pages %}<a href="{{ url_for('index', page=page+1) }}">older →</a>{% endif %}
</p>
{% endif %}
{% else %}
<p>No public diaries yet.</p>
{% endif %}
{% endblock %}
""")

TEMPL_REGISTER = wrap("""
{% block body %}
<h2>Register</h2>
<form method="post">
  {% if csrf_token() %}
  <input type="hidden" name="csrf" value="{{ csrf_token() }}">
  {% endif %}
  <label for="username">Username</label>
  <input id="username" name="username" type="text" value="{{ form.get('username','') }}" required>
  <label for="email">Email</label>
  <input id="email" name="email" type="email" value="{{ form.get('email','') }}" required>
  <label for="password">Password</label>
  <input id="password" name="password" type="password" required>
  <button type="submit">Create account</button>
</form>
{% endblock %}
""")

TEMPL_LOGIN = wrap("""
{% block body %}
<h2>Login</h2>
<form method="post">
  {% if csrf_token() %}
  <input type="hidden" name="csrf" value="{{ csrf_token() }}">
  {% endif %}
  <input type="hidden" name="next" value="{{ next_url or '' }}">
  <label for="email">Email</label>
  <input id="email" name="email" type="email" value="{{ email or '' }}" required>
  <label for="password">Password</label>
  <input id="password" name="password" type="password" autocomplete="current-password" required>
  <button type="submit">Sign in</button>
</form>
{% endblock %}
""")

TEMPL_DASHBOARD = wrap("""
{% block body %}
<h2>{{ me['username'] }}’s diary</h2>
<form action="{{ url_for('search') }}" method="get">
  <input type="search" name="q" placeholder="Search your diaries">
</form>

<h3>Activity <small class="meta">{{ total }} entries in the last year</small></h3>
<div class="graph" aria-label="diaries written per day">
  {% for day in contributions %}
  <span class="lvl{{ contribution_level(day['count']) }}" title="{{ day['date'] }}: {{ day['count'] }}"></span>
  {% endfor %}
</div>

<h3>Entries</h3>
{% if rows %}
<ul class="diaries">
  {% for d in rows %}
  <li>
    <a href="{{ url_for('diary_detail', diary_id=d['id']) }}">{{ d['title'] }}</a>
    {% if d['is_public'] %}<span class="pill">public</span>{% else %}<span class="pill">private</span>{% endif %}
    {% if has_secrets(d['content']) %}<span class="pill" title="contains secret spoilers">secret</span>{% endif %}
    <div class="meta">{{ d['created_at']|ts }}
      · <a href="{{ url_for('edit_diary', diary_id=d['id']) }}">edit</a>
      · <a href="{{ url_for('delete_diary_view', diary_id=d['id']) }}">delete</a>
    </div>
  </li>
  {% endfor %}
</ul>
{% else %}
<p>Nothing here yet. <a href="{{ url_for('new_diary') }}">Write your first entry</a>.</p>
{% endif %}
{% endblock %}
""")

TEMPL_EDIT = wrap("""
{% block body %}
<h2>{{ 'Edit entry' if diary_id else 'New entry' }}</h2>
<form method="post">
  {% if csrf_token() %}
  <input type="hidden" name="csrf" value="{{ csrf_token() }}">
  {% endif %}
  <label for="title">Title</label>
  <input id="title" name="title" type="text" maxlength="200" value="{{ form.get('title','') }}" required>
  <label for="content">Content</label>
  <textarea id="content" name="content" required>{{ form.get('content','') }}</textarea>
  <p class="meta">Wrap spoilers in a <code>:::secret</code> … <code>:::</code> block;
     only you will see them.</p>
  <label style="display:flex;gap:.5rem;align-items:center;">
    <input type="checkbox" name="is_public" value="1" {% if form.get('is_public') %}checked{% endif %}>
    Public
  </label>
  <button type="submit">Save</button>
  {% if diary_id %}<a href="{{ url_for('diary_detail', diary_id=diary_id) }}" style="margin-left:1rem;">Cancel</a>{% endif %}
</form>
{% endblock %}
""")

TEMPL_DIARY = wrap("""
{% block body %}
<article>
  <h2>{{ d['title'] }}</h2>
  <div class="meta">
    {{ d['username'] }} · {{ d['created_at']|ts }}
    {% if d['updated_at'] != d['created_at'] %}(edited {{ d['updated_at']|ts }}){% endif %}
    {% if d['is_public'] %}<span class="pill">public</span>{% else %}<span class="pill">private</span>{% endif %}
  </div>
  <div class="e-content">{{ body }}</div>
</article>
{% if owner %}
<p class="meta">
  <a href="{{ url_for('edit_diary', diary_id=d['id']) }}">Edit</a>
  · <a href="{{ url_for('delete_diary_view', diary_id=d['id']) }}">Delete</a>
  {% if d['is_public'] %}· Share: <a href="{{ url_for('share', diary_id=d['id']) }}">{{ url_for('share', diary_id=d['id'], _external=True) }}</a>{% endif %}
</p>
{% endif %}
{% endblock %}
""")

TEMPL_SHARE = wrap("""
{% block body %}
<article>
  <h2>{{ d['title'] }}</h2>
  <div class="meta">{{ d['username'] }} · {{ d['created_at']|ts }}</div>
  <div class="e-content">{{ body }}</div>
</article>
{% endblock %}
""")

TEMPL_DELETE = wrap("""
{% block body %}
<h2>Delete entry?</h2>
<article style="border-left:3px solid #c00; padding-left:1rem;">
  <h3>{{ d['title'] }}</h3>
  <small class="meta">{{ d['created_at']|ts }}</small>
</article>
<form method="post" style="margin-top:1rem;">
  {% if csrf_token() %}
  <input type="hidden" name="csrf" value="{{ csrf_token() }}">
  {% endif %}
  <button style="background:#c00; color:#fff;">Yes – delete it</button>
  <a href="{{ url_for('diary_detail', diary_id=d['id']) }}" style="margin-left:1rem;">Cancel</a>
</form>
{% endblock %}
""")

TEMPL_SEARCH = wrap("""
{% block body %}
<form method="get">
  <input type="search" name="q" value="{{ query }}" placeholder="Search your diaries" autofocus>
</form>
{% if query %}
<p class="meta">{{ total }} result{{ '' if total == 1 else 's' }} ·
  sort:
  {% for key, label in [('rel','relevance'),('new','newest'),('old','oldest')] %}
    {% if sort == key %}<strong>{{ label }}</strong>{% else %}<a href="{{ url_for('search', q=query, sort=key) }}">{{ label }}</a>{% endif %}
  {% endfor %}
</p>
<ul class="diaries">
  {% for r in rows %}
  <li>
    <a href="{{ url_for('diary_detail', diary_id=r['id']) }}">{{ r['title'] }}</a>
    <div class="meta">{{ r['created_at']|ts }}</div>
    <div>{{ r['snippet'] }}</div>
  </li>
  {% endfor %}
</ul>
{% if pages|length > 1 %}
<p class="meta">
  {% for p in pages %}
    {% if p == page %}<strong>{{ p }}</strong>{% else %}<a href="{{ url_for('search', q=query, sort=sort, page=p) }}">{{ p }}</a>{% endif %}
  {% endfor %}
</p>
{% endif %}
{% endif %}
{% endblock %}
""")

TEMPL_404 = wrap("""
{% block body %}
  <h2>Page not found</h2>
  <p>The URL you asked for doesn’t exist.
     <a href="{{ url_for('index') }}">Back to the front page</a>.</p>
{% endblock %}
""")

TEMPL_ERROR = wrap("""
{% block body %}
  <h2>{{ code }} {{ name }}</h2>
  <p>{{ description }}</p>
{% endblock %}
""")

TEMPL_500 = wrap("""
{% block body %}
  <h2>Internal Server Error</h2>
  <p>Our fault, not yours. Please try again in a minute.</p>
{% endblock %}
""")


###############################################################################
# Pages
###############################################################################
@app.route("/")
def index():
    page = max(request.args.get("page", 1, type=int), 1)
    rows, pages = public_diaries(db=get_db(), page=page, per_page=page_size())
    return render_template_string(
        TEMPL_INDEX, rows=rows, page=page, pages=pages, title=site_name()
    )


@app.route("/register", methods=["GET", "POST"])
def register():
    if request.method == "POST":
        data, errors = validate_registration(request.form)
        if not errors:
            try:
                user = create_user(get_db(), **data)
            except ValueError as exc:
                errors.append(_error("email", str(exc)))
            else:
                _login_session(user)
                return redirect(url_for("dashboard"))
        for err in errors:
            flash(err["message"])
    return render_template_string(
        TEMPL_REGISTER, form=request.form, title=f"Register – {site_name()}"
    )


@app.route("/login", methods=["GET", "POST"])
@rate_limit(max_requests=5, window=60)
def login():
    next_url = request.values.get("next", "")
    email = request.form.get("email", "")

    if request.method == "POST":
        user = check_credentials(email, request.form.get("password", ""), db=get_db())
        if user is not None:
            _login_session(user)
            return redirect(_safe_next(next_url))
        app.logger.warning("Failed login for %r from %s", email, client_ip())
        flash("Invalid email or password.")

    return render_template_string(
        TEMPL_LOGIN, email=email, next_url=next_url, title=f"Login – {site_name()}"
    )


@app.route("/logout")
def logout():
    session.clear()
    return redirect(url_for("index"))


@app.route("/dashboard")
def dashboard():
    me = login_required()
    db = get_db()
    contributions = contribution_counts(me["id"], db=db)
    return render_template_string(
        TEMPL_DASHBOARD,
        me=me,
        rows=user_diaries(me["id"], db=db),
        contributions=contributions,
        total=sum(day["count"] for day in contributions),
        title=f"Dashboard – {site_name()}",
    )


def _diary_form() -> dict:
    return {
        "title": request.form.get("title", ""),
        "content": request.form.get("content", ""),
        "is_public": "is_public" in request.form,
    }


@app.route("/diary/new", methods=["GET", "POST"])
def new_diary():
    me = login_required()
    form: dict = {}

    if request.method == "POST":
        form = _diary_form()
        clean, errors = validate_diary(form)
        if not errors:
            diary_id = create_diary(me["id"], db=get_db(), **clean)
            return redirect(url_for("diary_detail", diary_id=diary_id))
        for err in errors:
            flash(err["message"])

    return render_template_string(
        TEMPL_EDIT, form=form, diary_id=None, title=f"New entry – {site_name()}"
    )


@app.route("/diary/<int:diary_id>")
def diary_detail(diary_id):
    row = get_diary(diary_id, db=get_db())
    if row is None:
        abort(404)

    viewer = current_user()
    access = authorize(viewer, row)
    if not access.allowed:
        abort(404)  # don't reveal that a private entry exists

    return render_template_string(
        TEMPL_DIARY,
        d=row,
        body=render_diary_html(row["content"], reveal=access.reveals_secrets),
        owner=is_owner(viewer, row),
        title=f"{row['title']} – {site_name()}",
    )


def _owned_diary_or_abort(diary_id):
    me = login_required()
    row = get_diary(diary_id, db=get_db())
    if row is None:
        abort(404)
    if not is_owner(me, row):
        abort(403)
    return row


@app.route("/diary/<int:diary_id>/edit", methods=["GET", "POST"])
def edit_diary(diary_id):
    row = _owned_diary_or_abort(diary_id)
    form = {
        "title": row["title"],
        "content": row["content"],
        "is_public": bool(row["is_public"]),
    }

    if request.method == "POST":
        form = _diary_form()
        clean, errors = validate_diary(form)
        if not errors:
            update_diary(diary_id, clean, db=get_db())
            return redirect(url_for("diary_detail", diary_id=diary_id))
        for err in errors:
            flash(err["message"])

    return render_template_string(
        TEMPL_EDIT, form=form, diary_id=diary_id, title=f"Edit – {site_name()}"
    )


@app.route("/diary/<int:diary_id>/delete", methods=["GET", "POST"])
def delete_diary_view(diary_id):
    row = _owned_diary_or_abort(diary_id)

    if request.method == "POST":
        delete_diary(diary_id, db=get_db())
        flash("Entry deleted.")
        return redirect(url_for("dashboard"))

    return render_template_string(
        TEMPL_DELETE, d=row, title=f"Delete – {site_name()}"
    )


@app.route("/share/<int:diary_id>")
def share(diary_id):
    row = get_diary(diary_id, db=get_db())
    if row is None:
        abort(404)

    access = authorize_share(row)
    if not access.allowed:
        abort(404)

    return render_template_string(
        TEMPL_SHARE,
        d=row,
        body=render_diary_html(row["content"], reveal=access.reveals_secrets),
        og={
            "title": row["title"],
            "description": excerpt(row["content"], length=200),
            "url": url_for("share", diary_id=diary_id, _external=True),
        },
        title=f"{row['title']} – {site_name()}",
    )


@app.route("/search")
def search():
    me = login_required()
    q_raw = request.args.get("q", "").strip()
    sort = request.args.get("sort", "rel")
    page = max(request.args.get("page", 1, type=int), 1)

    rows, total = search_diaries(
        q_raw, user_id=me["id"], db=get_db(), page=page, per_page=page_size(), sort=sort
    )

    terms = q_raw.split()
    hits = []
    for r in rows:
        text = plain_text(r["content"], reveal=True)
        hits.append(
            {
                "id": r["id"],
                "title": r["title"],
                "created_at": r["created_at"],
                "snippet": _highlight(_snippet(text, terms[0] if terms else ""), terms),
            }
        )

    pages = list(range(1, (total + page_size() - 1) // page_size() + 1))
    return render_template_string(
        TEMPL_SEARCH,
        rows=hits,
        total=total,
        query=q_raw,
        sort=sort,
        page=page,
        pages=pages,
        title=f"Search – {site_name()}",
    )


###############################################################################
# JSON API
###############################################################################
def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400, description="JSON object expected")
    return data


def _invalid(errors: list[dict]):
    return jsonify(errors=errors), 400


@app.route("/api/auth/register", methods=["POST"])
def api_register():
    data, errors = validate_registration(_json_body())
    if errors:
        return _invalid(errors)

    try:
        user = create_user(get_db(), **data)
    except ValueError as exc:
        abort(400, description=str(exc))

    return (
        jsonify(
            message="User registered successfully",
            token=issue_token(user["id"]),
            user=user_json(user),
        ),
        201,
    )


@app.route("/api/auth/login", methods=["POST"])
@rate_limit(max_requests=5, window=60)
def api_login():
    data = _json_body()
    user = check_credentials(
        str(data.get("email") or ""), str(data.get("password") or ""), db=get_db()
    )
    if user is None:
        app.logger.warning("Failed API login for %r from %s", data.get("email"), client_ip())
        abort(401, description="Invalid credentials")
    return jsonify(token=issue_token(user["id"]), user=user_json(user))


@app.route("/api/auth/me")
def api_me():
    return jsonify(user=user_json(api_viewer(required=True)))


@app.route("/api/diaries", methods=["GET"])
def api_list_diaries():
    me = api_viewer(required=True)
    return jsonify([diary_json(r) for r in user_diaries(me["id"], db=get_db())])


@app.route("/api/diaries", methods=["POST"])
def api_create_diary():
    me = api_viewer(required=True)
    clean, errors = validate_diary(_json_body())
    if errors:
        return _invalid(errors)

    db = get_db()
    diary_id = create_diary(me["id"], db=db, **clean)
    return (
        jsonify(
            message="Diary created successfully",
            diary=diary_json(get_diary(diary_id, db=db)),
        ),
        201,
    )


@app.route("/api/diaries/public")
def api_public_diaries():
    return jsonify([diary_json(r) for r in public_diaries(db=get_db())])


@app.route("/api/diaries/search")
def api_search_diaries():
    me = api_viewer(required=True)
    q = request.args.get("q", "").strip()
    if not q:
        return _invalid([_error("q", "Search query is required")])

    sort = request.args.get("sort", "rel")
    page = max(request.args.get("page", 1, type=int), 1)
    rows, _ = search_diaries(
        q, user_id=me["id"], db=get_db(), page=page, per_page=page_size(), sort=sort
    )
    return jsonify([diary_json(r) for r in rows])


@app.route("/api/diaries/contributions")
def api_contributions():
    me = api_viewer(required=True)
    days = min(max(request.args.get("days", CONTRIB_DAYS, type=int), 1), CONTRIB_DAYS)
    return jsonify(contribution_counts(me["id"], db=get_db(), days=days))


@app.route("/api/diaries/share/<int:diary_id>")
def api_share_diary(diary_id):
    row = get_diary(diary_id, db=get_db())
    if row is None:
        abort(404, description="Diary not found")

    access = authorize_share(row)
    if not access.allowed:
        abort(403, description="Access denied")
    return jsonify(
        diary_json(row, content=redact(row["content"], access.reveals_secrets))
    )


@app.route("/api/diaries/<int:diary_id>", methods=["GET"])
def api_get_diary(diary_id):
    viewer = api_viewer(required=False)
    row = get_diary(diary_id, db=get_db())
    if row is None:
        abort(404, description="Diary not found")

    access = authorize(viewer, row)
    if not access.allowed:
        abort(403, description="Access denied")
    return jsonify(
        diary_json(row, content=redact(row["content"], access.reveals_secrets))
    )


@app.route("/api/diaries/<int:diary_id>", methods=["PUT"])
def api_update_diary(diary_id):
    me = api_viewer(required=True)
    db = get_db()
    row = get_diary(diary_id, db=db)
    if row is None:
        abort(404, description="Diary not found")
    if not is_owner(me, row):
        abort(403, description="Not authorized to update this diary")

    clean, errors = validate_diary(_json_body(), partial=True)
    if errors:
        return _invalid(errors)

    update_diary(diary_id, clean, db=db)
    return jsonify(
        message="Diary updated successfully",
        diary=diary_json(get_diary(diary_id, db=db)),
    )


@app.route("/api/diaries/<int:diary_id>", methods=["DELETE"])
def api_delete_diary(diary_id):
    me = api_viewer(required=True)
    db = get_db()
    row = get_diary(diary_id, db=db)
    if row is None:
        abort(404, description="Diary not found")
    if not is_owner(me, row):
        abort(403, description="Not authorized to delete this diary")

    delete_diary(diary_id, db=db)
    return jsonify(message="Diary deleted successfully")


###############################################################################
# Errors
###############################################################################
def _wants_json() -> bool:
    return request.path.startswith("/api/")


@app.errorhandler(HTTPException)
def http_error(exc):
    """JSON for the API, themed pages for everything else."""
    if _wants_json():
        return jsonify(message=exc.description), exc.code
    if exc.code == 404:
        return render_template_string(TEMPL_404, title=site_name()), 404
    return (
        render_template_string(
            TEMPL_ERROR,
            code=exc.code,
            name=exc.name,
            description=exc.description,
            title=site_name(),
        ),
        exc.code,
    )


@app.errorhandler(500)
def internal_error(exc):
    """
    Generic 500 page.  Flask has already logged the traceback through
    ``app.logger`` by the time this runs.
    """
    if _wants_json():
        return jsonify(message="Server error"), 500
    return render_template_string(TEMPL_500, title=site_name()), 500


###############################################################################
# CLI
###############################################################################
@app.cli.command("init-db")
def cli_init_db():
    """Create the database schema (no-op if it exists)."""
    init_db()
    click.secho("✅  Database ready.", fg="green")


@app.cli.command("create-user")
@click.option("--username", prompt=True, help="Public display name")
@click.option("--email", prompt=True, help="Login email")
@click.password_option()
def cli_create_user(username: str, email: str, password: str):
    """Create an account and print an API token for it."""
    init_db()
    data, errors = validate_registration(
        {"username": username, "email": email, "password": password}
    )
    if errors:
        raise click.ClickException("; ".join(e["message"] for e in errors))

    try:
        user = create_user(get_db(), **data)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    click.secho(f"\n✅  User {user['username']} created.", fg="green")
    click.echo(f"\nAPI token:\n\n{issue_token(user['id'])}\n")


@app.cli.command("token")
@click.argument("email")
def cli_token(email: str):
    """Print a fresh API token for an existing account."""
    row = get_db().execute(
        "SELECT id FROM user WHERE email=?", (email.strip().lower(),)
    ).fetchone()
    if row is None:
        raise click.ClickException(f"No user with email {email}")

    click.secho("\n🔑  Fresh API token generated.\n", fg="yellow")
    click.echo(f"{issue_token(row['id'])}\n")


###############################################################################
# main
###############################################################################
if __name__ == "__main__":
    with app.app_context():
        init_db()
    app.run(debug=True)
