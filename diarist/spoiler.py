"""
Secret spoilers and read access.

A secret block is written as

    :::secret
    only the author sees this
    :::

and is revealed to the owner or collapsed into a placeholder for everyone
else.  Nothing in here touches Flask or the database.
"""

from __future__ import annotations

import enum
import uuid
from collections.abc import Mapping
from typing import Any

SECRET_OPEN = ":::secret"
SECRET_CLOSE = ":::"
SECRET_LABEL = "Secret spoiler"
SECRET_PLACEHOLDER = "This content is private."
ID_FIELDS = ("id", "_id")
OWNER_FIELDS = ("user_id", "owner_id", "user")


###############################################################################
# Redaction
###############################################################################
def _is_marker(line: str, marker: str) -> bool:
    # trailing blanks and CR/LF are fine, leading indentation is not
    return line.rstrip() == marker


def _find_close(lines: list[str], start: int) -> int | None:
    for j in range(start, len(lines)):
        if _is_marker(lines[j], SECRET_CLOSE):
            return j
    return None


def _chomp(text: str) -> str:
    """Drop exactly one trailing line break."""
    if text.endswith("\r\n"):
        return text[:-2]
    if text.endswith(("\n", "\r")):
        return text[:-1]
    return text


def _line_ending(line: str) -> str:
    return line[len(line.rstrip("\r\n")) :]


def _reveal(payload: str) -> str:
    return (
        '\n<div class="secret-spoiler" markdown="1">\n'
        f'<p class="secret-spoiler-header">{SECRET_LABEL}</p>\n\n'
        f"{payload}\n\n"
        "</div>\n"
    )


def _conceal() -> str:
    return (
        '\n<div class="secret-spoiler secret-spoiler--hidden">\n'
        f'<p class="secret-spoiler-header">{SECRET_LABEL}</p>\n'
        f"<p>{SECRET_PLACEHOLDER}</p>\n"
        "</div>\n"
    )


def redact(content: str | None, reveal_secrets: bool) -> str:
    """
    Replace every ``:::secret`` … ``:::`` block in *content*.

    • ``reveal_secrets`` → the payload is kept verbatim inside a marked
      container.
    • otherwise → a fixed placeholder container, no payload text at all.

    Blocks close at the *nearest* ``:::`` line and never nest; a
    ``:::secret`` line inside a block is just payload.  An opener with no
    closer below it stays as literal text.  Text without markers comes back
    unchanged.

    Single pass over the lines: once a closer search runs off the end, no
    later opener can be closed either, so the rest is copied as-is.
    """
    lines = (content or "").splitlines(keepends=True)
    out: list[str] = []
    i = 0
    while i < len(lines):
        line = lines[i]
        if not _is_marker(line, SECRET_OPEN):
            out.append(line)
            i += 1
            continue

        close = _find_close(lines, i + 1)
        if close is None:
            out.extend(lines[i:])
            break

        payload = _chomp("".join(lines[i + 1 : close]))
        out.append(_reveal(payload) if reveal_secrets else _conceal())
        out.append(_line_ending(lines[close]))
        i = close + 1
    return "".join(out)


def has_secrets(content: str | None) -> bool:
    """True if *content* holds at least one complete secret block."""
    lines = (content or "").splitlines()
    for i, line in enumerate(lines):
        if _is_marker(line, SECRET_OPEN):
            return _find_close(lines, i + 1) is not None
    return False


###############################################################################
# Access control
###############################################################################
class Access(enum.Enum):
    FULL = "full"
    REDACTED = "redacted"
    DENY = "deny"

    @property
    def allowed(self) -> bool:
        return self is not Access.DENY

    @property
    def reveals_secrets(self) -> bool:
        return self is Access.FULL


def extract_id(ref: Any) -> str | None:
    """
    Canonical string form of an identifier.

    *ref* may be the bare id (``"u1"``, ``7``, a UUID), an expanded owner
    (``{"id": "u1", "username": "alice"}``, a ``sqlite3.Row``) or any object
    with an ``id`` attribute.  Returns ``None`` when there is no id.
    """
    if ref is None:
        return None
    if isinstance(ref, (str, int, uuid.UUID)):
        return str(ref)
    if isinstance(ref, Mapping) or hasattr(ref, "keys"):
        keys = ref.keys()
        for field in ID_FIELDS:
            if field in keys:
                return extract_id(ref[field])
        return None
    return extract_id(getattr(ref, "id", None))


def _field(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping) or hasattr(entry, "keys"):
        return entry[name] if name in entry.keys() else None
    return getattr(entry, name, None)


def owner_of(entry: Any) -> str | None:
    """Owner id of *entry*, whether stored as a bare id or an expanded ``user``."""
    for name in OWNER_FIELDS:
        ref = _field(entry, name)
        if ref is not None:
            return extract_id(ref)
    return None


def is_owner(viewer: Any, entry: Any) -> bool:
    viewer_id = extract_id(viewer)
    return viewer_id is not None and viewer_id == owner_of(entry)


def authorize(viewer: Any, entry: Any) -> Access:
    """
    Decide what *viewer* (``None`` = anonymous) may read of *entry*.

    ================  ==========  ========  =========
    entry             anonymous   owner     other
    ================  ==========  ========  =========
    private           DENY        FULL      DENY
    public            REDACTED    FULL      REDACTED
    ================  ==========  ========  =========
    """
    if is_owner(viewer, entry):
        return Access.FULL
    if _field(entry, "is_public"):
        return Access.REDACTED
    return Access.DENY


def authorize_share(entry: Any) -> Access:
    """Shared links never reveal secrets, not even to the owner."""
    return Access.REDACTED if _field(entry, "is_public") else Access.DENY
