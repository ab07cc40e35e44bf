"""
tests/test_spoiler.py
"""
from __future__ import annotations

import time

import pytest

from diarist.spoiler import (
    SECRET_LABEL,
    SECRET_PLACEHOLDER,
    has_secrets,
    redact,
)


# ───────────────────────── helpers ──────────────────────────────────
def _block(payload: str, nl: str = "\n") -> str:
    return f":::secret{nl}{payload}{nl}:::"


# ───────────────────────── no markers ───────────────────────────────
@pytest.mark.parametrize("text", [
    "",
    "plain text",
    "# Heading\n\n* a\n* b\n",
    "::: not a secret\n:::",
    "a line with :::secret in the middle\n:::",
    "```\ncode\n```",
])
@pytest.mark.parametrize("reveal", [True, False])
def test_text_without_blocks_is_unchanged(text, reveal):
    assert redact(text, reveal) == text


def test_none_is_empty():
    assert redact(None, True) == ""
    assert redact(None, False) == ""


# ───────────────────────── single block ─────────────────────────────
def test_owner_sees_payload():
    out = redact("before\n" + _block("the butler did it") + "\nafter", True)
    assert "the butler did it" in out
    assert SECRET_LABEL in out
    assert out.startswith("before\n") and out.endswith("after")
    assert ":::secret" not in out


def test_others_get_placeholder_only():
    out = redact("before\n" + _block("the butler did it") + "\nafter", False)
    assert "butler" not in out
    assert SECRET_PLACEHOLDER in out
    assert out.startswith("before\n") and out.endswith("after")


def test_multiline_payload():
    payload = "line one\n\n**line two**\n- item"
    out = redact(_block(payload), True)
    assert payload in out
    hidden = redact(_block(payload), False)
    assert "line one" not in hidden and "item" not in hidden


def test_empty_payload_is_still_a_block():
    text = ":::secret\n:::"
    assert has_secrets(text)
    assert SECRET_PLACEHOLDER in redact(text, False)
    assert ":::secret" not in redact(text, True)


def test_crlf_line_endings():
    text = "intro\r\n" + _block("crlf secret", "\r\n") + "\r\noutro"
    assert "crlf secret" in redact(text, True)
    hidden = redact(text, False)
    assert "crlf secret" not in hidden
    assert hidden.endswith("\r\noutro")


def test_trailing_whitespace_on_markers_is_ok():
    text = ":::secret   \nhidden\n:::  \n"
    assert "hidden" not in redact(text, False)


def test_indented_marker_is_plain_text():
    text = "  :::secret\nvisible\n:::"
    assert redact(text, False) == text


# ───────────────────────── several blocks ───────────────────────────
def test_two_blocks_are_independent():
    text = _block("first") + "\nmiddle\n" + _block("second")
    shown = redact(text, True)
    assert "first" in shown and "second" in shown and "middle" in shown
    assert shown.count(SECRET_LABEL) == 2

    hidden = redact(text, False)
    assert "first" not in hidden and "second" not in hidden
    assert "middle" in hidden
    assert hidden.count(SECRET_PLACEHOLDER) == 2


def test_block_closes_at_nearest_marker():
    # the inner opener is payload, the second ::: is left as text
    text = ":::secret\nouter\n:::secret\ninner\n:::\ntail\n:::"
    hidden = redact(text, False)
    assert "outer" not in hidden and "inner" not in hidden
    assert hidden.count(SECRET_PLACEHOLDER) == 1
    assert "tail\n:::" in hidden


# ───────────────────────── unterminated ─────────────────────────────
@pytest.mark.parametrize("reveal", [True, False])
def test_unterminated_marker_is_left_alone(reveal):
    text = "intro\n:::secret\nnot really hidden"
    assert redact(text, reveal) == text


def test_terminated_block_before_unterminated_one():
    text = _block("gone") + "\n:::secret\nstays"
    hidden = redact(text, False)
    assert "gone" not in hidden
    assert hidden.endswith(":::secret\nstays")


# ───────────────────────── has_secrets ──────────────────────────────
@pytest.mark.parametrize("text, expected", [
    ("", False),
    (None, False),
    ("no markers", False),
    (":::secret\nno end", False),
    (_block("x"), True),
    ("text\n" + _block("x") + "\nmore", True),
])
def test_has_secrets(text, expected):
    assert has_secrets(text) is expected


# ───────────────────────── adversarial input ────────────────────────
def test_thousands_of_openers_is_linear():
    text = ":::secret\n" * 20_000
    t0 = time.perf_counter()
    assert redact(text, False) == text
    assert not has_secrets(text)
    assert time.perf_counter() - t0 < 2.0


def test_thousands_of_blocks():
    text = "\n".join(_block(f"s{i}") for i in range(5_000))
    hidden = redact(text, False)
    assert hidden.count(SECRET_PLACEHOLDER) == 5_000
    assert "s4999" not in hidden
