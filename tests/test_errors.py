"""
tests/test_errors.py
"""
from __future__ import annotations

from diarist.diary import app


# ─────────────────────────■  tests  ■────────────────────────────────

def test_404_custom_page(client):
    """
    Any unknown URL yields the themed “Page not found” template.
    """
    resp = client.get("/this/route/does/not/exist")
    assert resp.status_code == 404
    # sanity-check that we really rendered *our* template, not Werkzeug’s
    assert b"Page not found" in resp.data
    # site title appears in the nav
    assert app.config["SITE_NAME"].encode() in resp.data


def test_api_errors_are_json(client):
    resp = client.get("/api/diaries/123456789")
    assert resp.status_code == 404
    assert resp.get_json() == {"message": "Diary not found"}


def test_method_not_allowed_is_json_under_api(client):
    resp = client.patch("/api/diaries/1")
    assert resp.status_code == 405
    assert "message" in resp.get_json()


def test_500_handler_renders_friendly_page(client, monkeypatch):
    """
    Temporarily replace ``index`` with a view that crashes, but disable
    exception propagation so the global 500-handler can render the page.
    """
    def _boom():
        raise RuntimeError("kaboom!")

    # ➊ monkey-patch the failing view
    monkeypatch.setitem(app.view_functions, "index", _boom)

    # ➋ turn *off* propagation just for this test
    monkeypatch.setitem(app.config, "PROPAGATE_EXCEPTIONS", False)

    resp = client.get("/")                 # handled by our 500-handler
    assert resp.status_code == 500
    assert b"Internal Server Error" in resp.data


def test_500_handler_json_for_api(client, monkeypatch):
    def _boom():
        raise RuntimeError("kaboom!")

    monkeypatch.setitem(app.view_functions, "api_public_diaries", _boom)
    monkeypatch.setitem(app.config, "PROPAGATE_EXCEPTIONS", False)

    resp = client.get("/api/diaries/public")
    assert resp.status_code == 500
    assert resp.get_json() == {"message": "Server error"}
