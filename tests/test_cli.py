"""
tests/test_cli.py -- Tests for the operator CLI in main.py.

The profile store and view cache are injected so the commands run against
in-memory databases.
"""

from __future__ import annotations

import pytest

from auth.roles import Role
from auth.store import ProfileStore
from cache.store import ViewCache
from main import main


@pytest.fixture
def store():
    s = ProfileStore(db_url="sqlite:///:memory:")
    s.create(id="sub-ann", email="ann@example.com", name="Ann")
    yield s
    s.close()


@pytest.fixture
def views():
    v = ViewCache(":memory:")
    yield v
    v.close()


def test_set_role(store, views, capsys):
    assert main(["set-role", "ann@example.com", "ADMIN"], store=store, views=views) == 0
    assert store.find_by_id("sub-ann").role is Role.ADMIN
    assert "AUTHOR -> ADMIN" in capsys.readouterr().out


def test_set_role_is_case_insensitive_on_role(store, views):
    assert main(["set-role", "ann@example.com", "editor"], store=store, views=views) == 0
    assert store.find_by_id("sub-ann").role is Role.EDITOR


def test_set_role_unknown_email(store, views, capsys):
    assert main(["set-role", "ghost@example.com", "ADMIN"], store=store, views=views) == 1
    assert "No profile registered" in capsys.readouterr().err


def test_set_role_invalid_role(store, views, capsys):
    assert main(["set-role", "ann@example.com", "OWNER"], store=store, views=views) == 1
    assert "is not a role" in capsys.readouterr().err
    assert store.find_by_id("sub-ann").role is Role.AUTHOR


def test_show(store, views, capsys):
    assert main(["show", "sub-ann"], store=store, views=views) == 0
    out = capsys.readouterr().out
    assert "ann@example.com" in out
    assert "AUTHOR" in out


def test_show_missing(store, views):
    assert main(["show", "nobody"], store=store, views=views) == 1


def test_list(store, views, capsys):
    assert main(["list"], store=store, views=views) == 0
    assert "ann@example.com" in capsys.readouterr().out


def test_no_command_prints_help(store, views, capsys):
    assert main([], store=store, views=views) == 0
    assert "set-role" in capsys.readouterr().out


def test_set_role_drops_cached_admin_views(store, views):
    views.set("/admin/profile", "sub-ann", {"role": "AUTHOR"})
    views.set("/admin/users", "sub-ann", {"count": 1})
    views.set("/", "sub-ann", {"home": True})
    assert main(["set-role", "ann@example.com", "EDITOR"], store=store, views=views) == 0
    assert views.get("/admin/profile", "sub-ann") is None
    assert views.get("/admin/users", "sub-ann") is None
    assert views.get("/", "sub-ann") == {"home": True}


def test_failed_set_role_keeps_cached_views(store, views):
    views.set("/admin/profile", "sub-ann", {"role": "AUTHOR"})
    assert main(["set-role", "ann@example.com", "OWNER"], store=store, views=views) == 1
    assert views.get("/admin/profile", "sub-ann") == {"role": "AUTHOR"}
